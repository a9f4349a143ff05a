"""In-memory store for reassembled files, served back through the API."""

from pydantic import BaseModel


class Artifact(BaseModel):
    """A fully reassembled incoming file."""
    transfer_id: str
    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class MemoryArtifactSink:
    """Keeps artifacts for the session; nothing touches disk."""

    def __init__(self, url_prefix: str = "/api/transfers") -> None:
        self._url_prefix = url_prefix.rstrip("/")
        self._artifacts: dict[str, Artifact] = {}

    def store(self, artifact: Artifact) -> str:
        """Take ownership of ``artifact`` and return its retrieval URL."""
        self._artifacts[artifact.transfer_id] = artifact
        return f"{self._url_prefix}/{artifact.transfer_id}/artifact"

    def get(self, transfer_id: str) -> Artifact | None:
        return self._artifacts.get(transfer_id)
