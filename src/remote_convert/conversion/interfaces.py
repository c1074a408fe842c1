from dataclasses import dataclass
from typing import Protocol

from .models import UploadTarget


class Transport(Protocol):
    async def request(self, endpoint: str, method: str, body: dict[str, object] | None = None) -> bytes:
        """Authenticated JSON call against the API base URL; returns the raw body."""

    async def upload_multipart(self, target: UploadTarget, data: bytes, filename: str) -> None:
        """POST ``data`` to a pre-signed upload form. No authorization header."""

    async def download(self, url: str) -> bytes:
        """Unauthenticated GET of a pre-signed result URL."""


@dataclass(frozen=True)
class UploadSource:
    data: bytes
    filename: str


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    filename: str
    operation: str
    source_format: str
    result_format: str
    size_bytes: int
    created_at: str
    path: str

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "filename": self.filename,
            "operation": self.operation,
            "source_format": self.source_format,
            "result_format": self.result_format,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at,
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "HistoryEntry":
        return cls(
            id=str(data["id"]),
            filename=str(data["filename"]),
            operation=str(data.get("operation", "")),
            source_format=str(data.get("source_format", "")),
            result_format=str(data.get("result_format", "")),
            size_bytes=int(data.get("size_bytes", 0)),  # type: ignore[arg-type]
            created_at=str(data.get("created_at", "")),
            path=str(data.get("path", "")),
        )


class ResultStore(Protocol):
    def save(
        self,
        data: bytes,
        filename: str,
        *,
        operation: str,
        source_format: str,
        result_format: str,
    ) -> HistoryEntry:
        ...

    def list_entries(self) -> list[HistoryEntry]:
        ...

    def delete(self, entry_id: str) -> bool:
        """Remove one entry and its file; False when the id is unknown."""

    def clear(self) -> None:
        ...
