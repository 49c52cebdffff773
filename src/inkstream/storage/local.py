"""Local filesystem blob store."""

import asyncio
from pathlib import Path

from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import StorageError
from inkstream.storage.base import BlobStore


class LocalBlobStore(BlobStore):
    """Blob store that maps references to files under a base directory."""

    def __init__(
        self,
        base_path: str | Path | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize local storage.

        Args:
            base_path: Base directory for storage
            settings: Application settings
        """
        settings = settings or get_settings()
        self._base_path = Path(base_path or settings.blob_local_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        """Directory blobs are stored under."""
        return self._base_path

    def _get_path(self, ref: str) -> Path:
        """Get the file path for a reference."""
        parts = [part for part in ref.replace("\\", "/").split("/") if part]
        # Reject path traversal
        if not parts or any(part in (".", "..") for part in parts):
            raise StorageError("Invalid blob reference", details={"ref": ref})
        return self._base_path.joinpath(*parts)

    async def get(self, ref: str) -> bytes:
        path = self._get_path(ref)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise StorageError("Blob not found", details={"ref": ref}) from e
        except OSError as e:
            raise StorageError(
                f"Failed to read blob: {e}",
                details={"ref": ref, "path": str(path)},
            ) from e

    async def put(self, ref: str, data: bytes, content_type: str | None = None) -> str:
        path = self._get_path(ref)

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(write)
        except OSError as e:
            raise StorageError(
                f"Failed to write blob: {e}",
                details={"ref": ref, "path": str(path)},
            ) from e
        return ref

    async def list_keys(self, prefix: str = "") -> list[str]:
        def scan() -> list[str]:
            keys = []
            for path in self._base_path.rglob("*"):
                if path.is_file():
                    key = path.relative_to(self._base_path).as_posix()
                    if key.startswith(prefix):
                        keys.append(key)
            return sorted(keys)

        return await asyncio.to_thread(scan)
