"""Byte store: raw file bytes at store-relative paths."""
import logging
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

import aiofiles
import aiofiles.os

from assethub.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

PLACEHOLDER_DIR = "_placeholders"


class StorageError(Exception):
    """Byte store read/write failure."""


class LocalByteStore:
    """Local filesystem byte store with a cloud-storage-shaped interface.

    Paths handed in and out are store-relative POSIX paths such as
    ``<client_id>/2024/05/01/<asset_id>.png``.
    """

    def __init__(self, base_dir: str | Path | None = None):
        self.base_dir = Path(base_dir or settings.upload_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, relative_path: str) -> Path:
        path = (self.base_dir / relative_path).resolve()
        # Security check: prevent path traversal
        try:
            path.relative_to(self.base_dir.resolve())
        except ValueError:
            raise StorageError(f"Path escapes byte store: {relative_path}")
        return path

    def asset_dir(self, client_id: str, when: datetime | None = None) -> str:
        """Date-partitioned directory for one client's assets."""
        when = when or datetime.now(timezone.utc)
        return str(PurePosixPath(client_id) / when.strftime("%Y/%m/%d"))

    def path_for(self, directory: str, asset_id: str, suffix: str, ext: str) -> str:
        """Canonical path for an asset file or one of its derivatives.

        ``suffix`` is "" for the original, or "_thumb", "_preview", "_waveform".
        """
        ext = ext.lower()
        if ext and not ext.startswith("."):
            ext = f".{ext}"
        return str(PurePosixPath(directory) / f"{asset_id}{suffix}{ext}")

    async def write(self, relative_path: str, content: bytes) -> str:
        """Write bytes, creating parent directories. Returns the relative path."""
        file_path = self._resolve(relative_path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(file_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            raise StorageError(f"Failed to write {relative_path}: {e}") from e
        return relative_path

    async def read(self, relative_path: str) -> bytes:
        """Read the full contents of a stored file."""
        file_path = self._resolve(relative_path)
        try:
            async with aiofiles.open(file_path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageError(f"Failed to read {relative_path}: {e}") from e

    async def delete(self, relative_path: str) -> bool:
        """Delete file from storage. Returns False if nothing was deleted."""
        try:
            file_path = self._resolve(relative_path)
        except StorageError:
            logger.warning("Refusing to delete path outside byte store: %s", relative_path)
            return False
        try:
            if file_path.exists():
                await aiofiles.os.remove(file_path)
                return True
            return False
        except OSError as e:
            logger.error("Failed to delete %s: %s", relative_path, e)
            return False

    def exists(self, relative_path: str) -> bool:
        try:
            return self._resolve(relative_path).is_file()
        except StorageError:
            return False

    def prepare_local_path(self, relative_path: str) -> Path:
        """Absolute path for an external tool to write to; parent dirs created."""
        path = self._resolve(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def get_file_url(self, relative_path: str) -> str:
        """
        Get public URL for file.

        For local storage, returns API path.
        Override this for cloud storage implementations.
        """
        return f"{settings.api_prefix}/files/{relative_path}"

    def get_absolute_path(self, relative_path: str) -> Path:
        """Get absolute filesystem path for file."""
        return self._resolve(relative_path)

    def placeholder_path(self, name: str) -> str:
        return str(PurePosixPath(PLACEHOLDER_DIR) / name)

    def is_placeholder(self, relative_path: str | None) -> bool:
        return bool(relative_path) and relative_path.startswith(f"{PLACEHOLDER_DIR}/")


_storage: LocalByteStore | None = None


def get_storage() -> LocalByteStore:
    """Process-wide byte store (FastAPI dependency)."""
    global _storage
    if _storage is None:
        _storage = LocalByteStore()
    return _storage

