"""Byte-store cleanup after an asset record is gone."""
import logging
from abc import ABC, abstractmethod

from assethub.config import get_settings
from assethub.utils.storage import LocalByteStore

settings = get_settings()
logger = logging.getLogger(__name__)


async def delete_paths(storage: LocalByteStore, paths: list[str]) -> int:
    """Best-effort delete; returns how many files were removed."""
    deleted = 0
    for path in paths:
        if storage.is_placeholder(path):
            continue
        try:
            if await storage.delete(path):
                deleted += 1
        except Exception:
            logger.exception("Failed to delete %s", path)
    return deleted


class CleanupScheduler(ABC):
    @abstractmethod
    async def schedule(self, paths: list[str]) -> None:
        """Arrange for ``paths`` to be removed from the byte store."""


class InlineCleanup(CleanupScheduler):
    """Deletes right away, in the request."""

    def __init__(self, storage: LocalByteStore):
        self.storage = storage

    async def schedule(self, paths: list[str]) -> None:
        if not paths:
            return
        deleted = await delete_paths(self.storage, paths)
        logger.info("Removed %d of %d file(s) from the byte store", deleted, len(paths))


class CeleryCleanup(CleanupScheduler):
    """Hands deletion to a worker via the ``cleanup_files`` task."""

    def __init__(self, storage: LocalByteStore):
        self.storage = storage

    async def schedule(self, paths: list[str]) -> None:
        if not paths:
            return
        from assethub.tasks.maintenance import cleanup_files

        try:
            cleanup_files.delay(list(paths))
        except Exception:
            logger.exception("Could not enqueue cleanup of %d file(s); deleting inline", len(paths))
            await delete_paths(self.storage, paths)


def get_cleanup_scheduler(storage: LocalByteStore) -> CleanupScheduler:
    if settings.derivatives_async:
        return CeleryCleanup(storage)
    return InlineCleanup(storage)
