"""Maintenance tasks (byte-store cleanup)."""

import asyncio
import logging

from assethub.services.cleanup import delete_paths
from assethub.tasks.celery_app import celery_app
from assethub.utils.storage import get_storage

logger = logging.getLogger(__name__)


def _run_async(coro):
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(name="assethub.maintenance.cleanup_files")
def cleanup_files(paths: list[str]) -> dict:
    """Delete byte-store files left behind by deleted assets.

    Missing files are not an error; placeholders are never touched.
    """
    deleted = _run_async(delete_paths(get_storage(), paths))
    logger.info("cleanup_files removed %d of %d file(s)", deleted, len(paths))
    return {"requested": len(paths), "deleted": deleted}
