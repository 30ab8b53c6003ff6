"""Celery tasks for deferred derivative generation."""
import asyncio
import logging
from pathlib import PurePosixPath

from assethub.database import async_session_maker
from assethub.exceptions import NotFoundError, PersistenceError
from assethub.models.asset import ProcessingStatus
from assethub.services.derivatives import DerivativeGenerator
from assethub.services.persistence import PersistenceWriter
from assethub.tasks.celery_app import celery_app
from assethub.utils.cache import build_cache
from assethub.utils.storage import get_storage

logger = logging.getLogger(__name__)

RETRY_COUNTDOWN_SECONDS = 30


def run_async(coro):
    """Run async function in sync context."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(bind=True, name="assethub.derivatives.generate", max_retries=2)
def generate_asset_derivatives(self, asset_id: str) -> dict:
    """
    Generate thumbnail/preview/metadata for an asset stored as pending.

    Sub-task failures end up in processingWarnings like in the inline path;
    only an unexpected crash marks the asset as failed. A record store
    failure is retried; once retries run out the asset is marked failed.
    """
    try:
        return run_async(_generate_asset_derivatives_async(asset_id))
    except PersistenceError as e:
        if self.request.retries >= self.max_retries:
            logger.error("Giving up on derivatives for asset %s: %s", asset_id, e.message)
            run_async(_mark_failed_async(asset_id, f"derivatives: {e.message}"))
            raise
        logger.warning("Record store failed for asset %s, retrying: %s", asset_id, e.message)
        raise self.retry(exc=e, countdown=RETRY_COUNTDOWN_SECONDS)


async def _mark_failed_async(asset_id: str, reason: str) -> None:
    cache = build_cache()
    try:
        async with async_session_maker() as db:
            await PersistenceWriter(db, get_storage(), cache).mark_processing_failed(asset_id, reason)
    except NotFoundError:
        logger.warning("Asset %s vanished before it could be marked failed", asset_id)
    finally:
        await cache.close()


async def _generate_asset_derivatives_async(asset_id: str) -> dict:
    storage = get_storage()
    cache = build_cache()

    try:
        return await _generate(asset_id, storage, cache)
    finally:
        await cache.close()


async def _generate(asset_id: str, storage, cache, session_factory=async_session_maker, media=None) -> dict:
    async with session_factory() as db:
        writer = PersistenceWriter(db, storage, cache)
        try:
            asset = await writer.load(asset_id)
        except NotFoundError:
            logger.warning("Asset %s vanished before its derivatives were generated", asset_id)
            return {"asset_id": asset_id, "status": "missing"}

        if asset.processing_status != ProcessingStatus.PENDING:
            return {"asset_id": asset_id, "status": asset.processing_status.value}

        generator = DerivativeGenerator(storage, media)
        directory = str(PurePosixPath(asset.file_path).parent)
        try:
            result = await generator.generate(asset.id, asset.asset_type, asset.file_path, directory, asset.name)
        except Exception as e:
            logger.exception("Derivative generation crashed for asset %s", asset_id)
            await writer.mark_processing_failed(asset_id, f"derivatives: {e}")
            return {"asset_id": asset_id, "status": ProcessingStatus.FAILED.value}

        try:
            await writer.attach_derivatives(asset_id, result)
        except NotFoundError:
            # Deleted while we were working: drop what we produced.
            await generator.discard(result)
            return {"asset_id": asset_id, "status": "missing"}
        except PersistenceError:
            await generator.discard(result)
            raise

    return {
        "asset_id": asset_id,
        "status": ProcessingStatus.COMPLETE.value,
        "warnings": result.warnings,
    }
