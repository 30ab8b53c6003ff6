"""Shared FastAPI dependencies.

Every collaborator is injected here so tests can swap it through
``app.dependency_overrides``.
"""
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from assethub.database import get_db
from assethub.services.asset_service import AssetService
from assethub.services.cleanup import CleanupScheduler, get_cleanup_scheduler
from assethub.services.derivatives import DerivativeGenerator
from assethub.services.identity import Identity, IdentityProvider, get_identity_provider
from assethub.services.ingestion import IngestionService
from assethub.services.media_probe import MediaTool
from assethub.services.query import AssetQueryEngine
from assethub.utils.cache import CacheBackend, get_cache
from assethub.utils.storage import LocalByteStore, get_storage

DbSession = Annotated[AsyncSession, Depends(get_db)]
Storage = Annotated[LocalByteStore, Depends(get_storage)]
Cache = Annotated[CacheBackend, Depends(get_cache)]


async def get_current_identity(
    request: Request,
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> Identity:
    identity = await provider.resolve(request)
    # Read by the rate limiter key function.
    request.state.identity = identity
    return identity


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]


def get_media_tool() -> MediaTool:
    return MediaTool()


def get_cleanup(storage: Storage) -> CleanupScheduler:
    return get_cleanup_scheduler(storage)


def get_query_engine(db: DbSession, cache: Cache) -> AssetQueryEngine:
    return AssetQueryEngine(db, cache)


def get_asset_service(
    db: DbSession,
    storage: Storage,
    cache: Cache,
    identity: CurrentIdentity,
    cleanup: Annotated[CleanupScheduler, Depends(get_cleanup)],
) -> AssetService:
    return AssetService(db, storage, cache, identity, cleanup=cleanup)


def get_ingestion_service(
    db: DbSession,
    storage: Storage,
    cache: Cache,
    identity: CurrentIdentity,
    media: Annotated[MediaTool, Depends(get_media_tool)],
) -> IngestionService:
    return IngestionService(db, storage, cache, identity, generator=DerivativeGenerator(storage, media))


QueryEngine = Annotated[AssetQueryEngine, Depends(get_query_engine)]
Assets = Annotated[AssetService, Depends(get_asset_service)]
Ingestion = Annotated[IngestionService, Depends(get_ingestion_service)]
