"""Persistence writer: the only component that writes asset records.

Every write serialises on a per-asset lock, commits, and invalidates the
asset's cache keys and its client's list queries before returning.

Referential integrity policy for inserts: when the owner reference cannot be
satisfied (detected by verification or by the database at insert time) the
writer performs exactly one corrective action, create-or-reuse the fallback
owner, and retries once. Anything else is a ``ReferentialIntegrityError``.
"""
import asyncio
import logging
from collections.abc import Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assethub.config import get_settings
from assethub.exceptions import AssetError, NotFoundError, PersistenceError, ReferentialIntegrityError
from assethub.models.asset import Asset, AssetType, LabelKind, ProcessingStatus
from assethub.services.derivatives import DerivativeResult
from assethub.services.directory import ClientDirectory, OwnerDirectory
from assethub.utils.cache import CacheBackend, asset_prefix, list_prefix
from assethub.utils.storage import LocalByteStore

settings = get_settings()
logger = logging.getLogger(__name__)

# First-class fields; metadata maps may never shadow these.
RESERVED_METADATA_KEYS = frozenset({
    "id", "name", "description", "type", "url", "thumbnailUrl", "previewUrl",
    "size", "width", "height", "duration", "tags", "categories", "isFavourite",
    "usageCount", "ownerId", "clientId", "createdAt", "updatedAt",
    "processingStatus", "processingWarnings", "mimeType", "originalFilename",
})

DIMENSIONED_TYPES = frozenset({AssetType.IMAGE, AssetType.VIDEO})
TIMED_TYPES = frozenset({AssetType.VIDEO, AssetType.AUDIO})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clean_metadata(values: dict[str, Any] | None) -> dict[str, Any]:
    """Drop keys that collide with first-class asset fields."""
    if not values:
        return {}
    dropped = [k for k in values if k in RESERVED_METADATA_KEYS]
    if dropped:
        logger.debug("Dropping reserved metadata keys: %s", ", ".join(sorted(dropped)))
    return {k: v for k, v in values.items() if k not in RESERVED_METADATA_KEYS}


class KeyedLocks:
    """One asyncio.Lock per key, released from the registry when unused."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)


# Shared by every writer in the process: single writer per asset id.
asset_locks = KeyedLocks()


@dataclass
class AssetDraft:
    """In-memory asset assembled by ingestion, not yet persisted."""
    id: str
    owner_id: str
    client_id: str
    name: str
    asset_type: AssetType
    mime_type: str
    original_filename: str
    file_path: str
    url: str
    size: int | None = None
    description: str | None = None
    content_hash: str | None = None
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    provider_metadata: dict[str, Any] = field(default_factory=dict)
    derivatives: DerivativeResult = field(default_factory=DerivativeResult)
    processing_status: ProcessingStatus = ProcessingStatus.COMPLETE


@dataclass
class PersistOutcome:
    asset: Asset
    owner_fallback_applied: bool = False
    requested_owner_id: str | None = None


class PersistenceWriter:
    """Turns drafts and mutations into durable records."""

    def __init__(
        self,
        db: AsyncSession,
        storage: LocalByteStore,
        cache: CacheBackend,
        relaxed: bool | None = None,
    ):
        self.db = db
        self.storage = storage
        self.cache = cache
        self.relaxed = settings.relaxed_mode if relaxed is None else relaxed
        self.clients = ClientDirectory(db)
        self.owners = OwnerDirectory(db)

    # Create

    async def insert(self, draft: AssetDraft) -> PersistOutcome:
        """Persist a new asset.

        On any terminal failure the original and derivative files already in
        the byte store are removed before the error propagates.
        """
        try:
            if not draft.url or not draft.file_path:
                raise PersistenceError("Refusing to persist an asset without a url")
            async with asset_locks.hold(draft.id):
                outcome = await self._insert_with_owner_fallback(draft)
        except asyncio.CancelledError:
            await self.discard_files(draft)
            raise
        except AssetError:
            await self.discard_files(draft)
            raise
        except SQLAlchemyError as e:
            await self.discard_files(draft)
            logger.error("Database error persisting asset %s: %s", draft.id, e)
            raise PersistenceError(f"Failed to save asset: {e.__class__.__name__}") from e

        await self.invalidate(draft.id, draft.client_id)
        return outcome

    async def _insert_with_owner_fallback(self, draft: AssetDraft) -> PersistOutcome:
        owner_id = draft.owner_id
        fallback_applied = False

        if not self.relaxed:
            if await self.clients.get(draft.client_id) is None:
                raise ReferentialIntegrityError(f"Client {draft.client_id} does not exist")
            if not await self.owners.exists(owner_id):
                owner_id = await self._apply_owner_fallback(draft.id, owner_id)
                fallback_applied = True

        try:
            asset = await self._try_insert(draft, owner_id)
        except IntegrityError as e:
            owner_missing = not await self.owners.exists(owner_id)
            if fallback_applied or not owner_missing:
                logger.error("Integrity violation persisting asset %s: %s", draft.id, e.orig)
                raise ReferentialIntegrityError(
                    f"Asset {draft.id} violates a reference constraint (owner {owner_id}, client {draft.client_id})"
                ) from e
            owner_id = await self._apply_owner_fallback(draft.id, owner_id)
            fallback_applied = True
            try:
                asset = await self._try_insert(draft, owner_id)
            except IntegrityError as retry_error:
                logger.error("Insert failed after owner fallback for asset %s: %s", draft.id, retry_error.orig)
                raise ReferentialIntegrityError(
                    f"Asset {draft.id} could not be saved even with the fallback owner"
                ) from retry_error

        return PersistOutcome(
            asset=asset,
            owner_fallback_applied=fallback_applied,
            requested_owner_id=draft.owner_id if fallback_applied else None,
        )

    async def _apply_owner_fallback(self, asset_id: str, missing_owner_id: str) -> str:
        try:
            fallback_id = await self.owners.ensure_fallback_owner()
        except SQLAlchemyError as e:
            raise ReferentialIntegrityError(
                f"Owner {missing_owner_id} does not exist and the fallback owner could not be created"
            ) from e
        logger.warning(
            "Owner %s not found for asset %s; reassigning to fallback owner %s",
            missing_owner_id, asset_id, fallback_id,
        )
        return fallback_id

    async def _try_insert(self, draft: AssetDraft, owner_id: str) -> Asset:
        asset = self._build(draft, owner_id)
        self.db.add(asset)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise
        return asset

    def _build(self, draft: AssetDraft, owner_id: str) -> Asset:
        derivatives = draft.derivatives
        now = utcnow()

        metadata = clean_metadata(derivatives.metadata)
        provider = clean_metadata(draft.provider_metadata)
        if provider:
            metadata["provider"] = provider

        asset = Asset(
            id=draft.id,
            owner_id=owner_id,
            client_id=draft.client_id,
            name=draft.name,
            description=draft.description,
            asset_type=draft.asset_type,
            mime_type=draft.mime_type,
            original_filename=draft.original_filename,
            file_path=draft.file_path,
            url=draft.url,
            content_hash=draft.content_hash,
            size=draft.size,
            is_favourite=False,
            usage_count=0,
            metadata_=metadata,
            processing_status=draft.processing_status,
            processing_warnings=list(derivatives.warnings),
            created_at=now,
            updated_at=now,
            labels=[],
        )
        self._apply_derivative_fields(asset, derivatives)
        asset.set_labels(LabelKind.TAG, draft.tags)
        asset.set_labels(LabelKind.CATEGORY, draft.categories)
        return asset

    def _apply_derivative_fields(self, asset: Asset, derivatives: DerivativeResult) -> None:
        asset.thumbnail_path = derivatives.thumbnail_path
        asset.thumbnail_url = self._url_for(derivatives.thumbnail_path)
        asset.preview_path = derivatives.preview_path
        # No preview of its own: the original stands in.
        asset.preview_url = self._url_for(derivatives.preview_path) or asset.url
        # Only dimension/duration fields legal for the type are kept.
        if asset.asset_type in DIMENSIONED_TYPES:
            asset.width = derivatives.width
            asset.height = derivatives.height
        if asset.asset_type in TIMED_TYPES:
            asset.duration = derivatives.duration

    def _url_for(self, path: str | None) -> str | None:
        return self.storage.get_file_url(path) if path else None

    async def discard_files(self, draft: AssetDraft) -> None:
        """Best-effort removal of an unpersisted asset's bytes."""
        paths = [draft.file_path, *draft.derivatives.written_paths]
        for path in paths:
            if not path:
                continue
            try:
                await self.storage.delete(path)
            except Exception:
                logger.exception("Failed to remove orphaned file %s", path)

    # Mutate

    async def load(self, asset_id: str) -> Asset:
        result = await self.db.execute(
            select(Asset)
            .where(Asset.id == asset_id)
            .execution_options(populate_existing=True)
        )
        asset = result.scalar_one_or_none()
        if asset is None:
            raise NotFoundError(f"Asset {asset_id} not found")
        return asset

    async def mutate(
        self,
        asset_id: str,
        apply: Callable[[Asset], bool],
        authorize: Callable[[Asset], None] | None = None,
    ) -> tuple[Asset, bool]:
        """Load, authorize and change one asset under its lock.

        ``apply`` returns whether anything changed; unchanged assets are not
        written and keep their ``updated_at``. Returns ``(asset, changed)``.
        """
        async with asset_locks.hold(asset_id):
            asset = await self.load(asset_id)
            if authorize is not None:
                authorize(asset)
            changed = apply(asset)
            if changed:
                asset.updated_at = utcnow()
                await self._commit(asset_id)
            client_id = asset.client_id
        if changed:
            await self.invalidate(asset_id, client_id)
        return asset, changed

    async def increment_usage(self, asset_id: str, authorize: Callable[[Asset], None] | None = None) -> Asset:
        """Atomic ``usage_count + 1``; never decreases."""
        async with asset_locks.hold(asset_id):
            asset = await self.load(asset_id)
            if authorize is not None:
                authorize(asset)
            await self.db.execute(
                update(Asset)
                .where(Asset.id == asset_id)
                .values(usage_count=Asset.usage_count + 1, updated_at=utcnow())
            )
            await self._commit(asset_id)
            asset = await self.load(asset_id)
        await self.invalidate(asset_id, asset.client_id)
        return asset

    async def attach_derivatives(self, asset_id: str, derivatives: DerivativeResult) -> Asset:
        """Store derivatives generated after the record was created."""

        def apply(asset: Asset) -> bool:
            self._apply_derivative_fields(asset, derivatives)
            merged = dict(asset.metadata_ or {})
            merged.update(clean_metadata(derivatives.metadata))
            asset.metadata_ = merged
            asset.processing_warnings = list(derivatives.warnings)
            asset.processing_status = ProcessingStatus.COMPLETE
            return True

        asset, _ = await self.mutate(asset_id, apply)
        return asset

    async def mark_processing_failed(self, asset_id: str, reason: str) -> None:
        def apply(asset: Asset) -> bool:
            asset.processing_status = ProcessingStatus.FAILED
            asset.processing_warnings = [*(asset.processing_warnings or []), reason]
            return True

        await self.mutate(asset_id, apply)

    async def remove(self, asset_id: str, authorize: Callable[[Asset], None] | None = None) -> list[str]:
        """Delete the record; returns the byte-store paths that are now orphaned."""
        async with asset_locks.hold(asset_id):
            asset = await self.load(asset_id)
            if authorize is not None:
                authorize(asset)
            client_id = asset.client_id
            paths = self._owned_paths(asset)
            await self.db.delete(asset)
            await self._commit(asset_id)
        await self.invalidate(asset_id, client_id)
        return paths

    def _owned_paths(self, asset: Asset) -> list[str]:
        paths: list[str] = []
        for path in (asset.file_path, asset.thumbnail_path, asset.preview_path):
            if path and not self.storage.is_placeholder(path) and path not in paths:
                paths.append(path)
        return paths

    async def _commit(self, asset_id: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to write asset %s: %s", asset_id, e)
            raise PersistenceError(f"Failed to write asset {asset_id}") from e

    async def invalidate(self, asset_id: str, client_id: str) -> None:
        await self.cache.invalidate_pattern(asset_prefix(asset_id))
        await self.cache.invalidate_pattern(list_prefix(client_id))


def label_delta(current: Iterable[str], add: Iterable[str] | None, remove: Iterable[str] | None) -> list[str]:
    """Apply add/remove sets to an existing label list."""
    values = set(current)
    values.update(add or [])
    values.difference_update(remove or [])
    return sorted(values)
