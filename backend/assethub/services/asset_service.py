"""Asset mutations and lookups on behalf of an identified caller.

Authorization happens here; the persistence writer does the writing. Outside
relaxed mode every mutation requires the caller to own the asset (or be an
admin). Usage counting only requires an authenticated caller.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from assethub.config import get_settings
from assethub.exceptions import AssetError, PermissionDeniedError, ValidationError
from assethub.models.asset import Asset, LabelKind
from assethub.schemas.asset import (
    AssetResponse,
    AssetUpdate,
    BatchDeleteResult,
    BatchUpdateRequest,
    BatchUpdateResult,
)
from assethub.services.cleanup import CleanupScheduler, InlineCleanup
from assethub.services.identity import Identity
from assethub.services.persistence import PersistenceWriter, label_delta
from assethub.services.query import AssetQueryEngine
from assethub.utils.cache import CacheBackend
from assethub.utils.storage import LocalByteStore

settings = get_settings()
logger = logging.getLogger(__name__)


class AssetService:
    """Service for reading and changing existing assets."""

    def __init__(
        self,
        db: AsyncSession,
        storage: LocalByteStore,
        cache: CacheBackend,
        identity: Identity,
        cleanup: CleanupScheduler | None = None,
        relaxed: bool | None = None,
    ):
        self.identity = identity
        self.relaxed = settings.relaxed_mode if relaxed is None else relaxed
        self.writer = PersistenceWriter(db, storage, cache, relaxed=self.relaxed)
        self.query = AssetQueryEngine(db, cache)
        self.cleanup = cleanup or InlineCleanup(storage)

    def authorize(self, asset: Asset) -> None:
        if self.relaxed or self.identity.owns(asset.owner_id):
            return
        raise PermissionDeniedError(f"You do not have permission to modify asset {asset.id}")

    async def get_by_id(self, asset_id: str, client_id: str | None = None, client_slug: str | None = None) -> AssetResponse:
        return await self.query.get(asset_id, client_id, client_slug)

    async def update(self, asset_id: str, changes: AssetUpdate) -> AssetResponse:
        """Apply the provided fields; omitted fields stay untouched."""
        fields = changes.model_dump(exclude_unset=True)
        if fields.get("name") is not None and not fields["name"].strip():
            raise ValidationError("Asset name cannot be empty")

        def apply(asset: Asset) -> bool:
            changed = False
            if fields.get("name") is not None and fields["name"].strip() != asset.name:
                asset.name = fields["name"].strip()
                changed = True
            if "description" in fields and fields["description"] != asset.description:
                asset.description = fields["description"]
                changed = True
            if fields.get("tags") is not None:
                changed = asset.set_labels(LabelKind.TAG, fields["tags"]) or changed
            if fields.get("categories") is not None:
                changed = asset.set_labels(LabelKind.CATEGORY, fields["categories"]) or changed
            return changed

        asset, _ = await self.writer.mutate(asset_id, apply, authorize=self.authorize)
        return AssetResponse.from_asset(asset)

    async def toggle_favourite(self, asset_id: str, is_favourite: bool | None = None) -> AssetResponse:
        """Set the favourite flag; ``None`` flips it. Setting the current value is a no-op."""

        def apply(asset: Asset) -> bool:
            wanted = (not asset.is_favourite) if is_favourite is None else is_favourite
            if wanted == asset.is_favourite:
                return False
            asset.is_favourite = wanted
            return True

        asset, _ = await self.writer.mutate(asset_id, apply, authorize=self.authorize)
        return AssetResponse.from_asset(asset)

    async def increment_usage(self, asset_id: str) -> AssetResponse:
        asset = await self.writer.increment_usage(asset_id)
        return AssetResponse.from_asset(asset)

    async def delete(self, asset_id: str) -> None:
        """Delete the record, then schedule removal of its files."""
        paths = await self.writer.remove(asset_id, authorize=self.authorize)
        await self.cleanup.schedule(paths)
        logger.info("Deleted asset %s", asset_id)

    async def batch_update(self, request: BatchUpdateRequest) -> BatchUpdateResult:
        """Apply label deltas to each asset independently."""
        ids = self._batch_ids(request.ids)
        result = BatchUpdateResult()

        def apply(asset: Asset) -> bool:
            tags = label_delta(asset.tags, request.add_tags, request.remove_tags)
            categories = label_delta(asset.categories, request.add_categories, request.remove_categories)
            changed = asset.set_labels(LabelKind.TAG, tags)
            return asset.set_labels(LabelKind.CATEGORY, categories) or changed

        for asset_id in ids:
            try:
                await self.writer.mutate(asset_id, apply, authorize=self.authorize)
            except AssetError as e:
                result.failed += 1
                result.errors[asset_id] = e.message
            else:
                result.updated += 1
        return result

    async def batch_delete(self, ids: list[str]) -> BatchDeleteResult:
        """Delete each asset independently; one failure does not stop the rest."""
        result = BatchDeleteResult()
        for asset_id in self._batch_ids(ids):
            try:
                await self.delete(asset_id)
            except AssetError as e:
                result.failed += 1
                result.errors[asset_id] = e.message
            else:
                result.deleted += 1
        return result

    def _batch_ids(self, ids: list[str]) -> list[str]:
        unique = list(dict.fromkeys(i for i in ids if i))
        if not unique:
            raise ValidationError("No asset ids given")
        if len(unique) > settings.max_batch_size:
            raise ValidationError(f"At most {settings.max_batch_size} assets per batch")
        return unique
