"""Read path: filtered, paginated, cached asset queries."""
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from assethub.config import get_settings
from assethub.exceptions import NotFoundError
from assethub.models.asset import Asset, AssetLabel, AssetType, LabelKind, ProcessingStatus
from assethub.schemas.asset import AssetPage, AssetResponse, Pagination
from assethub.services.directory import ClientDirectory
from assethub.utils.cache import CacheBackend, asset_key, asset_prefix, list_key, list_prefix

settings = get_settings()
logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "createdAt": Asset.created_at,
    "date": Asset.created_at,
    "updatedAt": Asset.updated_at,
    "name": Asset.name,
    "size": Asset.size,
    "usageCount": Asset.usage_count,
    "type": Asset.asset_type,
}
DEFAULT_SORT = "createdAt"

# Terms shorter than this are always matched as one substring.
MIN_TOKENIZED_TERM = 3


@dataclass
class AssetFilters:
    client_id: str | None = None
    client_slug: str | None = None
    types: list[AssetType] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    search_term: str | None = None
    favourites_only: bool = False
    start_date: datetime | None = None
    end_date: datetime | None = None
    owner_id: str | None = None
    status: ProcessingStatus | None = None
    sort_by: str = DEFAULT_SORT
    sort_direction: str = "desc"
    limit: int | None = None
    offset: int = 0

    def normalized(self) -> "AssetFilters":
        """Clamp paging, fall back to the default sort, move dates to UTC."""
        limit = self.limit or settings.default_page_size
        sort_by = self.sort_by if self.sort_by in SORT_COLUMNS else DEFAULT_SORT
        if sort_by == "date":
            sort_by = "createdAt"
        direction = "asc" if (self.sort_direction or "").lower() == "asc" else "desc"
        return AssetFilters(
            client_id=self.client_id,
            client_slug=self.client_slug,
            types=sorted(set(self.types), key=lambda t: t.value),
            tags=sorted({t.strip() for t in self.tags if t and t.strip()}),
            categories=sorted({c.strip() for c in self.categories if c and c.strip()}),
            search_term=(self.search_term or "").strip() or None,
            favourites_only=bool(self.favourites_only),
            start_date=to_utc(self.start_date),
            end_date=to_utc(self.end_date),
            owner_id=self.owner_id,
            status=self.status,
            sort_by=sort_by,
            sort_direction=direction,
            limit=max(1, min(limit, settings.max_page_size)),
            offset=max(0, self.offset or 0),
        )

    def signature_fields(self) -> dict:
        """Everything that shapes the result, minus the client reference."""
        values = asdict(self)
        values.pop("client_id")
        values.pop("client_slug")
        values["types"] = [t.value for t in self.types]
        values["status"] = self.status.value if self.status else None
        return values


def to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_predicate(term: str):
    """Case-insensitive match on name/description.

    Short or single-word terms are one substring; multi-word terms require
    every token to match somewhere.
    """
    def matches(fragment: str):
        pattern = f"%{escape_like(fragment)}%"
        return or_(
            Asset.name.ilike(pattern, escape="\\"),
            Asset.description.ilike(pattern, escape="\\"),
        )

    tokens = term.split()
    if len(term) < MIN_TOKENIZED_TERM or len(tokens) < 2:
        return matches(term)
    return and_(*(matches(token) for token in tokens))


def label_predicate(kind: LabelKind, value: str):
    return exists().where(
        AssetLabel.asset_id == Asset.id,
        AssetLabel.kind == kind,
        AssetLabel.value == value,
    )


def build_predicates(filters: AssetFilters, client_id: str | None) -> list:
    predicates = []
    if client_id:
        predicates.append(Asset.client_id == client_id)
    if filters.types:
        predicates.append(Asset.asset_type.in_(filters.types))
    # Set containment: one EXISTS per requested label.
    for tag in filters.tags:
        predicates.append(label_predicate(LabelKind.TAG, tag))
    for category in filters.categories:
        predicates.append(label_predicate(LabelKind.CATEGORY, category))
    if filters.search_term:
        predicates.append(search_predicate(filters.search_term))
    if filters.favourites_only:
        predicates.append(Asset.is_favourite.is_(True))
    if filters.start_date is not None:
        predicates.append(Asset.created_at >= filters.start_date)
    if filters.end_date is not None:
        predicates.append(Asset.created_at <= filters.end_date)
    if filters.owner_id:
        predicates.append(Asset.owner_id == filters.owner_id)
    if filters.status is not None:
        predicates.append(Asset.processing_status == filters.status)
    return predicates


def order_clauses(filters: AssetFilters) -> list:
    column = SORT_COLUMNS[filters.sort_by]
    if filters.sort_direction == "asc":
        return [column.asc(), Asset.id.asc()]
    return [column.desc(), Asset.id.desc()]


def empty_page(filters: AssetFilters) -> AssetPage:
    return AssetPage(assets=[], total=0, pagination=Pagination(limit=filters.limit, offset=filters.offset))


class AssetQueryEngine:
    """Filtered listing and single-record lookups behind the TTL cache."""

    def __init__(self, db: AsyncSession, cache: CacheBackend):
        self.db = db
        self.cache = cache
        self.clients = ClientDirectory(db)

    async def resolve_client(self, client_id: str | None, client_slug: str | None) -> tuple[str | None, bool]:
        """(canonical client id, whether a client reference was given)."""
        if not client_id and not client_slug:
            return None, False
        return await self.clients.resolve(client_id, client_slug), True

    async def search(self, filters: AssetFilters) -> AssetPage:
        filters = filters.normalized()
        client_id, scoped = await self.resolve_client(filters.client_id, filters.client_slug)
        if scoped and client_id is None:
            logger.debug("Unknown client reference %s/%s; empty result", filters.client_id, filters.client_slug)
            return empty_page(filters)

        # Only client-scoped lists are cached: invalidation is per client.
        if client_id is None:
            return await self._run(filters, None)

        key = list_key(client_id, filters.signature_fields())
        cached, found = await self.cache.get(key)
        if found:
            return AssetPage.model_validate(cached)

        fence = await self.cache.fence(list_prefix(client_id))
        page = await self._run(filters, client_id)
        await self.cache.set(key, page.model_dump(mode="json", by_alias=True), fence=fence)
        return page

    async def _run(self, filters: AssetFilters, client_id: str | None) -> AssetPage:
        predicates = build_predicates(filters, client_id)

        count_stmt = select(func.count()).select_from(Asset).where(*predicates)
        total = (await self.db.execute(count_stmt)).scalar_one()

        stmt = (
            select(Asset)
            .where(*predicates)
            .order_by(*order_clauses(filters))
            .limit(filters.limit)
            .offset(filters.offset)
        )
        assets = (await self.db.execute(stmt)).scalars().all()
        return AssetPage(
            assets=[AssetResponse.from_asset(a) for a in assets],
            total=total,
            pagination=Pagination(limit=filters.limit, offset=filters.offset),
        )

    async def get(self, asset_id: str, client_id: str | None = None, client_slug: str | None = None) -> AssetResponse:
        """Single asset, optionally constrained to a client."""
        resolved, scoped = await self.resolve_client(client_id, client_slug)
        if scoped and resolved is None:
            raise NotFoundError(f"Asset {asset_id} not found")

        key = asset_key(asset_id, resolved)
        cached, found = await self.cache.get(key)
        if found:
            return AssetResponse.model_validate(cached)

        fence = await self.cache.fence(asset_prefix(asset_id))
        asset = await self.fetch(asset_id, resolved)

        response = AssetResponse.from_asset(asset)
        await self.cache.set(key, response.model_dump(mode="json", by_alias=True), fence=fence)
        return response

    async def fetch(self, asset_id: str, client_id: str | None = None) -> Asset:
        """Uncached record lookup."""
        stmt = select(Asset).where(Asset.id == asset_id)
        if client_id:
            stmt = stmt.where(Asset.client_id == client_id)
        asset = (await self.db.execute(stmt)).scalar_one_or_none()
        if asset is None:
            raise NotFoundError(f"Asset {asset_id} not found")
        return asset

    async def available_labels(self, kind: LabelKind, client_id: str | None = None, client_slug: str | None = None) -> list[str]:
        """Sorted distinct tags or categories in use, optionally for one client."""
        resolved, scoped = await self.resolve_client(client_id, client_slug)
        if scoped and resolved is None:
            return []
        stmt = select(AssetLabel.value).where(AssetLabel.kind == kind).distinct().order_by(AssetLabel.value)
        if resolved:
            stmt = stmt.join(Asset, Asset.id == AssetLabel.asset_id).where(Asset.client_id == resolved)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def available_tags(self, client_id: str | None = None, client_slug: str | None = None) -> list[str]:
        return await self.available_labels(LabelKind.TAG, client_id, client_slug)

    async def available_categories(self, client_id: str | None = None, client_slug: str | None = None) -> list[str]:
        return await self.available_labels(LabelKind.CATEGORY, client_id, client_slug)
