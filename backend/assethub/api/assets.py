"""Asset browsing, mutations and downloads."""

from datetime import datetime
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import FileResponse

from assethub.api.deps import Assets, CurrentIdentity, QueryEngine, Storage
from assethub.models.asset import AssetType, ProcessingStatus
from assethub.schemas.asset import (
    ApiResponse,
    AssetPage,
    AssetResponse,
    AssetUpdate,
    BatchDeleteRequest,
    BatchDeleteResult,
    BatchUpdateRequest,
    BatchUpdateResult,
    FavouriteToggle,
    ProcessingStatusResponse,
)
from assethub.services.query import AssetFilters

router = APIRouter()


def _content_disposition(filename: str, inline: bool) -> str:
    # RFC 5987 filename* supports UTF-8 names.
    quoted = quote(filename)
    disp = "inline" if inline else "attachment"
    return f"{disp}; filename*=UTF-8''{quoted}"


def _split_labels(values: list[str] | None) -> list[str]:
    """Accept both repeated params and comma-separated values."""
    if not values:
        return []
    return [part.strip() for value in values for part in value.split(",") if part.strip()]


@router.get("", response_model=ApiResponse[AssetPage])
async def list_assets(
    identity: CurrentIdentity,
    engine: QueryEngine,
    asset_type: list[AssetType] | None = Query(None, alias="type"),
    tags: list[str] | None = Query(None),
    categories: list[str] | None = Query(None),
    search_term: str | None = Query(None, alias="searchTerm", max_length=200),
    favourites_only: bool = Query(False, alias="favouritesOnly"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    owner_id: str | None = Query(None, alias="ownerId"),
    processing_status: ProcessingStatus | None = Query(None, alias="status"),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_direction: str = Query("desc", alias="sortDirection"),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    client_id: str | None = Query(None, alias="clientId"),
    client_slug: str | None = Query(None, alias="clientSlug"),
):
    """Filtered, paginated asset listing. An unknown client yields an empty page."""
    page = await engine.search(AssetFilters(
        client_id=client_id,
        client_slug=client_slug,
        types=asset_type or [],
        tags=_split_labels(tags),
        categories=_split_labels(categories),
        search_term=search_term,
        favourites_only=favourites_only,
        start_date=start_date,
        end_date=end_date,
        owner_id=owner_id,
        status=processing_status,
        sort_by=sort_by,
        sort_direction=sort_direction,
        limit=limit,
        offset=offset,
    ))
    return ApiResponse(data=page)


@router.get("/tags", response_model=ApiResponse[list[str]])
async def list_tags(
    identity: CurrentIdentity,
    engine: QueryEngine,
    client_id: str | None = Query(None, alias="clientId"),
    client_slug: str | None = Query(None, alias="clientSlug"),
):
    """Distinct tags in use."""
    return ApiResponse(data=await engine.available_tags(client_id, client_slug))


@router.get("/categories", response_model=ApiResponse[list[str]])
async def list_categories(
    identity: CurrentIdentity,
    engine: QueryEngine,
    client_id: str | None = Query(None, alias="clientId"),
    client_slug: str | None = Query(None, alias="clientSlug"),
):
    """Distinct categories in use."""
    return ApiResponse(data=await engine.available_categories(client_id, client_slug))


@router.post("/batch-update", response_model=ApiResponse[BatchUpdateResult])
async def batch_update_assets(body: BatchUpdateRequest, assets: Assets):
    """Add/remove tags and categories on many assets; each is handled independently."""
    result = await assets.batch_update(body)
    return ApiResponse(
        success=result.updated > 0 or result.failed == 0,
        message=f"Updated {result.updated} asset(s), {result.failed} failed",
        data=result,
    )


@router.post("/batch-delete", response_model=ApiResponse[BatchDeleteResult])
async def batch_delete_assets(body: BatchDeleteRequest, assets: Assets):
    """Delete many assets; each is handled independently."""
    result = await assets.batch_delete(body.ids)
    return ApiResponse(
        success=result.deleted > 0 or result.failed == 0,
        message=f"Deleted {result.deleted} asset(s), {result.failed} failed",
        data=result,
    )


@router.get("/{asset_id}", response_model=ApiResponse[AssetResponse])
async def get_asset(
    asset_id: str,
    identity: CurrentIdentity,
    engine: QueryEngine,
    client_id: str | None = Query(None, alias="clientId"),
    client_slug: str | None = Query(None, alias="clientSlug"),
):
    """Get asset details."""
    return ApiResponse(data=await engine.get(asset_id, client_id, client_slug))


@router.patch("/{asset_id}", response_model=ApiResponse[AssetResponse])
async def update_asset(asset_id: str, body: AssetUpdate, assets: Assets):
    """Update name, description, tags or categories."""
    asset = await assets.update(asset_id, body)
    return ApiResponse(message="Asset updated successfully", data=asset)


@router.post("/{asset_id}/favourite", response_model=ApiResponse[AssetResponse])
async def toggle_favourite(asset_id: str, assets: Assets, body: FavouriteToggle | None = None):
    """Set the favourite flag, or flip it when ``isFavourite`` is omitted."""
    asset = await assets.toggle_favourite(asset_id, body.is_favourite if body else None)
    state = "added to" if asset.is_favourite else "removed from"
    return ApiResponse(message=f"Asset {state} favourites", data=asset)


@router.post("/{asset_id}/usage", response_model=ApiResponse[AssetResponse])
async def increment_usage(asset_id: str, assets: Assets):
    """Record one use of the asset."""
    return ApiResponse(message="Usage recorded", data=await assets.increment_usage(asset_id))


@router.delete("/{asset_id}", response_model=ApiResponse[None])
async def delete_asset(asset_id: str, assets: Assets):
    """Delete an asset and schedule removal of its files."""
    await assets.delete(asset_id)
    return ApiResponse(message="Asset deleted successfully")


@router.get("/{asset_id}/processing", response_model=ApiResponse[ProcessingStatusResponse])
async def get_processing_status(
    asset_id: str,
    identity: CurrentIdentity,
    engine: QueryEngine,
):
    """Derivative generation status (useful when derivatives run in the background).

    Not cached: a background worker may be updating it.
    """
    asset = await engine.fetch(asset_id)
    return ApiResponse(data=ProcessingStatusResponse.from_asset(asset))


@router.get("/{asset_id}/download")
async def download_asset(
    asset_id: str,
    identity: CurrentIdentity,
    engine: QueryEngine,
    storage: Storage,
    inline: bool = Query(False),
):
    """Download an asset with a controlled filename (Content-Disposition)."""
    asset = await engine.fetch(asset_id)

    filename = asset.original_filename or asset.name
    headers = {
        "Content-Disposition": _content_disposition(filename, inline=inline),
    }

    # file_path is store-relative, e.g. "<client>/YYYY/MM/DD/<id>.png"
    if not storage.exists(asset.file_path):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return FileResponse(
        storage.get_absolute_path(asset.file_path),
        media_type=asset.mime_type,
        headers=headers,
    )
