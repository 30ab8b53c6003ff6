"""Asset schemas for request/response validation.

Everything on the wire is camelCase; Python code uses snake_case field names.
"""
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator
from pydantic.alias_generators import to_camel

from assethub.models.asset import Asset, AssetType, ProcessingStatus

DataT = TypeVar("DataT")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(CamelModel, Generic[DataT]):
    """Envelope shared by every endpoint."""
    success: bool = True
    message: str | None = None
    data: DataT | None = None


class AssetResponse(CamelModel):
    """Schema for asset response."""
    id: str
    name: str
    description: str | None = None
    type: AssetType
    mime_type: str
    original_filename: str
    url: str
    thumbnail_url: str | None = None
    preview_url: str | None = None
    size: int | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    is_favourite: bool = False
    usage_count: int = 0
    owner_id: str
    client_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    processing_status: ProcessingStatus = ProcessingStatus.COMPLETE
    processing_warnings: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive datetimes; everything is stored as UTC.
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value

    @classmethod
    def from_asset(cls, asset: Asset) -> "AssetResponse":
        return cls(
            id=asset.id,
            name=asset.name,
            description=asset.description,
            type=asset.asset_type,
            mime_type=asset.mime_type,
            original_filename=asset.original_filename,
            url=asset.url,
            thumbnail_url=asset.thumbnail_url,
            preview_url=asset.preview_url,
            size=asset.size,
            width=asset.width,
            height=asset.height,
            duration=asset.duration,
            tags=asset.tags,
            categories=asset.categories,
            is_favourite=asset.is_favourite,
            usage_count=asset.usage_count,
            owner_id=asset.owner_id,
            client_id=asset.client_id,
            metadata=dict(asset.metadata_ or {}),
            processing_status=asset.processing_status,
            processing_warnings=list(asset.processing_warnings or []),
            created_at=asset.created_at,
            updated_at=asset.updated_at,
        )


class AssetCreated(AssetResponse):
    """Upload/import result; reports the owner fallback when it was applied."""
    owner_fallback_applied: bool = False
    requested_owner_id: str | None = None


class Pagination(CamelModel):
    limit: int
    offset: int


class AssetPage(CamelModel):
    assets: list[AssetResponse]
    total: int
    pagination: Pagination


class AssetUpdate(CamelModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    tags: list[str] | None = None
    categories: list[str] | None = None


class FavouriteToggle(CamelModel):
    # Omitted means "flip the current state".
    is_favourite: bool | None = None


class BatchDeleteRequest(CamelModel):
    ids: list[str] = Field(..., min_length=1)


class BatchUpdateRequest(BatchDeleteRequest):
    add_tags: list[str] = Field(default_factory=list)
    remove_tags: list[str] = Field(default_factory=list)
    add_categories: list[str] = Field(default_factory=list)
    remove_categories: list[str] = Field(default_factory=list)


class BatchUpdateResult(CamelModel):
    updated: int = 0
    failed: int = 0
    errors: dict[str, str] = Field(default_factory=dict)


class BatchDeleteResult(CamelModel):
    deleted: int = 0
    failed: int = 0
    errors: dict[str, str] = Field(default_factory=dict)


class ImportRequest(CamelModel):
    """Ingest a file that already lives at a URL (e.g. generated media)."""
    url: HttpUrl
    client_id: str | None = None
    client_slug: str | None = None
    name: str | None = Field(None, max_length=255)
    type: str | None = None
    description: str | None = Field(None, max_length=5000)
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProcessingStatusResponse(CamelModel):
    id: str
    processing_status: ProcessingStatus
    processing_warnings: list[str] = Field(default_factory=list)
    thumbnail_url: str | None = None
    preview_url: str | None = None

    @classmethod
    def from_asset(cls, asset: Asset) -> "ProcessingStatusResponse":
        return cls(
            id=asset.id,
            processing_status=asset.processing_status,
            processing_warnings=list(asset.processing_warnings or []),
            thumbnail_url=asset.thumbnail_url,
            preview_url=asset.preview_url,
        )
