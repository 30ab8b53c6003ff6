"""Pydantic schemas."""
from assethub.schemas.asset import (
    ApiResponse,
    AssetCreated,
    AssetPage,
    AssetResponse,
    AssetUpdate,
    BatchDeleteRequest,
    BatchDeleteResult,
    BatchUpdateRequest,
    BatchUpdateResult,
    FavouriteToggle,
    ImportRequest,
    Pagination,
    ProcessingStatusResponse,
)

__all__ = [
    "ApiResponse",
    "AssetCreated",
    "AssetPage",
    "AssetResponse",
    "AssetUpdate",
    "BatchDeleteRequest",
    "BatchDeleteResult",
    "BatchUpdateRequest",
    "BatchUpdateResult",
    "FavouriteToggle",
    "ImportRequest",
    "Pagination",
    "ProcessingStatusResponse",
]
