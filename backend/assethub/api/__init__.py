"""API routes."""
from fastapi import APIRouter

from assethub.api import assets, upload

api_router = APIRouter()

# Upload routes first: POST /assets and /assets/import.
api_router.include_router(upload.router, prefix="/assets", tags=["Upload"])
api_router.include_router(assets.router, prefix="/assets", tags=["Assets"])
