"""Asset ingestion API routes (multipart upload and import from URL)."""
import json

from fastapi import APIRouter, File, Form, Request, UploadFile, status

from assethub.api.deps import Ingestion
from assethub.exceptions import ValidationError
from assethub.schemas.asset import ApiResponse, AssetCreated, ImportRequest
from assethub.services.ingestion import IngestionRequest
from assethub.services.persistence import PersistOutcome
from assethub.utils.rate_limiter import rate_limit_ingest

router = APIRouter()


def parse_label_field(value: str | None, field: str) -> list[str]:
    """Form label lists arrive as a JSON array or a comma-separated string."""
    if value is None or not value.strip():
        return []
    value = value.strip()
    if value.startswith("["):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError(f"{field} must be a JSON array of strings")
        if not isinstance(parsed, list) or not all(isinstance(v, str) for v in parsed):
            raise ValidationError(f"{field} must be a JSON array of strings")
        return parsed
    return [part.strip() for part in value.split(",") if part.strip()]


def created_response(outcome: PersistOutcome, verb: str) -> ApiResponse[AssetCreated]:
    asset = AssetCreated.from_asset(outcome.asset).model_copy(update={
        "owner_fallback_applied": outcome.owner_fallback_applied,
        "requested_owner_id": outcome.requested_owner_id,
    })
    message = f"Asset {verb} successfully"
    if outcome.owner_fallback_applied:
        message = f"{message}; owner {outcome.requested_owner_id} not found, stored under fallback owner {asset.owner_id}"
    return ApiResponse(message=message, data=asset)


@router.post("", response_model=ApiResponse[AssetCreated], status_code=status.HTTP_201_CREATED)
@rate_limit_ingest()
async def upload_asset(
    request: Request,
    ingestion: Ingestion,
    file: UploadFile | None = File(None),
    name: str | None = Form(None),
    asset_type: str | None = Form(None, alias="type"),
    description: str | None = Form(None),
    tags: str | None = Form(None),
    categories: str | None = Form(None),
    client_id: str | None = Form(None, alias="clientId"),
    client_slug: str | None = Form(None, alias="clientSlug"),
):
    """Upload a file, generate its derivatives and store the asset."""
    outcome = await ingestion.ingest_upload(
        file,
        IngestionRequest(
            client_id=client_id,
            client_slug=client_slug,
            name=name,
            declared_type=asset_type,
            description=description,
            tags=parse_label_field(tags, "tags"),
            categories=parse_label_field(categories, "categories"),
        ),
    )
    return created_response(outcome, "uploaded")


@router.post("/import", response_model=ApiResponse[AssetCreated], status_code=status.HTTP_201_CREATED)
@rate_limit_ingest()
async def import_asset(
    request: Request,
    body: ImportRequest,
    ingestion: Ingestion,
):
    """Ingest a file that already lives at a URL, e.g. provider-generated media."""
    outcome = await ingestion.import_from_url(
        str(body.url),
        IngestionRequest(
            client_id=body.client_id,
            client_slug=body.client_slug,
            name=body.name,
            declared_type=body.type,
            description=body.description,
            tags=body.tags,
            categories=body.categories,
            provider_metadata=body.metadata,
        ),
    )
    return created_response(outcome, "imported")
