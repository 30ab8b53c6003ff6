"""Write path: upload gate -> classifier -> derivatives -> persistence writer.

Nothing is written to the byte store until the request has been validated
(client resolved, type classified, size within limits). Once bytes are
written, any failure or cancellation removes them again.
"""
import asyncio
import hashlib
import logging
import mimetypes
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import unquote, urlparse

import httpx
from fastapi import UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from assethub.config import get_settings
from assethub.exceptions import PersistenceError, ValidationError
from assethub.models.asset import AssetType, ProcessingStatus, new_asset_id
from assethub.services.classifier import classify, extension_of
from assethub.services.derivatives import DerivativeGenerator, DerivativeResult, placeholder_name
from assethub.services.directory import ClientDirectory
from assethub.services.identity import Identity
from assethub.services.persistence import AssetDraft, PersistenceWriter, PersistOutcome
from assethub.utils.cache import CacheBackend
from assethub.utils.storage import LocalByteStore, StorageError

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class IngestionRequest:
    """Caller-supplied attributes that accompany the file."""
    client_id: str | None = None
    client_slug: str | None = None
    name: str | None = None
    declared_type: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    provider_metadata: dict[str, Any] = field(default_factory=dict)


async def upload_chunks(file: UploadFile, chunk_size: int | None = None) -> AsyncIterator[bytes]:
    chunk_size = chunk_size or settings.upload_chunk_size
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        yield chunk


async def read_limited(chunks: AsyncIterator[bytes], limit: int | None = None) -> bytes:
    """Collect chunks, stopping as soon as the size ceiling is exceeded."""
    limit = limit or settings.max_upload_size
    buffer = bytearray()
    async for chunk in chunks:
        buffer.extend(chunk)
        if len(buffer) > limit:
            raise ValidationError(f"File too large. Maximum size: {limit // 1024 // 1024}MB")
    return bytes(buffer)


def filename_from_url(url: str, content_type: str | None) -> str:
    name = unquote(PurePosixPath(urlparse(url).path).name) or "download"
    if not extension_of(name) and content_type:
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if guessed:
            name = f"{name}{guessed}"
    return name


class IngestionService:
    """Turns an uploaded or fetched file into a persisted asset."""

    def __init__(
        self,
        db: AsyncSession,
        storage: LocalByteStore,
        cache: CacheBackend,
        identity: Identity,
        generator: DerivativeGenerator | None = None,
        relaxed: bool | None = None,
        derivatives_async: bool | None = None,
    ):
        self.storage = storage
        self.identity = identity
        self.relaxed = settings.relaxed_mode if relaxed is None else relaxed
        self.derivatives_async = settings.derivatives_async if derivatives_async is None else derivatives_async
        self.clients = ClientDirectory(db)
        self.writer = PersistenceWriter(db, storage, cache, relaxed=self.relaxed)
        self.generator = generator or DerivativeGenerator(storage)

    async def resolve_client(self, request: IngestionRequest) -> str:
        """Canonical client id; unknown clients are rejected in every mode."""
        if not (request.client_id or "").strip() and not (request.client_slug or "").strip():
            raise ValidationError("A client is required (clientId or clientSlug)")
        client_id = await self.clients.resolve(request.client_id, request.client_slug)
        if client_id is not None:
            return client_id
        ref = request.client_id or request.client_slug
        raise ValidationError(f"Unknown client '{ref}'")

    async def ingest_upload(self, file: UploadFile | None, request: IngestionRequest) -> PersistOutcome:
        """Upload gate for multipart uploads."""
        if file is None or not file.filename:
            raise ValidationError("No file provided")
        client_id = await self.resolve_client(request)
        asset_type = classify(file.filename, file.content_type, request.declared_type)
        try:
            content = await read_limited(upload_chunks(file))
        except OSError as e:
            raise ValidationError(f"Could not read uploaded file: {e}") from e
        return await self.ingest(content, file.filename, file.content_type, asset_type, client_id, request)

    async def import_from_url(self, url: str, request: IngestionRequest) -> PersistOutcome:
        """Fetch a remote file (e.g. provider-generated media) and ingest it."""
        scheme = urlparse(url).scheme.lower()
        if scheme not in settings.import_allowed_schemes_list:
            raise ValidationError(f"URL scheme '{scheme}' is not allowed")
        client_id = await self.resolve_client(request)

        try:
            async with httpx.AsyncClient(timeout=settings.import_timeout, follow_redirects=True) as client:
                async with client.stream("GET", url) as resp:
                    if resp.status_code >= 400:
                        raise ValidationError(f"Could not fetch {url}: HTTP {resp.status_code}")
                    content_type = resp.headers.get("content-type")
                    filename = filename_from_url(str(resp.url), content_type)
                    asset_type = classify(filename, content_type, request.declared_type)
                    content = await read_limited(resp.aiter_bytes())
        except httpx.HTTPError as e:
            raise ValidationError(f"Could not fetch {url}: {e.__class__.__name__}") from e

        mime_type = (content_type or "").split(";")[0].strip() or None
        request.provider_metadata = {**request.provider_metadata, "sourceUrl": url}
        return await self.ingest(content, filename, mime_type, asset_type, client_id, request)

    async def ingest(
        self,
        content: bytes,
        filename: str,
        mime_type: str | None,
        asset_type: AssetType,
        client_id: str,
        request: IngestionRequest,
    ) -> PersistOutcome:
        if not content:
            raise ValidationError("File is empty")

        asset_id = new_asset_id()
        directory = self.storage.asset_dir(client_id)
        ext = extension_of(filename) or mimetypes.guess_extension(mime_type or "") or ""
        file_path = self.storage.path_for(directory, asset_id, "", ext)
        mime_type = mime_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"

        try:
            await self.storage.write(file_path, content)
        except StorageError as e:
            logger.error("Byte store write failed for %s: %s", file_path, e)
            raise PersistenceError("Failed to store file") from e

        name = (request.name or "").strip() or filename
        draft = AssetDraft(
            id=asset_id,
            owner_id=self.identity.user_id,
            client_id=client_id,
            name=name[:255],
            description=request.description,
            asset_type=asset_type,
            mime_type=mime_type,
            original_filename=filename[:255],
            file_path=file_path,
            url=self.storage.get_file_url(file_path),
            size=len(content),
            content_hash=hashlib.sha256(content).hexdigest(),
            tags=list(request.tags),
            categories=list(request.categories),
            provider_metadata=dict(request.provider_metadata),
        )

        try:
            if self.derivatives_async:
                draft.processing_status = ProcessingStatus.PENDING
                draft.derivatives = DerivativeResult(
                    thumbnail_path=self.storage.placeholder_path(placeholder_name(asset_type))
                )
            else:
                draft.derivatives = await self.generator.generate(asset_id, asset_type, file_path, directory, name)
            outcome = await self.writer.insert(draft)
        except BaseException:
            # insert() already cleans up after itself; this covers failures
            # and cancellation before it was reached.
            await self.storage.delete(file_path)
            raise

        if outcome.owner_fallback_applied:
            logger.warning(
                "Asset %s stored under fallback owner %s (requested %s)",
                asset_id, outcome.asset.owner_id, outcome.requested_owner_id,
            )
        if self.derivatives_async:
            await self._enqueue_derivatives(asset_id)

        logger.info("Ingested %s asset %s for client %s", asset_type.value, asset_id, client_id)
        return outcome

    async def _enqueue_derivatives(self, asset_id: str) -> None:
        from assethub.tasks.derivative_tasks import generate_asset_derivatives

        try:
            generate_asset_derivatives.delay(asset_id)
        except Exception:
            logger.exception("Could not enqueue derivative job for asset %s", asset_id)
            await self.writer.mark_processing_failed(asset_id, "derivatives: job could not be queued")
