"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from assethub.api import api_router
from assethub.config import get_settings
from assethub.database import init_db
from assethub.exceptions import AssetError
from assethub.logging_config import configure_logging
from assethub.services.derivatives import ensure_placeholders
from assethub.utils.cache import get_cache
from assethub.utils.rate_limiter import limiter
from assethub.utils.storage import LocalByteStore, StorageError, get_storage

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    configure_logging()
    await init_db()
    await ensure_placeholders(get_storage())
    logger.info("%s started", settings.app_name)

    yield

    # Shutdown
    await get_cache().close()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Asset ingestion, derivative generation and retrieval",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AssetError)
async def asset_error_handler(request: Request, exc: AssetError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "; ".join(problems) or "Invalid request"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


# File serving for the byte store
@app.get(f"{settings.api_prefix}/files/{{file_path:path}}")
async def serve_file(file_path: str, storage: LocalByteStore = Depends(get_storage)):
    """Serve stored originals and derivatives."""
    try:
        full_path = storage.get_absolute_path(file_path)
    except StorageError:
        # Security check: prevent path traversal
        return JSONResponse(
            status_code=403,
            content={"success": False, "message": "Access denied"},
        )

    if not full_path.is_file():
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": "File not found"},
        )

    return FileResponse(full_path)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs" if settings.debug else None,
    }
