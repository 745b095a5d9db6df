from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from . import __version__
from .cleanup import CleanupScheduler
from .config import Settings
from .downloads import DownloadService, OneShotResponse
from .errors import NotFound, StorageReadFailed, Unauthorized
from .models import UploadResult
from .storage import BlobStore, LocalBlobStore
from .uploads import UploadService

log = logging.getLogger("oneshot_relay")

router = APIRouter()


# ---- DI Setup ----
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.uploads


def get_download_service(request: Request) -> DownloadService:
    return request.app.state.downloads


def api_key_matches(provided: Optional[str], expected: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def require_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    settings: Settings = Depends(get_settings),
) -> str:
    if not api_key_matches(x_api_key, settings.api_key):
        log.warning("Rejected request with invalid API key")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=Unauthorized.default_message)
    return x_api_key


# ---- API Endpoints ----
@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/upload", response_model=UploadResult, response_model_exclude_none=True)
async def upload(
    request: Request,
    _: str = Depends(require_api_key),
    uploads: UploadService = Depends(get_upload_service),
) -> UploadResult:
    return await uploads.admit(request)


@router.get("/download/{identifier}")
async def download(
    identifier: str,
    downloads: DownloadService = Depends(get_download_service),
    settings: Settings = Depends(get_settings),
) -> Response:
    try:
        reader = await downloads.open(identifier)
    except NotFound:
        return PlainTextResponse("File not found", status_code=status.HTTP_404_NOT_FOUND)
    except StorageReadFailed as exc:
        log.error("Could not open %s: %s", identifier, exc.message)
        return PlainTextResponse(exc.message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    try:
        return OneShotResponse(downloads, reader, chunk_size=settings.chunk_size)
    except Exception:
        # The blob was claimed and opened; hand it back for deletion.
        await downloads.finish(reader)
        raise


@router.get("/test", response_model=UploadResult, response_model_exclude_none=True)
async def check_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    settings: Settings = Depends(get_settings),
) -> UploadResult:
    if not api_key_matches(x_api_key, settings.api_key):
        return UploadResult.failure("Invalid API key")
    return UploadResult(success=True, message="API key is valid", max_file_size=settings.max_file_size)


# ---- App Setup ----
def create_app(settings: Settings, store: Optional[BlobStore] = None) -> FastAPI:
    store = store if store is not None else LocalBlobStore(settings.upload_dir)
    cleanup = CleanupScheduler(store, delay_seconds=settings.cleanup_delay_seconds)
    downloads = DownloadService(store, cleanup, exclusive=settings.exclusive_downloads)
    cleanup.on_removed = downloads.release

    app = FastAPI(title="oneshot-relay", version=__version__)
    app.state.settings = settings
    app.state.store = store
    app.state.cleanup = cleanup
    app.state.downloads = downloads
    app.state.uploads = UploadService(settings, store)
    app.include_router(router)

    @app.on_event("startup")
    async def startup() -> None:
        cleanup.start()
        log.info("Serving uploads from %s, max file size %d bytes", settings.upload_dir, settings.max_file_size)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        await cleanup.stop()

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error("Unhandled error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app
