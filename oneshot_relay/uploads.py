"""
Upload admission: transport dispatch, size capping, content-type resolution,
allow-list validation and persistence.

Both accepted shapes share ``POST /upload``:

- ``multipart/form-data`` with a ``file`` part (optional ``filetype`` field)
- ``application/x-www-form-urlencoded`` with ``data`` (base64) and optional
  ``filename`` / ``type`` fields

Each is normalised to an ``IncomingFile`` before the shared checks run.
Every rejection comes back as an ``UploadResult`` with ``success=False``.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional
from urllib.parse import quote

from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.types import Message, Receive

from . import media_types, naming
from .config import Settings
from .errors import (
    FileTypeNotAllowed,
    MalformedInput,
    PayloadTooLarge,
    RelayError,
    UnsupportedContentType,
)
from .models import IncomingFile, UploadResult
from .storage import BlobStore

log = logging.getLogger(__name__)

MULTIPART = "multipart/form-data"
URLENCODED = "application/x-www-form-urlencoded"
FILE_TYPE_HEADER = "X-File-Type"
DEFAULT_FILENAME = "file.dat"

MULTIPART_OVERHEAD = 64 * 1024
FORM_OVERHEAD = 16 * 1024


def media_type_of(content_type: Optional[str]) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def body_limit(shape: str, max_file_size: int) -> int:
    """Largest request body that can still carry a ``max_file_size`` payload."""
    if shape == MULTIPART:
        return max_file_size + MULTIPART_OVERHEAD
    # base64 grows the payload by 4/3; percent-encoding may triple each character.
    encoded = 4 * ((max_file_size + 2) // 3)
    return 3 * encoded + FORM_OVERHEAD


class CappedReceive:
    """ASGI receive wrapper that aborts once more than ``limit`` body bytes arrived."""

    def __init__(self, receive: Receive, limit: int) -> None:
        self._receive = receive
        self.limit = limit
        self.received = 0

    async def __call__(self) -> Message:
        message = await self._receive()
        if message["type"] == "http.request":
            self.received += len(message.get("body", b""))
            if self.received > self.limit:
                raise PayloadTooLarge()
        return message


def _text_field(form: FormData, name: str) -> str:
    value = form.get(name)
    return value if isinstance(value, str) else ""


class UploadService:
    def __init__(self, settings: Settings, store: BlobStore) -> None:
        self.settings = settings
        self.store = store
        self.allowed_types = settings.effective_allowed_types

    async def admit(self, request: Request) -> UploadResult:
        log.info(
            "Upload request received: Content-Type=%s, Content-Length=%s",
            request.headers.get("content-type"),
            request.headers.get("content-length"),
        )
        try:
            incoming = await self.receive(request)
            self.validate(incoming)
            identifier = await self.persist(incoming)
        except RelayError as exc:
            log.warning("Upload rejected (%s): %s", type(exc).__name__, exc.message)
            return UploadResult.failure(exc.message)

        url = self.download_url(identifier)
        log.info("Stored %s (%d bytes, %s)", identifier, incoming.size, incoming.content_type)
        return UploadResult(success=True, message="File uploaded successfully", url=url)

    async def receive(self, request: Request) -> IncomingFile:
        shape = media_type_of(request.headers.get("content-type"))
        if shape not in (MULTIPART, URLENCODED):
            raise UnsupportedContentType()

        limit = body_limit(shape, self.settings.max_file_size)
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise PayloadTooLarge()

        capped = Request(request.scope, receive=CappedReceive(request.receive, limit))
        try:
            form = await capped.form()
        except StarletteHTTPException as exc:
            log.info("Error parsing form: %s", exc.detail)
            raise MalformedInput("Error parsing form") from exc

        try:
            if shape == MULTIPART:
                return await self._from_multipart(form, request)
            return self._from_urlencoded(form, request)
        finally:
            await form.close()

    async def _from_multipart(self, form: FormData, request: Request) -> IncomingFile:
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise MalformedInput("Error retrieving file")

        content = await upload.read()
        self._check_size(content)
        content_type = media_types.resolve_content_type(
            [
                lambda: upload.content_type,
                lambda: request.headers.get(FILE_TYPE_HEADER),
                lambda: _text_field(form, "filetype"),
                lambda: media_types.sniff(content),
            ]
        )
        return IncomingFile(
            content=content,
            filename=upload.filename or DEFAULT_FILENAME,
            content_type=content_type,
        )

    def _from_urlencoded(self, form: FormData, request: Request) -> IncomingFile:
        data = _text_field(form, "data")
        if not data:
            raise MalformedInput("No file data provided")

        filename = _text_field(form, "filename") or DEFAULT_FILENAME
        log.debug("Form data received: filename=%s, data length=%d", filename, len(data))
        try:
            content = base64.b64decode(data.replace("\r", "").replace("\n", ""), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedInput("Error decoding base64 data") from exc

        self._check_size(content)
        content_type = media_types.resolve_content_type(
            [
                lambda: _text_field(form, "type"),
                lambda: request.headers.get(FILE_TYPE_HEADER),
                lambda: media_types.sniff(content),
            ]
        )
        return IncomingFile(content=content, filename=filename, content_type=content_type)

    def _check_size(self, content: bytes) -> None:
        if len(content) > self.settings.max_file_size:
            log.info("File too large: %d bytes (max: %d)", len(content), self.settings.max_file_size)
            raise PayloadTooLarge()

    def validate(self, incoming: IncomingFile) -> None:
        if not media_types.is_allowed(incoming.content_type, self.allowed_types):
            raise FileTypeNotAllowed()

    async def persist(self, incoming: IncomingFile) -> str:
        identifier = naming.generate_identifier(incoming.filename)
        await self.store.create(identifier, incoming.content)
        return identifier

    def download_url(self, identifier: str) -> str:
        domain = self.settings.domain.rstrip("/")
        return f"{self.settings.public_scheme}://{domain}/download/{quote(identifier)}"
