from __future__ import annotations

import logging
from typing import AsyncIterator, Set

from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from .cleanup import CleanupScheduler
from .errors import NotFound, RelayError, StorageReadFailed
from .naming import is_valid_identifier
from .storage import DEFAULT_CHUNK_SIZE, BlobReader, BlobStore

log = logging.getLogger(__name__)


class DownloadService:
    """
    Hands out each stored blob once, then schedules its deletion.

    With ``exclusive`` set, the first request to open an identifier claims it
    and any concurrent request gets ``NotFound`` until the deletion ran. The
    claim is never released earlier, so a consumed identifier stays gone.
    """

    def __init__(self, store: BlobStore, cleanup: CleanupScheduler, exclusive: bool = True) -> None:
        self.store = store
        self.cleanup = cleanup
        self.exclusive = exclusive
        self._claimed: Set[str] = set()

    def is_claimed(self, identifier: str) -> bool:
        return identifier in self._claimed

    def release(self, identifier: str) -> None:
        self._claimed.discard(identifier)

    async def open(self, identifier: str) -> BlobReader:
        if not is_valid_identifier(identifier):
            raise NotFound()
        if self.exclusive:
            # No await between the check and the add: the claim is atomic on the loop.
            if identifier in self._claimed:
                log.info("Download of %s refused: already being delivered", identifier)
                raise NotFound()
            self._claimed.add(identifier)
        try:
            return await self.store.open(identifier)
        except RelayError:
            self.release(identifier)
            raise

    async def deliver(self, reader: BlobReader, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        try:
            async for chunk in reader.iter_chunks(chunk_size):
                reader.sent += len(chunk)
                yield chunk
        except StorageReadFailed as exc:
            log.error("Read failed while delivering %s: %s", reader.identifier, exc)
        finally:
            await self.finish(reader)

    async def finish(self, reader: BlobReader) -> None:
        """Schedule deletion and close ``reader``; later calls are no-ops."""
        if reader.finished:
            return
        reader.finished = True
        self.cleanup.schedule(reader.identifier)
        if reader.sent < reader.size:
            log.warning(
                "Delivery of %s incomplete (%d/%d bytes); deleting anyway",
                reader.identifier,
                reader.sent,
                reader.size,
            )
        else:
            log.info("Delivered %s (%d bytes)", reader.identifier, reader.sent)
        await reader.aclose()


class OneShotResponse(StreamingResponse):
    """Attachment response that always hands its blob back for deletion."""

    def __init__(self, downloads: DownloadService, reader: BlobReader, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        super().__init__(
            downloads.deliver(reader, chunk_size),
            media_type="application/octet-stream",
            headers={
                "Content-Disposition": f"attachment; filename={reader.identifier}",
                "Content-Length": str(reader.size),
            },
        )
        self.downloads = downloads
        self.reader = reader

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # Covers a disconnect before the body iterator was ever started.
            await self.downloads.finish(self.reader)
