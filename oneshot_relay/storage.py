from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

import anyio

from .errors import NotFound, StorageReadFailed, StorageWriteFailed
from .naming import is_valid_identifier

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
TEMP_PREFIX = ".upload-"


class BlobReader(ABC):
    """
    An opened stored object. Reading keeps working even if the object is
    removed from the store while the reader is open.
    """

    def __init__(self, identifier: str, size: int) -> None:
        self.identifier = identifier
        self.size = size
        # Delivery bookkeeping, maintained by the download handler.
        self.sent = 0
        self.finished = False

    @abstractmethod
    def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        raise NotImplementedError

    @abstractmethod
    async def aclose(self) -> None:
        raise NotImplementedError


class BlobStore(ABC):
    """
    Flat namespace of immutable blobs keyed by identifier.
    """

    @abstractmethod
    async def create(self, identifier: str, data: bytes) -> int:
        raise NotImplementedError

    @abstractmethod
    async def open(self, identifier: str) -> BlobReader:
        raise NotImplementedError

    @abstractmethod
    async def stat(self, identifier: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def remove(self, identifier: str) -> None:
        raise NotImplementedError

    async def exists(self, identifier: str) -> bool:
        try:
            await self.stat(identifier)
        except NotFound:
            return False
        return True


# ---- Local filesystem ----


class LocalBlobReader(BlobReader):
    def __init__(self, identifier: str, size: int, handle: anyio.AsyncFile) -> None:
        super().__init__(identifier, size)
        self._handle = handle

    async def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        while True:
            try:
                chunk = await self._handle.read(chunk_size)
            except OSError as exc:
                raise StorageReadFailed() from exc
            if not chunk:
                return
            yield chunk

    async def aclose(self) -> None:
        await self._handle.aclose()


class LocalBlobStore(BlobStore):
    """Blobs as plain files in a single directory, named by identifier."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, identifier: str) -> Path:
        if not is_valid_identifier(identifier):
            raise NotFound()
        return self.directory / identifier

    async def create(self, identifier: str, data: bytes) -> int:
        if not is_valid_identifier(identifier):
            raise StorageWriteFailed(f"Error saving file: invalid identifier {identifier!r}")
        final = self.directory / identifier
        tmp = self.directory / f"{TEMP_PREFIX}{identifier}"
        try:
            async with await anyio.open_file(tmp, "xb") as f:
                await f.write(data)
            if await anyio.Path(final).exists():
                raise FileExistsError(f"identifier already in use: {identifier}")
            await anyio.Path(tmp).rename(final)
        except OSError as exc:
            await self._discard(tmp)
            log.error("Error saving %s: %s", identifier, exc)
            raise StorageWriteFailed(f"Error saving file: {exc.strerror or exc}") from exc
        return len(data)

    async def _discard(self, path: Path) -> None:
        try:
            await anyio.Path(path).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("Could not remove temporary file %s: %s", path, exc)

    async def open(self, identifier: str) -> BlobReader:
        path = self._path(identifier)
        try:
            handle = await anyio.open_file(path, "rb")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise NotFound() from exc
        except OSError as exc:
            raise StorageReadFailed() from exc
        try:
            size = os.fstat(handle.wrapped.fileno()).st_size
        except OSError as exc:
            await handle.aclose()
            raise StorageReadFailed("Error reading file info") from exc
        return LocalBlobReader(identifier, size, handle)

    async def stat(self, identifier: str) -> int:
        path = anyio.Path(self._path(identifier))
        try:
            info = await path.stat()
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise NotFound() from exc
        except OSError as exc:
            raise StorageReadFailed("Error reading file info") from exc
        if not await path.is_file():
            raise NotFound()
        return info.st_size

    async def remove(self, identifier: str) -> None:
        path = anyio.Path(self._path(identifier))
        try:
            await path.unlink()
        except FileNotFoundError as exc:
            raise NotFound() from exc


# ---- In-memory ----


class InMemoryBlobReader(BlobReader):
    def __init__(self, identifier: str, data: bytes) -> None:
        super().__init__(identifier, len(data))
        self._data: Optional[bytes] = data

    async def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        data = self._data or b""
        for start in range(0, len(data), chunk_size):
            yield data[start:start + chunk_size]
            await anyio.sleep(0)

    async def aclose(self) -> None:
        self._data = None


class InMemoryBlobStore(BlobStore):
    """Dict-backed store; nothing survives a restart."""

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def create(self, identifier: str, data: bytes) -> int:
        async with self._lock:
            if identifier in self._blobs:
                raise StorageWriteFailed(f"Error saving file: identifier already in use: {identifier}")
            self._blobs[identifier] = bytes(data)
        return len(data)

    async def open(self, identifier: str) -> BlobReader:
        async with self._lock:
            data = self._blobs.get(identifier)
        if data is None:
            raise NotFound()
        return InMemoryBlobReader(identifier, data)

    async def stat(self, identifier: str) -> int:
        async with self._lock:
            data = self._blobs.get(identifier)
        if data is None:
            raise NotFound()
        return len(data)

    async def remove(self, identifier: str) -> None:
        async with self._lock:
            if self._blobs.pop(identifier, None) is None:
                raise NotFound()
