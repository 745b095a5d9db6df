from __future__ import annotations

import asyncio

import pytest

from oneshot_relay.cleanup import CleanupScheduler
from oneshot_relay.downloads import DownloadService
from oneshot_relay.errors import NotFound
from oneshot_relay.storage import InMemoryBlobStore


def _service(store, exclusive=True):
    cleanup = CleanupScheduler(store, delay_seconds=0)
    downloads = DownloadService(store, cleanup, exclusive=exclusive)
    cleanup.on_removed = downloads.release
    return downloads, cleanup


async def _consume(downloads, reader, chunk_size=3):
    return b"".join([chunk async for chunk in downloads.deliver(reader, chunk_size)])


def test_first_claimant_wins():
    async def scenario():
        store = InMemoryBlobStore()
        await store.create("one.png", b"payload")
        downloads, cleanup = _service(store)
        cleanup.start()

        first = await downloads.open("one.png")
        with pytest.raises(NotFound):
            await downloads.open("one.png")

        assert await _consume(downloads, first) == b"payload"
        await cleanup.drain()

        assert not await store.exists("one.png")
        assert not downloads.is_claimed("one.png")
        with pytest.raises(NotFound):
            await downloads.open("one.png")
        await cleanup.stop()

    asyncio.run(scenario())


def test_best_effort_mode_allows_overlapping_downloads():
    async def scenario():
        store = InMemoryBlobStore()
        await store.create("two.png", b"payload")
        downloads, cleanup = _service(store, exclusive=False)
        cleanup.start()

        first = await downloads.open("two.png")
        second = await downloads.open("two.png")
        assert await _consume(downloads, first) == b"payload"
        assert await _consume(downloads, second) == b"payload"
        await cleanup.drain()
        assert not await store.exists("two.png")
        await cleanup.stop()

    asyncio.run(scenario())


def test_abandoned_delivery_still_deletes():
    async def scenario():
        store = InMemoryBlobStore()
        await store.create("big.bin", b"z" * 30)
        downloads, cleanup = _service(store)
        cleanup.start()

        reader = await downloads.open("big.bin")
        stream = downloads.deliver(reader, 5)
        assert await stream.__anext__() == b"zzzzz"
        await stream.aclose()
        await cleanup.drain()

        assert reader.sent == 5
        assert not await store.exists("big.bin")
        await cleanup.stop()

    asyncio.run(scenario())


def test_finish_is_idempotent():
    async def scenario():
        store = InMemoryBlobStore()
        await store.create("x", b"abc")
        downloads, cleanup = _service(store)
        reader = await downloads.open("x")
        await downloads.finish(reader)
        await downloads.finish(reader)
        cleanup.start()
        await cleanup.drain()
        assert not await store.exists("x")
        await cleanup.stop()

    asyncio.run(scenario())


def test_failed_open_releases_claim():
    async def scenario():
        store = InMemoryBlobStore()
        downloads, _ = _service(store)
        with pytest.raises(NotFound):
            await downloads.open("late.png")
        assert not downloads.is_claimed("late.png")

        await store.create("late.png", b"now here")
        reader = await downloads.open("late.png")
        assert reader.size == 8

    asyncio.run(scenario())
