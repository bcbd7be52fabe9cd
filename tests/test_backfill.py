from __future__ import annotations

import asyncio

import pytest

from edgepix.image_proxy import backfill
from edgepix.image_proxy.backfill import BackfillWriter
from edgepix.image_proxy.durable_store import LocalDurableStore
from edgepix.image_proxy.edge_cache import InMemoryEdgeCache
from edgepix.image_proxy.errors import DurableStoreError
from edgepix.image_proxy.models import ProxyResponse


class DummyLogger:
    def __init__(self) -> None:
        self.exception_calls: list[tuple[tuple, dict]] = []
        self.warning_calls: list[tuple[tuple, dict]] = []

    def exception(self, *args, **kwargs) -> None:  # noqa: ANN001
        self.exception_calls.append((args, kwargs))

    def warning(self, *args, **kwargs) -> None:  # noqa: ANN001
        self.warning_calls.append((args, kwargs))

    def debug(self, *args, **kwargs) -> None:  # noqa: ANN001
        return None


@pytest.mark.asyncio
async def test_backfill_writes_both_tiers(tmp_path):
    store = LocalDurableStore(tmp_path)
    cache = InMemoryEdgeCache(ttl_seconds=60)
    writer = BackfillWriter(store, cache)
    response = ProxyResponse.build(200, {"content-type": "image/png"}, b"png")

    writer.persist("/a.png", b"png", "image/png")
    writer.cache_response("http://testserver/a.png", response)
    assert writer.pending == 2
    await writer.drain()

    assert writer.pending == 0
    assert (await store.get("/a.png")).body == b"png"
    assert await cache.match("http://testserver/a.png") == response


@pytest.mark.asyncio
async def test_backfill_failure_is_logged_and_dropped(tmp_path, monkeypatch):
    logger = DummyLogger()
    monkeypatch.setattr(backfill, "LOGGER", logger)
    store = LocalDurableStore(tmp_path)

    async def broken_put(_key, _body, _content_type):
        raise DurableStoreError("write rejected")

    monkeypatch.setattr(store, "put", broken_put)
    writer = BackfillWriter(store, InMemoryEdgeCache(ttl_seconds=60))

    task = writer.persist("/a.png", b"png", "image/png")
    await writer.drain()

    assert task.done()
    assert task.exception() is None
    assert logger.exception_calls[0][0] == ("backfill_failed",)
    assert logger.exception_calls[0][1] == {"tier": "durable_store", "key": "/a.png"}


@pytest.mark.asyncio
async def test_drain_gives_up_after_timeout(tmp_path, monkeypatch):
    logger = DummyLogger()
    monkeypatch.setattr(backfill, "LOGGER", logger)
    release = asyncio.Event()
    cache = InMemoryEdgeCache(ttl_seconds=60)

    async def slow_put(_identity, _response):
        await release.wait()

    monkeypatch.setattr(cache, "put", slow_put)
    writer = BackfillWriter(LocalDurableStore(tmp_path), cache)

    writer.cache_response("http://testserver/a.png", ProxyResponse.build(200))
    await writer.drain(timeout=0.01)

    assert writer.pending == 1
    assert logger.warning_calls[0][1] == {"pending": 1}

    release.set()
    await writer.drain()
    assert writer.pending == 0


@pytest.mark.asyncio
async def test_drain_without_pending_writes_returns_immediately(tmp_path):
    writer = BackfillWriter(LocalDurableStore(tmp_path), InMemoryEdgeCache(ttl_seconds=60))

    await writer.drain(timeout=0)

    assert writer.pending == 0
