"""Deferred writes that fill the cache tiers after a response is produced."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional

import structlog
from opentelemetry import trace

from .durable_store import DurableStore
from .edge_cache import EdgeCache
from .models import ProxyResponse


LOGGER = structlog.get_logger("edgepix.image_proxy.backfill")
TRACER = trace.get_tracer("edgepix.image_proxy.backfill")


class BackfillWriter:
    """Runs tier writes as background tasks owned by the application.

    Tasks are tied to the application's lifetime rather than the client
    connection: a client disconnect does not cancel them, and shutdown waits
    for them through :meth:`drain`. A failed write is logged and dropped; it
    never changes the response that triggered it.
    """

    def __init__(self, durable_store: DurableStore, edge_cache: EdgeCache) -> None:
        self._durable_store = durable_store
        self._edge_cache = edge_cache
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def persist(self, key: str, body: bytes, content_type: Optional[str]) -> asyncio.Task:
        return self._schedule(self._durable_store.put(key, body, content_type), "durable_store", key, len(body))

    def cache_response(self, identity: str, response: ProxyResponse) -> asyncio.Task:
        return self._schedule(self._edge_cache.put(identity, response), "edge_cache", identity, len(response.body))

    def _schedule(self, write: Awaitable[None], tier: str, key: str, size: int) -> asyncio.Task:
        task = asyncio.create_task(self._run(write, tier, key, size))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, write: Awaitable[None], tier: str, key: str, size: int) -> None:
        with TRACER.start_as_current_span("backfill.write", attributes={"edgepix.tier": tier, "edgepix.key": key}):
            try:
                await write
            except Exception:  # noqa: BLE001 - best-effort write
                LOGGER.exception("backfill_failed", tier=tier, key=key)
                return
        LOGGER.debug("backfill_written", tier=tier, key=key, bytes=size)

    async def drain(self, timeout: Optional[float] = None) -> None:
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            LOGGER.warning("backfill_drain_incomplete", pending=len(pending))
