"""Short-lived edge cache tier holding whole responses.

Entries are keyed by request identity (the request URL with control
parameters removed) and expire after a TTL. Redis is used when configured;
otherwise a bounded per-process map stands in.
"""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError
import structlog

from ..common.settings import ImageProxySettings
from .errors import EdgeCacheError
from .models import ProxyResponse


LOGGER = structlog.get_logger("edgepix.image_proxy.edge_cache")


class EdgeCache:
    async def match(self, identity: str) -> Optional[ProxyResponse]:  # pragma: no cover - interface
        raise NotImplementedError

    async def put(self, identity: str, response: ProxyResponse) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, identity: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def status(self) -> dict[str, object]:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:
        return None


class RedisEdgeCache(EdgeCache):
    def __init__(self, redis: Redis, ttl_seconds: int, namespace: str = "edgepix:edge"):
        self._redis = redis
        self._ttl = max(1, ttl_seconds)
        self._namespace = namespace

    def _key(self, identity: str) -> str:
        return f"{self._namespace}:{identity}"

    async def match(self, identity: str) -> Optional[ProxyResponse]:
        try:
            entry = await self._redis.hgetall(self._key(identity))
        except RedisError as exc:
            raise EdgeCacheError(f"edge cache read failed for {identity}") from exc
        if not entry:
            return None
        try:
            headers = json.loads(entry[b"headers"])
            return ProxyResponse(
                status=int(entry[b"status"]),
                headers=tuple((name, value) for name, value in headers),
                body=entry.get(b"body", b""),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise EdgeCacheError(f"corrupt edge cache entry for {identity}") from exc

    async def put(self, identity: str, response: ProxyResponse) -> None:
        key = self._key(identity)
        mapping = {
            "status": str(response.status),
            "headers": json.dumps([list(item) for item in response.headers]),
            "body": response.body,
        }
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping=mapping)
                pipe.expire(key, self._ttl)
                await pipe.execute()
        except RedisError as exc:
            raise EdgeCacheError(f"edge cache write failed for {identity}") from exc

    async def delete(self, identity: str) -> bool:
        try:
            removed = await self._redis.delete(self._key(identity))
        except RedisError as exc:
            raise EdgeCacheError(f"edge cache delete failed for {identity}") from exc
        return bool(removed)

    def status(self) -> dict[str, object]:
        return {"backend": "redis", "ttl_seconds": self._ttl}

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryEdgeCache(EdgeCache):
    """Per-process fallback with TTL expiry and LRU bounding."""

    def __init__(self, ttl_seconds: int, max_entries: int = 1024):
        self._ttl = max(1, ttl_seconds)
        self._max_entries = max(1, max_entries)
        self._entries: OrderedDict[str, tuple[float, ProxyResponse]] = OrderedDict()

    async def match(self, identity: str) -> Optional[ProxyResponse]:
        item = self._entries.get(identity)
        if item is None:
            return None
        expires_at, response = item
        if time.monotonic() >= expires_at:
            self._entries.pop(identity, None)
            return None
        self._entries.move_to_end(identity)
        return response

    async def put(self, identity: str, response: ProxyResponse) -> None:
        self._entries[identity] = (time.monotonic() + self._ttl, response)
        self._entries.move_to_end(identity)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            LOGGER.debug("edge_cache_evicted", identity=evicted)

    async def delete(self, identity: str) -> bool:
        return self._entries.pop(identity, None) is not None

    def status(self) -> dict[str, object]:
        return {"backend": "memory", "ttl_seconds": self._ttl, "entries": len(self._entries)}


def build_edge_cache(settings: ImageProxySettings) -> EdgeCache:
    if settings.redis_url:
        redis = Redis.from_url(settings.redis_url)
        return RedisEdgeCache(redis, settings.edge_cache_ttl_seconds)
    return InMemoryEdgeCache(settings.edge_cache_ttl_seconds, settings.edge_cache_max_entries)
