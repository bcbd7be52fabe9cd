"""Per-key edge cache purge triggered by the ``nocache`` parameter."""

from __future__ import annotations

from fastapi import status
import structlog

from .edge_cache import EdgeCache
from .errors import EdgeCacheError
from .keys import PURGE_PARAM, clean_url, edge_identity
from .models import NO_STORE, ProxyResponse


LOGGER = structlog.get_logger("edgepix.image_proxy.purge")


class PurgeHandler:
    def __init__(self, edge_cache: EdgeCache) -> None:
        self._edge_cache = edge_cache

    async def purge(self, request_url: str) -> ProxyResponse:
        """Drop the edge entry behind ``request_url`` and redirect to the URL without ``nocache``.

        The durable store is left untouched, so the follow-up request refills
        the edge cache from it.
        """
        target = clean_url(request_url, (PURGE_PARAM,))
        identity = edge_identity(request_url)
        try:
            removed = await self._edge_cache.delete(identity)
        except EdgeCacheError:
            LOGGER.exception("edge_cache_purge_failed", identity=identity)
        else:
            LOGGER.info("edge_cache_purged", identity=identity, removed=removed)
        return ProxyResponse.build(
            status.HTTP_302_FOUND,
            {"location": target, "cache-control": NO_STORE},
        )
