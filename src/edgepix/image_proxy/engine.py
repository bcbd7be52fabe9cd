"""Tiered lookup: edge cache, then durable store, then origin."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, status
import structlog
from opentelemetry import trace

from .backfill import BackfillWriter
from .durable_store import DurableStore
from .edge_cache import EdgeCache
from .keys import DEBUG_PARAM, ControlFlags, edge_identity, normalize, parse_control_flags, strip_params
from .models import (
    DEFAULT_CONTENT_TYPE,
    LONG_LIVED_CACHE_CONTROL,
    NO_STORE,
    ProxyRequest,
    ProxyResponse,
)
from .origin import OriginClient
from .purge import PurgeHandler
from .routes import RouteRule, RouteTable


LOGGER = structlog.get_logger("edgepix.image_proxy.engine")
TRACER = trace.get_tracer("edgepix.image_proxy.engine")


@dataclass(frozen=True)
class Provenance:
    """Builds the ``X-Served-By`` value for each tier."""

    platform_label: str = "EdgePix"
    store_label: str = "Object Store"
    edge_label: str = "Edge Cache"

    def edge(self, rule: RouteRule) -> str:
        return f"{self.edge_label} & {rule.service_label}"

    def store(self, rule: RouteRule) -> str:
        return f"{self.store_label} & {rule.service_label}"

    def origin(self, rule: RouteRule) -> str:
        return f"{self.platform_label} & {rule.service_label} (first load)"


class TieredLookupEngine:
    def __init__(
        self,
        routes: RouteTable,
        durable_store: DurableStore,
        edge_cache: EdgeCache,
        origin: OriginClient,
        backfill: BackfillWriter,
        purge_handler: PurgeHandler,
        provenance: Provenance = Provenance(),
    ) -> None:
        self._routes = routes
        self._durable_store = durable_store
        self._edge_cache = edge_cache
        self._origin = origin
        self._backfill = backfill
        self._purge = purge_handler
        self._provenance = provenance

    async def resolve(self, request: ProxyRequest, flags: Optional[ControlFlags] = None) -> ProxyResponse:
        flags = flags or parse_control_flags(request.query)
        if flags.purge:
            return await self._purge.purge(request.url)

        rule = self._routes.match(request.path)
        if rule is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Path not supported: {request.path}",
                headers={"Cache-Control": NO_STORE},
            )

        identity = edge_identity(request.url)
        cache_key = normalize(request.path, request.query)

        # Both read tiers are bypassed for forced reloads and debug requests.
        if not flags.force and not flags.debug:
            cached = await self._edge_lookup(identity)
            if cached is not None:
                return cached.with_headers(x_served_by=self._provenance.edge(rule))

            stored = await self._durable_lookup(cache_key, rule)
            if stored is not None:
                self._backfill.cache_response(identity, stored)
                return stored

        return await self._fetch_origin(request, flags, rule, cache_key, identity)

    async def _edge_lookup(self, identity: str) -> Optional[ProxyResponse]:
        with TRACER.start_as_current_span("image_proxy.edge_lookup", attributes={"edgepix.identity": identity}) as span:
            try:
                cached = await self._edge_cache.match(identity)
            except Exception:  # noqa: BLE001 - a failed read is a miss
                LOGGER.warning("edge_cache_read_failed", identity=identity, exc_info=True)
                cached = None
            span.set_attribute("edgepix.hit", cached is not None)
        if cached is not None:
            LOGGER.info("edge_cache_hit", identity=identity)
        return cached

    async def _durable_lookup(self, cache_key: str, rule: RouteRule) -> Optional[ProxyResponse]:
        with TRACER.start_as_current_span("image_proxy.durable_lookup", attributes={"edgepix.cache_key": cache_key}) as span:
            try:
                stored = await self._durable_store.get(cache_key)
            except Exception:  # noqa: BLE001 - a failed read is a miss
                LOGGER.warning("durable_store_read_failed", cache_key=cache_key, exc_info=True)
                stored = None
            span.set_attribute("edgepix.hit", stored is not None)
        if stored is None:
            LOGGER.info("durable_store_miss", cache_key=cache_key)
            return None
        LOGGER.info("durable_store_hit", cache_key=cache_key, bytes=len(stored.body))
        return ProxyResponse.build(
            status.HTTP_200_OK,
            {
                "content-type": stored.content_type or DEFAULT_CONTENT_TYPE,
                "cache-control": LONG_LIVED_CACHE_CONTROL,
                "vary": "Accept",
                "x-served-by": self._provenance.store(rule),
            },
            stored.body,
        )

    async def _fetch_origin(
        self,
        request: ProxyRequest,
        flags: ControlFlags,
        rule: RouteRule,
        cache_key: str,
        identity: str,
    ) -> ProxyResponse:
        query = strip_params(request.query, (DEBUG_PARAM,)) if flags.debug else request.query
        url = self._origin.build_url(rule, request.path, query)
        with TRACER.start_as_current_span("image_proxy.origin_fetch", attributes={"edgepix.origin_url": url}) as span:
            upstream = await self._origin.fetch(url, request.accept)
            span.set_attribute("http.status_code", upstream.status)
        if not upstream.ok:
            return upstream

        content_type = upstream.header("content-type") or DEFAULT_CONTENT_TYPE
        response = upstream.with_headers(
            content_type=content_type,
            cache_control=LONG_LIVED_CACHE_CONTROL,
            vary="Accept",
            x_served_by=self._provenance.origin(rule),
        )
        LOGGER.info("origin_fetch", url=url, cache_key=cache_key, bytes=len(upstream.body), debug=flags.debug)
        # The body was read once into immutable bytes; both writers and the client share it.
        self._backfill.persist(cache_key, upstream.body, content_type)
        if not flags.debug:
            self._backfill.cache_response(identity, response)
        return response
