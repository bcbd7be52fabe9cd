"""Image proxy service fronting remote image origins with an edge cache and a durable store."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from ..common.observability import configure_observability, instrument_fastapi_app
from ..common.settings import ImageProxySettings
from .access import AccessGuard
from .backfill import BackfillWriter
from .durable_store import DurableStore, build_durable_store
from .edge_cache import EdgeCache, build_edge_cache
from .engine import Provenance, TieredLookupEngine
from .keys import join_path_query, parse_control_flags
from .models import NO_STORE, ProxyRequest
from .origin import OriginClient, build_http_client
from .purge import PurgeHandler
from .routes import RouteTable


SERVICE_NAME = "edgepix.image_proxy"
# Prefixed so it cannot shadow an image path served by the catch-all route.
HEALTH_PATH = "/_edgepix/healthz"


class ImageProxyState:
    def __init__(
        self,
        settings: ImageProxySettings,
        durable_store: DurableStore,
        edge_cache: EdgeCache,
        http_client: httpx.AsyncClient,
    ):
        self.settings = settings
        self.durable_store = durable_store
        self.edge_cache = edge_cache
        self.http = http_client
        self.guard = AccessGuard(settings.allowed_referers, debug_bypass=settings.debug_bypass_enabled)
        self.backfill = BackfillWriter(durable_store, edge_cache)
        self.engine = TieredLookupEngine(
            routes=RouteTable(),
            durable_store=durable_store,
            edge_cache=edge_cache,
            origin=OriginClient(http_client, scheme=settings.origin_scheme),
            backfill=self.backfill,
            purge_handler=PurgeHandler(edge_cache),
            provenance=Provenance(
                platform_label=settings.platform_label,
                store_label=settings.store_label,
                edge_label=settings.edge_label,
            ),
        )
        self.logger = structlog.get_logger(SERVICE_NAME).bind(
            durable_backend=durable_store.status().get("backend"),
            edge_backend=edge_cache.status().get("backend"),
        )

    async def shutdown(self) -> None:
        await self.backfill.drain(timeout=self.settings.backfill_drain_seconds)
        await self.http.aclose()
        await self.edge_cache.close()


def get_state(request: Request) -> ImageProxyState:
    return request.app.state.proxy_state  # type: ignore[attr-defined]


def to_proxy_request(request: Request) -> ProxyRequest:
    # Keep the path as the client encoded it so keys and origin URLs match what was requested.
    raw_path = request.scope.get("raw_path")
    path = raw_path.split(b"?", 1)[0].decode("latin-1") if raw_path else request.url.path
    query = request.url.query
    return ProxyRequest(
        url=f"{request.url.scheme}://{request.url.netloc}{join_path_query(path, query)}",
        path=path,
        query=query,
        referer=request.headers.get("referer"),
        accept=request.headers.get("accept"),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        await app.state.proxy_state.shutdown()


def create_app(
    settings: Optional[ImageProxySettings] = None,
    *,
    durable_store: Optional[DurableStore] = None,
    edge_cache: Optional[EdgeCache] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or ImageProxySettings()
    configure_observability(SERVICE_NAME, settings)
    state = ImageProxyState(
        settings,
        durable_store=durable_store or build_durable_store(settings),
        edge_cache=edge_cache or build_edge_cache(settings),
        http_client=http_client or build_http_client(settings.origin_timeout_seconds),
    )
    app = FastAPI(lifespan=lifespan)
    instrument_fastapi_app(app)
    app.state.proxy_state = state

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        state = request.app.state.proxy_state  # type: ignore[attr-defined]
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001 - outermost error boundary
            duration = time.perf_counter() - start
            state.logger.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            return PlainTextResponse(
                f"Error: {exc}",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                headers={"Cache-Control": NO_STORE},
            )

        duration = time.perf_counter() - start
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "served_by": response.headers.get("x-served-by"),
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            state.logger.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            state.logger.warning("http_request", **log_kwargs)
        else:
            state.logger.info("http_request", **log_kwargs)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def plain_text_http_error(_request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)

    @app.get(HEALTH_PATH, status_code=status.HTTP_200_OK)
    async def health_check(state: ImageProxyState = Depends(get_state)) -> dict:
        """Health check for readiness/liveness probes."""
        health = {"status": "healthy", "checks": {}}
        try:
            health["checks"]["durable_store"] = state.durable_store.status()
            health["checks"]["edge_cache"] = state.edge_cache.status()
        except Exception as exc:  # noqa: BLE001
            health["checks"]["error"] = str(exc)
            health["status"] = "unhealthy"
        if health["status"] != "healthy":
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=health)
        return health

    @app.get("/{image_path:path}")
    async def serve_image(request: Request, state: ImageProxyState = Depends(get_state)) -> Response:
        proxy_request = to_proxy_request(request)
        flags = parse_control_flags(proxy_request.query)
        if not flags.purge:
            decision = state.guard.authorize(proxy_request.query, proxy_request.referer, debug=flags.debug)
            if not decision.allowed:
                state.logger.info(
                    "access_denied",
                    path=proxy_request.path,
                    reason=decision.reason,
                    referer_host=decision.host,
                )
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=decision.message,
                    headers={"Cache-Control": NO_STORE},
                )
        result = await state.engine.resolve(proxy_request, flags)
        return result.to_response()

    return app
