from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from fastapi import HTTPException

from edgepix.image_proxy.backfill import BackfillWriter
from edgepix.image_proxy.durable_store import LocalDurableStore
from edgepix.image_proxy.edge_cache import InMemoryEdgeCache
from edgepix.image_proxy.engine import Provenance, TieredLookupEngine
from edgepix.image_proxy.keys import ControlFlags
from edgepix.image_proxy.models import ProxyRequest, ProxyResponse
from edgepix.image_proxy.origin import OriginClient
from edgepix.image_proxy.purge import PurgeHandler
from edgepix.image_proxy.routes import DEFAULT_ROUTES, RouteTable


@pytest.fixture
def origin_requests() -> list[httpx.Request]:
    return []


@pytest_asyncio.fixture
async def engine_parts(tmp_path, origin_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        origin_requests.append(request)
        return httpx.Response(200, headers={"content-type": "image/jpeg"}, content=b"jpeg")

    store = LocalDurableStore(tmp_path)
    cache = InMemoryEdgeCache(ttl_seconds=60)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backfill = BackfillWriter(store, cache)
    engine = TieredLookupEngine(
        routes=RouteTable(DEFAULT_ROUTES[:1]),
        durable_store=store,
        edge_cache=cache,
        origin=OriginClient(http_client, scheme="http"),
        backfill=backfill,
        purge_handler=PurgeHandler(cache),
        provenance=Provenance(platform_label="Edge Worker", store_label="R2", edge_label="CDN"),
    )
    yield engine, store, cache, backfill
    await backfill.drain()
    await http_client.aclose()


def _request(path: str, query: str = "") -> ProxyRequest:
    url = f"https://img.example{path}" + (f"?{query}" if query else "")
    return ProxyRequest(url=url, path=path, query=query)


@pytest.mark.asyncio
async def test_unmatched_path_is_not_supported(engine_parts, origin_requests):
    engine, *_ = engine_parts

    with pytest.raises(HTTPException) as exc:
        await engine.resolve(_request("/elsewhere/a.png"))

    assert exc.value.status_code == 404
    assert exc.value.detail == "Path not supported: /elsewhere/a.png"
    assert exc.value.headers == {"Cache-Control": "no-store"}
    assert origin_requests == []


@pytest.mark.asyncio
async def test_provenance_labels_are_configurable(engine_parts):
    engine, store, _cache, backfill = engine_parts

    first = await engine.resolve(_request("/avatar/a.png"))
    await backfill.drain()
    second = await engine.resolve(_request("/avatar/a.png"))
    await store.put("/avatar/b.png", b"b", "image/png")
    third = await engine.resolve(_request("/avatar/b.png"))

    assert first.served_by == "Edge Worker & Gravatar (first load)"
    assert second.served_by == "CDN & Gravatar"
    assert third.served_by == "R2 & Gravatar"


@pytest.mark.asyncio
async def test_origin_url_uses_configured_scheme_and_debug_is_stripped(engine_parts, origin_requests):
    engine, *_ = engine_parts

    await engine.resolve(_request("/avatar/a.png", "s=80&debug"), ControlFlags(debug=True))

    assert str(origin_requests[0].url) == "http://secure.gravatar.com/avatar/a.png?s=80"


@pytest.mark.asyncio
async def test_purge_flag_delegates_to_purge_handler(engine_parts, origin_requests):
    engine, _store, cache, _backfill = engine_parts
    await cache.put("https://img.example/elsewhere/a.png", ProxyResponse.build(200))

    result = await engine.resolve(_request("/elsewhere/a.png", "nocache"))

    assert result.status == 302
    assert result.header("location") == "https://img.example/elsewhere/a.png"
    assert await cache.match("https://img.example/elsewhere/a.png") is None
    assert origin_requests == []


@pytest.mark.asyncio
async def test_edge_hit_is_relabelled(engine_parts):
    engine, _store, cache, _backfill = engine_parts
    await cache.put(
        "https://img.example/avatar/a.png?s=80",
        ProxyResponse.build(200, {"content-type": "image/png", "x-served-by": "Edge Worker & Gravatar (first load)"}, b"x"),
    )

    result = await engine.resolve(_request("/avatar/a.png", "s=80"))

    assert result.served_by == "CDN & Gravatar"
    assert [name for name, _ in result.headers].count("x-served-by") == 1
