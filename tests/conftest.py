from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio

from edgepix.common.settings import ImageProxySettings
from edgepix.image_proxy.app import create_app
from edgepix.image_proxy.durable_store import LocalDurableStore
from edgepix.image_proxy.edge_cache import InMemoryEdgeCache


BASE_URL = "http://testserver"
ALLOWED_REFERER = "https://bibica.net/"


@dataclass
class FakeOrigin:
    """Records upstream requests and answers with canned responses keyed by URL path."""

    responses: dict[str, httpx.Response] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)
    error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        canned = self.responses.get(request.url.path)
        if canned is not None:
            return canned
        return httpx.Response(200, headers={"content-type": "image/png"}, content=b"origin-bytes")

    @property
    def urls(self) -> list[str]:
        return [str(request.url) for request in self.requests]


@pytest.fixture
def settings(tmp_path) -> ImageProxySettings:
    return ImageProxySettings(storage_path=tmp_path / "store", redis_url=None, log_level="WARNING")


@pytest.fixture
def fake_origin() -> FakeOrigin:
    return FakeOrigin()


@pytest.fixture
def durable_store(settings) -> LocalDurableStore:
    return LocalDurableStore(settings.storage_path)


@pytest.fixture
def edge_cache() -> InMemoryEdgeCache:
    return InMemoryEdgeCache(ttl_seconds=60)


@pytest_asyncio.fixture
async def proxy(settings, fake_origin, durable_store, edge_cache):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_origin.handler))
    app = create_app(settings, durable_store=durable_store, edge_cache=edge_cache, http_client=http_client)
    state = app.state.proxy_state
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL) as client:
        yield SimpleNamespace(
            app=app,
            client=client,
            state=state,
            origin=fake_origin,
            durable=durable_store,
            edge=edge_cache,
        )
    await state.shutdown()
