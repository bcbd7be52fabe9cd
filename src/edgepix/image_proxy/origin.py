"""Upstream image origin client."""

from __future__ import annotations

from typing import Optional

import httpx
import structlog

from .models import ProxyResponse
from .routes import RouteRule


LOGGER = structlog.get_logger("edgepix.image_proxy.origin")

DEFAULT_ACCEPT = "*/*"


class OriginClient:
    def __init__(self, http_client: httpx.AsyncClient, scheme: str = "https") -> None:
        self._http = http_client
        self._scheme = scheme

    def build_url(self, rule: RouteRule, path: str, query: str) -> str:
        url = f"{self._scheme}://{rule.target_host}{rule.origin_path(path)}"
        return f"{url}?{query}" if query else url

    async def fetch(self, url: str, accept: Optional[str]) -> ProxyResponse:
        """GET ``url`` and read the body exactly once into memory."""
        response = await self._http.get(url, headers={"Accept": accept or DEFAULT_ACCEPT})
        if response.is_error:
            LOGGER.warning("origin_fetch_failed", url=url, status=response.status_code)
        return ProxyResponse.build(response.status_code, response.headers.multi_items(), response.content)


def build_http_client(timeout_seconds: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), follow_redirects=True)
