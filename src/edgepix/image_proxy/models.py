"""Value types passed between the cache tiers."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Optional

from fastapi import Response


DEFAULT_CONTENT_TYPE = "image/webp"
LONG_LIVED_CACHE_CONTROL = "public, max-age=31536000"
NO_STORE = "no-store"
PROVENANCE_HEADER = "x-served-by"

# Dropped from every upstream response before it is returned or cached.
STRIPPED_HEADERS = frozenset(
    {
        "connection",
        "content-encoding",
        "content-length",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "set-cookie",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


def _normalize_headers(headers: Iterable[tuple[str, str]]) -> tuple[tuple[str, str], ...]:
    return tuple((name.lower(), value) for name, value in headers if name.lower() not in STRIPPED_HEADERS)


@dataclass(frozen=True)
class StoredObject:
    body: bytes
    content_type: Optional[str] = None


@dataclass(frozen=True)
class ProxyResponse:
    """An immutable response; header names are stored lower-cased."""

    status: int
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""

    @classmethod
    def build(cls, status: int, headers: Mapping[str, str] | Iterable[tuple[str, str]] = (), body: bytes = b"") -> "ProxyResponse":
        items = headers.items() if isinstance(headers, Mapping) else headers
        return cls(status=status, headers=_normalize_headers(items), body=bytes(body))

    def header(self, name: str) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers:
            if key == name:
                return value
        return None

    def with_headers(self, **overrides: str) -> "ProxyResponse":
        """Copy with headers replaced; keyword names use ``_`` for ``-``."""
        updates = {key.replace("_", "-").lower(): value for key, value in overrides.items()}
        kept = [(key, value) for key, value in self.headers if key not in updates]
        return replace(self, headers=tuple(kept) + tuple(updates.items()))

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def served_by(self) -> Optional[str]:
        return self.header(PROVENANCE_HEADER)

    def to_response(self) -> Response:
        response = Response(content=self.body, status_code=self.status)
        for key, value in self.headers:
            response.headers.append(key, value)
        return response


@dataclass(frozen=True)
class ProxyRequest:
    """The parts of an inbound request the tiers care about."""

    url: str
    path: str
    query: str = ""
    referer: Optional[str] = None
    accept: Optional[str] = None
