"""Hotlink protection based on the Referer header."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit

import structlog


LOGGER = structlog.get_logger("edgepix.image_proxy.access")

REFERER_MISSING = "referer missing"
REFERER_INVALID = "referer invalid"
REFERER_NOT_ALLOWED = "referer not allowed"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[str] = None
    host: Optional[str] = None

    @property
    def message(self) -> str:
        if self.allowed:
            return ""
        if self.reason == REFERER_MISSING:
            return "Access denied: Referer header is missing."
        if self.reason == REFERER_INVALID:
            return "Access denied: Invalid Referer header."
        return f"Access denied: Requests from {self.host} are not allowed."


ALLOW = AccessDecision(allowed=True)


def referer_host(referer: str) -> Optional[str]:
    """Hostname of an absolute URL, or None when it cannot be parsed as one."""
    try:
        parts = urlsplit(referer.strip())
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    return host


class AccessGuard:
    """Requires an allow-listed Referer on requests that carry a query string.

    Query-less requests are always served. Debug requests skip the check
    entirely while ``debug_bypass`` is on, which means any caller can bypass
    hotlink protection by adding ``debug``; every such bypass is logged.
    """

    def __init__(self, allowed_hosts: Iterable[str], debug_bypass: bool = True) -> None:
        self._allowed = frozenset(host.lower() for host in allowed_hosts)
        self._debug_bypass = debug_bypass

    def authorize(self, query: str, referer: Optional[str], debug: bool = False) -> AccessDecision:
        if not query:
            return ALLOW
        if debug and self._debug_bypass:
            LOGGER.warning("referer_check_bypassed", referer=referer)
            return ALLOW
        if not referer:
            return AccessDecision(allowed=False, reason=REFERER_MISSING)
        host = referer_host(referer)
        if host is None:
            return AccessDecision(allowed=False, reason=REFERER_INVALID)
        if host not in self._allowed:
            return AccessDecision(allowed=False, reason=REFERER_NOT_ALLOWED, host=host)
        return ALLOW
