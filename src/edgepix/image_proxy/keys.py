"""Cache key derivation and control-parameter parsing.

Control parameters change how a single request is served but must never
fragment either cache tier. Everything here works on the raw query string so
the remaining parameters keep their original spelling and order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
from urllib.parse import urlsplit, urlunsplit

DEBUG_PARAM = "debug"
FORCE_PARAM = "force"
PURGE_PARAM = "nocache"

CONTROL_PARAMS = frozenset({DEBUG_PARAM, FORCE_PARAM, PURGE_PARAM})


@dataclass(frozen=True)
class ControlFlags:
    debug: bool = False
    force: bool = False
    purge: bool = False


def _param_name(segment: str) -> str:
    return segment.split("=", 1)[0]


def _segments(query: str) -> list[str]:
    query = query[1:] if query.startswith("?") else query
    return [segment for segment in query.split("&") if segment]


def parse_control_flags(query: str) -> ControlFlags:
    names = {_param_name(segment) for segment in _segments(query)}
    return ControlFlags(
        debug=DEBUG_PARAM in names,
        force=FORCE_PARAM in names,
        purge=PURGE_PARAM in names,
    )


def strip_params(query: str, names: Iterable[str]) -> str:
    """Return ``query`` without the named parameters (no leading ``?``)."""
    excluded = frozenset(names)
    return "&".join(segment for segment in _segments(query) if _param_name(segment) not in excluded)


def join_path_query(path: str, query: str) -> str:
    return f"{path}?{query}" if query else path


def normalize(path: str, query: str) -> str:
    """Canonical storage key: path plus the query with every control parameter removed."""
    return join_path_query(path, strip_params(query, CONTROL_PARAMS))


def clean_url(url: str, names: Iterable[str] = (PURGE_PARAM,)) -> str:
    parts = urlsplit(url)
    return urlunsplit(parts._replace(query=strip_params(parts.query, names), fragment=""))


def edge_identity(url: str) -> str:
    """Edge cache identity for a request URL; shared by every control-parameter variant."""
    return clean_url(url, CONTROL_PARAMS)
