"""Static mapping from request path prefixes to image origins."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional


PathTransform = Callable[[str, str], str]


def strip_prefix_under(origin_root: str) -> PathTransform:
    """Drop the matched prefix and mount the remainder below ``origin_root``."""

    def _transform(path: str, prefix: str) -> str:
        return origin_root + path[len(prefix):]

    return _transform


def mount_under(origin_root: str) -> PathTransform:
    """Keep the full request path and mount it below ``origin_root``."""

    def _transform(path: str, _prefix: str) -> str:
        return origin_root + path

    return _transform


@dataclass(frozen=True)
class RouteRule:
    prefix: str
    target_host: str
    path_transform: PathTransform
    service_label: str

    def matches(self, path: str) -> bool:
        return path.startswith(self.prefix)

    def origin_path(self, path: str) -> str:
        return self.path_transform(path, self.prefix)


# Evaluated in order; the catch-all must stay last.
DEFAULT_ROUTES: tuple[RouteRule, ...] = (
    RouteRule(
        prefix="/avatar",
        target_host="secure.gravatar.com",
        path_transform=strip_prefix_under("/avatar"),
        service_label="Gravatar",
    ),
    RouteRule(
        prefix="/comment",
        target_host="i0.wp.com",
        path_transform=strip_prefix_under("/comment.bibica.net/static/images"),
        service_label="Artalk & Jetpack",
    ),
    RouteRule(
        prefix="/",
        target_host="i0.wp.com",
        path_transform=mount_under("/bibica.net/wp-content/uploads"),
        service_label="Jetpack",
    ),
)


class RouteTable:
    """First-match lookup over an immutable, ordered rule set."""

    def __init__(self, rules: tuple[RouteRule, ...] = DEFAULT_ROUTES) -> None:
        self._rules = tuple(rules)

    def match(self, path: str) -> Optional[RouteRule]:
        for rule in self._rules:
            if rule.matches(path):
                return rule
        return None
