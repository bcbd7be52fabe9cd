from __future__ import annotations

from hypothesis import given, strategies as st

from edgepix.common.settings import DEFAULT_ALLOWED_REFERERS
from edgepix.image_proxy.access import (
    REFERER_INVALID,
    REFERER_MISSING,
    REFERER_NOT_ALLOWED,
    AccessGuard,
    referer_host,
)


GUARD = AccessGuard(DEFAULT_ALLOWED_REFERERS)

hostnames = st.from_regex(r"[a-z][a-z0-9-]{0,20}(\.[a-z]{2,6}){1,2}", fullmatch=True)


def test_requests_without_query_are_always_allowed() -> None:
    assert GUARD.authorize("", None).allowed
    assert GUARD.authorize("", "https://evil.example/").allowed


def test_missing_referer_is_denied() -> None:
    decision = GUARD.authorize("w=50", None)
    assert not decision.allowed
    assert decision.reason == REFERER_MISSING


def test_empty_referer_counts_as_missing() -> None:
    assert GUARD.authorize("w=50", "").reason == REFERER_MISSING


def test_unparseable_referer_is_denied() -> None:
    for value in ("not a url", "/relative/path", "http://[::1"):
        decision = GUARD.authorize("w=50", value)
        assert not decision.allowed
        assert decision.reason == REFERER_INVALID


def test_foreign_referer_is_denied_with_host() -> None:
    decision = GUARD.authorize("w=50", "https://evil.example/gallery")
    assert decision.reason == REFERER_NOT_ALLOWED
    assert decision.host == "evil.example"
    assert decision.message == "Access denied: Requests from evil.example are not allowed."


def test_allowed_referer_host_is_case_insensitive() -> None:
    assert GUARD.authorize("w=50", "https://Comment.Bibica.NET/post/1").allowed


def test_debug_bypasses_check_when_enabled() -> None:
    assert GUARD.authorize("w=50&debug", None, debug=True).allowed


def test_debug_bypass_can_be_disabled() -> None:
    guard = AccessGuard(DEFAULT_ALLOWED_REFERERS, debug_bypass=False)
    decision = guard.authorize("w=50&debug", None, debug=True)
    assert decision.reason == REFERER_MISSING


def test_referer_host_parses_absolute_urls_only() -> None:
    assert referer_host("https://bibica.net/") == "bibica.net"
    assert referer_host("bibica.net") is None


@given(st.sampled_from(DEFAULT_ALLOWED_REFERERS), st.text(alphabet="abcdefghij/", max_size=20))
def test_allow_listed_hosts_are_allowed(host: str, path: str) -> None:
    assert GUARD.authorize("w=50", f"https://{host}/{path}").allowed


@given(hostnames.filter(lambda host: host not in DEFAULT_ALLOWED_REFERERS))
def test_other_hosts_are_denied(host: str) -> None:
    decision = GUARD.authorize("w=50", f"https://{host}/")
    assert not decision.allowed
    assert decision.reason == REFERER_NOT_ALLOWED
