"""Failures raised by the cache tiers.

Tier errors never reach clients: readers degrade to the next tier and the
backfill writer logs and drops them.
"""

from __future__ import annotations


class TierError(Exception):
    """A cache tier could not complete an operation."""


class DurableStoreError(TierError):
    pass


class EdgeCacheError(TierError):
    pass
