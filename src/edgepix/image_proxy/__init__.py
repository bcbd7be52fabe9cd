"""Image proxy service and its cache tiers."""

from .app import create_app

__all__ = ["create_app"]
