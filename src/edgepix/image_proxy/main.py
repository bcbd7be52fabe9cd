"""Uvicorn entrypoint for the image proxy."""

from __future__ import annotations

from .app import create_app

app = create_app()
