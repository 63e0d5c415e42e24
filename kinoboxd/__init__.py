"""Convenience package exposing the KinoBoxd FastAPI app."""

from __future__ import annotations

from app import app, create_app

__all__ = ["app", "create_app"]
