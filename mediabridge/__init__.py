"""Distribution-named entry point for the media bridge.

The service code lives in :mod:`bridge`; this package re-exports the ASGI app
so ``uvicorn mediabridge:app`` works alongside ``uvicorn bridge.main:app``.
"""

from __future__ import annotations

from bridge.main import app, create_app

__all__ = ["app", "create_app"]
