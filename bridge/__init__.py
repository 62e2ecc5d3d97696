"""Jellyfin media bridge: managed library reconciliation and play-count sorting.

``app`` and ``create_app`` are resolved on first access so importing a service
module does not build the FastAPI application or read the environment twice.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

_EXPORTS = {
    "app": "bridge.main",
    "create_app": "bridge.main",
    "get_settings": "bridge.config",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module 'bridge' has no attribute {name}")
    return getattr(import_module(module_name), name)
