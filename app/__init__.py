"""CineVault discovery and playback service package."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "1.0.0"

_LAZY_EXPORTS = {
    "app": "app.main",
    "create_app": "app.main",
    "DiscoveryService": "app.services.discovery",
    "PlaybackManager": "app.services.playback",
}

__all__ = ["__version__", *_LAZY_EXPORTS]


def __getattr__(name: str) -> Any:
    # Importing app.main builds the settings and the FastAPI app, so defer it.
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module 'app' has no attribute {name}")
    return getattr(import_module(module_name), name)
