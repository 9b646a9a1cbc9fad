"""CineVault distribution package; the service code lives in ``app``."""

from __future__ import annotations

from app import __version__

__all__ = ["__version__"]
