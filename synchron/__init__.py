"""User registry and operational state store behind the admin console."""

from __future__ import annotations

from typing import Any

from .config import Settings, load_settings
from .store import Store


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the admin API application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Settings",
    "Store",
    "create_app",
    "load_settings",
]
