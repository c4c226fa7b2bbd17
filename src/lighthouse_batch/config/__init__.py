"""Configuration package for lighthouse-batch.

Re-exports the settings symbols so callers can write::

    from lighthouse_batch.config import get_settings
"""

from __future__ import annotations

from lighthouse_batch.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
