"""Configuration package."""

from rowguard.config.settings import Settings, settings

__all__ = [
    "Settings",
    "settings",
]
