"""Core module for configuration and utilities."""

from vod_pipeline.core.config import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
