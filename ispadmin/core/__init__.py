"""Configuration and logging for the admin console."""

from .config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
