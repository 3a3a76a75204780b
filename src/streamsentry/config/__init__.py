"""Configuration management module for StreamSentry."""

from streamsentry.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
