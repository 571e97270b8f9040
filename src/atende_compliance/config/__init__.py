"""Configuration module for the compliance engine."""

from atende_compliance.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
