"""Configuration management for the termbridge host.

Loads and validates YAML-based configuration with Pydantic models.
"""

from termbridge.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
