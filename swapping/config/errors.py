"""Configuration error classes."""

from __future__ import annotations


class ConfigError(Exception):
    """Base exception for configuration errors."""


class ValidationError(ConfigError):
    """Raised when an override fails its schema rules."""


class DatabaseUnavailableError(ConfigError):
    """Raised when the override store cannot be reached during validation."""


class UnknownKeyError(ConfigError):
    """Raised for a key that is not registered in the schema."""
