"""
Tunables for the matching heuristic and the cycle lifecycle.

Usage:
    from swapping.config import ConfigLoader, ScoringWeights

    ConfigLoader.initialize(pb_client=pb)
    weights = ScoringWeights.from_config()
"""

from __future__ import annotations

from .errors import ConfigError, DatabaseUnavailableError, UnknownKeyError, ValidationError
from .loader import ConfigLoader
from .policy import LifecyclePolicy, ScoringWeights
from .schema import CONFIG_SCHEMA, get_schema_key, validate_key
from .types import ConfigKey, ConfigType

__all__ = [
    # Main loader
    "ConfigLoader",
    # Typed bundles
    "LifecyclePolicy",
    "ScoringWeights",
    # Error classes
    "ConfigError",
    "ValidationError",
    "DatabaseUnavailableError",
    "UnknownKeyError",
    # Schema
    "CONFIG_SCHEMA",
    "ConfigKey",
    "ConfigType",
    "get_schema_key",
    "validate_key",
]
