"""Configuration type definitions.

A tunable is a typed key with a reference default and range rules.
Stored overrides are validated against the same rules.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ConfigType(Enum):
    """Supported configuration value types."""

    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    STRING = "string"


@dataclass(frozen=True)
class ConfigKey:
    """
    Definition of a tunable.

    Attributes:
        key: Dot-notation key (e.g., "matching.weight.geographic")
        config_type: Expected type of the value
        default: Reference value used when no override is stored
        description: Human-readable description
        min_value: Minimum allowed value (numeric types)
        max_value: Maximum allowed value (numeric types)
    """

    key: str
    config_type: ConfigType
    default: Any
    description: str = ""
    min_value: float | None = None
    max_value: float | None = None

    def convert(self, raw: Any) -> Any:
        """Coerce a raw stored or env value to this key's type."""
        if self.config_type == ConfigType.INT:
            return int(raw)
        if self.config_type == ConfigType.FLOAT:
            return float(raw)
        if self.config_type == ConfigType.BOOL:
            if isinstance(raw, str):
                return raw.strip().lower() in ("true", "1", "yes", "on")
            return bool(raw)
        return str(raw)

    def validate(self, value: Any) -> str | None:
        """Return None if valid, else an error message."""
        if self.config_type in (ConfigType.INT, ConfigType.FLOAT):
            if self.min_value is not None and value < self.min_value:
                return f"Value {value} below minimum {self.min_value}"
            if self.max_value is not None and value > self.max_value:
                return f"Value {value} above maximum {self.max_value}"
        return None
