"""
ConfigLoader - typed access to the engine's tunables.

Values come from, in order: a ``CONFIG_<KEY>`` environment variable, a
row in the PocketBase ``config`` collection, then the schema default.
Stored overrides are validated; an invalid override is an error, not a
silent fallback.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, cast

from pocketbase import PocketBase

from .errors import ConfigError, DatabaseUnavailableError, UnknownKeyError, ValidationError
from .schema import CONFIG_SCHEMA

logger = logging.getLogger(__name__)


class ConfigLoader:
    """
    Singleton configuration loader with a TTL cache.

    Usage:
        ConfigLoader.initialize(pb_client=pb)
        loader = ConfigLoader.get_instance()
        weight = loader.get_float("matching.weight.geographic")

        # Test substitution
        with ConfigLoader.use(ConfigLoader(pb_client=mock_pb)):
            ...
    """

    _instance: ConfigLoader | None = None
    _initialized: bool = False

    def __init__(self, pb_client: PocketBase | Any | None = None, cache_ttl_seconds: int = 300):
        """
        Args:
            pb_client: PocketBase client used to read overrides. With None,
                only environment overrides and defaults are used.
            cache_ttl_seconds: Cache TTL in seconds (default 5 minutes).
        """
        self._pb = pb_client
        self._cache_ttl = cache_ttl_seconds
        self._cache: dict[str, tuple[Any, float]] = {}

    @classmethod
    def initialize(cls, pb_client: PocketBase | Any | None = None, validate_on_init: bool = True) -> ConfigLoader:
        """
        Initialize the singleton. Called once at application startup.

        Raises:
            ConfigError: If a stored override fails validation
            DatabaseUnavailableError: If the override store cannot be read
        """
        if cls._initialized and cls._instance is not None:
            logger.debug("ConfigLoader already initialized, returning existing instance")
            return cls._instance

        instance = cls(pb_client=pb_client)
        if validate_on_init:
            instance.validate_overrides()

        cls._instance = instance
        cls._initialized = True
        logger.info("ConfigLoader initialized successfully")
        return instance

    @classmethod
    def get_instance(cls) -> ConfigLoader:
        """Return the singleton, creating a defaults-only loader if needed."""
        if not cls._initialized or cls._instance is None:
            logger.debug("ConfigLoader auto-initializing without an override store")
            return cls.initialize(validate_on_init=False)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset singleton state. For testing only."""
        cls._instance = None
        cls._initialized = False

    @classmethod
    @contextmanager
    def use(cls, loader: ConfigLoader) -> Iterator[None]:
        """Temporarily replace the singleton with ``loader``."""
        original = cls._instance
        original_initialized = cls._initialized
        cls._instance = loader
        cls._initialized = True
        try:
            yield
        finally:
            cls._instance = original
            cls._initialized = original_initialized

    def validate_overrides(self) -> None:
        """
        Check every stored override against the schema.

        Raises:
            DatabaseUnavailableError: If the override store cannot be read
            ConfigError: If any override is invalid
        """
        invalid: list[str] = []
        for key, schema in CONFIG_SCHEMA.items():
            raw_value = self._query_database_raw(key)
            if raw_value is None:
                continue
            try:
                error = schema.validate(schema.convert(raw_value))
            except (ValueError, TypeError) as e:
                error = f"type conversion failed - {e}"
            if error:
                invalid.append(f"{key}: {error}")

        if invalid:
            raise ConfigError(f"Configuration validation failed. Invalid values ({len(invalid)}): {invalid}")
        logger.info(f"Validated overrides for {len(CONFIG_SCHEMA)} config keys")

    @staticmethod
    def _get_env_key(key: str) -> str:
        # matching.weight.geographic -> CONFIG_MATCHING_WEIGHT_GEOGRAPHIC
        return "CONFIG_" + key.upper().replace(".", "_")

    def get(self, key: str) -> Any:
        """
        Get a typed configuration value.

        Raises:
            UnknownKeyError: If key is not in schema
            ValidationError: If an override fails validation
        """
        schema = CONFIG_SCHEMA.get(key)
        if schema is None:
            raise UnknownKeyError(f"Unknown config key: '{key}'")

        env_key = self._get_env_key(key)
        env_value = os.environ.get(env_key)
        if env_value is not None:
            try:
                value = schema.convert(env_value)
            except (ValueError, TypeError) as e:
                raise ValidationError(f"Environment variable {env_key} has invalid type: {e}") from e
            error = schema.validate(value)
            if error:
                raise ValidationError(f"Environment variable {env_key}: {error}")
            return value

        if key in self._cache:
            value, timestamp = self._cache[key]
            if time.time() - timestamp < self._cache_ttl:
                return value

        raw_value = self._query_database_raw(key)
        if raw_value is None:
            value = schema.default
        else:
            try:
                value = schema.convert(raw_value)
            except (ValueError, TypeError) as e:
                raise ValidationError(f"Config key '{key}' has invalid type: {e}") from e
            error = schema.validate(value)
            if error:
                raise ValidationError(f"Config key '{key}': {error}")

        self._cache[key] = (value, time.time())
        return value

    def get_int(self, key: str) -> int:
        return cast(int, self.get(key))

    def get_float(self, key: str) -> float:
        return cast(float, self.get(key))

    def get_bool(self, key: str) -> bool:
        return cast(bool, self.get(key))

    def get_str(self, key: str) -> str:
        return cast(str, self.get(key))

    def _query_database_raw(self, key: str) -> Any | None:
        """
        Look up an override row for ``key``.

        ``matching.weight.geographic`` is stored as category "matching",
        subcategory "weight", config_key "geographic".

        Returns:
            The raw value, or None if no override row exists

        Raises:
            DatabaseUnavailableError: On any error other than "not found"
        """
        if self._pb is None:
            return None

        category, subcategory, config_key = key.split(".", 2)
        filter_str = (
            f'category = "{category}" && subcategory = "{subcategory}" && config_key = "{config_key}"'
        )
        try:
            result = self._pb.collection("config").get_list(query_params={"filter": filter_str, "perPage": 1})
        except Exception as e:
            raise DatabaseUnavailableError(f"Database error fetching config key '{key}': {e}") from e

        items = getattr(result, "items", None) or []
        if not items:
            return None
        return getattr(items[0], "value", None)

    def invalidate_cache(self, key: str | None = None) -> None:
        """Drop one cached key, or all of them."""
        if key is None:
            self._cache.clear()
        else:
            self._cache.pop(key, None)

    def health_check(self) -> dict[str, Any]:
        """Report whether the override store is reachable."""
        result: dict[str, Any] = {
            "status": "healthy",
            "database_connected": False,
            "cached_keys": len(self._cache),
            "issues": [],
        }
        if self._pb is None:
            result["issues"].append("No override store configured; using defaults")
            return result

        try:
            self._pb.collection("config").get_list(query_params={"perPage": 1})
            result["database_connected"] = True
        except Exception as e:
            result["status"] = "unhealthy"
            result["issues"].append(f"Database connection failed: {e}")
        return result
