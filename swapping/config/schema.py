"""Configuration schema registry.

Every tunable of the matching heuristic and the cycle lifecycle is
registered here with its reference default. Unknown keys are rejected.
"""

from __future__ import annotations

from typing import Any

from .types import ConfigKey, ConfigType


def _key(key: str, config_type: ConfigType, default: Any, description: str, **rules: Any) -> ConfigKey:
    return ConfigKey(key=key, config_type=config_type, default=default, description=description, **rules)


CONFIG_SCHEMA: dict[str, ConfigKey] = {
    item.key: item
    for item in (
        # =====================================================================
        # PRIORITY SCORE WEIGHTS
        # Sum to 1.0; each term is on a 0-100 scale
        # =====================================================================
        _key(
            "matching.weight.geographic",
            ConfigType.FLOAT,
            0.35,
            "Weight of the pairwise hierarchy-priority average",
            min_value=0.0,
            max_value=1.0,
        ),
        _key(
            "matching.weight.reliability",
            ConfigType.FLOAT,
            0.25,
            "Weight of the participants' average reliability score",
            min_value=0.0,
            max_value=1.0,
        ),
        _key(
            "matching.weight.cost",
            ConfigType.FLOAT,
            0.20,
            "Weight of (100 - average logistics cost per participant)",
            min_value=0.0,
            max_value=1.0,
        ),
        _key(
            "matching.weight.proximity",
            ConfigType.FLOAT,
            0.15,
            "Weight of the max-distance proximity bonus",
            min_value=0.0,
            max_value=1.0,
        ),
        _key(
            "matching.weight.same_county",
            ConfigType.FLOAT,
            0.05,
            "Weight of the same-county bonus",
            min_value=0.0,
            max_value=1.0,
        ),
        # =====================================================================
        # PROXIMITY BONUS
        # =====================================================================
        _key(
            "matching.proximity.near_km",
            ConfigType.FLOAT,
            10.0,
            "Max ring distance below which the near bonus applies",
            min_value=0.0,
        ),
        _key(
            "matching.proximity.mid_km",
            ConfigType.FLOAT,
            50.0,
            "Max ring distance below which the mid bonus applies",
            min_value=0.0,
        ),
        _key("matching.proximity.near_bonus", ConfigType.INT, 100, "Bonus for near cycles", min_value=0, max_value=100),
        _key("matching.proximity.mid_bonus", ConfigType.INT, 50, "Bonus for mid cycles", min_value=0, max_value=100),
        _key("matching.proximity.far_bonus", ConfigType.INT, 20, "Bonus for far cycles", min_value=0, max_value=100),
        # =====================================================================
        # SAME-COUNTY BONUS
        # =====================================================================
        _key("matching.county.same_bonus", ConfigType.INT, 100, "Bonus when all share a county", min_value=0),
        _key("matching.county.mixed_bonus", ConfigType.INT, 50, "Bonus when counties differ", min_value=0),
        # =====================================================================
        # RELIABILITY
        # =====================================================================
        _key(
            "reliability.default.score",
            ConfigType.FLOAT,
            50.0,
            "Score assumed for users without a stored record",
            min_value=0.0,
            max_value=100.0,
        ),
        _key("reliability.delta.completed", ConfigType.INT, 2, "Score change on completion", min_value=0),
        _key("reliability.delta.cancelled", ConfigType.INT, -5, "Score change on cancellation", max_value=0),
        _key("reliability.delta.timeout", ConfigType.INT, -10, "Score change on confirmation timeout", max_value=0),
        _key(
            "reliability.delta.condition_mismatch",
            ConfigType.INT,
            -3,
            "Score change for the giver of a misdescribed book",
            max_value=0,
        ),
        _key("reliability.penalty.cancelled", ConfigType.INT, 5, "Penalty points on cancellation", min_value=0),
        _key("reliability.penalty.timeout", ConfigType.INT, 10, "Penalty points on timeout", min_value=0),
        _key(
            "reliability.penalty.condition_mismatch",
            ConfigType.INT,
            3,
            "Penalty points for a condition mismatch",
            min_value=0,
        ),
        # =====================================================================
        # LIFECYCLE DEADLINES
        # =====================================================================
        _key(
            "lifecycle.confirmation.window_hours",
            ConfigType.INT,
            48,
            "Hours every participant has to confirm",
            min_value=1,
        ),
        _key(
            "lifecycle.completion.window_days",
            ConfigType.INT,
            7,
            "Days from creation until the exchange should be finished",
            min_value=1,
        ),
    )
}


def get_schema_key(key: str) -> ConfigKey | None:
    """Return the schema entry for ``key`` or None if unknown."""
    return CONFIG_SCHEMA.get(key)


def validate_key(key: str, value: Any) -> str | None:
    """
    Validate a value against its schema.

    Returns:
        None if valid, error message if invalid
    """
    schema = CONFIG_SCHEMA.get(key)
    if schema is None:
        return f"Unknown config key: {key}"
    return schema.validate(value)
