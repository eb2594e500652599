"""Typed bundles of tunables handed to the algorithms.

The detector and the state machine take these plain dataclasses so they
never touch the loader directly; the defaults are the reference values.
"""

from __future__ import annotations

from dataclasses import dataclass

from .loader import ConfigLoader


@dataclass(frozen=True)
class ScoringWeights:
    """Priority-score weights, thresholds and bonuses."""

    geographic: float = 0.35
    reliability: float = 0.25
    cost: float = 0.20
    proximity: float = 0.15
    same_county: float = 0.05
    near_km: float = 10.0
    mid_km: float = 50.0
    near_bonus: int = 100
    mid_bonus: int = 50
    far_bonus: int = 20
    same_county_bonus: int = 100
    mixed_county_bonus: int = 50
    default_reliability: float = 50.0

    @classmethod
    def from_config(cls, loader: ConfigLoader | None = None) -> ScoringWeights:
        loader = loader or ConfigLoader.get_instance()
        return cls(
            geographic=loader.get_float("matching.weight.geographic"),
            reliability=loader.get_float("matching.weight.reliability"),
            cost=loader.get_float("matching.weight.cost"),
            proximity=loader.get_float("matching.weight.proximity"),
            same_county=loader.get_float("matching.weight.same_county"),
            near_km=loader.get_float("matching.proximity.near_km"),
            mid_km=loader.get_float("matching.proximity.mid_km"),
            near_bonus=loader.get_int("matching.proximity.near_bonus"),
            mid_bonus=loader.get_int("matching.proximity.mid_bonus"),
            far_bonus=loader.get_int("matching.proximity.far_bonus"),
            same_county_bonus=loader.get_int("matching.county.same_bonus"),
            mixed_county_bonus=loader.get_int("matching.county.mixed_bonus"),
            default_reliability=loader.get_float("reliability.default.score"),
        )


@dataclass(frozen=True)
class LifecyclePolicy:
    """Deadlines plus reliability deltas and penalty points per outcome."""

    confirmation_window_hours: int = 48
    completion_window_days: int = 7
    default_reliability: float = 50.0
    completed_delta: int = 2
    cancelled_delta: int = -5
    timeout_delta: int = -10
    condition_mismatch_delta: int = -3
    cancelled_penalty: int = 5
    timeout_penalty: int = 10
    condition_mismatch_penalty: int = 3

    @classmethod
    def from_config(cls, loader: ConfigLoader | None = None) -> LifecyclePolicy:
        loader = loader or ConfigLoader.get_instance()
        return cls(
            confirmation_window_hours=loader.get_int("lifecycle.confirmation.window_hours"),
            completion_window_days=loader.get_int("lifecycle.completion.window_days"),
            default_reliability=loader.get_float("reliability.default.score"),
            completed_delta=loader.get_int("reliability.delta.completed"),
            cancelled_delta=loader.get_int("reliability.delta.cancelled"),
            timeout_delta=loader.get_int("reliability.delta.timeout"),
            condition_mismatch_delta=loader.get_int("reliability.delta.condition_mismatch"),
            cancelled_penalty=loader.get_int("reliability.penalty.cancelled"),
            timeout_penalty=loader.get_int("reliability.penalty.timeout"),
            condition_mismatch_penalty=loader.get_int("reliability.penalty.condition_mismatch"),
        )
