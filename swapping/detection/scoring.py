"""Cycle metrics and the priority heuristic used to rank candidate cycles."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from ..config.policy import ScoringWeights
from ..geography import (
    avg_cycle_distance,
    cycle_cost,
    cycle_geographic_score,
    is_same_county,
    is_same_zone,
    max_cycle_distance,
    primary_county,
)
from ..models import DetectedCycle, ListingNode

DEFAULT_WEIGHTS = ScoringWeights()


def proximity_bonus(max_distance_km: float, weights: ScoringWeights = DEFAULT_WEIGHTS) -> int:
    if max_distance_km < weights.near_km:
        return weights.near_bonus
    if max_distance_km < weights.mid_km:
        return weights.mid_bonus
    return weights.far_bonus


def priority_score(
    geographic_score: float,
    avg_reliability: float,
    avg_cost_per_participant: float,
    max_distance_km: float,
    same_county: bool,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> float:
    """Weighted sum on a 0-100 scale; cost is inverted so cheaper ranks higher."""
    county_bonus = weights.same_county_bonus if same_county else weights.mixed_county_bonus
    score = (
        weights.geographic * geographic_score
        + weights.reliability * avg_reliability
        + weights.cost * (100 - avg_cost_per_participant)
        + weights.proximity * proximity_bonus(max_distance_km, weights)
        + weights.same_county * county_bonus
    )
    return round(score, 2)


def score_cycle(nodes: Sequence[ListingNode], weights: ScoringWeights = DEFAULT_WEIGHTS) -> DetectedCycle | None:
    """Compute every metric for a ring of nodes; None for rings under 2."""
    if len(nodes) < 2:
        return None

    locations = [n.location for n in nodes]
    school_ids = [n.school.id for n in nodes]

    geographic = cycle_geographic_score(locations, school_ids)
    total_cost, avg_cost = cycle_cost(locations, school_ids)
    max_km = max_cycle_distance(locations)
    same_county = is_same_county(locations)
    avg_reliability = sum(n.reliability_score for n in nodes) / len(nodes)

    return DetectedCycle(
        nodes=list(nodes),
        priority_score=priority_score(geographic, avg_reliability, avg_cost, max_km, same_county, weights),
        geographic_score=geographic,
        total_cost=total_cost,
        avg_cost_per_participant=avg_cost,
        is_same_county=same_county,
        is_same_zone=is_same_zone(locations),
        max_distance_km=round(max_km, 2),
        avg_distance_km=avg_cycle_distance(locations),
        primary_county=primary_county(locations),
        avg_reliability_score=round(avg_reliability, 2),
    )


def canonical_key(cycle: DetectedCycle) -> str:
    """Participant set as a rotation-independent key."""
    return "-".join(sorted(cycle.user_ids))


def remove_duplicate_cycles(cycles: Iterable[DetectedCycle]) -> list[DetectedCycle]:
    """Keep the first cycle per participant set; callers sort by priority first."""
    seen: set[str] = set()
    unique: list[DetectedCycle] = []
    for cycle in cycles:
        key = canonical_key(cycle)
        if key not in seen:
            seen.add(key)
            unique.append(cycle)
    return unique
