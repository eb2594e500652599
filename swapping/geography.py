"""Geographic helpers for matching and logistics.

Pure functions over ``Location``: great-circle distance, proximity by
administrative hierarchy, tiered logistics cost in KES, book/school-level
compatibility and the cycle-level aggregates used by scoring.

Distances that cannot be computed (missing coordinates) are returned as
``None``; aggregates skip them.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Sequence
from itertools import combinations

from .models import Location

EARTH_RADIUS_KM = 6371.0

# Hierarchy tiers, strongest first. Each tier needs both values present.
SAME_SCHOOL_PRIORITY = 100
HIERARCHY_TIERS: tuple[tuple[str, int], ...] = (
    ("ward", 90),
    ("zone", 80),
    ("sub_county", 70),
    ("district", 60),
    ("county", 50),
)
FALLBACK_PRIORITY = 20

# (max km inclusive, KES)
DISTANCE_COST_TIERS: tuple[tuple[float, int], ...] = (
    (5.0, 50),
    (20.0, 100),
    (50.0, 200),
)
HIERARCHY_COST_TIERS: tuple[tuple[str, int], ...] = (
    ("ward", 50),
    ("zone", 100),
    ("county", 200),
)
MAX_LOGISTICS_COST = 300

PRIMARY_GRADES = frozenset(
    ["1", "2", "3", "4", "5", "6", "7", "8"] + [f"Grade {n}" for n in range(1, 9)] + ["PP1", "PP2"]
)
SECONDARY_GRADES = frozenset([f"Form {n}" for n in range(1, 5)] + [f"F{n}" for n in range(1, 5)])
UNIVERSAL_GRADES = ("All Grades", "General", "Universal", "Dictionary", "Atlas", "Reference")

CONDITION_RANKS = {"New": 4, "Like New": 3, "Good": 2, "Fair": 1}
MAX_GRADE_GAP = 2
MAX_CONDITION_GAP = 2

_FIRST_INTEGER = re.compile(r"\d+")


def distance(a: Location, b: Location) -> float | None:
    """Haversine distance in km, rounded to 2 places; None if either lacks coordinates."""
    if not a.has_coordinates or not b.has_coordinates:
        return None

    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)  # type: ignore[arg-type]
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)  # type: ignore[arg-type]
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1

    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return round(EARTH_RADIUS_KM * c, 2)


def _shared(a: Location, b: Location, attr: str) -> bool:
    value_a = getattr(a, attr)
    value_b = getattr(b, attr)
    return bool(value_a) and bool(value_b) and value_a == value_b


def hierarchy_priority(a: Location, b: Location, school_a: str | None = None, school_b: str | None = None) -> int:
    """Proximity score from the administrative hierarchy.

    Same school is 100; then the first shared tier wins
    (ward 90, zone 80, sub-county 70, district 60, county 50); else 20.
    """
    if school_a and school_a == school_b:
        return SAME_SCHOOL_PRIORITY
    for attr, score in HIERARCHY_TIERS:
        if _shared(a, b, attr):
            return score
    return FALLBACK_PRIORITY


def logistics_cost(a: Location, b: Location, school_a: str | None = None, school_b: str | None = None) -> int:
    """KES cost of moving one book between two participants."""
    if school_a and school_a == school_b:
        return 0

    km = distance(a, b)
    if km is not None:
        for max_km, cost in DISTANCE_COST_TIERS:
            if km <= max_km:
                return cost
        return MAX_LOGISTICS_COST

    for attr, cost in HIERARCHY_COST_TIERS:
        if _shared(a, b, attr):
            return cost
    return MAX_LOGISTICS_COST


def book_level_compatible(grade: str, school_level: str | None) -> bool:
    """Whether a book's grade suits a school level.

    Universal markers always match. An unrecognised school level is
    treated as compatible.
    """
    grade = grade or ""
    if any(marker in grade for marker in UNIVERSAL_GRADES):
        return True

    level = (school_level or "").lower()
    if "primary" in level:
        return any(g in grade for g in PRIMARY_GRADES)
    if "secondary" in level:
        return any(g in grade for g in SECONDARY_GRADES)
    return True


def extract_grade_number(grade: str | None) -> int | None:
    """First integer in a grade label ("Form 3" -> 3), or None."""
    if not grade:
        return None
    match = _FIRST_INTEGER.search(grade)
    return int(match.group()) if match else None


def books_compatible(
    grade_a: str | None,
    grade_b: str | None,
    subject_a: str | None = None,
    subject_b: str | None = None,
    condition_a: str | None = None,
    condition_b: str | None = None,
) -> bool:
    """Whether two books are close enough in subject, grade and condition to swap."""
    if subject_a and subject_b and subject_a != subject_b:
        return False

    number_a = extract_grade_number(grade_a)
    number_b = extract_grade_number(grade_b)
    if number_a is not None and number_b is not None and abs(number_a - number_b) > MAX_GRADE_GAP:
        return False

    if condition_a and condition_b:
        rank_a = CONDITION_RANKS.get(condition_a, 0)
        rank_b = CONDITION_RANKS.get(condition_b, 0)
        if abs(rank_a - rank_b) > MAX_CONDITION_GAP:
            return False

    return True


def _distinct(values: Sequence[str | None]) -> set[str]:
    return {v for v in values if v}


def is_same_county(locations: Sequence[Location]) -> bool:
    if len(locations) < 2:
        return True
    return len(_distinct([loc.county for loc in locations])) == 1


def is_same_zone(locations: Sequence[Location]) -> bool:
    if len(locations) < 2:
        return True
    return len(_distinct([loc.zone for loc in locations])) == 1


def primary_county(locations: Sequence[Location]) -> str:
    """Most common county; ties go to the first seen. Empty string if none."""
    counts = Counter(loc.county for loc in locations if loc.county)
    if not counts:
        return ""
    # Counter keeps insertion order, and max() returns the first maximum
    return max(counts, key=lambda county: counts[county])


def max_cycle_distance(locations: Sequence[Location]) -> float:
    """Largest known distance over all pairs; 0 when none is known."""
    known = [d for a, b in combinations(locations, 2) if (d := distance(a, b)) is not None]
    return max(known, default=0.0)


def avg_cycle_distance(locations: Sequence[Location]) -> float:
    """Mean known distance over adjacent ring pairs; 0 when none is known."""
    n = len(locations)
    known = [d for i in range(n) if (d := distance(locations[i], locations[(i + 1) % n])) is not None]
    if not known:
        return 0.0
    return round(sum(known) / len(known), 2)


def cycle_geographic_score(locations: Sequence[Location], school_ids: Sequence[str | None]) -> float:
    """Mean hierarchy priority over all participant pairs."""
    scores = [
        hierarchy_priority(locations[i], locations[j], school_ids[i], school_ids[j])
        for i, j in combinations(range(len(locations)), 2)
    ]
    if not scores:
        return 0.0
    return round(sum(scores) / len(scores), 2)


def cycle_cost(locations: Sequence[Location], school_ids: Sequence[str | None]) -> tuple[int, float]:
    """Total KES over adjacent ring pairs and the per-participant average."""
    n = len(locations)
    if n == 0:
        return 0, 0.0
    total = sum(
        logistics_cost(locations[i], locations[(i + 1) % n], school_ids[i], school_ids[(i + 1) % n])
        for i in range(n)
    )
    return total, round(total / n, 2)
