"""Drop point selection for swap cycles.

All participants of a cycle exchange books at one place. Candidates, in
order of preference:

1. The shared school, when every participant attends the same one
2. An existing active drop point in the most common county, by lowest
   average distance to the participants
3. The participant school closest to the participants' centroid
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

from .data.interfaces import SwapRepository
from .errors import DropPointUnavailableError
from .geography import distance
from .models import DropPoint, Location, School

logger = logging.getLogger(__name__)


@dataclass
class DropPointCandidate:
    """A proposed drop point with its distances to the participants"""

    name: str
    address: str
    county: str
    zone: str
    latitude: float | None
    longitude: float | None
    total_distance_km: float = 0.0
    avg_distance_km: float = 0.0
    max_distance_km: float = 0.0
    is_existing: bool = False
    id: str | None = None
    school_id: str | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_drop_point(self) -> DropPoint:
        return DropPoint(
            id=self.id,
            name=self.name,
            address=self.address,
            county=self.county,
            zone=self.zone,
            latitude=self.latitude,
            longitude=self.longitude,
            school_id=self.school_id,
        )


def _school_address(school: School) -> str:
    return school.address or school.location.county or "School premises"


def _distances_to(schools: Sequence[School], point: Location) -> tuple[float, float, float]:
    """(total, avg, max) km from every school with coordinates to ``point``"""
    known = [d for s in schools if (d := distance(s.location, point)) is not None]
    if not known:
        return 0.0, 0.0, 0.0
    total = sum(known)
    return total, total / len(known), max(known)


def _most_frequent_county(schools: Sequence[School]) -> str | None:
    counts = Counter(s.location.county for s in schools if s.location.county)
    if not counts:
        return None
    return max(counts, key=lambda county: counts[county])


def _centroid(schools: Sequence[School]) -> Location | None:
    located = [s.location for s in schools if s.location.has_coordinates]
    if not located:
        return None
    return Location(
        latitude=sum(loc.latitude for loc in located) / len(located),  # type: ignore[misc]
        longitude=sum(loc.longitude for loc in located) / len(located),  # type: ignore[misc]
    )


class DropPointSelector:
    """Chooses, and when needed persists, the drop point for a cycle"""

    def __init__(self, repository: SwapRepository):
        self.repository = repository

    def select_optimal(self, schools: Sequence[School]) -> DropPointCandidate:
        """Pick the best drop point for participants attending ``schools``.

        ``schools`` holds one entry per participant, so duplicates are expected.

        Raises:
            DropPointUnavailableError: If ``schools`` is empty
        """
        if not schools:
            raise DropPointUnavailableError("Cannot select a drop point without participants")

        logger.debug(f"Selecting drop point for {len(schools)} participants")

        if len({s.id for s in schools}) == 1:
            school = schools[0]
            return DropPointCandidate(
                name=f"{school.name} - Library",
                address=_school_address(school),
                county=school.location.county or "",
                zone=school.location.zone or "",
                latitude=school.location.latitude,
                longitude=school.location.longitude,
                school_id=school.id,
            )

        county = _most_frequent_county(schools)
        if county:
            existing = self.repository.find_active_drop_points(county)
            candidates = []
            for point in existing:
                if not point.location.has_coordinates:
                    continue
                total, avg, worst = _distances_to(schools, point.location)
                candidates.append(
                    DropPointCandidate(
                        id=point.id,
                        name=point.name,
                        address=point.address,
                        county=point.county,
                        zone=point.zone,
                        latitude=point.latitude,
                        longitude=point.longitude,
                        total_distance_km=total,
                        avg_distance_km=avg,
                        max_distance_km=worst,
                        is_existing=True,
                        school_id=point.school_id,
                    )
                )
            if candidates:
                # min() keeps the first of equal averages, like a stable sort
                return min(candidates, key=lambda c: c.avg_distance_km)

        centroid = _centroid(schools)
        if centroid is None:
            central = schools[0]
        else:
            central = min(
                schools,
                key=lambda s: d if (d := distance(s.location, centroid)) is not None else float("inf"),
            )

        total, avg, worst = _distances_to(schools, central.location)
        return DropPointCandidate(
            name=f"{central.name} - Recommended Drop Point",
            address=_school_address(central),
            county=central.location.county or "",
            zone=central.location.zone or "",
            latitude=central.location.latitude,
            longitude=central.location.longitude,
            total_distance_km=total,
            avg_distance_km=avg,
            max_distance_km=worst,
            school_id=central.id,
        )

    def get_or_create(self, schools: Sequence[School]) -> DropPoint:
        """Resolve a stored drop point for the cycle, creating one if needed.

        Creation is idempotent on school: an active drop point already
        stored for the chosen school is reused.

        Raises:
            DropPointUnavailableError: If a new drop point would lack coordinates
        """
        optimal = self.select_optimal(schools)

        if optimal.is_existing and optimal.id:
            return optimal.to_drop_point()

        if optimal.school_id:
            stored = self.repository.find_active_drop_point_for_school(optimal.school_id)
            if stored is not None:
                return stored

        if not optimal.has_coordinates:
            raise DropPointUnavailableError("Cannot create drop point without coordinates")

        created = self.repository.create_drop_point(optimal.to_drop_point())
        logger.info(f"Created drop point: {created.name}")
        return created
