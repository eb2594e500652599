"""In-memory SwapRepository.

Used by the tests and for local runs without PocketBase. Records are
copied on the way in and out so callers must write back through the
repository, the same as with the real store.
"""

from __future__ import annotations

import copy
import threading
import uuid
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from ..models import (
    CycleParticipant,
    CycleStatus,
    CycleView,
    DropPoint,
    Notification,
    ParticipantView,
    School,
    SwapCycle,
    SwapListing,
    UserReliabilityScore,
)
from .interfaces import SwapRepository


def _new_id() -> str:
    return uuid.uuid4().hex[:15]


class InMemorySwapRepository(SwapRepository):
    """Dict-backed repository"""

    def __init__(self, listings: Iterable[SwapListing] = ()):
        self._lock = threading.RLock()
        self.listings: dict[str, SwapListing] = {}
        self.inactive_listing_ids: set[str] = set()
        self.user_names: dict[str, str] = {}
        self.schools: dict[str, School] = {}
        self.reliability: dict[str, UserReliabilityScore] = {}
        self.drop_points: dict[str, DropPoint] = {}
        self.cycles: dict[str, SwapCycle] = {}
        self.participants: dict[str, CycleParticipant] = {}
        self.notifications: list[Notification] = []
        self._cycle_order: dict[str, int] = {}
        for listing in listings:
            self.add_listing(listing)

    # Seeding helpers

    def add_listing(self, listing: SwapListing, active: bool = True) -> SwapListing:
        with self._lock:
            self.listings[listing.id] = copy.deepcopy(listing)
            if not active:
                self.inactive_listing_ids.add(listing.id)
            self.user_names.setdefault(listing.seller_id, listing.seller_name)
            if listing.school is not None:
                self.schools[listing.school.id] = copy.deepcopy(listing.school)
        return listing

    def set_reliability(self, user_id: str, score: Decimal | float | str) -> None:
        record = self.get_reliability_record(user_id) or UserReliabilityScore(user_id=user_id)
        record.reliability_score = Decimal(str(score))
        self.save_reliability_record(record)

    def notifications_for(self, user_id: str) -> list[Notification]:
        return [n for n in self.notifications if n.user_id == user_id]

    # Listings

    def get_active_swap_listings(self) -> list[SwapListing]:
        with self._lock:
            return [
                copy.deepcopy(listing)
                for listing_id, listing in self.listings.items()
                if listing_id not in self.inactive_listing_ids
            ]

    # Reliability

    def get_reliability_scores(self, user_ids: Iterable[str]) -> dict[str, Decimal]:
        with self._lock:
            return {uid: self.reliability[uid].reliability_score for uid in user_ids if uid in self.reliability}

    def get_reliability_record(self, user_id: str) -> UserReliabilityScore | None:
        with self._lock:
            record = self.reliability.get(user_id)
            return copy.deepcopy(record) if record else None

    def save_reliability_record(self, record: UserReliabilityScore) -> UserReliabilityScore:
        with self._lock:
            if not record.id:
                record.id = _new_id()
            self.reliability[record.user_id] = copy.deepcopy(record)
            return record

    # Drop points

    def find_active_drop_points(self, county: str) -> list[DropPoint]:
        with self._lock:
            return [copy.deepcopy(dp) for dp in self.drop_points.values() if dp.county == county and dp.is_active]

    def find_active_drop_point_for_school(self, school_id: str) -> DropPoint | None:
        with self._lock:
            for dp in self.drop_points.values():
                if dp.school_id == school_id and dp.is_active:
                    return copy.deepcopy(dp)
            return None

    def create_drop_point(self, drop_point: DropPoint) -> DropPoint:
        with self._lock:
            if not drop_point.id:
                drop_point.id = _new_id()
            self.drop_points[drop_point.id] = copy.deepcopy(drop_point)
            return drop_point

    # Cycles

    def create_cycle(self, cycle: SwapCycle) -> SwapCycle:
        with self._lock:
            if not cycle.id:
                cycle.id = _new_id()
            self.cycles[cycle.id] = copy.deepcopy(cycle)
            self._cycle_order[cycle.id] = len(self._cycle_order)
            return cycle

    def get_cycle(self, cycle_id: str) -> SwapCycle | None:
        with self._lock:
            cycle = self.cycles.get(cycle_id)
            return copy.deepcopy(cycle) if cycle else None

    def update_cycle(self, cycle: SwapCycle) -> None:
        with self._lock:
            if cycle.id not in self.cycles:
                raise KeyError(f"Unknown cycle {cycle.id}")
            self.cycles[cycle.id] = copy.deepcopy(cycle)

    def delete_cycle(self, cycle_id: str) -> None:
        with self._lock:
            for participant_id in [pid for pid, p in self.participants.items() if p.cycle_id == cycle_id]:
                del self.participants[participant_id]
            self.cycles.pop(cycle_id, None)
            self._cycle_order.pop(cycle_id, None)

    def find_cycles(
        self,
        status: CycleStatus,
        confirmation_deadline_before: datetime | None = None,
        completion_deadline_before: datetime | None = None,
    ) -> list[SwapCycle]:
        with self._lock:
            found = []
            for cycle in self.cycles.values():
                if cycle.status is not status:
                    continue
                if confirmation_deadline_before and not cycle.confirmation_deadline < confirmation_deadline_before:
                    continue
                if completion_deadline_before and not cycle.completion_deadline < completion_deadline_before:
                    continue
                found.append(copy.deepcopy(cycle))
            return found

    def find_user_cycles(self, user_id: str, status: CycleStatus | None = None, limit: int = 20) -> list[SwapCycle]:
        with self._lock:
            cycle_ids = {p.cycle_id for p in self.participants.values() if p.user_id == user_id}
            cycles = [
                self.cycles[cid]
                for cid in cycle_ids
                if cid in self.cycles and (status is None or self.cycles[cid].status is status)
            ]
            cycles.sort(key=lambda c: self._cycle_order[c.id], reverse=True)
            return [copy.deepcopy(c) for c in cycles[:limit]]

    # Participants

    def create_participant(self, participant: CycleParticipant) -> CycleParticipant:
        with self._lock:
            if not participant.id:
                participant.id = _new_id()
            self.participants[participant.id] = copy.deepcopy(participant)
            return participant

    def get_participants(self, cycle_id: str) -> list[CycleParticipant]:
        with self._lock:
            rows = [copy.deepcopy(p) for p in self.participants.values() if p.cycle_id == cycle_id]
            return sorted(rows, key=lambda p: p.position_in_cycle)

    def update_participant(self, participant: CycleParticipant) -> None:
        with self._lock:
            if participant.id not in self.participants:
                raise KeyError(f"Unknown participant {participant.id}")
            self.participants[participant.id] = copy.deepcopy(participant)

    # Read models

    def get_cycle_view(self, cycle_id: str) -> CycleView | None:
        cycle = self.get_cycle(cycle_id)
        if cycle is None:
            return None
        books = {listing.book.id: listing.book for listing in self.listings.values()}
        views = [
            ParticipantView(
                participant=p,
                user_name=self.user_names.get(p.user_id, ""),
                school=copy.deepcopy(self.schools.get(p.school_id)),
                book_to_give=copy.deepcopy(books.get(p.book_to_give_id)),
                book_to_receive=copy.deepcopy(books.get(p.book_to_receive_id)),
            )
            for p in self.get_participants(cycle_id)
        ]
        return CycleView(cycle=cycle, participants=views)

    # Notifications

    def create_notification(self, notification: Notification) -> None:
        with self._lock:
            self.notifications.append(copy.deepcopy(notification))
