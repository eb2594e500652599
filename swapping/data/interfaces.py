"""Abstract repository the engine uses for all storage access.

Every method takes and returns typed models. The algorithms are written
against this interface and tested with the in-memory implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from ..models import (
    CycleParticipant,
    CycleStatus,
    CycleView,
    DropPoint,
    Notification,
    SwapCycle,
    SwapListing,
    UserReliabilityScore,
)


class SwapRepository(ABC):
    """Storage contract for listings, cycles, drop points and scores"""

    # Listings and users

    @abstractmethod
    def get_active_swap_listings(self) -> list[SwapListing]:
        """Active, unsold swap listings joined with owner and owner's school"""
        pass

    # Reliability

    @abstractmethod
    def get_reliability_scores(self, user_ids: Iterable[str]) -> dict[str, Decimal]:
        """Stored scores for the given users; users without a record are absent"""
        pass

    @abstractmethod
    def get_reliability_record(self, user_id: str) -> UserReliabilityScore | None:
        """The user's record, or None when none exists; read failures raise"""
        pass

    @abstractmethod
    def save_reliability_record(self, record: UserReliabilityScore) -> UserReliabilityScore:
        """Create the record if it has no id, otherwise update it"""
        pass

    # Drop points

    @abstractmethod
    def find_active_drop_points(self, county: str) -> list[DropPoint]:
        pass

    @abstractmethod
    def find_active_drop_point_for_school(self, school_id: str) -> DropPoint | None:
        pass

    @abstractmethod
    def create_drop_point(self, drop_point: DropPoint) -> DropPoint:
        """Persist a new drop point and return it with its id"""
        pass

    # Cycles

    @abstractmethod
    def create_cycle(self, cycle: SwapCycle) -> SwapCycle:
        """Persist a new cycle; ``cycle.id`` is kept when set"""
        pass

    @abstractmethod
    def get_cycle(self, cycle_id: str) -> SwapCycle | None:
        pass

    @abstractmethod
    def update_cycle(self, cycle: SwapCycle) -> None:
        pass

    @abstractmethod
    def delete_cycle(self, cycle_id: str) -> None:
        """Remove a cycle together with its participant rows"""
        pass

    @abstractmethod
    def find_cycles(
        self,
        status: CycleStatus,
        confirmation_deadline_before: datetime | None = None,
        completion_deadline_before: datetime | None = None,
    ) -> list[SwapCycle]:
        """Cycles in ``status``, optionally past one of their deadlines"""
        pass

    @abstractmethod
    def find_user_cycles(self, user_id: str, status: CycleStatus | None = None, limit: int = 20) -> list[SwapCycle]:
        """Cycles the user participates in, newest first"""
        pass

    # Participants

    @abstractmethod
    def create_participant(self, participant: CycleParticipant) -> CycleParticipant:
        pass

    @abstractmethod
    def get_participants(self, cycle_id: str) -> list[CycleParticipant]:
        """Participants ordered by ring position"""
        pass

    @abstractmethod
    def update_participant(self, participant: CycleParticipant) -> None:
        pass

    # Read models

    @abstractmethod
    def get_cycle_view(self, cycle_id: str) -> CycleView | None:
        """Cycle with participants joined to user, school and both books"""
        pass

    # Notifications

    @abstractmethod
    def create_notification(self, notification: Notification) -> None:
        pass
