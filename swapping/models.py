"""Core domain models for the swap-cycle matching engine.

These models represent the fundamental business concepts and are
independent of any storage backend. Repositories map their records
into these types before the algorithms see them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

TWO_PLACES = Decimal("0.01")


def to_decimal(value: float | int | str | Decimal) -> Decimal:
    """Convert a number to a two-place fixed-point Decimal (KES, km, scores)."""
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class CycleStatus(Enum):
    """Lifecycle states of a persisted swap cycle"""

    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in (CycleStatus.COMPLETED, CycleStatus.CANCELLED, CycleStatus.TIMEOUT)


class ParticipantStatus(Enum):
    """Per-participant progress through a cycle"""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    BOOK_DROPPED = "book_dropped"
    COMPLETED = "completed"


class ReliabilityOutcome(Enum):
    """Swap outcomes that move a user's reliability score"""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    CONDITION_MISMATCH = "condition_mismatch"


class NotificationType(Enum):
    """Notification categories emitted by the engine"""

    CYCLE_MATCH = "swap_cycle_match"
    CYCLE_UPDATE = "swap_cycle_update"
    CYCLE_REMINDER = "swap_cycle_reminder"
    MILESTONE = "milestone"
    ACHIEVEMENT = "achievement_unlocked"


@dataclass
class Location:
    """A point with optional coordinates and the administrative hierarchy.

    Hierarchy is county > district > zone > sub-county > ward.
    Missing coordinates are valid; callers fall back to the hierarchy.
    """

    county: str | None = None
    district: str | None = None
    zone: str | None = None
    sub_county: str | None = None
    ward: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class School:
    """A school; users are located through their school"""

    id: str
    name: str
    level: str = ""
    address: str | None = None
    location: Location = field(default_factory=Location)


@dataclass
class Book:
    """The book a listing offers"""

    id: str
    title: str
    author: str = ""
    subject: str | None = None
    grade: str = ""
    condition: str | None = None


@dataclass
class SwapListing:
    """An active "willing to swap" listing joined with its owner and school.

    This is the typed row the repository hands to the graph builder.
    """

    id: str
    seller_id: str
    seller_name: str
    book: Book
    willing_to_swap_for: str | None
    school: School | None


@dataclass
class ListingNode:
    """One user's active swap listing, used as a graph vertex.

    Rebuilt on every detection run; never persisted.
    """

    user_id: str
    user_name: str
    school: School
    book: Book
    wanted_titles: list[str]
    reliability_score: float = 50.0

    @property
    def key(self) -> str:
        """Graph key: (user, offered book)"""
        return f"{self.user_id}-{self.book.id}"

    @property
    def location(self) -> Location:
        return self.school.location


@dataclass
class DetectedCycle:
    """An in-memory closed ring of 2-5 listing nodes with its metrics.

    node[i] wants, and receives, the book offered by node[(i + 1) % n].
    """

    nodes: list[ListingNode]
    priority_score: float
    geographic_score: float
    total_cost: int
    avg_cost_per_participant: float
    is_same_county: bool
    is_same_zone: bool
    max_distance_km: float
    avg_distance_km: float
    primary_county: str
    avg_reliability_score: float = 50.0

    @property
    def size(self) -> int:
        return len(self.nodes)

    @property
    def cycle_type(self) -> str:
        return f"{len(self.nodes)}-way"

    @property
    def user_ids(self) -> list[str]:
        return [n.user_id for n in self.nodes]


@dataclass
class DropPoint:
    """A physical exchange location shared by all participants of a cycle"""

    name: str
    address: str
    county: str = ""
    zone: str = ""
    latitude: float | None = None
    longitude: float | None = None
    school_id: str | None = None
    is_active: bool = True
    id: str | None = None

    @property
    def location(self) -> Location:
        return Location(county=self.county, zone=self.zone, latitude=self.latitude, longitude=self.longitude)


@dataclass
class SwapCycle:
    """Persistent swap cycle record"""

    id: str
    cycle_type: str
    status: CycleStatus
    priority_score: Decimal
    primary_county: str
    is_same_county: bool
    is_same_zone: bool
    total_logistics_cost: Decimal
    avg_cost_per_participant: Decimal
    max_distance_km: Decimal
    avg_distance_km: Decimal
    confirmation_deadline: datetime
    completion_deadline: datetime
    total_participants_count: int
    confirmed_participants_count: int = 0
    drop_point_id: str | None = None
    drop_point_name: str | None = None
    drop_point_address: str | None = None
    created_at: datetime | None = None
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cycle_type": self.cycle_type,
            "status": self.status.value,
            "priority_score": float(self.priority_score),
            "primary_county": self.primary_county,
            "is_same_county": self.is_same_county,
            "is_same_zone": self.is_same_zone,
            "total_logistics_cost": float(self.total_logistics_cost),
            "avg_cost_per_participant": float(self.avg_cost_per_participant),
            "max_distance_km": float(self.max_distance_km),
            "avg_distance_km": float(self.avg_distance_km),
            "confirmation_deadline": self.confirmation_deadline.isoformat(),
            "completion_deadline": self.completion_deadline.isoformat(),
            "total_participants_count": self.total_participants_count,
            "confirmed_participants_count": self.confirmed_participants_count,
            "drop_point_id": self.drop_point_id,
            "drop_point_name": self.drop_point_name,
            "drop_point_address": self.drop_point_address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
        }


@dataclass
class CycleParticipant:
    """Persistent (cycle, user) row with its position in the ring"""

    cycle_id: str
    user_id: str
    school_id: str
    position_in_cycle: int
    book_to_give_id: str
    book_to_receive_id: str
    collection_qr_code: str
    logistics_cost: Decimal = Decimal("0.00")
    school_name: str = ""
    school_county: str | None = None
    school_zone: str | None = None
    school_latitude: float | None = None
    school_longitude: float | None = None
    status: ParticipantStatus = ParticipantStatus.PENDING
    confirmed: bool = False
    confirmed_at: datetime | None = None
    book_dropped: bool = False
    dropped_at: datetime | None = None
    drop_verification_photo_url: str | None = None
    book_collected: bool = False
    collected_at: datetime | None = None
    collection_verification_photo_url: str | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cycle_id": self.cycle_id,
            "user_id": self.user_id,
            "school_id": self.school_id,
            "position_in_cycle": self.position_in_cycle,
            "book_to_give_id": self.book_to_give_id,
            "book_to_receive_id": self.book_to_receive_id,
            "logistics_cost": float(self.logistics_cost),
            "school_name": self.school_name,
            "school_county": self.school_county,
            "school_zone": self.school_zone,
            "status": self.status.value,
            "confirmed": self.confirmed,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "book_dropped": self.book_dropped,
            "dropped_at": self.dropped_at.isoformat() if self.dropped_at else None,
            "drop_verification_photo_url": self.drop_verification_photo_url,
            "book_collected": self.book_collected,
            "collected_at": self.collected_at.isoformat() if self.collected_at else None,
            "collection_verification_photo_url": self.collection_verification_photo_url,
        }


@dataclass
class UserReliabilityScore:
    """Running reputation of a user, clamped to [0, 100]"""

    user_id: str
    reliability_score: Decimal = Decimal("50.00")
    total_swaps_completed: int = 0
    total_swaps_cancelled: int = 0
    total_cycles_joined: int = 0
    total_cycles_completed: int = 0
    total_cycles_timeout: int = 0
    penalty_points: int = 0
    badges: list[str] = field(default_factory=list)
    id: str | None = None


@dataclass
class Notification:
    """Opaque "notify user X" request; delivery channel is not our concern"""

    user_id: str
    type: NotificationType
    title: str
    message: str
    action_url: str | None = None


@dataclass
class ParticipantView:
    """Participant joined with user, school and both books for display"""

    participant: CycleParticipant
    user_name: str
    school: School | None
    book_to_give: Book | None
    book_to_receive: Book | None

    def to_dict(self) -> dict[str, Any]:
        data = self.participant.to_dict()
        data["user"] = {"id": self.participant.user_id, "full_name": self.user_name}
        data["school"] = (
            {"id": self.school.id, "name": self.school.name, "level": self.school.level} if self.school else None
        )
        data["book_to_give"] = _book_dict(self.book_to_give)
        data["book_to_receive"] = _book_dict(self.book_to_receive)
        return data


@dataclass
class CycleView:
    """Read model: cycle plus participants ordered by ring position"""

    cycle: SwapCycle
    participants: list[ParticipantView]

    def participant_for(self, user_id: str) -> ParticipantView | None:
        for view in self.participants:
            if view.participant.user_id == user_id:
                return view
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle": self.cycle.to_dict(),
            "participants": [p.to_dict() for p in self.participants],
        }


def _book_dict(book: Book | None) -> dict[str, Any] | None:
    if book is None:
        return None
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "subject": book.subject,
        "grade": book.grade,
        "condition": book.condition,
    }


@dataclass
class ActionResult:
    """Boundary result of every engine action.

    Raw exceptions never cross into the HTTP layer; they become
    ``success=False`` with a human-readable message.
    """

    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None  # 'validation', 'forbidden', 'not_found', 'invalid_transition', 'busy', 'internal'

    @classmethod
    def ok(cls, message: str, **data: Any) -> ActionResult:
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, error: str = "validation", **data: Any) -> ActionResult:
        return cls(success=False, message=message, data=data, error=error)
