"""PocketBase Repository - Data access for listings, cycles and scores

Maps PocketBase records into the engine's dataclasses. Lookups log and
return None (or an empty list) on failure; writes raise so callers can
decide whether to skip or abort."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pocketbase import PocketBase

from ..models import (
    Book,
    CycleParticipant,
    CycleStatus,
    CycleView,
    DropPoint,
    Location,
    Notification,
    ParticipantStatus,
    ParticipantView,
    School,
    SwapCycle,
    SwapListing,
    UserReliabilityScore,
    to_decimal,
)
from .interfaces import SwapRepository

logger = logging.getLogger(__name__)

LISTINGS = "book_listings"
SCHOOLS = "schools"
RELIABILITY = "user_reliability_scores"
DROP_POINTS = "drop_points"
CYCLES = "swap_cycles"
PARTICIPANTS = "cycle_participants"
NOTIFICATIONS = "notifications"

PB_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S.000Z"


def quote(value: str) -> str:
    """Quote a value for a PocketBase filter expression"""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_datetime(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(PB_DATETIME_FORMAT)


def parse_datetime(value: Any) -> datetime | None:
    """Parse a PocketBase timestamp; the SDK hands back either str or datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("T", " ").rstrip("Z")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning(f"Unparseable timestamp: {value!r}")
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def parse_decimal(value: Any, default: str = "0.00") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    try:
        return to_decimal(value)
    except (InvalidOperation, ValueError):
        logger.warning(f"Unparseable decimal: {value!r}")
        return Decimal(default)


def expanded(record: Any, name: str) -> Any:
    """Return an expanded relation whether the SDK gives a dict or an object."""
    expand = getattr(record, "expand", {}) or {}
    return expand.get(name) if isinstance(expand, dict) else getattr(expand, name, None)


def _coordinate(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _location(record: Any, lon_field: str, lat_field: str) -> Location:
    longitude = _coordinate(getattr(record, lon_field, None))
    latitude = _coordinate(getattr(record, lat_field, None))
    # Unset number fields come back as 0
    if longitude == 0 and latitude == 0:
        longitude = latitude = None
    return Location(
        county=getattr(record, "county", None) or None,
        district=getattr(record, "district", None) or None,
        zone=getattr(record, "zone", None) or None,
        sub_county=getattr(record, "sub_county", None) or None,
        ward=getattr(record, "ward", None) or None,
        latitude=latitude,
        longitude=longitude,
    )


def school_from_record(record: Any) -> School:
    return School(
        id=record.id,
        name=getattr(record, "school_name", "") or "",
        level=getattr(record, "level", "") or "",
        address=getattr(record, "address", None) or None,
        location=_location(record, "x_coord", "y_coord"),
    )


def book_from_record(record: Any) -> Book:
    return Book(
        id=record.id,
        title=getattr(record, "title", "") or "",
        author=getattr(record, "author", "") or "",
        subject=getattr(record, "subject", None) or None,
        grade=getattr(record, "class_grade", "") or "",
        condition=getattr(record, "condition", None) or None,
    )


def drop_point_from_record(record: Any) -> DropPoint:
    location = _location(record, "coordinates_x", "coordinates_y")
    return DropPoint(
        id=record.id,
        name=getattr(record, "name", "") or "",
        address=getattr(record, "address", "") or "",
        county=location.county or "",
        zone=location.zone or "",
        latitude=location.latitude,
        longitude=location.longitude,
        school_id=getattr(record, "school", None) or None,
        is_active=bool(getattr(record, "is_active", True)),
    )


def cycle_from_record(record: Any) -> SwapCycle:
    return SwapCycle(
        id=record.id,
        cycle_type=getattr(record, "cycle_type", ""),
        status=CycleStatus(getattr(record, "status", CycleStatus.PENDING_CONFIRMATION.value)),
        priority_score=parse_decimal(getattr(record, "priority_score", None)),
        primary_county=getattr(record, "primary_county", "") or "",
        is_same_county=bool(getattr(record, "is_same_county", False)),
        is_same_zone=bool(getattr(record, "is_same_zone", False)),
        total_logistics_cost=parse_decimal(getattr(record, "total_logistics_cost", None)),
        avg_cost_per_participant=parse_decimal(getattr(record, "avg_cost_per_participant", None)),
        max_distance_km=parse_decimal(getattr(record, "max_distance_km", None)),
        avg_distance_km=parse_decimal(getattr(record, "avg_distance_km", None)),
        confirmation_deadline=parse_datetime(getattr(record, "confirmation_deadline", None))
        or datetime.min.replace(tzinfo=UTC),
        completion_deadline=parse_datetime(getattr(record, "completion_deadline", None))
        or datetime.min.replace(tzinfo=UTC),
        total_participants_count=int(getattr(record, "total_participants_count", 0) or 0),
        confirmed_participants_count=int(getattr(record, "confirmed_participants_count", 0) or 0),
        drop_point_id=getattr(record, "drop_point", None) or None,
        drop_point_name=getattr(record, "drop_point_name", None) or None,
        drop_point_address=getattr(record, "drop_point_address", None) or None,
        created_at=parse_datetime(getattr(record, "created", None)),
        confirmed_at=parse_datetime(getattr(record, "confirmed_at", None)),
        completed_at=parse_datetime(getattr(record, "completed_at", None)),
        cancelled_at=parse_datetime(getattr(record, "cancelled_at", None)),
        cancellation_reason=getattr(record, "cancellation_reason", None) or None,
    )


def participant_from_record(record: Any) -> CycleParticipant:
    return CycleParticipant(
        id=record.id,
        cycle_id=getattr(record, "cycle", ""),
        user_id=getattr(record, "user", ""),
        school_id=getattr(record, "school", ""),
        position_in_cycle=int(getattr(record, "position_in_cycle", 0) or 0),
        book_to_give_id=getattr(record, "book_to_give", ""),
        book_to_receive_id=getattr(record, "book_to_receive", ""),
        collection_qr_code=getattr(record, "collection_qr_code", "") or "",
        logistics_cost=parse_decimal(getattr(record, "logistics_cost", None)),
        school_name=getattr(record, "school_name", "") or "",
        school_county=getattr(record, "school_county", None) or None,
        school_zone=getattr(record, "school_zone", None) or None,
        school_latitude=_coordinate(getattr(record, "school_latitude", None)),
        school_longitude=_coordinate(getattr(record, "school_longitude", None)),
        status=ParticipantStatus(getattr(record, "status", ParticipantStatus.PENDING.value)),
        confirmed=bool(getattr(record, "confirmed", False)),
        confirmed_at=parse_datetime(getattr(record, "confirmed_at", None)),
        book_dropped=bool(getattr(record, "book_dropped", False)),
        dropped_at=parse_datetime(getattr(record, "dropped_at", None)),
        drop_verification_photo_url=getattr(record, "drop_verification_photo_url", None) or None,
        book_collected=bool(getattr(record, "book_collected", False)),
        collected_at=parse_datetime(getattr(record, "collected_at", None)),
        collection_verification_photo_url=getattr(record, "collection_verification_photo_url", None) or None,
    )


def reliability_from_record(record: Any) -> UserReliabilityScore:
    return UserReliabilityScore(
        id=record.id,
        user_id=getattr(record, "user", ""),
        reliability_score=parse_decimal(getattr(record, "reliability_score", None), default="50.00"),
        total_swaps_completed=int(getattr(record, "total_swaps_completed", 0) or 0),
        total_swaps_cancelled=int(getattr(record, "total_swaps_cancelled", 0) or 0),
        total_cycles_joined=int(getattr(record, "total_cycles_joined", 0) or 0),
        total_cycles_completed=int(getattr(record, "total_cycles_completed", 0) or 0),
        total_cycles_timeout=int(getattr(record, "total_cycles_timeout", 0) or 0),
        penalty_points=int(getattr(record, "penalty_points", 0) or 0),
        badges=list(getattr(record, "badges", None) or []),
    )


class PocketBaseSwapRepository(SwapRepository):
    """SwapRepository backed by a PocketBase instance"""

    def __init__(self, pb_client: PocketBase):
        self.pb = pb_client

    # Listings

    def get_active_swap_listings(self) -> list[SwapListing]:
        try:
            records = self.pb.collection(LISTINGS).get_full_list(
                query_params={
                    "filter": 'listing_type = "swap" && listing_status = "active" && sold_at = ""',
                    "expand": "seller,seller.school",
                }
            )
        except Exception as e:
            logger.error(f"Error loading active swap listings: {e}")
            return []

        listings = []
        for record in records:
            seller = expanded(record, "seller")
            school_record = expanded(seller, "school") if seller else None
            listings.append(
                SwapListing(
                    id=record.id,
                    seller_id=getattr(record, "seller", ""),
                    seller_name=getattr(seller, "full_name", "") if seller else "",
                    book=book_from_record(record),
                    willing_to_swap_for=getattr(record, "willing_to_swap_for", None) or None,
                    school=school_from_record(school_record) if school_record else None,
                )
            )
        logger.debug(f"Loaded {len(listings)} active swap listings")
        return listings

    # Reliability

    def get_reliability_scores(self, user_ids) -> dict[str, Decimal]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        try:
            records = self.pb.collection(RELIABILITY).get_full_list(
                query_params={"filter": " || ".join(f"user = {quote(uid)}" for uid in ids)}
            )
        except Exception as e:
            logger.error(f"Error loading reliability scores: {e}")
            return {}
        return {
            getattr(r, "user", ""): parse_decimal(getattr(r, "reliability_score", None), default="50.00")
            for r in records
        }

    def get_reliability_record(self, user_id: str) -> UserReliabilityScore | None:
        # Errors propagate: None means "no record yet" and leads to a fresh default record
        result = self.pb.collection(RELIABILITY).get_list(1, 1, query_params={"filter": f"user = {quote(user_id)}"})
        if result.items:
            return reliability_from_record(result.items[0])
        return None

    def save_reliability_record(self, record: UserReliabilityScore) -> UserReliabilityScore:
        data = {
            "user": record.user_id,
            "reliability_score": str(to_decimal(record.reliability_score)),
            "total_swaps_completed": record.total_swaps_completed,
            "total_swaps_cancelled": record.total_swaps_cancelled,
            "total_cycles_joined": record.total_cycles_joined,
            "total_cycles_completed": record.total_cycles_completed,
            "total_cycles_timeout": record.total_cycles_timeout,
            "penalty_points": record.penalty_points,
            "badges": list(record.badges),
        }
        if record.id:
            self.pb.collection(RELIABILITY).update(record.id, data)
        else:
            created = self.pb.collection(RELIABILITY).create(data)
            record.id = created.id
        return record

    # Drop points

    def find_active_drop_points(self, county: str) -> list[DropPoint]:
        try:
            records = self.pb.collection(DROP_POINTS).get_full_list(
                query_params={"filter": f"county = {quote(county)} && is_active = true"}
            )
        except Exception as e:
            logger.error(f"Error finding drop points in {county}: {e}")
            return []
        return [drop_point_from_record(r) for r in records]

    def find_active_drop_point_for_school(self, school_id: str) -> DropPoint | None:
        # Errors propagate: None leads the caller to create a new drop point for the school
        result = self.pb.collection(DROP_POINTS).get_list(
            1, 1, query_params={"filter": f"school = {quote(school_id)} && is_active = true"}
        )
        if result.items:
            return drop_point_from_record(result.items[0])
        return None

    def create_drop_point(self, drop_point: DropPoint) -> DropPoint:
        created = self.pb.collection(DROP_POINTS).create(
            {
                "name": drop_point.name,
                "address": drop_point.address,
                "county": drop_point.county,
                "zone": drop_point.zone,
                "coordinates_x": drop_point.longitude,
                "coordinates_y": drop_point.latitude,
                "school": drop_point.school_id or "",
                "is_active": drop_point.is_active,
            }
        )
        drop_point.id = created.id
        return drop_point

    # Cycles

    def _cycle_data(self, cycle: SwapCycle) -> dict[str, Any]:
        return {
            "cycle_type": cycle.cycle_type,
            "status": cycle.status.value,
            "priority_score": str(cycle.priority_score),
            "primary_county": cycle.primary_county,
            "is_same_county": cycle.is_same_county,
            "is_same_zone": cycle.is_same_zone,
            "total_logistics_cost": str(cycle.total_logistics_cost),
            "avg_cost_per_participant": str(cycle.avg_cost_per_participant),
            "max_distance_km": str(cycle.max_distance_km),
            "avg_distance_km": str(cycle.avg_distance_km),
            "confirmation_deadline": format_datetime(cycle.confirmation_deadline),
            "completion_deadline": format_datetime(cycle.completion_deadline),
            "total_participants_count": cycle.total_participants_count,
            "confirmed_participants_count": cycle.confirmed_participants_count,
            "drop_point": cycle.drop_point_id or "",
            "drop_point_name": cycle.drop_point_name or "",
            "drop_point_address": cycle.drop_point_address or "",
            "confirmed_at": format_datetime(cycle.confirmed_at),
            "completed_at": format_datetime(cycle.completed_at),
            "cancelled_at": format_datetime(cycle.cancelled_at),
            "cancellation_reason": cycle.cancellation_reason or "",
        }

    def create_cycle(self, cycle: SwapCycle) -> SwapCycle:
        data = self._cycle_data(cycle)
        if cycle.id:
            data["id"] = cycle.id
        created = self.pb.collection(CYCLES).create(data)
        cycle.id = created.id
        return cycle

    def get_cycle(self, cycle_id: str) -> SwapCycle | None:
        try:
            return cycle_from_record(self.pb.collection(CYCLES).get_one(cycle_id))
        except Exception as e:
            logger.warning(f"Error getting cycle {cycle_id}: {e}")
            return None

    def update_cycle(self, cycle: SwapCycle) -> None:
        self.pb.collection(CYCLES).update(cycle.id, self._cycle_data(cycle))

    def delete_cycle(self, cycle_id: str) -> None:
        # Participants reference the cycle, so they go first
        for record in self._participant_records(cycle_id):
            self.pb.collection(PARTICIPANTS).delete(record.id)
        self.pb.collection(CYCLES).delete(cycle_id)
        logger.info(f"Deleted cycle {cycle_id} and its participants")

    def find_cycles(
        self,
        status: CycleStatus,
        confirmation_deadline_before: datetime | None = None,
        completion_deadline_before: datetime | None = None,
    ) -> list[SwapCycle]:
        clauses = [f"status = {quote(status.value)}"]
        if confirmation_deadline_before is not None:
            clauses.append(f"confirmation_deadline < {quote(format_datetime(confirmation_deadline_before))}")
        if completion_deadline_before is not None:
            clauses.append(f"completion_deadline < {quote(format_datetime(completion_deadline_before))}")

        records = self.pb.collection(CYCLES).get_full_list(query_params={"filter": " && ".join(clauses)})
        return [cycle_from_record(r) for r in records]

    def find_user_cycles(self, user_id: str, status: CycleStatus | None = None, limit: int = 20) -> list[SwapCycle]:
        filter_str = f"user = {quote(user_id)}"
        if status is not None:
            filter_str += f" && cycle.status = {quote(status.value)}"
        try:
            result = self.pb.collection(PARTICIPANTS).get_list(
                1, limit, query_params={"filter": filter_str, "expand": "cycle", "sort": "-cycle.created"}
            )
        except Exception as e:
            logger.error(f"Error finding cycles for user {user_id}: {e}")
            return []

        cycles = []
        for record in result.items:
            cycle_record = expanded(record, "cycle")
            if cycle_record is not None:
                cycles.append(cycle_from_record(cycle_record))
        return cycles

    # Participants

    def _participant_data(self, participant: CycleParticipant) -> dict[str, Any]:
        return {
            "cycle": participant.cycle_id,
            "user": participant.user_id,
            "school": participant.school_id,
            "position_in_cycle": participant.position_in_cycle,
            "book_to_give": participant.book_to_give_id,
            "book_to_receive": participant.book_to_receive_id,
            "collection_qr_code": participant.collection_qr_code,
            "logistics_cost": str(participant.logistics_cost),
            "school_name": participant.school_name,
            "school_county": participant.school_county or "",
            "school_zone": participant.school_zone or "",
            "school_latitude": participant.school_latitude,
            "school_longitude": participant.school_longitude,
            "status": participant.status.value,
            "confirmed": participant.confirmed,
            "confirmed_at": format_datetime(participant.confirmed_at),
            "book_dropped": participant.book_dropped,
            "dropped_at": format_datetime(participant.dropped_at),
            "drop_verification_photo_url": participant.drop_verification_photo_url or "",
            "book_collected": participant.book_collected,
            "collected_at": format_datetime(participant.collected_at),
            "collection_verification_photo_url": participant.collection_verification_photo_url or "",
        }

    def create_participant(self, participant: CycleParticipant) -> CycleParticipant:
        created = self.pb.collection(PARTICIPANTS).create(self._participant_data(participant))
        participant.id = created.id
        return participant

    def _participant_records(self, cycle_id: str, expand: str | None = None) -> list[Any]:
        query_params = {"filter": f"cycle = {quote(cycle_id)}", "sort": "position_in_cycle"}
        if expand:
            query_params["expand"] = expand
        return self.pb.collection(PARTICIPANTS).get_full_list(query_params=query_params)

    def get_participants(self, cycle_id: str) -> list[CycleParticipant]:
        return [participant_from_record(r) for r in self._participant_records(cycle_id)]

    def update_participant(self, participant: CycleParticipant) -> None:
        self.pb.collection(PARTICIPANTS).update(participant.id, self._participant_data(participant))

    # Read models

    def get_cycle_view(self, cycle_id: str) -> CycleView | None:
        cycle = self.get_cycle(cycle_id)
        if cycle is None:
            return None

        views = []
        for record in self._participant_records(cycle_id, expand="user,school,book_to_give,book_to_receive"):
            user = expanded(record, "user")
            school = expanded(record, "school")
            give = expanded(record, "book_to_give")
            receive = expanded(record, "book_to_receive")
            views.append(
                ParticipantView(
                    participant=participant_from_record(record),
                    user_name=getattr(user, "full_name", "") if user else "",
                    school=school_from_record(school) if school else None,
                    book_to_give=book_from_record(give) if give else None,
                    book_to_receive=book_from_record(receive) if receive else None,
                )
            )
        return CycleView(cycle=cycle, participants=views)

    # Notifications

    def create_notification(self, notification: Notification) -> None:
        self.pb.collection(NOTIFICATIONS).create(
            {
                "user": notification.user_id,
                "type": notification.type.value,
                "title": notification.title,
                "message": notification.message,
                "action_url": notification.action_url or "",
                "is_read": False,
            }
        )
