"""Tests for cycle transitions, participant actions and deadline sweeps."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from swapping.data import InMemorySwapRepository
from swapping.lifecycle import CycleStateMachine
from swapping.lifecycle.state_machine import VALID_TRANSITIONS, is_valid_transition
from swapping.models import CycleStatus, NotificationType, ParticipantStatus
from tests.fixtures.builders import seed_cycle


class Clock:
    """Settable clock for deadline tests"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def clock(fixed_now: datetime) -> Clock:
    return Clock(fixed_now)


@pytest.fixture
def machine(repository: InMemorySwapRepository, clock: Clock) -> CycleStateMachine:
    return CycleStateMachine(repository, clock=clock)


def score_of(repository: InMemorySwapRepository, user_id: str) -> Decimal | None:
    record = repository.get_reliability_record(user_id)
    return record.reliability_score if record else None


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current,target",
        [
            (CycleStatus.PENDING_CONFIRMATION, CycleStatus.CONFIRMED),
            (CycleStatus.PENDING_CONFIRMATION, CycleStatus.TIMEOUT),
            (CycleStatus.CONFIRMED, CycleStatus.ACTIVE),
            (CycleStatus.ACTIVE, CycleStatus.COMPLETED),
            (CycleStatus.ACTIVE, CycleStatus.CANCELLED),
        ],
    )
    def test_allowed(self, current: CycleStatus, target: CycleStatus):
        assert is_valid_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (CycleStatus.PENDING_CONFIRMATION, CycleStatus.ACTIVE),
            (CycleStatus.CONFIRMED, CycleStatus.TIMEOUT),
            (CycleStatus.ACTIVE, CycleStatus.CONFIRMED),
        ],
    )
    def test_rejected(self, current: CycleStatus, target: CycleStatus):
        assert not is_valid_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        for status in CycleStatus:
            assert status.is_terminal == (VALID_TRANSITIONS[status] == frozenset())

    def test_invalid_transition_leaves_cycle_untouched(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now)

        result = machine.transition(cycle.id, CycleStatus.COMPLETED)

        assert not result.success
        assert result.error == "invalid_transition"
        assert result.message == "Invalid transition: pending_confirmation → completed"
        assert repository.get_cycle(cycle.id).status is CycleStatus.PENDING_CONFIRMATION
        assert repository.notifications == []

    def test_terminal_cycle_never_changes(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.COMPLETED)

        for target in CycleStatus:
            assert not machine.transition(cycle.id, target).success
        assert repository.get_cycle(cycle.id).status is CycleStatus.COMPLETED

    def test_unknown_cycle(self, machine):
        result = machine.transition("missing", CycleStatus.CONFIRMED)

        assert result.error == "not_found"
        assert result.message == "Cycle not found"


class TestConfirm:
    def test_last_confirmation_confirms_cycle(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b", "c"], fixed_now)

        first = machine.confirm(cycle.id, "a")
        second = machine.confirm(cycle.id, "b")
        assert first.data["confirmed_count"] == 1
        assert second.data["all_confirmed"] is False
        assert repository.get_cycle(cycle.id).status is CycleStatus.PENDING_CONFIRMATION

        last = machine.confirm(cycle.id, "c")

        assert last.success
        assert last.data == {"confirmed": True, "all_confirmed": True, "confirmed_count": 3, "total_count": 3}
        stored = repository.get_cycle(cycle.id)
        assert stored.status is CycleStatus.CONFIRMED
        assert stored.confirmed_at == fixed_now
        titles = {n.title for n in repository.notifications_for("a")}
        assert "Swap Cycle Confirmed!" in titles

    def test_participant_row_is_updated(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now)

        machine.confirm(cycle.id, "b")

        row = next(p for p in repository.get_participants(cycle.id) if p.user_id == "b")
        assert row.confirmed is True
        assert row.confirmed_at == fixed_now
        assert row.status is ParticipantStatus.CONFIRMED

    def test_double_confirmation_is_rejected(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b", "c"], fixed_now)
        machine.confirm(cycle.id, "a")

        result = machine.confirm(cycle.id, "a")

        assert not result.success
        assert result.error == "validation"
        assert result.message == "You have already confirmed participation"
        assert repository.get_cycle(cycle.id).confirmed_participants_count == 1

    def test_non_participant_is_forbidden(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now)

        result = machine.confirm(cycle.id, "stranger")

        assert result.error == "forbidden"
        assert result.message == "You are not a participant in this cycle"

    def test_only_pending_cycles_can_be_confirmed(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.ACTIVE)

        result = machine.confirm(cycle.id, "a")

        assert result.error == "invalid_transition"
        assert result.message == "Cannot confirm cycle with status: active"

    def test_confirming_after_deadline_times_out(self, repository, machine, clock, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, confirmed_user_ids=("a",))
        clock.advance(hours=49)

        result = machine.confirm(cycle.id, "b")

        assert not result.success
        assert result.message == "Confirmation deadline has passed"
        assert repository.get_cycle(cycle.id).status is CycleStatus.TIMEOUT
        assert score_of(repository, "b") == Decimal("40.00")
        assert score_of(repository, "a") is None

    def test_concurrent_confirmations_are_all_counted(self, repository, machine, fixed_now):
        users = ["a", "b", "c", "d", "e"]
        cycle, _ = seed_cycle(repository, users, fixed_now)

        with ThreadPoolExecutor(max_workers=len(users)) as pool:
            results = list(pool.map(lambda user_id: machine.confirm(cycle.id, user_id), users))

        assert all(r.success for r in results)
        assert sum(r.data["all_confirmed"] for r in results) == 1
        stored = repository.get_cycle(cycle.id)
        assert stored.confirmed_participants_count == 5
        assert stored.status is CycleStatus.CONFIRMED


class TestCycleLocks:
    def test_lock_is_shared_while_held(self, machine):
        lock = machine._lock_for("c1")

        assert machine._lock_for("c1") is lock
        assert machine._lock_for("c2") is not lock

    def test_locks_are_released_after_use(self, repository, machine, fixed_now):
        cycles = [seed_cycle(repository, ["a", "b"], fixed_now)[0] for _ in range(3)]

        for cycle in cycles:
            machine.cancel(cycle.id, "a", "Changed plans")

        assert len(machine._locks) == 0


class TestDropOffAndCollect:
    def test_first_drop_off_activates_cycle(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.CONFIRMED)

        result = machine.drop_off(cycle.id, "a", "https://img/a.jpg")

        assert result.success
        assert result.data["dropped_at"] == fixed_now.isoformat()
        assert repository.get_cycle(cycle.id).status is CycleStatus.ACTIVE
        row = repository.get_participants(cycle.id)[0]
        assert row.book_dropped is True
        assert row.status is ParticipantStatus.BOOK_DROPPED
        assert row.drop_verification_photo_url == "https://img/a.jpg"

        assert machine.drop_off(cycle.id, "b").success
        assert repository.get_cycle(cycle.id).status is CycleStatus.ACTIVE

    def test_drop_off_twice(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.ACTIVE)
        machine.drop_off(cycle.id, "a")

        result = machine.drop_off(cycle.id, "a")

        assert result.message == "You have already dropped off your book"

    def test_drop_off_before_confirmation(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now)

        result = machine.drop_off(cycle.id, "a")

        assert result.error == "invalid_transition"
        assert repository.get_cycle(cycle.id).status is CycleStatus.PENDING_CONFIRMATION

    def test_collect_requires_active_cycle(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.CONFIRMED)

        result = machine.collect(cycle.id, "a", "QR-a")

        assert result.error == "invalid_transition"
        assert result.message == "Cannot collect book for cycle with status: confirmed"

    @pytest.mark.parametrize(
        "qr_code,message",
        [(None, "QR code is required"), ("", "QR code is required"), ("QR-b", "Invalid QR code")],
    )
    def test_bad_qr_code(self, repository, machine, fixed_now, qr_code, message):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.ACTIVE)

        result = machine.collect(cycle.id, "a", qr_code)

        assert result.error == "validation"
        assert result.message == message
        assert not repository.get_participants(cycle.id)[0].book_collected

    def test_all_collected_completes_cycle(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.ACTIVE)

        first = machine.collect(cycle.id, "a", "QR-a")
        assert first.data["cycle_completed"] is False
        last = machine.collect(cycle.id, "b", "QR-b", "https://img/b.jpg")

        assert last.data == {"collected_at": fixed_now.isoformat(), "cycle_completed": True}
        stored = repository.get_cycle(cycle.id)
        assert stored.status is CycleStatus.COMPLETED
        assert stored.completed_at == fixed_now

        for user_id in ("a", "b"):
            record = repository.get_reliability_record(user_id)
            assert record.reliability_score == Decimal("52.00")
            assert record.total_cycles_joined == 1
            assert record.total_cycles_completed == 1
            assert record.total_swaps_completed == 1
            assert "first_swap" in record.badges

    def test_completion_caps_score_at_100(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.ACTIVE)
        repository.set_reliability("a", "99.50")

        machine.collect(cycle.id, "a", "QR-a")
        machine.collect(cycle.id, "b", "QR-b")

        assert score_of(repository, "a") == Decimal("100.00")

    def test_collect_twice(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b", "c"], fixed_now, status=CycleStatus.ACTIVE)
        machine.collect(cycle.id, "a", "QR-a")

        result = machine.collect(cycle.id, "a", "QR-a")

        assert result.message == "You have already collected your book"


class TestCancel:
    def test_cancel_penalizes_everyone(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b", "c"], fixed_now, confirmed_user_ids=("a",))

        result = machine.cancel(cycle.id, "b", "  Moved schools  ")

        assert result.success
        assert result.message == "Cycle cancelled successfully"
        stored = repository.get_cycle(cycle.id)
        assert stored.status is CycleStatus.CANCELLED
        assert stored.cancellation_reason == "Moved schools"
        assert stored.cancelled_at == fixed_now
        for user_id in ("a", "b", "c"):
            record = repository.get_reliability_record(user_id)
            assert record.reliability_score == Decimal("45.00")
            assert record.penalty_points == 5
            assert record.total_swaps_cancelled == 1
        (notification,) = repository.notifications_for("c")
        assert notification.title == "Swap Cycle Cancelled"
        assert notification.message == "Moved schools"

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_is_required(self, repository, machine, fixed_now, reason):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now)

        result = machine.cancel(cycle.id, "a", reason)

        assert result.message == "Cancellation reason is required"
        assert repository.get_cycle(cycle.id).status is CycleStatus.PENDING_CONFIRMATION

    def test_non_participant_cannot_cancel(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now)

        result = machine.cancel(cycle.id, "stranger", "No reason")

        assert result.error == "forbidden"
        assert repository.get_cycle(cycle.id).status is CycleStatus.PENDING_CONFIRMATION

    def test_terminal_cycle_cannot_be_cancelled(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.COMPLETED)

        result = machine.cancel(cycle.id, "a", "Changed my mind")

        assert result.error == "invalid_transition"
        assert result.message == "Cannot cancel cycle with status: completed"


class TestConditionReport:
    def test_mismatch_penalizes_the_giver(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b", "c"], fixed_now, status=CycleStatus.ACTIVE)
        machine.collect(cycle.id, "a", "QR-a")

        result = machine.report_condition(cycle.id, "a", "Good", "Poor", notes="Torn cover")

        # a receives b's book
        assert result.success
        assert result.data == {"mismatch": True, "giver_id": "b"}
        record = repository.get_reliability_record("b")
        assert record.reliability_score == Decimal("47.00")
        assert record.penalty_points == 3
        assert score_of(repository, "c") is None

    def test_last_position_receives_from_first(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b", "c"], fixed_now, status=CycleStatus.ACTIVE)
        machine.collect(cycle.id, "c", "QR-c")

        result = machine.report_condition(cycle.id, "c", "New", "Fair")

        assert result.data["giver_id"] == "a"

    def test_matching_condition_is_case_insensitive(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.ACTIVE)
        machine.collect(cycle.id, "a", "QR-a")

        result = machine.report_condition(cycle.id, "a", "good", " Good ")

        assert result.success
        assert result.data == {"mismatch": False}
        assert repository.reliability == {}

    def test_must_collect_first(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.ACTIVE)

        result = machine.report_condition(cycle.id, "a", "Good", "Poor")

        assert result.message == "Collect your book before reporting its condition"

    def test_conditions_are_required(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.ACTIVE)

        result = machine.report_condition(cycle.id, "a", "", "Poor")

        assert result.message == "Expected and actual condition are required"


class TestDeadlineSweeps:
    def test_expired_confirmation_times_out_and_penalizes_unconfirmed(self, repository, machine, clock, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b", "c"], fixed_now, confirmed_user_ids=("a",))
        clock.advance(hours=49)

        assert machine.process_expired_confirmations() == 1

        stored = repository.get_cycle(cycle.id)
        assert stored.status is CycleStatus.TIMEOUT
        assert stored.cancellation_reason == "Confirmation deadline expired"
        assert score_of(repository, "a") is None
        for user_id in ("b", "c"):
            record = repository.get_reliability_record(user_id)
            assert record.reliability_score == Decimal("40.00")
            assert record.total_cycles_timeout == 1
            assert record.penalty_points == 10
        for user_id in ("a", "b", "c"):
            (notification,) = repository.notifications_for(user_id)
            assert notification.title == "Swap Cycle Expired"

    def test_cycles_within_deadline_are_left_alone(self, repository, machine, clock, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now)
        clock.advance(hours=47)

        assert machine.process_expired_confirmations() == 0
        assert repository.get_cycle(cycle.id).status is CycleStatus.PENDING_CONFIRMATION

    def test_sweep_is_idempotent(self, repository, machine, clock, fixed_now):
        seed_cycle(repository, ["a", "b"], fixed_now)
        clock.advance(days=3)

        assert machine.process_expired_confirmations() == 1
        assert machine.process_expired_confirmations() == 0
        assert score_of(repository, "a") == Decimal("40.00")

    def test_overdue_active_cycle_gets_reminders(self, repository, machine, clock, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.ACTIVE)
        machine.collect(cycle.id, "a", "QR-a")
        clock.advance(days=8)

        assert machine.process_expired_completions() == 1

        assert repository.get_cycle(cycle.id).status is CycleStatus.ACTIVE
        reminders = [n for n in repository.notifications if n.type is NotificationType.CYCLE_REMINDER]
        assert [n.user_id for n in reminders] == ["b"]

    def test_overdue_fully_collected_cycle_completes(self, repository, machine, clock, fixed_now):
        cycle, participants = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.ACTIVE)
        for participant in participants:
            participant.book_collected = True
            repository.update_participant(participant)
        clock.advance(days=8)

        machine.process_expired_completions()

        assert repository.get_cycle(cycle.id).status is CycleStatus.COMPLETED
        assert score_of(repository, "a") == Decimal("52.00")


class TestReadModels:
    def test_cycle_view_for_participant(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now)

        result = machine.get_cycle_view(cycle.id, "a")

        assert result.success
        assert result.data["cycle"]["id"] == cycle.id
        first, second = result.data["participants"]
        assert first["user_id"] == "a"
        assert first["book_to_receive"]["title"] == "Book of b"
        assert second["book_to_give"]["title"] == "Book of b"
        assert first["school"]["id"] == "s-a"

    def test_cycle_view_for_stranger(self, repository, machine, fixed_now):
        cycle, _ = seed_cycle(repository, ["a", "b"], fixed_now)

        result = machine.get_cycle_view(cycle.id, "stranger")

        assert result.error == "forbidden"
        assert result.data == {}

    def test_cycle_view_not_found(self, machine):
        assert machine.get_cycle_view("missing", "a").error == "not_found"

    def test_list_user_cycles(self, repository, machine, fixed_now):
        older, _ = seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.COMPLETED)
        newer, _ = seed_cycle(repository, ["a", "c"], fixed_now)
        seed_cycle(repository, ["b", "c"], fixed_now)

        result = machine.list_user_cycles("a")

        assert result.data["total"] == 2
        assert [c["cycle"]["id"] for c in result.data["cycles"]] == [newer.id, older.id]
        assert all(c["my_participation"]["user_id"] == "a" for c in result.data["cycles"])

    def test_list_user_cycles_by_status(self, repository, machine, fixed_now):
        seed_cycle(repository, ["a", "b"], fixed_now, status=CycleStatus.COMPLETED)
        pending, _ = seed_cycle(repository, ["a", "c"], fixed_now)

        result = machine.list_user_cycles("a", status=CycleStatus.PENDING_CONFIRMATION)

        assert [c["cycle"]["id"] for c in result.data["cycles"]] == [pending.id]
