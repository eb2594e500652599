"""
Cycle lifecycle: status transitions, participant actions and deadline sweeps.

pending_confirmation → confirmed → active → completed, with cancellation
from any live state and timeout from pending_confirmation. Terminal
cycles never change again.

Every public method returns an ``ActionResult``; engine errors are turned
into ``success=False`` results here and never reach the caller as
exceptions.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Callable
from datetime import UTC, datetime

from ..config.policy import LifecyclePolicy
from ..data.interfaces import SwapRepository
from ..errors import (
    CycleNotFoundError,
    InvalidTransitionError,
    NotParticipantError,
    SwapCycleError,
    ValidationError,
)
from ..models import (
    ActionResult,
    CycleParticipant,
    CycleStatus,
    ParticipantStatus,
    ReliabilityOutcome,
    SwapCycle,
)
from .notifications import CycleNotifier
from .reliability import ReliabilityService

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[CycleStatus, frozenset[CycleStatus]] = {
    CycleStatus.PENDING_CONFIRMATION: frozenset(
        {CycleStatus.CONFIRMED, CycleStatus.TIMEOUT, CycleStatus.CANCELLED}
    ),
    CycleStatus.CONFIRMED: frozenset({CycleStatus.ACTIVE, CycleStatus.CANCELLED}),
    CycleStatus.ACTIVE: frozenset({CycleStatus.COMPLETED, CycleStatus.CANCELLED}),
    CycleStatus.COMPLETED: frozenset(),
    CycleStatus.CANCELLED: frozenset(),
    CycleStatus.TIMEOUT: frozenset(),
}

TIMEOUT_REASON = "Confirmation deadline expired"
ALL_COLLECTED_REASON = "All books collected"


def is_valid_transition(current: CycleStatus, target: CycleStatus) -> bool:
    return target in VALID_TRANSITIONS[current]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CycleStateMachine:
    """Applies user actions and deadline sweeps to persisted cycles.

    Each cycle has its own re-entrant lock, so concurrent confirmations of
    the same cycle are serialised and the participant count cannot be lost.
    """

    def __init__(
        self,
        repository: SwapRepository,
        reliability: ReliabilityService | None = None,
        notifier: CycleNotifier | None = None,
        policy: LifecyclePolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.policy = policy or LifecyclePolicy()
        self.notifier = notifier or CycleNotifier(repository)
        self.reliability = reliability or ReliabilityService(repository, self.notifier, self.policy)
        self.clock = clock
        # Entries vanish once no caller holds the lock, so finished cycles leave nothing behind
        self._locks: weakref.WeakValueDictionary[str, threading.RLock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _lock_for(self, cycle_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(cycle_id)
            if lock is None:
                lock = self._locks[cycle_id] = threading.RLock()
            return lock

    def _run(self, action: str, cycle_id: str, operation: Callable[[], ActionResult]) -> ActionResult:
        """Run ``operation`` under the cycle's lock and convert failures to results."""
        try:
            with self._lock_for(cycle_id):
                return operation()
        except SwapCycleError as e:
            logger.info(f"{action} rejected for cycle {cycle_id}: {e}")
            return ActionResult.fail(str(e), error=e.error_kind)
        except Exception as e:
            logger.error(f"{action} failed for cycle {cycle_id}: {e}", exc_info=True)
            return ActionResult.fail(f"Failed to {action}", error="internal")

    def _load_cycle(self, cycle_id: str) -> SwapCycle:
        cycle = self.repository.get_cycle(cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        return cycle

    def _participant(self, cycle_id: str, user_id: str) -> tuple[CycleParticipant, list[CycleParticipant]]:
        participants = self.repository.get_participants(cycle_id)
        for participant in participants:
            if participant.user_id == user_id:
                return participant, participants
        raise NotParticipantError("You are not a participant in this cycle")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _apply_transition(self, cycle: SwapCycle, target: CycleStatus, reason: str | None = None) -> None:
        """Move ``cycle`` to ``target`` and run the side effects of entering it.

        Raises:
            InvalidTransitionError: If the move is not in the lifecycle table
        """
        current = cycle.status
        if not is_valid_transition(current, target):
            raise InvalidTransitionError(current.value, target.value)

        now = self.clock()
        cycle.status = target
        if target is CycleStatus.CONFIRMED:
            cycle.confirmed_at = now
        elif target is CycleStatus.COMPLETED:
            cycle.completed_at = now
        elif target in (CycleStatus.CANCELLED, CycleStatus.TIMEOUT):
            cycle.cancelled_at = now
            cycle.cancellation_reason = reason
        self.repository.update_cycle(cycle)

        participants = self.repository.get_participants(cycle.id)
        if target is CycleStatus.COMPLETED:
            self.reliability.apply_to_all(participants, ReliabilityOutcome.COMPLETED)
        elif target is CycleStatus.CANCELLED:
            self.reliability.apply_to_all(participants, ReliabilityOutcome.CANCELLED)
        elif target is CycleStatus.TIMEOUT:
            self.reliability.penalize_unconfirmed(participants)

        self.notifier.state_changed(cycle, participants, target, reason)
        logger.info(f"cycle {cycle.id}: {current.value} → {target.value}")

    def transition(self, cycle_id: str, target: CycleStatus, reason: str | None = None) -> ActionResult:
        """Administrative transition with full side effects."""

        def operation() -> ActionResult:
            cycle = self._load_cycle(cycle_id)
            self._apply_transition(cycle, target, reason)
            return ActionResult.ok(f"Cycle transitioned to {target.value}", status=target.value)

        return self._run("transition cycle", cycle_id, operation)

    # ------------------------------------------------------------------
    # Participant actions
    # ------------------------------------------------------------------

    def confirm(self, cycle_id: str, user_id: str) -> ActionResult:
        """Record one participant's opt-in; the last one confirms the cycle.

        A confirm after the deadline times the cycle out instead.
        """

        def operation() -> ActionResult:
            cycle = self._load_cycle(cycle_id)
            if cycle.status is not CycleStatus.PENDING_CONFIRMATION:
                raise InvalidTransitionError(
                    cycle.status.value,
                    CycleStatus.CONFIRMED.value,
                    f"Cannot confirm cycle with status: {cycle.status.value}",
                )

            if self.clock() > cycle.confirmation_deadline:
                self._apply_transition(cycle, CycleStatus.TIMEOUT, TIMEOUT_REASON)
                return ActionResult.fail(
                    "Confirmation deadline has passed", error="invalid_transition", status=cycle.status.value
                )

            participant, _ = self._participant(cycle_id, user_id)
            if participant.confirmed:
                raise ValidationError("You have already confirmed participation")

            participant.confirmed = True
            participant.confirmed_at = self.clock()
            participant.status = ParticipantStatus.CONFIRMED
            self.repository.update_participant(participant)

            cycle.confirmed_participants_count = min(
                cycle.confirmed_participants_count + 1, cycle.total_participants_count
            )
            self.repository.update_cycle(cycle)

            all_confirmed = cycle.confirmed_participants_count == cycle.total_participants_count
            if all_confirmed:
                self._apply_transition(cycle, CycleStatus.CONFIRMED)

            return ActionResult.ok(
                "Participation confirmed successfully",
                confirmed=True,
                all_confirmed=all_confirmed,
                confirmed_count=cycle.confirmed_participants_count,
                total_count=cycle.total_participants_count,
            )

        return self._run("confirm cycle", cycle_id, operation)

    def drop_off(self, cycle_id: str, user_id: str, verification_photo_url: str | None = None) -> ActionResult:
        """Record a book handed in at the drop point; the first one activates the cycle."""

        def operation() -> ActionResult:
            cycle = self._load_cycle(cycle_id)
            if cycle.status not in (CycleStatus.CONFIRMED, CycleStatus.ACTIVE):
                raise InvalidTransitionError(
                    cycle.status.value,
                    CycleStatus.ACTIVE.value,
                    f"Cannot drop off book for cycle with status: {cycle.status.value}",
                )

            participant, _ = self._participant(cycle_id, user_id)
            if participant.book_dropped:
                raise ValidationError("You have already dropped off your book")

            now = self.clock()
            participant.book_dropped = True
            participant.dropped_at = now
            participant.drop_verification_photo_url = verification_photo_url
            participant.status = ParticipantStatus.BOOK_DROPPED
            self.repository.update_participant(participant)

            if cycle.status is CycleStatus.CONFIRMED:
                self._apply_transition(cycle, CycleStatus.ACTIVE)

            return ActionResult.ok("Book drop-off recorded successfully", dropped_at=now.isoformat())

        return self._run("record drop-off", cycle_id, operation)

    def collect(
        self,
        cycle_id: str,
        user_id: str,
        qr_code: str | None,
        verification_photo_url: str | None = None,
    ) -> ActionResult:
        """Record a collection against the participant's QR token; the last one completes the cycle."""

        def operation() -> ActionResult:
            if not qr_code:
                raise ValidationError("QR code is required")

            cycle = self._load_cycle(cycle_id)
            if cycle.status is not CycleStatus.ACTIVE:
                raise InvalidTransitionError(
                    cycle.status.value,
                    CycleStatus.COMPLETED.value,
                    f"Cannot collect book for cycle with status: {cycle.status.value}",
                )

            participant, participants = self._participant(cycle_id, user_id)
            if participant.collection_qr_code != qr_code:
                raise ValidationError("Invalid QR code")
            if participant.book_collected:
                raise ValidationError("You have already collected your book")

            now = self.clock()
            participant.book_collected = True
            participant.collected_at = now
            participant.collection_verification_photo_url = verification_photo_url
            participant.status = ParticipantStatus.COMPLETED
            self.repository.update_participant(participant)

            all_collected = all(p.book_collected for p in participants)
            if all_collected:
                self._apply_transition(cycle, CycleStatus.COMPLETED, ALL_COLLECTED_REASON)

            return ActionResult.ok(
                "Book collection recorded successfully",
                collected_at=now.isoformat(),
                cycle_completed=all_collected,
            )

        return self._run("record collection", cycle_id, operation)

    def cancel(self, cycle_id: str, user_id: str, reason: str | None) -> ActionResult:
        """Cancel a live cycle on behalf of one of its participants."""

        def operation() -> ActionResult:
            if not reason or not reason.strip():
                raise ValidationError("Cancellation reason is required")

            cycle = self._load_cycle(cycle_id)
            if cycle.status.is_terminal:
                raise InvalidTransitionError(
                    cycle.status.value,
                    CycleStatus.CANCELLED.value,
                    f"Cannot cancel cycle with status: {cycle.status.value}",
                )

            self._participant(cycle_id, user_id)
            self._apply_transition(cycle, CycleStatus.CANCELLED, reason.strip())
            return ActionResult.ok("Cycle cancelled successfully")

        return self._run("cancel cycle", cycle_id, operation)

    def report_condition(
        self,
        cycle_id: str,
        user_id: str,
        expected_condition: str,
        actual_condition: str,
        notes: str | None = None,
    ) -> ActionResult:
        """Report the condition of the received book.

        A mismatch penalises the giver, whose offered book is the one the
        reporter received.
        """

        def operation() -> ActionResult:
            if not expected_condition or not actual_condition:
                raise ValidationError("Expected and actual condition are required")

            cycle = self._load_cycle(cycle_id)
            if cycle.status not in (CycleStatus.ACTIVE, CycleStatus.COMPLETED):
                raise InvalidTransitionError(
                    cycle.status.value,
                    cycle.status.value,
                    f"Cannot report book condition for cycle with status: {cycle.status.value}",
                )

            reporter, participants = self._participant(cycle_id, user_id)
            if not reporter.book_collected:
                raise ValidationError("Collect your book before reporting its condition")

            mismatch = expected_condition.strip().lower() != actual_condition.strip().lower()
            if not mismatch:
                return ActionResult.ok("Book condition matches the listing", mismatch=False)

            giver = next((p for p in participants if p.book_to_give_id == reporter.book_to_receive_id), None)
            if giver is None:
                raise ValidationError("No participant gave the book you received")
            self.reliability.apply_outcome(giver.user_id, ReliabilityOutcome.CONDITION_MISMATCH)
            logger.info(
                f"cycle {cycle_id}: condition mismatch reported by {user_id} against {giver.user_id}"
                + (f" ({notes})" if notes else "")
            )
            return ActionResult.ok("Condition mismatch recorded", mismatch=True, giver_id=giver.user_id)

        return self._run("report book condition", cycle_id, operation)

    # ------------------------------------------------------------------
    # Deadline sweeps
    # ------------------------------------------------------------------

    def process_expired_confirmations(self) -> int:
        """Time out pending cycles past their confirmation deadline."""
        now = self.clock()
        try:
            expired = self.repository.find_cycles(
                CycleStatus.PENDING_CONFIRMATION, confirmation_deadline_before=now
            )
        except Exception as e:
            logger.error(f"Error processing expired confirmations: {e}", exc_info=True)
            return 0

        logger.info(f"Found {len(expired)} expired confirmation cycles")
        processed = 0
        for cycle in expired:
            result = self._run(
                "time out cycle",
                cycle.id,
                lambda cycle_id=cycle.id: self._timeout_if_still_pending(cycle_id, now),
            )
            if result.success:
                processed += 1
        return processed

    def _timeout_if_still_pending(self, cycle_id: str, now: datetime) -> ActionResult:
        # Re-read under the lock; a confirm may have landed since the query
        cycle = self._load_cycle(cycle_id)
        if cycle.status is not CycleStatus.PENDING_CONFIRMATION or cycle.confirmation_deadline >= now:
            return ActionResult.fail("Cycle no longer pending", error="invalid_transition")
        self._apply_transition(cycle, CycleStatus.TIMEOUT, TIMEOUT_REASON)
        return ActionResult.ok("Cycle timed out")

    def process_expired_completions(self) -> int:
        """Complete overdue active cycles that are fully collected; remind the rest."""
        now = self.clock()
        try:
            overdue = self.repository.find_cycles(CycleStatus.ACTIVE, completion_deadline_before=now)
        except Exception as e:
            logger.error(f"Error processing expired completions: {e}", exc_info=True)
            return 0

        logger.info(f"Found {len(overdue)} expired completion cycles")
        for cycle in overdue:
            self._run("process overdue cycle", cycle.id, lambda cycle_id=cycle.id: self._settle_overdue(cycle_id))
        return len(overdue)

    def _settle_overdue(self, cycle_id: str) -> ActionResult:
        cycle = self._load_cycle(cycle_id)
        if cycle.status is not CycleStatus.ACTIVE:
            return ActionResult.fail("Cycle no longer active", error="invalid_transition")

        participants = self.repository.get_participants(cycle_id)
        if participants and all(p.book_collected for p in participants):
            self._apply_transition(cycle, CycleStatus.COMPLETED, ALL_COLLECTED_REASON)
            return ActionResult.ok("Cycle completed")

        sent = self.notifier.late_reminders(cycle, participants)
        return ActionResult.ok("Late reminders sent", reminders=sent)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def get_cycle_view(self, cycle_id: str, user_id: str) -> ActionResult:
        """Cycle details for one of its participants."""
        try:
            view = self.repository.get_cycle_view(cycle_id)
            if view is None:
                raise CycleNotFoundError(cycle_id)
            if view.participant_for(user_id) is None:
                raise NotParticipantError("You are not a participant in this cycle")
            return ActionResult.ok("Cycle found", **view.to_dict())
        except SwapCycleError as e:
            return ActionResult.fail(str(e), error=e.error_kind)
        except Exception as e:
            logger.error(f"Failed to fetch cycle {cycle_id}: {e}", exc_info=True)
            return ActionResult.fail("Failed to fetch cycle", error="internal")

    def list_user_cycles(self, user_id: str, status: CycleStatus | None = None, limit: int = 20) -> ActionResult:
        """Cycles the user takes part in, each with their own participation row."""
        try:
            cycles = []
            for cycle in self.repository.find_user_cycles(user_id, status=status, limit=limit):
                view = self.repository.get_cycle_view(cycle.id)
                if view is None:
                    continue
                mine = view.participant_for(user_id)
                data = view.to_dict()
                data["my_participation"] = mine.participant.to_dict() if mine else None
                cycles.append(data)
            return ActionResult.ok("Cycles found", cycles=cycles, total=len(cycles))
        except Exception as e:
            logger.error(f"Failed to fetch cycles for user {user_id}: {e}", exc_info=True)
            return ActionResult.fail("Failed to fetch cycles", error="internal")
