"""Reliability score bookkeeping for swap outcomes.

Scores live in [0, 100] and start at 50.00; a user's record is created
on their first outcome. Completing a swap can unlock milestones and
badges.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal

from ..config.policy import LifecyclePolicy
from ..data.interfaces import SwapRepository
from ..models import CycleParticipant, ReliabilityOutcome, UserReliabilityScore, to_decimal
from .notifications import CycleNotifier

logger = logging.getLogger(__name__)

MIN_SCORE = Decimal("0.00")
MAX_SCORE = Decimal("100.00")

MILESTONES: dict[int, str] = {
    1: "Congratulations on your first swap!",
    5: "You've completed 5 swaps! Keep it up!",
    10: "10 swaps completed! You're a swap champion!",
    25: "25 swaps! You're a swap legend!",
    50: "50 swaps! You're making a real impact!",
    100: "100 swaps! You're a community hero!",
}


@dataclass(frozen=True)
class Badge:
    id: str
    name: str
    description: str
    icon: str
    earned: Callable[[UserReliabilityScore], bool]


def _swaps(count: int) -> Callable[[UserReliabilityScore], bool]:
    return lambda s: s.total_swaps_completed >= count


BADGES: tuple[Badge, ...] = (
    Badge("first_swap", "First Swap", "Completed your first book swap", "🎉", _swaps(1)),
    Badge("swap_master_5", "Swap Master", "Completed 5 successful swaps", "⭐", _swaps(5)),
    Badge("swap_master_10", "Swap Champion", "Completed 10 successful swaps", "🏆", _swaps(10)),
    Badge("swap_master_25", "Swap Legend", "Completed 25 successful swaps", "👑", _swaps(25)),
    Badge(
        "reliable_100",
        "Perfectly Reliable",
        "Achieved 100% reliability score",
        "💯",
        lambda s: s.reliability_score >= 100,
    ),
    Badge(
        "reliable_90",
        "Highly Reliable",
        "Maintained 90%+ reliability score",
        "🌟",
        lambda s: s.reliability_score >= 90,
    ),
    Badge(
        "cycle_master",
        "Cycle Master",
        "Completed 5 multi-way swap cycles",
        "🔄",
        lambda s: s.total_cycles_completed >= 5,
    ),
    Badge(
        "zero_penalties",
        "Spotless Record",
        "No penalty points",
        "✨",
        lambda s: s.penalty_points == 0 and s.total_swaps_completed >= 3,
    ),
)


def clamp_score(value: Decimal) -> Decimal:
    return to_decimal(min(MAX_SCORE, max(MIN_SCORE, value)))


class ReliabilityService:
    """Applies outcome deltas, counters, milestones and badges"""

    def __init__(
        self,
        repository: SwapRepository,
        notifier: CycleNotifier | None = None,
        policy: LifecyclePolicy | None = None,
    ):
        self.repository = repository
        self.notifier = notifier or CycleNotifier(repository)
        self.policy = policy or LifecyclePolicy()

    def get_or_create(self, user_id: str) -> UserReliabilityScore:
        record = self.repository.get_reliability_record(user_id)
        if record is None:
            record = self.repository.save_reliability_record(
                UserReliabilityScore(user_id=user_id, reliability_score=to_decimal(self.policy.default_reliability))
            )
        return record

    def apply_outcome(self, user_id: str, outcome: ReliabilityOutcome) -> UserReliabilityScore:
        """Update one user's record for ``outcome`` and persist it."""
        record = self.get_or_create(user_id)
        old_score = record.reliability_score
        policy = self.policy

        if outcome is ReliabilityOutcome.COMPLETED:
            record.total_cycles_joined += 1
            record.total_cycles_completed += 1
            record.total_swaps_completed += 1
            delta = policy.completed_delta
        elif outcome is ReliabilityOutcome.CANCELLED:
            record.total_cycles_joined += 1
            record.total_swaps_cancelled += 1
            record.penalty_points += policy.cancelled_penalty
            delta = policy.cancelled_delta
        elif outcome is ReliabilityOutcome.TIMEOUT:
            record.total_cycles_timeout += 1
            record.penalty_points += policy.timeout_penalty
            delta = policy.timeout_delta
        elif outcome is ReliabilityOutcome.CONDITION_MISMATCH:
            record.penalty_points += policy.condition_mismatch_penalty
            delta = policy.condition_mismatch_delta
        else:
            raise ValueError(f"Unhandled reliability outcome: {outcome}")

        record.reliability_score = clamp_score(old_score + delta)
        record = self.repository.save_reliability_record(record)
        logger.info(f"user {user_id}: reliability {old_score} → {record.reliability_score} ({outcome.value})")

        if outcome is ReliabilityOutcome.COMPLETED:
            self.check_milestones(record)
        return record

    def apply_to_all(self, participants: Iterable[CycleParticipant], outcome: ReliabilityOutcome) -> int:
        """Apply ``outcome`` to each participant; failures are logged and skipped."""
        updated = 0
        for participant in participants:
            try:
                self.apply_outcome(participant.user_id, outcome)
                updated += 1
            except Exception as e:
                logger.error(f"Error updating reliability for user {participant.user_id}: {e}", exc_info=True)
        return updated

    def penalize_unconfirmed(self, participants: Iterable[CycleParticipant]) -> int:
        return self.apply_to_all([p for p in participants if not p.confirmed], ReliabilityOutcome.TIMEOUT)

    def check_milestones(self, record: UserReliabilityScore) -> list[str]:
        """Notify exact milestone hits, then award any newly earned badges."""
        message = MILESTONES.get(record.total_swaps_completed)
        if message is not None:
            self.notifier.milestone(record.user_id, message)
            logger.info(f"User {record.user_id} reached milestone: {record.total_swaps_completed} swaps")
        return self.award_badges(record)

    def award_badges(self, record: UserReliabilityScore) -> list[str]:
        new_badges = [b for b in BADGES if b.id not in record.badges and b.earned(record)]
        if not new_badges:
            return []

        for badge in new_badges:
            record.badges.append(badge.id)
            self.notifier.badge_awarded(record.user_id, badge.name, badge.icon, badge.description)
            logger.info(f"User {record.user_id} earned badge: {badge.name}")

        self.repository.save_reliability_record(record)
        return [b.id for b in new_badges]
