"""Notification content for cycle events.

The engine only decides who is told what; delivery (push, SMS, email)
happens outside. Every notification is written through the repository.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..data.interfaces import SwapRepository
from ..models import CycleParticipant, CycleStatus, Notification, NotificationType, SwapCycle

logger = logging.getLogger(__name__)

PROFILE_URL = "/profile"


def cycle_url(cycle_id: str) -> str:
    return f"/swap-cycles/{cycle_id}"


# (title, message template); {cycle_type} and {reason} are filled per cycle
STATE_CHANGE_CONTENT: dict[CycleStatus, tuple[str, str]] = {
    CycleStatus.PENDING_CONFIRMATION: ("Swap Cycle Pending", "Waiting for every participant to confirm."),
    CycleStatus.CONFIRMED: (
        "Swap Cycle Confirmed!",
        "All participants confirmed the {cycle_type} swap. Time to exchange books!",
    ),
    CycleStatus.ACTIVE: ("Swap Cycle Active", "Drop off your book at the designated location."),
    CycleStatus.COMPLETED: ("Swap Cycle Completed!", "Congratulations! Your {cycle_type} swap is complete."),
    CycleStatus.CANCELLED: ("Swap Cycle Cancelled", "{reason}"),
    CycleStatus.TIMEOUT: ("Swap Cycle Expired", "The confirmation deadline passed. Cycle cancelled."),
}


def state_change_content(cycle: SwapCycle, new_status: CycleStatus, reason: str | None = None) -> tuple[str, str]:
    """(title, message) shown to every participant after a transition"""
    title, template = STATE_CHANGE_CONTENT[new_status]
    message = template.format(
        cycle_type=cycle.cycle_type,
        reason=reason or "The swap cycle has been cancelled.",
    )
    return title, message


class CycleNotifier:
    """Creates notifications for cycle events"""

    def __init__(self, repository: SwapRepository):
        self.repository = repository

    def _send(self, notifications: Iterable[Notification]) -> int:
        sent = 0
        for notification in notifications:
            try:
                self.repository.create_notification(notification)
                sent += 1
            except Exception as e:
                logger.error(f"Failed to notify user {notification.user_id}: {e}")
        return sent

    def cycle_detected(self, cycle: SwapCycle, participants: Iterable[CycleParticipant]) -> int:
        sent = self._send(
            Notification(
                user_id=p.user_id,
                type=NotificationType.CYCLE_MATCH,
                title="Swap Match Found!",
                message=f"You're part of a {cycle.cycle_type} swap! Confirm within 48 hours.",
                action_url=cycle_url(cycle.id),
            )
            for p in participants
        )
        logger.info(f"Sent cycle detection notifications to {sent} users")
        return sent

    def state_changed(
        self,
        cycle: SwapCycle,
        participants: Iterable[CycleParticipant],
        new_status: CycleStatus,
        reason: str | None = None,
    ) -> int:
        title, message = state_change_content(cycle, new_status, reason)
        sent = self._send(
            Notification(
                user_id=p.user_id,
                type=NotificationType.CYCLE_UPDATE,
                title=title,
                message=message,
                action_url=cycle_url(cycle.id),
            )
            for p in participants
        )
        logger.info(f"Sent {sent} notifications for cycle {cycle.id}")
        return sent

    def late_reminders(self, cycle: SwapCycle, participants: Iterable[CycleParticipant]) -> int:
        """Remind participants who have not collected after the completion deadline."""
        return self._send(
            Notification(
                user_id=p.user_id,
                type=NotificationType.CYCLE_REMINDER,
                title="Swap Cycle Reminder",
                message="Please collect your book soon. The deadline has passed.",
                action_url=cycle_url(cycle.id),
            )
            for p in participants
            if not p.book_collected
        )

    def milestone(self, user_id: str, message: str) -> int:
        return self._send(
            [
                Notification(
                    user_id=user_id,
                    type=NotificationType.MILESTONE,
                    title="Milestone Reached! 🎉",
                    message=message,
                    action_url=PROFILE_URL,
                )
            ]
        )

    def badge_awarded(self, user_id: str, name: str, icon: str, description: str) -> int:
        return self._send(
            [
                Notification(
                    user_id=user_id,
                    type=NotificationType.ACHIEVEMENT,
                    title=f"Achievement Unlocked: {name}",
                    message=f"{icon} {description}",
                    action_url=PROFILE_URL,
                )
            ]
        )
