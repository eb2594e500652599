"""Swap engine error classes.

Raised inside the core and converted to ``ActionResult`` at the
module boundary.
"""

from __future__ import annotations


class SwapCycleError(Exception):
    """Base exception for swap engine errors."""

    error_kind = "internal"


class ValidationError(SwapCycleError):
    """Raised for malformed input, a wrong QR token or a missing reason."""

    error_kind = "validation"


class NotParticipantError(ValidationError):
    """Raised when a user acts on a cycle they are not part of."""

    error_kind = "forbidden"


class CycleNotFoundError(SwapCycleError):
    """Raised when a cycle id does not resolve."""

    error_kind = "not_found"

    def __init__(self, cycle_id: str):
        self.cycle_id = cycle_id
        super().__init__("Cycle not found")


class InvalidTransitionError(SwapCycleError):
    """Raised when a transition is not in the lifecycle table."""

    error_kind = "invalid_transition"

    def __init__(self, current_status: str, target_status: str, message: str | None = None):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message or f"Invalid transition: {current_status} → {target_status}")


class DropPointUnavailableError(SwapCycleError):
    """Raised when no drop point with coordinates can be resolved."""

    error_kind = "not_found"


class JobAlreadyRunningError(SwapCycleError):
    """Raised when a job is triggered while a previous run is in progress."""

    error_kind = "busy"


class DetectionAlreadyRunningError(JobAlreadyRunningError):
    """Raised when a detection run is requested while one is in progress."""
