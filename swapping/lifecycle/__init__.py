"""Cycle lifecycle: transitions, reliability and notifications"""

from .notifications import CycleNotifier
from .reliability import ReliabilityService
from .state_machine import VALID_TRANSITIONS, CycleStateMachine, is_valid_transition

__all__ = [
    "CycleNotifier",
    "CycleStateMachine",
    "ReliabilityService",
    "VALID_TRANSITIONS",
    "is_valid_transition",
]
