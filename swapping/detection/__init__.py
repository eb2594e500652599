"""Cycle detection and ranking"""

from .cycle_detector import CycleDetector, collection_qr_code
from .scoring import canonical_key, priority_score, remove_duplicate_cycles, score_cycle

__all__ = [
    "CycleDetector",
    "canonical_key",
    "collection_qr_code",
    "priority_score",
    "remove_duplicate_cycles",
    "score_cycle",
]
