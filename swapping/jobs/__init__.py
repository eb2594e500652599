"""Background jobs: periodic detection and deadline sweeps"""

from .job_runner import JobState, PeriodicJob
from .scheduler import SwapScheduler

__all__ = ["JobState", "PeriodicJob", "SwapScheduler"]
