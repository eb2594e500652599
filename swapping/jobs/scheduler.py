"""Background schedule for cycle detection and deadline sweeps.

Detection runs every 6 hours and saves the 50 best cycles of up to 5
users; the timeout sweep runs every 30 minutes over both deadlines.
"""

from __future__ import annotations

import logging

from ..detection.cycle_detector import MAX_CYCLE_SIZE, CycleDetector
from ..errors import DetectionAlreadyRunningError
from ..lifecycle.state_machine import CycleStateMachine
from .job_runner import PeriodicJob

logger = logging.getLogger(__name__)

DETECTION_INTERVAL_SECONDS = 6 * 60 * 60
TIMEOUT_SWEEP_INTERVAL_SECONDS = 30 * 60
DETECTION_TOP_N = 50


class SwapScheduler:
    """Owns the detection and timeout-sweep jobs"""

    def __init__(
        self,
        detector: CycleDetector,
        state_machine: CycleStateMachine,
        detection_interval_seconds: float = DETECTION_INTERVAL_SECONDS,
        timeout_sweep_interval_seconds: float = TIMEOUT_SWEEP_INTERVAL_SECONDS,
        max_cycle_size: int = MAX_CYCLE_SIZE,
        top_n: int = DETECTION_TOP_N,
    ):
        self.detector = detector
        self.state_machine = state_machine
        self.max_cycle_size = max_cycle_size
        self.top_n = top_n
        self.detection_job = PeriodicJob(
            "cycle-detection",
            self._scheduled_detection,
            detection_interval_seconds,
            busy_error=DetectionAlreadyRunningError,
        )
        self.timeout_job = PeriodicJob("cycle-timeout", self.run_timeout_sweep, timeout_sweep_interval_seconds)

    def start(self, run_immediately: bool = True) -> None:
        """Start both jobs; with ``run_immediately`` each does its first run at once"""
        self.detection_job.start(run_immediately)
        self.timeout_job.start(run_immediately)
        logger.info("Swap scheduler started")

    def stop(self) -> None:
        self.detection_job.stop()
        self.timeout_job.stop()
        logger.info("Swap scheduler stopped")

    def _scheduled_detection(self) -> int:
        return self.detector.detect_and_save(self.max_cycle_size, self.top_n)

    def trigger_detection(self, max_cycle_size: int | None = None, top_n: int | None = None) -> int:
        """Run detection now on the caller's thread.

        Raises:
            DetectionAlreadyRunningError: If a detection run is in progress
            ValueError: If the size or count is out of range
        """
        size = self.max_cycle_size if max_cycle_size is None else max_cycle_size
        count = self.top_n if top_n is None else top_n
        return self.detection_job.trigger(lambda: self.detector.detect_and_save(size, count))

    def run_timeout_sweep(self) -> dict[str, int]:
        timed_out = self.state_machine.process_expired_confirmations()
        overdue = self.state_machine.process_expired_completions()
        logger.info(f"Timeout sweep: {timed_out} cycles timed out, {overdue} overdue cycles processed")
        return {"timed_out": timed_out, "overdue": overdue}

    def trigger_timeout_sweep(self) -> dict[str, int]:
        return self.timeout_job.trigger()
