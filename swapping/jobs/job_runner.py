"""Periodic background jobs with a single-run guard.

A job runs on a daemon thread every ``interval_seconds`` and can also be
triggered on demand. At most one run of a job is in flight at a time;
a trigger that finds the job busy is rejected instead of queued.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from ..errors import JobAlreadyRunningError

logger = logging.getLogger(__name__)


class JobState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class PeriodicJob:
    """Runs ``action`` on an interval on a background thread"""

    def __init__(
        self,
        name: str,
        action: Callable[[], Any],
        interval_seconds: float,
        busy_error: type[JobAlreadyRunningError] = JobAlreadyRunningError,
    ):
        """Initialize job.

        Args:
            name: Label used in log lines and the thread name
            action: Zero-argument callable doing one run
            interval_seconds: Seconds between scheduled runs
            busy_error: Exception raised when triggered while running
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.action = action
        self.interval_seconds = interval_seconds
        self.busy_error = busy_error
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_run_at: float | None = None
        self.last_error: str | None = None

    @property
    def state(self) -> JobState:
        return JobState.RUNNING if self._run_lock.locked() else JobState.IDLE

    @property
    def is_running(self) -> bool:
        return self.state is JobState.RUNNING

    def start(self, run_immediately: bool = False) -> None:
        """Start the background loop.

        Args:
            run_immediately: Do one run as soon as the thread starts instead of
                waiting a full interval for the first one
        """
        if self._thread and self._thread.is_alive():
            logger.warning(f"Job {self.name} already started")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(run_immediately,), daemon=True, name=f"job-{self.name}"
        )
        self._thread.start()
        logger.info(f"Job {self.name} started (every {self.interval_seconds}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info(f"Job {self.name} stopped")

    def trigger(self, action: Callable[[], Any] | None = None) -> Any:
        """Run now on the caller's thread and return the action's result.

        ``action`` replaces the job's own action for this run only.

        Raises:
            JobAlreadyRunningError: If a run is already in flight
        """
        if not self._run_lock.acquire(blocking=False):
            raise self.busy_error(f"{self.name} is already running")
        try:
            return self._execute(action or self.action)
        finally:
            self._run_lock.release()

    def _execute(self, action: Callable[[], Any]) -> Any:
        started = time.monotonic()
        logger.info(f"Job {self.name} running")
        try:
            result = action()
            self.last_error = None
            return result
        except Exception as e:
            self.last_error = str(e)
            raise
        finally:
            self.last_run_at = time.time()
            logger.info(f"Job {self.name} finished in {time.monotonic() - started:.2f}s")

    def _run_scheduled(self) -> None:
        if not self._run_lock.acquire(blocking=False):
            logger.info(f"Skipping scheduled run of {self.name}: previous run still in progress")
            return
        try:
            self._execute(self.action)
        except Exception as e:
            logger.error(f"Error in job {self.name}: {e}", exc_info=True)
        finally:
            self._run_lock.release()

    def _loop(self, run_immediately: bool) -> None:
        if run_immediately:
            self._run_scheduled()
        while not self._stop_event.wait(self.interval_seconds):
            self._run_scheduled()
