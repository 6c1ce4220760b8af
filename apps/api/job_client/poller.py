"""
Job Poller

Follows one job from start (or resume) to a terminal state.

    idle --start/resume--> polling --terminal status--> terminal
                              |  +--persistent error--> terminal
                              +--stop()--> idle

One request in flight at a time: the next tick is scheduled only after the
previous status request returns. Leaving the page only calls stop(); the job
keeps running on the server and can be picked up later with resume().
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

from job_client.http import ApiError, JobsApiClient, NetworkError
from job_client.scheduler import Handle, Scheduler, ThreadingScheduler

logger = logging.getLogger(__name__)

JobDict = Dict[str, Any]

# Seconds between status requests, per job kind.
POLL_INTERVALS: Dict[str, float] = {
    "recommendation": 15.0,
    "week-generation": 15.0,
    "scan-extraction": 3.0,
}
FIRST_POLL_DELAY_S = 1.0
DEFAULT_MAX_CONSECUTIVE_FAILURES = 3

ACTIVE_STATUSES = ("pending", "processing")


class PollerState:
    IDLE = "idle"
    POLLING = "polling"
    TERMINAL = "terminal"


class JobPoller:
    def __init__(
        self,
        api: JobsApiClient,
        kind: str,
        scheduler: Optional[Scheduler] = None,
        on_progress: Optional[Callable[[JobDict], None]] = None,
        on_complete: Optional[Callable[[JobDict], None]] = None,
        on_error: Optional[Callable[[str, Optional[JobDict]], None]] = None,
        interval_s: Optional[float] = None,
        first_poll_delay_s: float = FIRST_POLL_DELAY_S,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
    ):
        if kind not in POLL_INTERVALS and interval_s is None:
            raise ValueError(f"Unknown job kind: {kind}")
        self.api = api
        self.kind = kind
        self.scheduler = scheduler or ThreadingScheduler()
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.on_error = on_error
        self.interval_s = interval_s if interval_s is not None else POLL_INTERVALS[kind]
        self.first_poll_delay_s = first_poll_delay_s
        self.max_consecutive_failures = max_consecutive_failures

        self.state = PollerState.IDLE
        self.job_id: Optional[int] = None
        self.last_job: Optional[JobDict] = None
        self.error: Optional[str] = None
        self.consecutive_failures = 0
        self._handle: Optional[Handle] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(self, owner_id: int, week_number: Optional[int] = None) -> int:
        """
        Call the start endpoint once and begin polling the returned job.

        If a job is already active for the owner, the server hands back that
        job and this polls it. Start errors propagate to the caller.
        """
        if self.kind == "recommendation":
            started = self.api.start_recommendation(owner_id)
        elif self.kind == "week-generation":
            if week_number is None:
                raise ValueError("week_number is required for week generation")
            started = self.api.start_week_generation(owner_id, week_number)
        else:
            raise ValueError(f"{self.kind} jobs are created by their upload; use track()")

        job_id = int(started["job_id"])
        self.track(job_id)
        return job_id

    def track(self, job_id: int) -> None:
        """Begin polling a job that already exists."""
        with self._lock:
            self._cancel_tick()
            self.job_id = job_id
            self.last_job = None
            self.error = None
            self.consecutive_failures = 0
            self.state = PollerState.POLLING
            self._schedule(self.first_poll_delay_s)

    def resume(self, owner_id: int, week_number: Optional[int] = None) -> Optional[int]:
        """
        Pick up where a previous session left off.

        Active job: polling starts. Finished job: its outcome is reported right
        away with no ticks. No job yet: stays idle and returns None.
        """
        job = self.api.get_latest_job(self.kind, owner_id, week_number)
        if not job:
            return None

        job_id = int(job["id"])
        if job.get("status") in ACTIVE_STATUSES:
            self.track(job_id)
            self._report_progress(job)
        else:
            with self._lock:
                self.job_id = job_id
            self._finish(job)
        return job_id

    def stop(self) -> None:
        """Stop polling. Server-side processing is unaffected."""
        with self._lock:
            self._cancel_tick()
            if self.state == PollerState.POLLING:
                self.state = PollerState.IDLE

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def poll(self, job_id: int) -> None:
        """One status request. Ignored if this poller has moved on from job_id."""
        with self._lock:
            if self.state != PollerState.POLLING or job_id != self.job_id:
                return
            self._handle = None

        try:
            job = self.api.get_job(job_id)
        except NetworkError as e:
            self._network_failure(job_id, str(e))
            return
        except ApiError as e:
            self._fail(f"Could not load job {job_id}: {e}", None)
            return

        with self._lock:
            if self.state != PollerState.POLLING or job_id != self.job_id:
                return
            self.consecutive_failures = 0

        if job.get("status") in ACTIVE_STATUSES:
            self._report_progress(job)
            with self._lock:
                if self.state == PollerState.POLLING and job_id == self.job_id:
                    self._schedule(self.interval_s)
        else:
            self._finish(job)

    def _network_failure(self, job_id: int, message: str) -> None:
        with self._lock:
            if self.state != PollerState.POLLING or job_id != self.job_id:
                return
            self.consecutive_failures += 1
            failures = self.consecutive_failures
            if failures < self.max_consecutive_failures:
                logger.warning(f"Polling job {job_id} failed ({failures}/{self.max_consecutive_failures}): {message}")
                self._schedule(self.interval_s)
                return
        self._fail(
            f"Lost contact with the server after {failures} attempts: {message}",
            self.last_job,
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _report_progress(self, job: JobDict) -> None:
        self.last_job = job
        if self.on_progress:
            self.on_progress(job)

    def _finish(self, job: JobDict) -> None:
        status = job.get("status")
        if status == "completed":
            with self._lock:
                self._cancel_tick()
                self.last_job = job
                self.state = PollerState.TERMINAL
            if self.on_complete:
                self.on_complete(job)
        elif status == "cancelled":
            self._fail(job.get("cancel_reason") or "Job was cancelled", job)
        else:
            self._fail(job.get("error_message") or "Job failed", job)

    def _fail(self, message: str, job: Optional[JobDict]) -> None:
        with self._lock:
            self._cancel_tick()
            if job is not None:
                self.last_job = job
            self.error = message
            self.state = PollerState.TERMINAL
        if self.on_error:
            self.on_error(message, job)

    def _schedule(self, delay: float) -> None:
        job_id = self.job_id
        self._handle = self.scheduler.call_later(delay, lambda: self.poll(job_id))

    def _cancel_tick(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
