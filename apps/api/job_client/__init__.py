"""
Client-side job tracking.

`JobsApiClient` talks to the jobs API; `JobPoller` follows one job to a
terminal state on a `Scheduler`.
"""
from job_client.http import ApiError, JobsApiClient, NetworkError
from job_client.poller import JobPoller, PollerState
from job_client.scheduler import ManualScheduler, Scheduler, ThreadingScheduler

__all__ = [
    "ApiError",
    "JobsApiClient",
    "NetworkError",
    "JobPoller",
    "PollerState",
    "ManualScheduler",
    "Scheduler",
    "ThreadingScheduler",
]
