"""Job Poller — drives one external job from submission to a terminal outcome.

Flow: submit (once) → poll status on an exponential schedule → fetch results once on SUCCEEDED.
Local timeouts never cancel the remote run; it finishes on the provider side regardless.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from videocache.exceptions import JobError, JobFailedError, PollTimeoutError, SubmissionError
from videocache.integrations.apify import STATUS_UNAVAILABLE, RunStatus

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ABORTED = "ABORTED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)

    @classmethod
    def from_remote(cls, raw: str) -> "JobStatus":
        """Map a provider status string; unknown values are treated as still pending."""
        return REMOTE_STATUS_MAP.get((raw or "").upper(), cls.PENDING)


# Apify run states. Transitional ABORTING / TIMING-OUT resolve on a later poll.
REMOTE_STATUS_MAP = {
    "READY": JobStatus.PENDING,
    STATUS_UNAVAILABLE: JobStatus.PENDING,
    "RUNNING": JobStatus.RUNNING,
    "ABORTING": JobStatus.RUNNING,
    "TIMING-OUT": JobStatus.RUNNING,
    "SUCCEEDED": JobStatus.SUCCEEDED,
    "FAILED": JobStatus.FAILED,
    "ABORTED": JobStatus.ABORTED,
    "TIMED-OUT": JobStatus.TIMED_OUT,
}


@dataclass(frozen=True)
class PollPolicy:
    initial_interval: float = 0.5
    backoff_factor: float = 2.0
    max_interval: float = 5.0
    max_attempts: int = 60

    def first_interval(self) -> float:
        return min(self.initial_interval, self.max_interval)

    def next_interval(self, current: float) -> float:
        return min(current * self.backoff_factor, self.max_interval)


@dataclass
class JobHandle:
    """One external job invocation. Terminal statuses are final."""
    job_type: str
    job_id: str | None = None
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    interval: float = 0.0
    message: str = ""

    def transition(self, status: JobStatus) -> None:
        if self.status.is_terminal:
            raise ValueError(f"Job {self.job_id} is already {self.status.value}")
        self.status = status


class JobApi(Protocol):
    async def submit(self, job_type: str, params: dict[str, Any]) -> str: ...

    async def get_status(self, job_id: str) -> RunStatus: ...

    async def get_results(self, job_id: str) -> list[dict[str, Any]]: ...


class JobPoller:
    """Submits a job and polls it with capped exponential backoff."""

    def __init__(
        self,
        api: JobApi,
        policy: PollPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        log_every: int = 10,
    ):
        self.api = api
        self.policy = policy or PollPolicy()
        self._sleep = sleep
        self.log_every = log_every

    async def run(self, job_type: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Run a job to completion; any job failure degrades to an empty list."""
        try:
            return await self.execute(job_type, params)
        except JobError as e:
            logger.warning("Job degraded to empty | type=%s | %s", job_type, str(e)[:200])
            return []

    async def execute(self, job_type: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Run a job to completion, raising SubmissionError / JobFailedError / PollTimeoutError."""
        handle = JobHandle(job_type=job_type)
        start = time.monotonic()

        try:
            handle.job_id = await self.api.submit(job_type, params)
        except SubmissionError as e:
            logger.error("Job submit failed | type=%s | %s", job_type, str(e)[:200])
            raise

        await self._poll(handle)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        if handle.status is JobStatus.SUCCEEDED:
            items = await self.api.get_results(handle.job_id)
            logger.info(
                "Job OK | type=%s | job=%s | polls=%d | items=%d | %dms",
                job_type, handle.job_id, handle.attempts, len(items), elapsed_ms,
            )
            return items

        if handle.status.is_terminal:
            logger.error(
                "Job failed | type=%s | job=%s | status=%s | %s",
                job_type, handle.job_id, handle.status.value, handle.message[:200],
            )
            raise JobFailedError(
                f"Job ended with {handle.status.value}: {handle.message or 'no message'}",
                handle=handle,
            )

        handle.transition(JobStatus.TIMED_OUT)
        logger.warning(
            "Job poll timeout | type=%s | job=%s | polls=%d | %dms",
            job_type, handle.job_id, handle.attempts, elapsed_ms,
        )
        raise PollTimeoutError(
            f"No terminal status after {handle.attempts} polls", handle=handle,
        )

    async def _poll(self, handle: JobHandle) -> None:
        """Poll until terminal or the attempt budget is spent. Sleeps only between polls."""
        policy = self.policy
        handle.interval = policy.first_interval()

        while handle.attempts < policy.max_attempts:
            report = await self.api.get_status(handle.job_id)
            handle.attempts += 1
            status = JobStatus.from_remote(report.status)
            handle.transition(status)

            if status.is_terminal:
                handle.message = report.message
                return

            if handle.attempts % self.log_every == 0:
                logger.info(
                    "Job polling | type=%s | job=%s | %d/%d | status=%s",
                    handle.job_type, handle.job_id, handle.attempts, policy.max_attempts, status.value,
                )

            if handle.attempts >= policy.max_attempts:
                return

            await self._sleep(handle.interval)
            handle.interval = policy.next_interval(handle.interval)
