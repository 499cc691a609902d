"""Error taxonomy for job orchestration, media mirroring and persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from videocache.services.job_poller import JobHandle


class VideoCacheError(Exception):
    """Base class for all videocache errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | details={self.details}"
        return self.message


# ═══════════════ EXTERNAL JOBS ═══════════════

class JobError(VideoCacheError):
    """A job could not produce results. Degrades to an empty contribution."""

    def __init__(self, message: str, handle: JobHandle | None = None, **details):
        super().__init__(message, details)
        self.handle = handle


class SubmissionError(JobError):
    """The job API rejected the run request."""


class JobFailedError(JobError):
    """The job reached FAILED / ABORTED, or its results could not be fetched."""


class PollTimeoutError(JobError):
    """The poll attempt budget ran out before a terminal status."""


# ═══════════════ MEDIA MIRROR ═══════════════

class MirrorError(VideoCacheError):
    """Media could not be mirrored. Callers fall back to the origin URL."""


class DownloadError(MirrorError):
    """Origin fetch failed, including the query-stripped retry."""


class UploadError(MirrorError):
    """Durable storage write failed after all attempts."""


# ═══════════════ PERSISTENCE ═══════════════

class StoreError(VideoCacheError):
    """A persistent store operation failed."""
