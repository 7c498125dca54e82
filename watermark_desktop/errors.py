"""Error taxonomy for the desktop shell."""

from __future__ import annotations


class WatermarkDesktopError(Exception):
    """Base class for every error raised by this package."""


class ApiError(WatermarkDesktopError):
    """A request to the export service failed (transport or non-2xx)."""

    def __init__(self, status_code: int | None, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class JobExpired(ApiError):
    """The service no longer knows the job (404 on status); a normal end of life."""

    def __init__(self, job_id: str) -> None:
        super().__init__(404, f"export job {job_id} not found")
        self.job_id = job_id


class SubmissionError(WatermarkDesktopError):
    """The service rejected a new export job; nothing was registered locally."""


class TransientPollError(WatermarkDesktopError):
    """A single status poll failed; polling for that job stops, the snapshot is kept."""

    def __init__(self, job_id: str, message: str) -> None:
        super().__init__(message)
        self.job_id = job_id


class BackendError(WatermarkDesktopError):
    title = "Backend Error"


class BackendNotBuilt(BackendError):
    title = "Backend Not Built"


class BackendUnreachableTimeout(BackendError):
    title = "Backend Unreachable"


class BackendCrashed(BackendError):
    title = "Backend Stopped"

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class BackendStartupCancelled(BackendError):
    title = "Backend Startup Cancelled"
