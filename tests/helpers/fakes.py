"""Hand-written fakes shared by the test modules."""

from __future__ import annotations

from collections import defaultdict
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone

from watermark_desktop.api.models import ExportFileResult, ExportJob, JobStatus

_T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_job(
    job_id: str = "job-1",
    status: JobStatus | str = JobStatus.QUEUED,
    processed: int = 0,
    total: int = 3,
    results: list[ExportFileResult] | None = None,
    minutes: int = 0,
) -> ExportJob:
    created = _T0 + timedelta(minutes=minutes)
    return ExportJob(
        id=job_id,
        status=JobStatus(status),
        total_files=total,
        processed_files=processed,
        success_count=sum(1 for r in results or [] if r.success),
        created_at=created,
        updated_at=created + timedelta(seconds=processed),
        results=results or [],
    )


class ImmediateExecutor:
    """Runs submitted callables synchronously on the calling thread."""

    def __init__(self) -> None:
        self.submitted = 0
        self.shutdown_calls = 0

    def submit(self, fn, /, *args, **kwargs):  # noqa: ANN001
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:  # pragma: no cover - surfaced through the future
            future.set_exception(e)
        return future

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:  # noqa: ARG002
        self.shutdown_calls += 1


class DeferredExecutor:
    """Queues submitted callables until the test runs them."""

    def __init__(self) -> None:
        self.pending: list[tuple[object, tuple, dict]] = []

    def submit(self, fn, /, *args, **kwargs):  # noqa: ANN001
        self.pending.append((fn, args, kwargs))
        return Future()

    def run_next(self) -> None:
        fn, args, kwargs = self.pending.pop(0)
        fn(*args, **kwargs)  # type: ignore[operator]

    def run_all(self) -> None:
        while self.pending:
            self.run_next()

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:  # noqa: ARG002
        self.pending.clear()


class FakeApiClient:
    """Scripted stand-in for ApiClient.

    Status responses are consumed in order per job id; an exception instance in
    the script is raised instead of returned.
    """

    def __init__(self) -> None:
        self.submit_response: ExportJob | Exception | None = None
        self.status_script: dict[str, list[ExportJob | Exception]] = defaultdict(list)
        self.cancel_response: dict[str, ExportJob | Exception] = {}
        self.list_response: list[ExportJob] | Exception = []
        self.health_script: list[Exception | None] = []
        self.fonts: list[str] = ["Arial", "DejaVu Sans"]

        self.submitted: list[tuple[list[str], object]] = []
        self.status_calls: dict[str, int] = defaultdict(int)
        self.cancel_calls: list[str] = []
        self.list_calls = 0
        self.health_calls = 0

    @staticmethod
    def _answer(value):  # noqa: ANN001, ANN205
        if isinstance(value, Exception):
            raise value
        return value

    def submit_export(self, files, request):  # noqa: ANN001, ANN201
        self.submitted.append((list(files), request))
        return self._answer(self.submit_response)

    def job_status(self, job_id: str):  # noqa: ANN201
        self.status_calls[job_id] += 1
        return self._answer(self.status_script[job_id].pop(0))

    def cancel_job(self, job_id: str):  # noqa: ANN201
        self.cancel_calls.append(job_id)
        return self._answer(self.cancel_response[job_id])

    def list_jobs(self):  # noqa: ANN201
        self.list_calls += 1
        return self._answer(self.list_response)

    def health(self):  # noqa: ANN201
        self.health_calls += 1
        outcome = self.health_script.pop(0) if self.health_script else None
        return self._answer(outcome) if outcome is not None else {"status": "UP"}

    def list_fonts(self) -> list[str]:
        return list(self.fonts)
