"""Client-side view of export jobs.

The tracker submits jobs, polls each non-terminal job on its own ``QTimer`` and
fans snapshots out through Qt signals. Network calls run on an executor; their
results come back to the GUI thread through private signals, so the job
collection is only ever touched on the GUI thread.
"""

from __future__ import annotations

import functools
from collections.abc import Iterable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from watermark_desktop.api.client import ApiClient
from watermark_desktop.api.models import ExportJob, ExportRequest
from watermark_desktop.errors import ApiError, JobExpired, SubmissionError, TransientPollError
from watermark_desktop.logger import get_logger

_logger = get_logger("tracker")

DEFAULT_POLL_INTERVAL_MS = 2000


@dataclass
class _PollLoop:
    timer: QTimer
    generation: int
    in_flight: bool = False


class ExportJobTracker(QObject):
    """Tracks export jobs until they reach a terminal status.

    Signals:
        job_updated: a snapshot was stored (ExportJob)
        job_removed: a job left the local view (job id)
        jobs_reset: the whole collection was replaced (list[ExportJob], newest first)
        submitted: a new job was registered (ExportJob)
        submission_failed: the service rejected a submission (message)
        error_changed: user-facing error message ("" when cleared)
        loading_changed: a submission started/finished
        active_job_changed: id of the job the UI should focus ("" for none)
    """

    job_updated = Signal(object)
    job_removed = Signal(str)
    jobs_reset = Signal(list)
    submitted = Signal(object)
    submission_failed = Signal(str)
    error_changed = Signal(str)
    loading_changed = Signal(bool)
    active_job_changed = Signal(str)

    # worker thread -> GUI thread
    _submit_done = Signal(object, object, object)  # future, job, error
    _poll_done = Signal(str, int, object, object)  # job_id, generation, job, error
    _cancel_done = Signal(object, str, object, object)  # future, job_id, job, error
    _refresh_done = Signal(object, object)  # jobs, error

    def __init__(
        self,
        client: ApiClient,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        executor: Executor | None = None,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self._client = client
        self._poll_interval_ms = max(1, int(poll_interval_ms))
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="export-api")

        self._jobs: dict[str, ExportJob] = {}
        self._loops: dict[str, _PollLoop] = {}
        self._next_generation = 1
        self._active_job_id: str | None = None
        self._loading = False
        self._error: str | None = None
        self._disposed = False
        self._pending_submits: set[Future] = set()
        self._pending_cancels: set[Future] = set()

        self._submit_done.connect(self._on_submit_done)
        self._poll_done.connect(self._on_poll_done)
        self._cancel_done.connect(self._on_cancel_done)
        self._refresh_done.connect(self._on_refresh_done)

    # ═══════════════════════════════════════════════════════════════════════
    # View state
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def jobs(self) -> dict[str, ExportJob]:
        return dict(self._jobs)

    def get(self, job_id: str) -> ExportJob | None:
        return self._jobs.get(job_id)

    def latest_jobs(self) -> list[ExportJob]:
        return sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)

    @property
    def active_job_id(self) -> str | None:
        return self._active_job_id

    @property
    def active_job(self) -> ExportJob | None:
        return self._jobs.get(self._active_job_id) if self._active_job_id else None

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def poll_interval_ms(self) -> int:
        return self._poll_interval_ms

    def is_polling(self, job_id: str) -> bool:
        return job_id in self._loops

    def polling_job_ids(self) -> list[str]:
        return list(self._loops)

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ═══════════════════════════════════════════════════════════════════════
    # Operations
    # ═══════════════════════════════════════════════════════════════════════

    def submit(self, files: Iterable[str | Path], request: ExportRequest) -> Future:
        """Upload files and start tracking the resulting job.

        The returned future resolves with the initial snapshot once the job is
        registered, or fails with SubmissionError. It is completed on the GUI
        thread, so do not block on it from there.
        """
        future: Future = Future()
        if self._disposed:
            future.set_exception(SubmissionError("export tracker is closed"))
            return future
        paths = [str(f) for f in files]
        if not paths:
            err = SubmissionError("no files selected for export")
            self._set_error(str(err))
            self.submission_failed.emit(str(err))
            future.set_exception(err)
            return future

        self._set_loading(True)
        self._set_error(None)
        self._pending_submits.add(future)
        _logger.debug("submit: %d file(s)", len(paths))
        self._executor.submit(self._run_submit, future, paths, request)
        return future

    def poll(self, job_id: str) -> None:
        """Issue one status request for a job that is being polled.

        Called by the job's timer. Skipped while an earlier request for the same
        job is still in flight.
        """
        loop = self._loops.get(job_id)
        if loop is None or self._disposed:
            return
        if loop.in_flight:
            _logger.debug("poll skip (in flight): id=%s", job_id)
            return
        loop.in_flight = True
        self._executor.submit(self._run_poll, job_id, loop.generation)

    def start_polling(self, job_id: str) -> None:
        if self._disposed:
            return
        self.stop_polling(job_id)
        generation = self._next_generation
        self._next_generation += 1
        timer = QTimer(self)
        timer.setInterval(self._poll_interval_ms)
        timer.timeout.connect(functools.partial(self._on_timer, job_id, generation))
        self._loops[job_id] = _PollLoop(timer=timer, generation=generation)
        timer.start()
        _logger.debug("polling started: id=%s gen=%d interval=%dms", job_id, generation, self._poll_interval_ms)

    def stop_polling(self, job_id: str) -> None:
        loop = self._loops.pop(job_id, None)
        if loop is None:
            return
        loop.timer.stop()
        loop.timer.deleteLater()
        _logger.debug("polling stopped: id=%s gen=%d", job_id, loop.generation)

    def cancel(self, job_id: str) -> Future:
        """Ask the service to cancel a job.

        On success the local snapshot is replaced and polling stops whatever
        status the service reports. Failures are logged and stored in ``error``;
        the returned future then resolves with None.
        """
        future: Future = Future()
        if self._disposed:
            future.set_result(None)
            return future
        self._pending_cancels.add(future)
        _logger.debug("cancel: id=%s", job_id)
        self._executor.submit(self._run_cancel, future, job_id)
        return future

    def refresh(self) -> None:
        """Replace the local collection with the service's job list."""
        if self._disposed:
            return
        self._executor.submit(self._run_refresh)

    def set_active(self, job_id: str | None) -> None:
        if job_id is not None and job_id not in self._jobs:
            return
        if job_id == self._active_job_id:
            return
        self._active_job_id = job_id
        self.active_job_changed.emit(job_id or "")

    def dispose(self) -> None:
        """Stop every poll loop. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        for job_id in list(self._loops):
            self.stop_polling(job_id)
        # queued work may never run once the executor is shut down
        for future in self._pending_submits:
            if not future.done():
                future.set_exception(SubmissionError("export tracker is closed"))
        for future in self._pending_cancels:
            if not future.done():
                future.set_result(None)
        self._pending_submits.clear()
        self._pending_cancels.clear()
        self._set_loading(False)
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        _logger.debug("tracker disposed")

    # ═══════════════════════════════════════════════════════════════════════
    # Worker side (executor threads)
    # ═══════════════════════════════════════════════════════════════════════

    def _run_submit(self, future: Future, paths: list[str], request: ExportRequest) -> None:
        try:
            job = self._client.submit_export(paths, request)
        except ApiError as e:
            self._submit_done.emit(future, None, SubmissionError(e.message))
            return
        except Exception as e:
            _logger.exception("submit failed unexpectedly")
            self._submit_done.emit(future, None, SubmissionError(str(e)))
            return
        self._submit_done.emit(future, job, None)

    def _run_poll(self, job_id: str, generation: int) -> None:
        try:
            job = self._client.job_status(job_id)
        except JobExpired as e:
            self._poll_done.emit(job_id, generation, None, e)
            return
        except ApiError as e:
            self._poll_done.emit(job_id, generation, None, TransientPollError(job_id, e.message))
            return
        except Exception as e:
            _logger.exception("poll failed unexpectedly: id=%s", job_id)
            self._poll_done.emit(job_id, generation, None, TransientPollError(job_id, str(e)))
            return
        self._poll_done.emit(job_id, generation, job, None)

    def _run_cancel(self, future: Future, job_id: str) -> None:
        try:
            job = self._client.cancel_job(job_id)
        except Exception as e:
            self._cancel_done.emit(future, job_id, None, e)
            return
        self._cancel_done.emit(future, job_id, job, None)

    def _run_refresh(self) -> None:
        try:
            jobs = self._client.list_jobs()
        except Exception as e:
            self._refresh_done.emit(None, e)
            return
        self._refresh_done.emit(jobs, None)

    # ═══════════════════════════════════════════════════════════════════════
    # GUI thread side
    # ═══════════════════════════════════════════════════════════════════════

    def _on_timer(self, job_id: str, generation: int) -> None:
        loop = self._loops.get(job_id)
        if loop is None or loop.generation != generation:
            return
        self.poll(job_id)

    @Slot(object, object, object)
    def _on_submit_done(self, future: Future, job: ExportJob | None, error: Exception | None) -> None:
        self._pending_submits.discard(future)
        if future.done():
            # already failed by dispose()
            return
        self._set_loading(False)
        if error is not None or job is None:
            message = str(error) if error is not None else "export submission failed"
            _logger.warning("export submission rejected: %s", message)
            self._set_error(message)
            self.submission_failed.emit(message)
            future.set_exception(error if isinstance(error, SubmissionError) else SubmissionError(message))
            return

        if not self._disposed:
            self._jobs[job.id] = job
            self.job_updated.emit(job)
            self.set_active(job.id)
            if not job.is_terminal:
                self.start_polling(job.id)
            self.submitted.emit(job)
        future.set_result(job)

    @Slot(str, int, object, object)
    def _on_poll_done(
        self, job_id: str, generation: int, job: ExportJob | None, error: Exception | None
    ) -> None:
        loop = self._loops.get(job_id)
        if self._disposed or loop is None or loop.generation != generation:
            _logger.debug("poll result dropped (stale): id=%s gen=%d", job_id, generation)
            return
        loop.in_flight = False

        if isinstance(error, JobExpired):
            _logger.info("export job expired: id=%s", job_id)
            self.stop_polling(job_id)
            if self._jobs.pop(job_id, None) is not None:
                self.job_removed.emit(job_id)
            if self._active_job_id == job_id:
                self.set_active(None)
            return

        if error is not None or job is None:
            _logger.error("status poll failed, polling halted: id=%s err=%s", job_id, error)
            self.stop_polling(job_id)
            return

        self._store(job_id, job)
        if job.is_terminal:
            _logger.info("export job finished: id=%s status=%s", job_id, job.status.value)
            self.stop_polling(job_id)

    @Slot(object, str, object, object)
    def _on_cancel_done(
        self, future: Future, job_id: str, job: ExportJob | None, error: Exception | None
    ) -> None:
        self._pending_cancels.discard(future)
        if future.done():
            return
        if error is not None or job is None:
            message = error.message if isinstance(error, ApiError) else str(error)
            _logger.error("cancel failed: id=%s err=%s", job_id, message)
            if not self._disposed:
                self._set_error(f"Failed to cancel export: {message}")
            future.set_result(None)
            return
        if not self._disposed:
            self.stop_polling(job_id)
            if job_id in self._jobs:
                self._jobs[job_id] = job
                self.job_updated.emit(job)
            else:
                _logger.debug("cancel result for dropped job ignored: id=%s", job_id)
        future.set_result(job)

    @Slot(object, object)
    def _on_refresh_done(self, jobs: list[ExportJob] | None, error: Exception | None) -> None:
        if self._disposed:
            return
        if error is not None or jobs is None:
            _logger.warning("job list refresh failed: %s", error)
            return

        fresh = {j.id: j for j in jobs}
        for job_id in list(self._loops):
            if job_id not in fresh:
                self.stop_polling(job_id)
        self._jobs = fresh
        if self._active_job_id is not None and self._active_job_id not in fresh:
            self.set_active(None)
        self.jobs_reset.emit(self.latest_jobs())

        for job in jobs:
            if job.is_terminal:
                self.stop_polling(job.id)
            else:
                self.start_polling(job.id)
        _logger.debug("refresh: %d job(s), %d polling", len(fresh), len(self._loops))

    def _store(self, job_id: str, job: ExportJob) -> None:
        current = self._jobs.get(job_id)
        if current is not None and current.is_terminal and not job.is_terminal:
            _logger.debug("ignoring non-terminal snapshot for finished job: id=%s", job_id)
            return
        self._jobs[job_id] = job
        self.job_updated.emit(job)

    def _set_loading(self, loading: bool) -> None:
        if loading == self._loading:
            return
        self._loading = loading
        self.loading_changed.emit(loading)

    def _set_error(self, message: str | None) -> None:
        if message == self._error:
            return
        self._error = message
        self.error_changed.emit(message or "")
