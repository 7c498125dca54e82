from __future__ import annotations

import pytest

PySide6 = pytest.importorskip("PySide6")  # noqa: F401

from watermark_desktop.api.models import (
    ExportConfig,
    ExportFileResult,
    ExportRequest,
    JobStatus,
    TextStyle,
    TextWatermark,
)
from watermark_desktop.errors import ApiError, JobExpired, SubmissionError
from watermark_desktop.jobs.tracker import ExportJobTracker

from tests.helpers.event_loop import spin, wait_until
from tests.helpers.fakes import DeferredExecutor, FakeApiClient, ImmediateExecutor, make_job


def _request() -> ExportRequest:
    return ExportRequest(
        watermark_config=TextWatermark(text=TextStyle(content="(c) me")),
        export_config=ExportConfig(output_dir="/tmp/out"),
    )


def _results(n: int) -> list[ExportFileResult]:
    return [ExportFileResult(source_name=f"{i}.jpg", output_name=f"{i}_wm.jpg", success=True) for i in range(n)]


@pytest.fixture
def client() -> FakeApiClient:
    return FakeApiClient()


@pytest.fixture
def tracker(client: FakeApiClient):
    t = ExportJobTracker(client, poll_interval_ms=2000, executor=ImmediateExecutor())
    yield t
    t.dispose()


def test_submit_poll_until_completed(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    client.submit_response = make_job(status=JobStatus.QUEUED, processed=0)
    final = make_job(status=JobStatus.COMPLETED, processed=3, results=_results(3))
    client.status_script["job-1"] = [make_job(status=JobStatus.RUNNING, processed=2), final]
    updates: list = []
    tracker.job_updated.connect(updates.append)

    future = tracker.submit(["a.jpg", "b.jpg", "c.jpg"], _request())

    first = future.result(timeout=0)
    assert first.status is JobStatus.QUEUED and first.processed_files == 0
    assert client.submitted[0][0] == ["a.jpg", "b.jpg", "c.jpg"]
    assert tracker.active_job_id == "job-1"
    assert tracker.is_polling("job-1")

    tracker.poll("job-1")
    assert tracker.get("job-1").status is JobStatus.RUNNING
    assert tracker.get("job-1").processed_files == 2
    assert tracker.is_polling("job-1")

    tracker.poll("job-1")
    assert tracker.get("job-1") == final
    assert len(tracker.get("job-1").results) == 3
    assert not tracker.is_polling("job-1")
    assert [u.status for u in updates] == [JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.COMPLETED]


def test_no_requests_after_terminal_status(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    client.submit_response = make_job()
    client.status_script["job-1"] = [make_job(status=JobStatus.FAILED, processed=1)]
    tracker.submit(["a.jpg"], _request())

    tracker.poll("job-1")
    for _ in range(5):
        tracker.poll("job-1")

    assert client.status_calls["job-1"] == 1
    assert tracker.polling_job_ids() == []


def test_terminal_submission_is_not_polled(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    client.submit_response = make_job(status=JobStatus.COMPLETED, processed=3)

    tracker.submit(["a.jpg"], _request())

    assert tracker.get("job-1") is not None
    assert not tracker.is_polling("job-1")


def test_expired_job_is_dropped_silently(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    client.submit_response = make_job()
    client.status_script["job-1"] = [JobExpired("job-1")]
    removed: list[str] = []
    tracker.job_removed.connect(removed.append)
    tracker.submit(["a.jpg"], _request())

    tracker.poll("job-1")

    assert tracker.get("job-1") is None
    assert removed == ["job-1"]
    assert not tracker.is_polling("job-1")
    assert tracker.error is None
    assert tracker.active_job_id is None


def test_failed_poll_keeps_last_snapshot(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    client.submit_response = make_job()
    client.status_script["job-1"] = [make_job(status=JobStatus.RUNNING, processed=1), ApiError(500, "boom")]
    tracker.submit(["a.jpg"], _request())

    tracker.poll("job-1")
    tracker.poll("job-1")

    job = tracker.get("job-1")
    assert job is not None and job.status is JobStatus.RUNNING and job.processed_files == 1
    assert not tracker.is_polling("job-1")
    assert tracker.error is None


def test_submission_error_registers_nothing(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    client.submit_response = ApiError(400, "watermark text is required")
    failures: list[str] = []
    tracker.submission_failed.connect(failures.append)

    future = tracker.submit(["a.jpg"], _request())

    with pytest.raises(SubmissionError, match="watermark text is required"):
        future.result(timeout=0)
    assert tracker.jobs == {}
    assert tracker.polling_job_ids() == []
    assert not tracker.loading
    assert tracker.error == "watermark text is required"
    assert failures == ["watermark text is required"]


def test_submit_without_files_sends_nothing(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    future = tracker.submit([], _request())

    with pytest.raises(SubmissionError):
        future.result(timeout=0)
    assert client.submitted == []


def test_loading_flag_follows_submission(client: FakeApiClient) -> None:
    executor = DeferredExecutor()
    tracker = ExportJobTracker(client, executor=executor)
    client.submit_response = make_job()
    try:
        tracker.submit(["a.jpg"], _request())
        assert tracker.loading
        executor.run_all()
        assert not tracker.loading
    finally:
        tracker.dispose()


def test_cancel_stops_polling_and_ignores_late_poll(client: FakeApiClient) -> None:
    executor = DeferredExecutor()
    tracker = ExportJobTracker(client, executor=executor)
    client.submit_response = make_job(status=JobStatus.RUNNING, processed=1)
    client.status_script["job-1"] = [make_job(status=JobStatus.RUNNING, processed=2)]
    client.cancel_response["job-1"] = make_job(status=JobStatus.CANCELLED, processed=1)
    try:
        tracker.submit(["a.jpg"], _request())
        executor.run_all()
        assert tracker.is_polling("job-1")

        tracker.poll("job-1")  # request goes out...
        future = tracker.cancel("job-1")  # ...and the cancel is issued before it returns
        poll_call = executor.pending.pop(0)
        executor.run_all()

        assert future.result(timeout=0).status is JobStatus.CANCELLED
        assert tracker.get("job-1").status is JobStatus.CANCELLED
        assert not tracker.is_polling("job-1")

        fn, args, kwargs = poll_call
        fn(*args, **kwargs)  # type: ignore[operator]

        assert tracker.get("job-1").status is JobStatus.CANCELLED
        assert client.status_calls["job-1"] == 1
    finally:
        tracker.dispose()


def test_cancel_ends_tracking_even_if_job_completed(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    client.submit_response = make_job(status=JobStatus.RUNNING)
    client.cancel_response["job-1"] = make_job(status=JobStatus.COMPLETED, processed=3)
    tracker.submit(["a.jpg"], _request())

    tracker.cancel("job-1")

    assert tracker.get("job-1").status is JobStatus.COMPLETED
    assert not tracker.is_polling("job-1")


def test_cancel_failure_is_logged_not_raised(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    client.submit_response = make_job(status=JobStatus.RUNNING)
    client.cancel_response["job-1"] = ApiError(None, "connection refused")
    tracker.submit(["a.jpg"], _request())

    future = tracker.cancel("job-1")

    assert future.result(timeout=0) is None
    assert tracker.error is not None and "connection refused" in tracker.error
    assert tracker.is_polling("job-1")


def test_refresh_replaces_jobs_and_polls_non_terminal(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    tracker.start_polling("stale")
    client.list_response = [
        make_job("a", JobStatus.RUNNING, minutes=1),
        make_job("b", JobStatus.COMPLETED, processed=3, minutes=2),
        make_job("c", JobStatus.QUEUED, minutes=3),
    ]
    resets: list[list] = []
    tracker.jobs_reset.connect(resets.append)

    tracker.refresh()

    assert set(tracker.jobs) == {"a", "b", "c"}
    assert sorted(tracker.polling_job_ids()) == ["a", "c"]
    assert [j.id for j in resets[0]] == ["c", "b", "a"]
    assert [j.id for j in tracker.latest_jobs()] == ["c", "b", "a"]


def test_refresh_failure_keeps_jobs(client: FakeApiClient, tracker: ExportJobTracker) -> None:
    client.submit_response = make_job(status=JobStatus.RUNNING)
    tracker.submit(["a.jpg"], _request())
    client.list_response = ApiError(503, "unavailable")

    tracker.refresh()

    assert "job-1" in tracker.jobs
    assert tracker.is_polling("job-1")


def test_restarting_a_loop_drops_results_of_the_old_one(client: FakeApiClient) -> None:
    executor = DeferredExecutor()
    tracker = ExportJobTracker(client, executor=executor)
    client.status_script["x"] = [make_job("x", JobStatus.RUNNING, processed=1)]
    try:
        tracker.start_polling("x")
        tracker.poll("x")
        tracker.start_polling("x")

        assert tracker.polling_job_ids() == ["x"]
        executor.run_all()
        assert tracker.get("x") is None
    finally:
        tracker.dispose()


def test_poll_skipped_while_request_in_flight(client: FakeApiClient) -> None:
    executor = DeferredExecutor()
    tracker = ExportJobTracker(client, executor=executor)
    client.status_script["x"] = [make_job("x", JobStatus.RUNNING, processed=1), make_job("x", JobStatus.RUNNING, processed=2)]
    try:
        tracker.start_polling("x")
        tracker.poll("x")
        tracker.poll("x")
        assert len(executor.pending) == 1

        executor.run_all()
        tracker.poll("x")
        assert len(executor.pending) == 1
    finally:
        tracker.dispose()


def test_dispose_is_idempotent_and_silences_results(client: FakeApiClient) -> None:
    executor = DeferredExecutor()
    tracker = ExportJobTracker(client, executor=executor)
    client.status_script["x"] = [make_job("x", JobStatus.RUNNING, processed=1)]
    tracker.start_polling("x")
    tracker.start_polling("y")
    tracker.poll("x")
    in_flight = list(executor.pending)

    tracker.dispose()
    tracker.dispose()

    assert tracker.polling_job_ids() == []
    for fn, args, kwargs in in_flight:
        fn(*args, **kwargs)  # type: ignore[operator]
    assert tracker.get("x") is None

    tracker.start_polling("z")
    tracker.refresh()
    assert tracker.polling_job_ids() == []
    assert client.list_calls == 0


def test_owned_executor_is_shut_down() -> None:
    tracker = ExportJobTracker(FakeApiClient())
    tracker.dispose()
    assert tracker.disposed


def test_timer_drives_polling_until_terminal(client: FakeApiClient) -> None:
    tracker = ExportJobTracker(client, poll_interval_ms=20, executor=ImmediateExecutor())
    client.submit_response = make_job(status=JobStatus.QUEUED)
    client.status_script["job-1"] = [
        make_job(status=JobStatus.RUNNING, processed=1),
        make_job(status=JobStatus.RUNNING, processed=2),
        make_job(status=JobStatus.COMPLETED, processed=3, results=_results(3)),
    ]
    try:
        tracker.submit(["a.jpg", "b.jpg", "c.jpg"], _request())

        assert wait_until(lambda: not tracker.is_polling("job-1"))
        spin(120)

        assert client.status_calls["job-1"] == 3
        assert tracker.get("job-1").status is JobStatus.COMPLETED
    finally:
        tracker.dispose()


def test_tick_from_replaced_loop_is_ignored(client: FakeApiClient) -> None:
    executor = DeferredExecutor()
    tracker = ExportJobTracker(client, executor=executor)
    try:
        tracker.start_polling("x")
        tracker.start_polling("x")

        tracker._on_timer("x", 1)
        assert executor.pending == []

        tracker._on_timer("x", 2)
        assert len(executor.pending) == 1
    finally:
        tracker.dispose()


def test_cancel_result_does_not_bring_back_expired_job(client: FakeApiClient) -> None:
    executor = DeferredExecutor()
    tracker = ExportJobTracker(client, executor=executor)
    client.submit_response = make_job(status=JobStatus.RUNNING)
    client.status_script["job-1"] = [JobExpired("job-1")]
    client.cancel_response["job-1"] = make_job(status=JobStatus.CANCELLED)
    updates: list = []
    try:
        tracker.submit(["a.jpg"], _request())
        executor.run_all()
        tracker.job_updated.connect(updates.append)

        tracker.poll("job-1")
        future = tracker.cancel("job-1")
        executor.run_all()

        assert tracker.get("job-1") is None
        assert updates == []
        assert future.result(timeout=0).status is JobStatus.CANCELLED
    finally:
        tracker.dispose()


def test_dispose_fails_queued_submission(client: FakeApiClient) -> None:
    executor = DeferredExecutor()
    tracker = ExportJobTracker(client, executor=executor)
    client.submit_response = make_job()
    client.cancel_response["other"] = make_job("other", JobStatus.CANCELLED)

    submit_future = tracker.submit(["a.jpg"], _request())
    cancel_future = tracker.cancel("other")
    tracker.dispose()

    with pytest.raises(SubmissionError, match="closed"):
        submit_future.result(timeout=0)
    assert cancel_future.result(timeout=0) is None
    assert not tracker.loading

    executor.run_all()
    assert tracker.jobs == {}
