import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from ember.errors import AdmissionRejectedError, PermanentExtractionError, TransientExtractionError
from ember.jobs.admission import InMemoryAdmissionCounter
from ember.jobs.runner import CaptureJob, JobRunner
from ember.jobs.sweep import RetrySweepScheduler, sweep_retry_pending
from ember.logging import get_job_id
from ember.models.base import utcnow
from ember.models.capture import Capture, CaptureMethod, CaptureStatus
from ember.tenant import system_session, tenant_session


def _job() -> CaptureJob:
    return CaptureJob(capture_id=uuid.uuid4(), profile_id=uuid.uuid4())


def _runner(handler, on_failure=None, sleeps=None, **kwargs) -> JobRunner:
    sleeps = [] if sleeps is None else sleeps
    kwargs.setdefault("retries", 3)
    return JobRunner(
        handler,
        on_failure or MagicMock(),
        backoff_min=1.0,
        backoff_max=30.0,
        sleep=sleeps.append,
        **kwargs,
    )


def test_success_returns_handler_result():
    on_failure = MagicMock()
    runner = _runner(lambda job: "done", on_failure)
    assert runner.run(_job()) == "done"
    on_failure.assert_not_called()
    runner.shutdown()


def test_transient_errors_retry_with_exponential_backoff():
    calls = []
    sleeps = []
    on_failure = MagicMock()

    def handler(job):
        calls.append(job)
        raise TransientExtractionError("rate limited")

    runner = _runner(handler, on_failure, sleeps=sleeps)
    job = _job()
    with pytest.raises(TransientExtractionError):
        runner.run(job)

    assert len(calls) == 4
    assert sleeps == [1.0, 2.0, 4.0]
    on_failure.assert_called_once()
    failed_job, error = on_failure.call_args.args
    assert failed_job is job
    assert isinstance(error, TransientExtractionError)
    runner.shutdown()


def test_backoff_is_capped():
    sleeps = []

    def handler(job):
        raise TransientExtractionError("down")

    runner = JobRunner(handler, MagicMock(), retries=6, backoff_min=1.0, backoff_max=10.0, sleep=sleeps.append)
    with pytest.raises(TransientExtractionError):
        runner.run(_job())
    assert sleeps == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]
    runner.shutdown()


def test_recovers_after_transient_errors():
    attempts = []

    def handler(job):
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientExtractionError("timeout")
        return "ok"

    on_failure = MagicMock()
    runner = _runner(handler, on_failure)
    assert runner.run(_job()) == "ok"
    assert len(attempts) == 3
    on_failure.assert_not_called()
    runner.shutdown()


def test_permanent_errors_are_not_retried():
    calls = []
    sleeps = []
    on_failure = MagicMock()

    def handler(job):
        calls.append(job)
        raise PermanentExtractionError("bad schema")

    runner = _runner(handler, on_failure, sleeps=sleeps)
    with pytest.raises(PermanentExtractionError):
        runner.run(_job())
    assert len(calls) == 1
    assert sleeps == []
    on_failure.assert_called_once()
    runner.shutdown()


def test_job_id_is_bound_while_running():
    seen = []
    runner = _runner(lambda job: seen.append((job.job_id, get_job_id())))
    job = _job()
    runner.run(job)
    assert seen == [(job.job_id, job.job_id)]
    assert get_job_id() == "-"
    runner.shutdown()


def test_enqueued_jobs_respect_concurrency():
    lock = threading.Lock()
    active = 0
    peak = 0

    def handler(job):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.05)
        with lock:
            active -= 1

    runner = _runner(handler, concurrency=2)
    futures = [runner.enqueue(_job()) for _ in range(6)]
    runner.wait(timeout=10)
    runner.shutdown()

    assert all(f.done() for f in futures)
    assert peak <= 2


def test_enqueued_failure_reaches_callback():
    on_failure = MagicMock()

    def handler(job):
        raise PermanentExtractionError("nope")

    runner = _runner(handler, on_failure)
    future = runner.enqueue(_job())
    runner.wait(timeout=10)
    runner.shutdown()

    assert isinstance(future.exception(), PermanentExtractionError)
    on_failure.assert_called_once()


def test_admit_without_counter_is_a_noop():
    runner = _runner(lambda job: None)
    runner.admit(uuid.uuid4())
    runner.shutdown()


def test_admit_delegates_to_counter():
    counter = MagicMock()
    runner = _runner(lambda job: None, admission=counter)
    profile_id = uuid.uuid4()
    runner.admit(profile_id)
    counter.admit.assert_called_once_with(profile_id)
    runner.shutdown()


def test_daily_admission_limit():
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    counter = InMemoryAdmissionCounter(daily_limit=2, clock=lambda: now)
    profile_id = uuid.uuid4()

    counter.admit(profile_id)
    counter.admit(profile_id)
    assert counter.remaining(profile_id) == 0
    with pytest.raises(AdmissionRejectedError):
        counter.admit(profile_id)

    # Another profile is unaffected
    counter.admit(uuid.uuid4())

    now += timedelta(days=1)
    assert counter.remaining(profile_id) == 2
    counter.admit(profile_id)


def _park(profile_id, status=CaptureStatus.QUEUED_FOR_RETRY, deleted=False) -> uuid.UUID:
    with tenant_session(profile_id) as session:
        capture = Capture(
            profile_id=profile_id,
            method=CaptureMethod.PASTE,
            status=status,
            raw_text="x" * 200,
            deleted_at=utcnow() if deleted else None,
        )
        session.add(capture)
    return capture.id


def test_sweep_enqueues_parked_captures_across_profiles(profile_a, profile_b):
    parked_a = _park(profile_a)
    parked_b = _park(profile_b)
    _park(profile_a, status=CaptureStatus.COMPLETED)
    _park(profile_b, status=CaptureStatus.FAILED)
    _park(profile_a, deleted=True)

    runner = MagicMock()
    jobs = sweep_retry_pending(runner)

    assert {(job.capture_id, job.profile_id) for job in jobs} == {(parked_a, profile_a), (parked_b, profile_b)}
    assert runner.enqueue.call_count == 2


def test_sweep_respects_limit(profile_a):
    for _ in range(3):
        _park(profile_a)
    jobs = sweep_retry_pending(MagicMock(), limit=2)
    assert len(jobs) == 2


def test_failing_callback_does_not_mask_the_job_error():
    def handler(job):
        raise PermanentExtractionError("bad schema")

    on_failure = MagicMock(side_effect=RuntimeError("database is locked"))
    runner = _runner(handler, on_failure)
    with pytest.raises(PermanentExtractionError):
        runner.run(_job())
    on_failure.assert_called_once()
    runner.shutdown()


def test_locked_database_is_retried():
    attempts = []

    def handler(job):
        attempts.append(1)
        if len(attempts) == 1:
            raise OperationalError("INSERT INTO memories", {}, Exception("database is locked"))
        return "ok"

    runner = _runner(handler)
    assert runner.run(_job()) == "ok"
    assert len(attempts) == 2
    runner.shutdown()


def _age(capture_id, seconds):
    with system_session("test") as session:
        session.exec(
            update(Capture)
            .where(Capture.id == capture_id)
            .values(updated_at=utcnow() - timedelta(seconds=seconds))
        )


def test_sweep_resumes_stale_captures(profile_a):
    stale_processing = _park(profile_a, status=CaptureStatus.PROCESSING)
    stale_queued = _park(profile_a, status=CaptureStatus.QUEUED)
    fresh = _park(profile_a, status=CaptureStatus.PROCESSING)
    _age(stale_processing, 3600)
    _age(stale_queued, 3600)

    jobs = sweep_retry_pending(MagicMock(), stale_after=900)
    swept = {job.capture_id for job in jobs}
    assert swept == {stale_processing, stale_queued}
    assert fresh not in swept


def test_scheduled_sweep(profile_a):
    parked = _park(profile_a)
    runner = MagicMock()
    scheduler = RetrySweepScheduler(runner, interval_seconds=5)

    [job] = scheduler.scheduler.get_jobs()
    assert job.id == "retry_sweep"
    assert job.trigger.interval == timedelta(seconds=5)

    assert scheduler.sweep() == 1
    assert runner.enqueue.call_args.args[0].capture_id == parked


def test_scheduled_sweep_survives_errors():
    scheduler = RetrySweepScheduler(MagicMock(), interval_seconds=5)
    with patch("ember.jobs.sweep.sweep_retry_pending", side_effect=RuntimeError("boom")):
        assert scheduler.sweep() == 0
