"""
Job runner for capture processing.

Jobs run on a bounded thread pool, off the request path. Transient
extraction errors are retried with exponential backoff; when a job
finally fails, for any reason, the failure callback records the outcome.
"""
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlalchemy.exc import OperationalError
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ember.config import settings
from ember.errors import TransientExtractionError
from ember.jobs.admission import AdmissionCounter
from ember.logging import job_id_ctx, logger

# Locked or unreachable database counts as transient too
RETRYABLE_ERRORS = (TransientExtractionError, OperationalError)


@dataclass(frozen=True)
class CaptureJob:
    capture_id: uuid.UUID
    profile_id: uuid.UUID
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class JobRunner:
    def __init__(
        self,
        handler: Callable[[CaptureJob], Any],
        on_failure: Callable[[CaptureJob, BaseException], None],
        *,
        concurrency: Optional[int] = None,
        retries: Optional[int] = None,
        backoff_min: Optional[float] = None,
        backoff_max: Optional[float] = None,
        admission: Optional[AdmissionCounter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.handler = handler
        self.on_failure = on_failure
        self.concurrency = concurrency or settings.JOB_CONCURRENCY
        self.retries = settings.JOB_RETRIES if retries is None else retries
        self.backoff_min = settings.JOB_BACKOFF_MIN_SECONDS if backoff_min is None else backoff_min
        self.backoff_max = settings.JOB_BACKOFF_MAX_SECONDS if backoff_max is None else backoff_max
        self.admission = admission
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="ember-job")
        self._futures: set[Future] = set()
        self._lock = threading.Lock()

    def admit(self, profile_id: uuid.UUID) -> None:
        """Admission check for a new capture; a no-op when no counter is configured."""
        if self.admission is not None:
            self.admission.admit(profile_id)

    def enqueue(self, job: CaptureJob) -> Future:
        logger.info(f"Enqueued job {job.job_id} for capture {job.capture_id}")
        future = self._executor.submit(self.run, job)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _log_retry(self, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"Attempt {state.attempt_number}/{self.retries + 1} failed with {error}; "
            f"retrying in {state.next_action.sleep if state.next_action else 0:.1f}s"
        )

    def run(self, job: CaptureJob) -> Any:
        """Run one job inline with the runner's retry policy."""
        token = job_id_ctx.set(job.job_id)
        try:
            retrying = Retrying(
                stop=stop_after_attempt(self.retries + 1),
                wait=wait_exponential(multiplier=self.backoff_min, min=self.backoff_min, max=self.backoff_max),
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                before_sleep=self._log_retry,
                sleep=self._sleep,
                reraise=True,
            )
            return retrying(self.handler, job)
        except Exception as e:
            logger.error(f"Job {job.job_id} for capture {job.capture_id} failed: {type(e).__name__}: {e}")
            try:
                self.on_failure(job, e)
            except Exception:
                # The row stays non-terminal; the sweep picks it up once it goes stale
                logger.exception(f"Failure callback for job {job.job_id} raised")
            raise
        finally:
            job_id_ctx.reset(token)

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until every job enqueued so far has finished."""
        with self._lock:
            pending = set(self._futures)
        wait(pending, timeout=timeout)

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_jobs)
