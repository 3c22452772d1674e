import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from pydantic import ValidationError
from sqlalchemy.engine import Engine

from ember.config import settings
from ember.errors import (
    CaptureNotFoundError,
    PermanentExtractionError,
    TenantViolationError,
)
from ember.ingest.extraction import CandidateMemory, ExtractionPayload, Extractor, OpenAIExtractor
from ember.jobs.admission import AdmissionCounter
from ember.jobs.runner import RETRYABLE_ERRORS, CaptureJob, JobRunner
from ember.logging import logger
from ember.memory.dedup import DedupOutcome, save_candidate
from ember.models.capture import Capture, CaptureStatus
from ember.repository import count_capture_memories, get_capture
from ember.tenant import coerce_profile_id, tenant_session


@dataclass(frozen=True)
class CaptureResult:
    status: CaptureStatus
    saved: int = 0
    merged: int = 0
    skipped_duplicates: int = 0
    error_message: Optional[str] = None


@dataclass(frozen=True)
class CaptureStatusView:
    status: CaptureStatus
    memory_count: int
    error_message: Optional[str]
    created_at: datetime


def truncate_error(message: str) -> str:
    return message[: settings.ERROR_MESSAGE_MAX_CHARS]


class CapturePipeline:
    """
    Lifecycle of a single capture: queued -> processing -> completed | failed | queued_for_retry.

    advance() is the only mutator of status after creation, plus the
    failure callback the job runner invokes once a job gives up.
    """

    def __init__(self, extractor: Optional[Extractor] = None, bind: Optional[Engine] = None):
        self.extractor = extractor or OpenAIExtractor()
        self.bind = bind

    def handle(self, job: CaptureJob) -> Optional[CaptureResult]:
        return self.advance(job.capture_id, job.profile_id)

    def advance(self, capture_id: uuid.UUID, profile_id: Union[uuid.UUID, str]) -> Optional[CaptureResult]:
        """
        Process one capture. Returns None when the capture is already terminal.

        Transient extraction errors propagate so the job runner can retry;
        permanent ones fail the capture immediately.
        """
        pid = coerce_profile_id(profile_id)

        # 1-2. Idempotency guard, then mark processing
        with tenant_session(pid, bind=self.bind) as session:
            capture = get_capture(session, pid, capture_id, for_update=True)
            if capture is None:
                raise CaptureNotFoundError(f"Capture {capture_id} not found")
            if capture.status.is_terminal:
                logger.info(f"Capture {capture_id} already {capture.status.value}; skipping")
                return None

            capture.status = CaptureStatus.PROCESSING
            capture.attempts += 1
            session.add(capture)
            raw_text, image_urls = capture.raw_text, capture.image_urls

        # 3. Extraction, outside any transaction: the call may take seconds
        try:
            payload = ExtractionPayload(text=raw_text, image_urls=image_urls)
            candidates = self.extractor.extract(payload)
        except ValidationError:
            return self._fail(pid, capture_id, "Capture has no raw text or images to process")
        except PermanentExtractionError as e:
            return self._fail(pid, capture_id, str(e))

        # 4-5. Dedup, save and complete in one unit of work
        return self._save(pid, capture_id, candidates)

    def _save(self, pid: uuid.UUID, capture_id: uuid.UUID, candidates: list[CandidateMemory]) -> Optional[CaptureResult]:
        with tenant_session(pid, bind=self.bind) as session:
            capture = get_capture(session, pid, capture_id, for_update=True)
            if capture is None:
                raise CaptureNotFoundError(f"Capture {capture_id} disappeared during extraction")
            if capture.status.is_terminal:
                # A redelivered job finished first
                logger.info(f"Capture {capture_id} completed by another delivery; discarding results")
                return None

            outcomes = Counter(save_candidate(session, pid, capture.id, c) for c in candidates)

            capture.status = CaptureStatus.COMPLETED
            capture.error_message = None
            capture.saved_count = outcomes[DedupOutcome.INSERTED]
            capture.merged_count = outcomes[DedupOutcome.MERGED]
            capture.skipped_duplicates = outcomes[DedupOutcome.SKIPPED]
            session.add(capture)

        logger.info(
            f"Capture {capture_id} completed: saved={capture.saved_count} "
            f"merged={capture.merged_count} skipped={capture.skipped_duplicates}"
        )
        return CaptureResult(
            status=CaptureStatus.COMPLETED,
            saved=capture.saved_count,
            merged=capture.merged_count,
            skipped_duplicates=capture.skipped_duplicates,
        )

    def _fail(self, pid: uuid.UUID, capture_id: uuid.UUID, message: str) -> CaptureResult:
        message = truncate_error(message)
        logger.warning(f"Capture {capture_id} failed permanently: {message}")
        self._set_status(pid, capture_id, CaptureStatus.FAILED, message)
        return CaptureResult(status=CaptureStatus.FAILED, error_message=message)

    def _set_status(self, pid: uuid.UUID, capture_id: uuid.UUID, status: CaptureStatus, message: Optional[str]) -> bool:
        with tenant_session(pid, bind=self.bind) as session:
            capture = get_capture(session, pid, capture_id, for_update=True)
            if capture is None or capture.status.is_terminal:
                return False
            capture.status = status
            capture.error_message = message
            session.add(capture)
            return True

    def handle_failure(self, job: CaptureJob, error: BaseException) -> None:
        """
        Failure callback for the job runner.

        Exhausted transient errors, including a locked database, park the capture for the retry sweep.
        Anything else fails it; tenant violations are programming errors
        and are logged as such.
        """
        message = truncate_error(f"{type(error).__name__}: {error}")
        if isinstance(error, RETRYABLE_ERRORS):
            logger.warning(f"Capture {job.capture_id} parked for retry sweep: {message}")
            status = CaptureStatus.QUEUED_FOR_RETRY
        else:
            if isinstance(error, TenantViolationError):
                logger.critical(f"Tenant violation while processing capture {job.capture_id}: {error}")
            status = CaptureStatus.FAILED
        self._set_status(job.profile_id, job.capture_id, status, message)

    def status(self, capture_id: uuid.UUID, profile_id: Union[uuid.UUID, str]) -> CaptureStatusView:
        return get_capture_status(capture_id, profile_id, bind=self.bind)


def get_capture_status(
    capture_id: uuid.UUID,
    profile_id: Union[uuid.UUID, str],
    bind: Optional[Engine] = None,
) -> CaptureStatusView:
    """Read-only projection for polling clients."""
    pid = coerce_profile_id(profile_id)
    with tenant_session(pid, bind=bind) as session:
        capture: Optional[Capture] = get_capture(session, pid, capture_id)
        if capture is None:
            raise CaptureNotFoundError(f"Capture {capture_id} not found")
        memory_count = 0
        if capture.status == CaptureStatus.COMPLETED:
            memory_count = count_capture_memories(session, pid, capture_id)
        return CaptureStatusView(
            status=capture.status,
            memory_count=memory_count,
            error_message=capture.error_message,
            created_at=capture.created_at,
        )


def build_job_runner(
    pipeline: CapturePipeline,
    admission: Optional[AdmissionCounter] = None,
    **kwargs,
) -> JobRunner:
    """Wire a pipeline into a job runner: advance() as the handler, handle_failure() as the callback."""
    return JobRunner(pipeline.handle, pipeline.handle_failure, admission=admission, **kwargs)
