import uuid
from typing import Optional, Union

from pydantic import BaseModel, ValidationError, field_validator, model_validator
from sqlmodel import col, select

from ember.errors import CaptureValidationError
from ember.ingest.extraction import check_image_bounds, check_text_bounds
from ember.jobs.runner import CaptureJob, JobRunner
from ember.logging import logger
from ember.models.capture import Capture, CaptureMethod, CapturePlatform, CaptureStatus
from ember.models.core import Profile
from ember.tenant import coerce_profile_id, tenant_session


class CaptureInput(BaseModel):
    """A submission: pasted or API text, or a set of stored screenshot URLs."""
    method: Optional[CaptureMethod] = None
    text: Optional[str] = None
    image_urls: Optional[list[str]] = None
    platform: Optional[CapturePlatform] = None

    @field_validator("image_urls")
    @classmethod
    def no_blank_urls(cls, v):
        if v is not None and any(not url or not url.strip() for url in v):
            raise ValueError("Screenshot URLs must not be blank")
        return v

    @model_validator(mode="after")
    def one_modality_within_bounds(self):
        if self.text is not None and not self.text.strip():
            self.text = None
        has_text = self.text is not None
        has_images = bool(self.image_urls)
        if has_text == has_images:
            raise ValueError("Provide either text or screenshots, not both or neither")

        if has_text:
            problem = check_text_bounds(self.text)
            if self.method == CaptureMethod.SCREENSHOT:
                problem = "Screenshot captures need image_urls"
        else:
            problem = check_image_bounds(self.image_urls)
            if self.method == CaptureMethod.PASTE:
                problem = "Paste captures need text"
        if problem:
            raise ValueError(problem)

        if self.method is None:
            self.method = CaptureMethod.PASTE if has_text else CaptureMethod.SCREENSHOT
        return self


def validate_capture_input(payload: Union[CaptureInput, dict]) -> CaptureInput:
    if isinstance(payload, CaptureInput):
        return payload
    try:
        return CaptureInput.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        message = first["msg"].removeprefix("Value error, ")
        raise CaptureValidationError(message) from e


def submit_capture(
    profile_id: Union[uuid.UUID, str],
    payload: Union[CaptureInput, dict],
    *,
    runner: JobRunner,
) -> uuid.UUID:
    """
    Validate and persist a new capture in `queued`, then enqueue its job.

    Returns as soon as the job is enqueued; extraction happens later.
    """
    pid = coerce_profile_id(profile_id)
    data = validate_capture_input(payload)

    with tenant_session(pid) as session:
        profile = session.exec(
            select(Profile).where(Profile.id == pid, col(Profile.deleted_at).is_(None))
        ).first()
        if profile is None:
            raise CaptureValidationError(f"Profile {pid} not found")

        runner.admit(pid)

        capture = Capture(
            profile_id=pid,
            method=data.method,
            status=CaptureStatus.QUEUED,
            platform=data.platform,
            # Exactly one modality is stored; blank text was normalised to None
            raw_text=data.text,
            image_urls=data.image_urls if data.text is None else None,
        )
        session.add(capture)

    logger.info(f"Capture {capture.id} queued for profile {pid} ({capture.method.value})")
    runner.enqueue(CaptureJob(capture_id=capture.id, profile_id=pid))
    return capture.id
