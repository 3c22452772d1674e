import uuid
from enum import Enum
from typing import List, Optional
from sqlalchemy import Column, Index, JSON, text
from sqlmodel import Field
from ember.models.base import TimestampMixin, SoftDeleteMixin, TenantMixin


class CaptureMethod(str, Enum):
    PASTE = "paste"
    SCREENSHOT = "screenshot"
    API = "api"


class CaptureStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    QUEUED_FOR_RETRY = "queued_for_retry"

    @property
    def is_terminal(self) -> bool:
        # queued_for_retry is resumed by the sweep, so it is not terminal
        return self in (CaptureStatus.COMPLETED, CaptureStatus.FAILED)


class CapturePlatform(str, Enum):
    CHATGPT = "chatgpt"
    CLAUDE = "claude"
    GEMINI = "gemini"
    OTHER = "other"


class Capture(TimestampMixin, SoftDeleteMixin, TenantMixin, table=True):
    __tablename__ = "captures"
    __table_args__ = (
        Index(
            "idx_captures_pending",
            "status",
            sqlite_where=text("status IN ('QUEUED', 'PROCESSING', 'QUEUED_FOR_RETRY')"),
            postgresql_where=text("status IN ('QUEUED', 'PROCESSING', 'QUEUED_FOR_RETRY')"),
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    method: CaptureMethod
    status: CaptureStatus = Field(default=CaptureStatus.QUEUED)
    platform: Optional[CapturePlatform] = None

    raw_text: Optional[str] = None
    image_urls: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))

    error_message: Optional[str] = None
    attempts: int = Field(default=0)

    # Result summary, written when the capture completes
    saved_count: int = Field(default=0)
    merged_count: int = Field(default=0)
    skipped_duplicates: int = Field(default=0)
