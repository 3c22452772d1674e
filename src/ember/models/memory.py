import uuid
from enum import Enum
from typing import Optional
from sqlalchemy import CheckConstraint, Index, text
from sqlmodel import Field
from ember.models.base import TimestampMixin, SoftDeleteMixin, TenantMixin


class MemoryCategory(str, Enum):
    EMOTIONAL = "emotional"
    WORK = "work"
    HOBBIES = "hobbies"
    RELATIONSHIPS = "relationships"
    PREFERENCES = "preferences"


class Memory(TimestampMixin, SoftDeleteMixin, TenantMixin, table=True):
    __tablename__ = "memories"
    __table_args__ = (
        CheckConstraint("importance >= 1 AND importance <= 5", name="importance_range"),
        CheckConstraint(
            "speaker_confidence IS NULL OR (speaker_confidence >= 0.0 AND speaker_confidence <= 1.0)",
            name="speaker_confidence_range",
        ),
        # Dedup key. Soft-deleted rows do not block a fresh capture of the same fact.
        Index(
            "uq_memories_profile_content_hash",
            "profile_id",
            "content_hash",
            unique=True,
            sqlite_where=text("deleted_at IS NULL AND content_hash IS NOT NULL"),
            postgresql_where=text("deleted_at IS NULL AND content_hash IS NOT NULL"),
        ),
        Index("idx_memories_profile_category", "profile_id", "category"),
        Index("idx_memories_profile_importance", "profile_id", "importance"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    capture_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="captures.id",
        index=True,
        ondelete="SET NULL",
    )

    category: MemoryCategory
    factual_content: str
    emotional_significance: Optional[str] = None
    verbatim_text: str
    summary_text: Optional[str] = None
    use_verbatim: bool = Field(default=True)

    importance: int = Field(ge=1, le=5)
    verbatim_tokens: int
    summary_tokens: Optional[int] = None

    content_hash: Optional[str] = Field(default=None, max_length=16)
    speaker_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @property
    def prompt_text(self) -> str:
        """Text used when the memory is replayed into a wake prompt."""
        if self.use_verbatim or not self.summary_text:
            return self.verbatim_text
        return self.summary_text

    @property
    def prompt_tokens(self) -> int:
        if self.use_verbatim or self.summary_tokens is None:
            return self.verbatim_tokens
        return self.summary_tokens
