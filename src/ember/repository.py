"""
Data access for captures and memories.

Every function takes the acting profile id and filters on it. There is
no unscoped variant; the tenant session adds the same predicate again
at the storage level.
"""
import uuid
from typing import Optional

from sqlalchemy import func, or_
from sqlmodel import Session, col, select

from ember.models.capture import Capture
from ember.models.memory import Memory, MemoryCategory


def get_capture(
    session: Session,
    profile_id: uuid.UUID,
    capture_id: uuid.UUID,
    for_update: bool = False,
) -> Optional[Capture]:
    """Return a live capture owned by the profile, or None. for_update locks the row where supported."""
    stmt = select(Capture).where(
        Capture.id == capture_id,
        Capture.profile_id == profile_id,
        col(Capture.deleted_at).is_(None),
    )
    if for_update:
        stmt = stmt.with_for_update()
    return session.exec(stmt).first()


def find_memory_by_hash(session: Session, profile_id: uuid.UUID, content_hash: str) -> Optional[Memory]:
    """Dedup lookup across the profile's whole history, ignoring soft-deleted rows."""
    return session.exec(
        select(Memory).where(
            Memory.profile_id == profile_id,
            Memory.content_hash == content_hash,
            col(Memory.deleted_at).is_(None),
        )
    ).first()


def count_capture_memories(session: Session, profile_id: uuid.UUID, capture_id: uuid.UUID) -> int:
    return session.exec(
        select(func.count()).select_from(Memory).where(
            Memory.profile_id == profile_id,
            Memory.capture_id == capture_id,
            col(Memory.deleted_at).is_(None),
        )
    ).one()


def list_memories(
    session: Session,
    profile_id: uuid.UUID,
    categories: Optional[list[MemoryCategory]] = None,
    limit: Optional[int] = None,
) -> list[Memory]:
    """Live memories, most important first, newest first within a rank."""
    stmt = select(Memory).where(
        Memory.profile_id == profile_id,
        col(Memory.deleted_at).is_(None),
    )
    if categories:
        stmt = stmt.where(col(Memory.category).in_(categories))
    stmt = stmt.order_by(col(Memory.importance).desc(), col(Memory.created_at).desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.exec(stmt).all())


def search_memories(
    session: Session,
    profile_id: uuid.UUID,
    query: str,
    category: Optional[MemoryCategory] = None,
    limit: int = 20,
) -> list[Memory]:
    """Case-insensitive substring search over factual, emotional and verbatim text."""
    pattern = f"%{query}%"
    stmt = select(Memory).where(
        Memory.profile_id == profile_id,
        col(Memory.deleted_at).is_(None),
        or_(
            col(Memory.factual_content).ilike(pattern),
            col(Memory.emotional_significance).ilike(pattern),
            col(Memory.verbatim_text).ilike(pattern),
        ),
    )
    if category is not None:
        stmt = stmt.where(Memory.category == category)
    stmt = stmt.order_by(col(Memory.importance).desc(), col(Memory.created_at).desc()).limit(limit)
    return list(session.exec(stmt).all())


def category_counts(session: Session, profile_id: uuid.UUID) -> dict[MemoryCategory, int]:
    rows = session.exec(
        select(Memory.category, func.count())
        .where(
            Memory.profile_id == profile_id,
            col(Memory.deleted_at).is_(None),
        )
        .group_by(Memory.category)
    ).all()
    counts = {category: 0 for category in MemoryCategory}
    for category, count in rows:
        counts[MemoryCategory(category)] = count
    return counts
