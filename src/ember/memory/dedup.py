"""
Deduplication engine.

The same conversation captured twice (overlapping screenshots, a
re-paste, a capture from another device) must not produce duplicate
memories. Candidates are keyed by content hash across the profile's
whole history and resolved with a fixed tie-break policy.
"""
import uuid
from enum import Enum
from typing import Optional, TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ember.logging import logger
from ember.memory.hashing import content_hash, count_tokens
from ember.models.memory import Memory
from ember.repository import find_memory_by_hash

if TYPE_CHECKING:
    from ember.ingest.extraction import CandidateMemory


class DedupOutcome(str, Enum):
    INSERTED = "inserted"
    MERGED = "merged"
    SKIPPED = "skipped"


# Product policy: a duplicate replaces the stored importance only when it is
# strictly greater. Ties and lower values keep the existing memory untouched.
IMPORTANCE_TIE_BREAK = "strictly_greater_wins"

SIGNIFICANCE_SEPARATOR = "\n"


def merge_significance(existing: Optional[str], incoming: Optional[str]) -> Optional[str]:
    """Concatenate non-null significance texts, dropping exact repeats."""
    parts: list[str] = []
    for text in (existing, incoming):
        if not text:
            continue
        for part in text.split(SIGNIFICANCE_SEPARATOR):
            if part and part not in parts:
                parts.append(part)
    return SIGNIFICANCE_SEPARATOR.join(parts) if parts else None


def save_candidate(
    session: Session,
    profile_id: uuid.UUID,
    capture_id: Optional[uuid.UUID],
    candidate: "CandidateMemory",
) -> DedupOutcome:
    """Insert, merge or skip one candidate memory within the caller's tenant session."""
    digest = content_hash(candidate.factual_content, candidate.category)

    existing = find_memory_by_hash(session, profile_id, digest)
    if existing is not None:
        return _resolve_duplicate(session, existing, candidate)

    memory = Memory(
        profile_id=profile_id,
        capture_id=capture_id,
        category=candidate.category,
        factual_content=candidate.factual_content,
        emotional_significance=candidate.emotional_significance,
        verbatim_text=candidate.verbatim_text,
        use_verbatim=True,
        importance=candidate.importance,
        verbatim_tokens=count_tokens(candidate.verbatim_text),
        summary_tokens=None,
        content_hash=digest,
        speaker_confidence=None,
    )

    # A concurrent job for the same profile may insert the same hash between
    # the lookup and this insert; the unique index decides the winner.
    try:
        with session.begin_nested():
            session.add(memory)
    except IntegrityError:
        logger.info(f"Memory {digest} inserted concurrently for profile {profile_id}; skipping")
        return DedupOutcome.SKIPPED

    return DedupOutcome.INSERTED


def _resolve_duplicate(session: Session, existing: Memory, candidate: "CandidateMemory") -> DedupOutcome:
    if candidate.importance <= existing.importance:
        logger.debug(f"Skipping duplicate {existing.content_hash} (importance {candidate.importance} <= {existing.importance})")
        return DedupOutcome.SKIPPED

    logger.info(
        f"Merging duplicate {existing.content_hash}: importance {existing.importance} -> {candidate.importance}"
    )
    existing.importance = candidate.importance
    existing.emotional_significance = merge_significance(
        existing.emotional_significance, candidate.emotional_significance
    )
    session.add(existing)
    session.flush()
    return DedupOutcome.MERGED
