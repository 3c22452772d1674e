"""
Soft delete and purge.

Rows are hidden by setting deleted_at and stay restorable until the
purge job removes them permanently after the retention window.
"""
import uuid
from datetime import timedelta
from typing import Optional, Union

from sqlalchemy import delete, update
from sqlmodel import col

from ember.config import settings
from ember.logging import logger
from ember.models.base import utcnow
from ember.models.capture import Capture
from ember.models.memory import Memory
from ember.models.core import Profile
from ember.repository import find_memory_by_hash
from ember.tenant import coerce_profile_id, system_session, tenant_session


def soft_delete_memory(profile_id: Union[uuid.UUID, str], memory_id: uuid.UUID) -> bool:
    pid = coerce_profile_id(profile_id)
    with tenant_session(pid) as session:
        result = session.exec(
            update(Memory)
            .where(
                Memory.id == memory_id,
                Memory.profile_id == pid,
                col(Memory.deleted_at).is_(None),
            )
            .values(deleted_at=utcnow())
        )
        return result.rowcount > 0


def restore_memory(profile_id: Union[uuid.UUID, str], memory_id: uuid.UUID) -> bool:
    """Restore a memory unless a live memory with the same content took its place."""
    pid = coerce_profile_id(profile_id)
    with tenant_session(pid) as session:
        memory = session.get(Memory, memory_id)
        if memory is None or memory.deleted_at is None:
            return False
        clash = find_memory_by_hash(session, pid, memory.content_hash) if memory.content_hash else None
        if clash is not None:
            logger.info(f"Not restoring memory {memory_id}: duplicate {memory.content_hash} is live")
            return False
        memory.deleted_at = None
        session.add(memory)
        return True


def soft_delete_capture(profile_id: Union[uuid.UUID, str], capture_id: uuid.UUID) -> bool:
    """Soft-delete a capture together with the memories it produced."""
    pid = coerce_profile_id(profile_id)
    now = utcnow()
    with tenant_session(pid) as session:
        session.exec(
            update(Memory)
            .where(
                Memory.capture_id == capture_id,
                Memory.profile_id == pid,
                col(Memory.deleted_at).is_(None),
            )
            .values(deleted_at=now)
        )
        result = session.exec(
            update(Capture)
            .where(
                Capture.id == capture_id,
                Capture.profile_id == pid,
                col(Capture.deleted_at).is_(None),
            )
            .values(deleted_at=now)
        )
        return result.rowcount > 0


def soft_delete_profile(profile_id: Union[uuid.UUID, str]) -> bool:
    """Soft-delete a profile and cascade to its captures and memories."""
    pid = coerce_profile_id(profile_id)
    now = utcnow()
    with tenant_session(pid) as session:
        for model in (Memory, Capture):
            session.exec(
                update(model)
                .where(model.profile_id == pid, col(model.deleted_at).is_(None))
                .values(deleted_at=now)
            )
        result = session.exec(
            update(Profile)
            .where(Profile.id == pid, col(Profile.deleted_at).is_(None))
            .values(deleted_at=now)
        )
        return result.rowcount > 0


def purge_expired(days: Optional[int] = None) -> dict[str, int]:
    """Permanently delete rows soft-deleted more than `days` ago, children first."""
    days = settings.PURGE_AFTER_DAYS if days is None else days
    cutoff = utcnow() - timedelta(days=days)
    purged = {}
    with system_session("purge soft-deleted rows") as session:
        for name, model in (("memories", Memory), ("captures", Capture), ("profiles", Profile)):
            result = session.exec(
                delete(model).where(
                    col(model.deleted_at).is_not(None),
                    col(model.deleted_at) < cutoff,
                )
            )
            purged[name] = result.rowcount
    logger.info(f"Purged rows deleted before {cutoff.isoformat()}: {purged}")
    return purged
