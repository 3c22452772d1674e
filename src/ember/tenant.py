"""
Tenant isolation gate.

Every Capture and Memory access is confined to one profile by two
independent enforcement points:

- Query level: data-access functions in ember.repository take the
  profile id and filter on it explicitly.
- Storage level: the session events below attach the profile predicate
  to every ORM statement and reject foreign writes at flush time, no
  matter what the calling code asked for. On PostgreSQL the scope is
  also published as the transaction-local setting ``app.profile_id``,
  which the row-level security policies installed by
  ``install_row_level_security`` read.

A session without a scope cannot touch tenant rows at all: the first
statement raises TenantScopeError instead of reading the whole table.
"""
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional, Union

from sqlalchemy import event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import ORMExecuteState, with_loader_criteria
from sqlalchemy.sql.dml import UpdateBase
from sqlalchemy.sql.util import find_tables
from sqlmodel import Session

from ember import db
from ember.errors import TenantScopeError, TenantViolationError
from ember.logging import logger
from ember.models.base import TenantMixin

SCOPE_KEY = "tenant_profile_id"
BYPASS_KEY = "tenant_bypass"

PG_SCOPE_SETTING = "app.profile_id"
PG_BYPASS_SETTING = "app.tenant_bypass"

TENANT_TABLES = ("captures", "memories")


def coerce_profile_id(value: Union[uuid.UUID, str, None]) -> uuid.UUID:
    """Parse a profile id, refusing anything that is not a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, str):
        try:
            return uuid.UUID(value)
        except ValueError:
            pass
    raise TenantScopeError(f"Invalid profile id: {value!r}")


def current_scope(session: Session) -> Optional[uuid.UUID]:
    return session.info.get(SCOPE_KEY)


def tenant_models() -> list[type]:
    """Mapped table classes that carry TenantMixin."""
    found, pending = [], list(TenantMixin.__subclasses__())
    while pending:
        cls = pending.pop()
        pending.extend(cls.__subclasses__())
        if getattr(cls, "__table__", None) is not None and cls not in found:
            found.append(cls)
    return found


def _statement_tables(statement) -> set[str]:
    if isinstance(statement, UpdateBase):
        return {statement.table.name}
    get_froms = getattr(statement, "get_final_froms", None)
    if get_froms is None:
        return set()
    return {
        table.name
        for from_ in get_froms()
        for table in find_tables(from_)
        if getattr(table, "name", None)
    }


def _touches_tenant_rows(state: ORMExecuteState) -> bool:
    # Aggregates such as count() have no mapped entities, so check the FROM list too
    if any(issubclass(m.class_, TenantMixin) for m in state.all_mappers):
        return True
    return bool(_statement_tables(state.statement) & set(TENANT_TABLES))


@event.listens_for(Session, "do_orm_execute")
def _scope_orm_statements(state: ORMExecuteState):
    if state.is_column_load or state.is_relationship_load:
        return
    if state.session.info.get(BYPASS_KEY):
        return

    profile_id = state.session.info.get(SCOPE_KEY)
    if profile_id is None:
        if _touches_tenant_rows(state):
            raise TenantScopeError("Tenant-scoped statement executed outside tenant_session()")
        return

    if state.is_insert:
        params = state.parameters or {}
        rows = params if isinstance(params, list) else [params]
        for row in rows:
            owner = row.get("profile_id")
            if owner is not None and coerce_profile_id(owner) != profile_id:
                logger.error(f"Blocked insert for profile {owner} inside scope {profile_id}")
                raise TenantViolationError(f"Insert targets profile {owner}, scope is {profile_id}")
        return

    if state.is_select or state.is_update or state.is_delete:
        state.statement = state.statement.options(*(
            with_loader_criteria(model, model.profile_id == profile_id, include_aliases=True)
            for model in tenant_models()
        ))


@event.listens_for(Session, "before_flush")
def _guard_tenant_writes(session, flush_context, instances):
    if session.info.get(BYPASS_KEY):
        return

    owned = [
        obj for obj in (*session.new, *session.dirty, *session.deleted)
        if isinstance(obj, TenantMixin)
    ]
    if not owned:
        return

    profile_id = session.info.get(SCOPE_KEY)
    if profile_id is None:
        raise TenantScopeError("Tenant rows flushed outside tenant_session()")

    for obj in owned:
        owners = {obj.profile_id}
        # A dirty row may have been moved from its original owner
        owners.update(inspect(obj).attrs.profile_id.history.deleted or ())
        for owner in owners:
            if owner is None or coerce_profile_id(owner) != profile_id:
                logger.error(
                    f"Blocked write of {type(obj).__name__} owned by {owner} inside scope {profile_id}"
                )
                raise TenantViolationError(
                    f"{type(obj).__name__} belongs to profile {owner}, scope is {profile_id}"
                )


@event.listens_for(Session, "after_begin")
def _publish_scope(session, transaction, connection):
    # set_config(..., true) lasts until the transaction ends, so a pooled
    # connection never carries the setting into another principal's work.
    if connection.dialect.name != "postgresql":
        return
    if session.info.get(BYPASS_KEY):
        connection.execute(
            text("SELECT set_config(:key, 'on', true)"), {"key": PG_BYPASS_SETTING}
        )
    profile_id = session.info.get(SCOPE_KEY)
    if profile_id is not None:
        connection.execute(
            text("SELECT set_config(:key, :value, true)"),
            {"key": PG_SCOPE_SETTING, "value": str(profile_id)},
        )


@contextmanager
def tenant_session(profile_id: Union[uuid.UUID, str], *, bind: Optional[Engine] = None) -> Iterator[Session]:
    """
    Open a session bound to a single profile.

    The unit of work commits when the block exits normally and rolls back
    on any exception. The scope is dropped and the connection returned to
    the pool in every case.
    """
    scope = coerce_profile_id(profile_id)
    session = Session(bind or db.engine, expire_on_commit=False)
    session.info[SCOPE_KEY] = scope
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.info.pop(SCOPE_KEY, None)
        session.close()


@contextmanager
def system_session(reason: str, *, bind: Optional[Engine] = None) -> Iterator[Session]:
    """
    Cross-tenant session for maintenance sweeps only.

    Callers must name the reason; it is logged so every bypass is traceable.
    """
    logger.info(f"Opening system session: {reason}")
    session = Session(bind or db.engine, expire_on_commit=False)
    session.info[BYPASS_KEY] = True
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.info.pop(BYPASS_KEY, None)
        session.close()


RLS_STATEMENTS = [
    stmt
    for table in TENANT_TABLES
    for stmt in (
        f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY",
        f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY",
        f"DROP POLICY IF EXISTS {table}_profile_isolation ON {table}",
        f"""
        CREATE POLICY {table}_profile_isolation ON {table}
            USING (
                current_setting('{PG_BYPASS_SETTING}', true) = 'on'
                OR profile_id = NULLIF(current_setting('{PG_SCOPE_SETTING}', true), '')::uuid
            )
            WITH CHECK (
                current_setting('{PG_BYPASS_SETTING}', true) = 'on'
                OR profile_id = NULLIF(current_setting('{PG_SCOPE_SETTING}', true), '')::uuid
            )
        """,
    )
]


def install_row_level_security(bind: Engine):
    """Install the storage-level policies. No-op on backends without RLS."""
    if bind.dialect.name != "postgresql":
        logger.info(f"Row-level security not available on {bind.dialect.name}; session gate only")
        return
    with bind.begin() as conn:
        for stmt in RLS_STATEMENTS:
            conn.execute(text(stmt))
    logger.info(f"Row-level security installed on {', '.join(TENANT_TABLES)}")
