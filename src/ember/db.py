from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine
from ember.config import settings
from ember.logging import logger


def _sqlite_connect(dbapi_connection, connection_record):
    """Enforce foreign keys and WAL so concurrent jobs do not trip over each other."""
    # Let SQLAlchemy own BEGIN so SAVEPOINTs behave (pysqlite defers BEGIN otherwise)
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


def _sqlite_begin(conn):
    # Take the write lock up front. A deferred BEGIN that reads and then
    # writes fails with SQLITE_BUSY under WAL instead of waiting.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(url: str, echo: bool = False, **kwargs) -> Engine:
    """Build an engine; SQLite gets connection pragmas and cross-thread access."""
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        eng = create_engine(url, echo=echo, connect_args=connect_args, **kwargs)
        event.listen(eng, "connect", _sqlite_connect)
        event.listen(eng, "begin", _sqlite_begin)
        return eng
    return create_engine(url, echo=echo, pool_pre_ping=True, **kwargs)


engine = make_engine(settings.DATABASE_URL)


def init_db(bind: Engine | None = None):
    bind = bind or engine
    if bind.url.get_backend_name() == "sqlite" and bind.url.database not in (None, "", ":memory:"):
        Path(bind.url.database).parent.mkdir(parents=True, exist_ok=True)

    # Import all models here so SQLModel knows about them
    # This is critical for create_all to work
    from ember.models import core, capture, memory  # noqa: F401
    from ember.tenant import install_row_level_security

    logger.info(f"Initializing database at {bind.url.render_as_string(hide_password=True)}")
    SQLModel.metadata.create_all(bind)
    install_row_level_security(bind)
