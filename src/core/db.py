"""Database connection and session management."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from .config import get_settings
from .logging_config import get_logger

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# Required tables that MUST exist for the system to function
REQUIRED_TABLES = [
    "users",
    "loops",
    "loop_tasks",
    "loop_documents",
    "organizations",
    "user_organizations",
    "activity_logs",
]


def configure_sqlite(engine: Engine, wal: bool = True) -> None:
    """
    Install SQLite connection hooks.

    Foreign keys are switched on per connection, and transaction control is
    taken over from the pysqlite driver so that SAVEPOINT works (activity
    logging and organization creation rely on nested transactions).

    Args:
        engine: Engine bound to a SQLite database.
        wal: Enable WAL journaling (not available for in-memory databases).
    """

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _build_engine() -> Engine:
    url = SETTINGS.database_url
    if not SETTINGS.is_sqlite:
        return create_engine(
            url,
            pool_size=SETTINGS.db_pool_size,
            max_overflow=SETTINGS.db_max_overflow,
            pool_timeout=SETTINGS.db_pool_timeout,
            pool_pre_ping=True,
        )

    in_memory = ":memory:" in url or url in ("sqlite://", "sqlite:///")
    sqlite_engine = create_engine(
        url,
        connect_args={"check_same_thread": False},
        # A private in-memory database only survives on a single shared connection
        poolclass=StaticPool if in_memory else NullPool,
    )
    configure_sqlite(sqlite_engine, wal=not in_memory)
    return sqlite_engine


engine = _build_engine()

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Yields:
        SQLAlchemy Session object.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def missing_tables(bind: Optional[Engine] = None) -> List[str]:
    """Return the required tables that do not exist yet."""
    existing = set(inspect(bind or engine).get_table_names())
    return [t for t in REQUIRED_TABLES if t not in existing]


def init_db(create_missing_only: bool = True) -> Dict[str, Any]:
    """
    Initialize database tables.

    Args:
        create_missing_only: If True, only creates missing tables (safe).
                            If False, creates all tables (use for fresh install).

    Returns:
        Dict with initialization results.
    """
    # Import models to ensure they are registered with Base
    from . import models  # noqa: F401

    result: Dict[str, Any] = {
        "status": "success",
        "tables_created": [],
        "tables_existing": [],
        "warnings": [],
    }

    try:
        existing_tables = set(inspect(engine).get_table_names())

        if create_missing_only and existing_tables:
            to_create = set(Base.metadata.tables.keys()) - existing_tables
            if to_create:
                Base.metadata.create_all(
                    bind=engine,
                    tables=[Base.metadata.tables[name] for name in to_create],
                )
                LOGGER.info(f"Created missing tables: {sorted(to_create)}")
            result["tables_created"] = sorted(to_create)
        else:
            Base.metadata.create_all(bind=engine)
            new_tables = set(inspect(engine).get_table_names())
            result["tables_created"] = sorted(new_tables - existing_tables)

        result["tables_existing"] = sorted(existing_tables)

        still_missing = missing_tables()
        if still_missing:
            result["warnings"].append(f"Missing required tables: {still_missing}")
            result["status"] = "warning"

    except Exception as e:
        result["status"] = "error"
        result["error"] = str(e)
        LOGGER.error(f"init_db failed: {e}")

    return result


def validate_database() -> Dict[str, Any]:
    """
    Validate database connection and required tables.

    Call this at application startup to ensure the database is ready.

    Returns:
        Dict with validation results.
    """
    result: Dict[str, Any] = {
        "status": "ok",
        "tables_missing": [],
        "errors": [],
    }

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        missing = missing_tables()
        result["tables_missing"] = missing
        if missing:
            result["status"] = "missing_tables"
            result["errors"].append(f"Missing required tables: {missing}")

    except Exception as e:
        result["status"] = "error"
        result["errors"].append(str(e))

    return result


__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "REQUIRED_TABLES",
    "configure_sqlite",
    "get_session",
    "init_db",
    "missing_tables",
    "validate_database",
]
