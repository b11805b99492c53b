"""
Database configuration and session management with dual database support.
Supports SQLite (default) and PostgreSQL (optional override).

The API uses synchronous SQLModel sessions; Celery workers use the async
engine built from the same URL (aiosqlite / asyncpg drivers).
"""
import logging
import os
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import PROJECT_ROOT, settings
from app.core.logging_config import _sanitize_data
from app.middleware.request_logging import request_id_ctx, request_path_ctx

logger = logging.getLogger(__name__)

database_url = settings.effective_database_url
database_type = settings.database_type

logger.info(f"Using {database_type} database: {_sanitize_data(database_url)}")

if database_type == "sqlite":
    url = make_url(database_url)
    is_sqlite_memory = url.database in (None, "", ":memory:")

    engine = create_engine(
        database_url,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if is_sqlite_memory else None,
    )
    logger.info(f"Configured SQLite engine ({'in-memory' if is_sqlite_memory else 'file-based'})")

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Enable cascades and WAL so API and worker processes can share the file."""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not is_sqlite_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

elif database_type in {"postgres", "postgresql"}:
    engine = create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=10,
        pool_recycle=3600,
    )
    logger.info("Configured PostgreSQL engine with connection pooling")

else:
    engine = create_engine(database_url, echo=False, pool_pre_ping=True)
    logger.warning(
        f"Using unsupported database type '{database_type}'. "
        "Install the appropriate DB driver for production use."
    )


@event.listens_for(engine, "before_cursor_execute")
def _log_sql_statement(conn, cursor, statement, parameters, context, executemany):
    if not settings.log_sql_requests:
        return
    compact = " ".join(statement.split())
    if len(compact) > 800:
        compact = f"{compact[:800]}..."
    logger.info(
        "SQL statement path=%s request_id=%s",
        request_path_ctx.get(),
        request_id_ctx.get(),
        extra={"statement": compact},
    )


def build_async_database_url(sync_url: Optional[str] = None) -> str:
    """Map the configured sync URL onto its async driver."""
    url = make_url(sync_url or database_url)
    if url.drivername.startswith("sqlite"):
        drivername = "sqlite+aiosqlite"
    elif url.drivername.startswith("postgres"):
        drivername = "postgresql+asyncpg"
    else:
        drivername = url.drivername
    return url.set(drivername=drivername).render_as_string(hide_password=False)


_async_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[sessionmaker] = None


def get_async_session_factory() -> sessionmaker:
    """Lazily build the async engine used by background workers."""
    global _async_engine, _async_session_factory
    if _async_session_factory is None:
        _async_engine = create_async_engine(build_async_database_url(), echo=False)
        _async_session_factory = sessionmaker(
            _async_engine, class_=AsyncSession, expire_on_commit=False
        )
    return _async_session_factory


def create_db_and_tables():
    """Create database tables using Alembic migrations."""
    skip_db_init = os.getenv("SKIP_DB_INIT", "true").lower() in ("true", "1", "yes")
    if skip_db_init:
        logger.info("Skipping database initialization (performed by entrypoint script)")
        return

    try:
        logger.info("Running database migrations...")
        from alembic import command
        from alembic.config import Config

        alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
        alembic_cfg.set_main_option("sqlalchemy.url", database_url)
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")

    except Exception as exc:
        logger.error(exc)
        try:
            logger.info("Falling back to SQLModel create_all...")
            import app.models  # noqa: F401  (register tables on the metadata)
            SQLModel.metadata.create_all(engine)
            logger.info("Database tables created successfully (fallback)")
        except Exception as e:
            logger.error(e)
            raise


def get_session():
    """Get database session."""
    with Session(engine) as session:
        yield session


def get_session_context():
    """
    Get database session as context manager.

    Use this for scripts and non-request contexts:

        with get_session_context() as session:
            ...
    """
    return Session(engine)


def init_db():
    """Initialize database tables."""
    logger.info("Initializing database...")
    create_db_and_tables()
    logger.info("Database initialization completed")
