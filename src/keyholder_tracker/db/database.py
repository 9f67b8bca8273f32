"""Engine and session factory for the keyholder tracker database.

SQLite is the default store. Every SQLite connection runs in WAL mode with a
busy timeout, so the API and background deadline checks can share the file,
and with foreign keys enforced for the chastity data and session tables.
"""

import time
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..config import DatabaseConfig, get_config
from ..utils.logging_config import get_logger

logger = get_logger("database")

SLOW_QUERY_SECONDS = 0.1
SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
    "PRAGMA foreign_keys=ON",
)


def _is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite:")


def _setup_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def _time_queries(engine: Engine) -> None:
    """Log each statement's duration; slow ones at WARNING."""

    @event.listens_for(engine, "before_cursor_execute")
    def start_timer(conn, cursor, statement, parameters, context, executemany):
        context._keyholder_started = time.perf_counter()

    @event.listens_for(engine, "after_cursor_execute")
    def log_duration(conn, cursor, statement, parameters, context, executemany):
        elapsed = time.perf_counter() - context._keyholder_started
        if elapsed > SLOW_QUERY_SECONDS:
            logger.warning(f"Slow query ({elapsed:.3f}s): {statement[:200]}")
        else:
            logger.debug(f"Query ({elapsed:.3f}s): {statement[:100]}")


def create_database_engine(
    database_url: Optional[str] = None,
    enable_query_logging: bool = False,
    echo: bool = False,
) -> Engine:
    """Build an engine for ``database_url``, defaulting to the configured one."""
    database_url = database_url or get_config().database.url

    if _is_sqlite_url(database_url):
        engine = create_engine(
            database_url, connect_args={"check_same_thread": False}, echo=echo
        )
        event.listen(engine, "connect", _setup_sqlite_pragma)
    else:
        engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

    if enable_query_logging:
        _time_queries(engine)
    logger.info(f"Database engine ready for {engine.url.render_as_string(hide_password=True)}")
    return engine


def build_engine(settings: DatabaseConfig) -> Engine:
    return create_database_engine(
        settings.url, enable_query_logging=settings.log_queries, echo=settings.echo
    )


engine = build_engine(get_config().database)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Iterator[Session]:
    """Yield a session for one request and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
