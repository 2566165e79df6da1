"""
Database session and connection-pool setup.

Pool parameters:
- pool_size: resident connections
- max_overflow: extra connections at peak (pool_size + max_overflow at most)
- pool_timeout: max seconds to wait for a connection
- pool_recycle: recycle period, avoids idle connections dropped by PostgreSQL
- pool_pre_ping: liveness check before use

Every PostgreSQL connection also carries `statement_timeout`, so a stuck
datastore surfaces as a failed operation instead of a hung request.
"""

import logging
import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from gallery_admin.config import settings
from gallery_admin.core.errors import DependencyError

logger = logging.getLogger("gallery_admin.db")

SLOW_QUERY_THRESHOLD_MS = settings.SLOW_QUERY_THRESHOLD_MS


def build_engine(url: str) -> Engine:
    """Create an engine; pool tuning and statement timeout apply to PostgreSQL only."""
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.DB_ECHO,
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        connect_args={"options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}"},
        echo=settings.DB_ECHO,
    )


engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)


# ---------------------------------------------------------------------------
# Slow query monitoring
# ---------------------------------------------------------------------------
@event.listens_for(engine, "before_cursor_execute")
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_start_time", []).append(time.perf_counter())


@event.listens_for(engine, "after_cursor_execute")
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    total_ms = (time.perf_counter() - conn.info["query_start_time"].pop()) * 1000

    if total_ms >= SLOW_QUERY_THRESHOLD_MS:
        # Truncate long SQL to keep log volume bounded
        stmt_preview = statement[:500] + "..." if len(statement) > 500 else statement
        logger.warning(
            "Slow query detected",
            extra={
                "duration_ms": round(total_ms, 2),
                "statement": stmt_preview,
                "threshold_ms": SLOW_QUERY_THRESHOLD_MS,
            },
        )


# ---------------------------------------------------------------------------
# Pool usage
# ---------------------------------------------------------------------------
@event.listens_for(engine, "checkout")
def _on_checkout(dbapi_conn, connection_rec, connection_proxy):
    pool = engine.pool
    if not hasattr(pool, "checkedout"):
        return
    logger.debug(
        "DB pool checkout",
        extra={
            "pool_size": pool.size(),
            "checked_in": pool.checkedin(),
            "checked_out": pool.checkedout(),
            "overflow": pool.overflow(),
        },
    )


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def datastore_errors(db: Session, message: str = "Feature flag store unavailable") -> Iterator[None]:
    """Roll back and raise DependencyError on any SQLAlchemy failure.

    Covers driver errors and statement timeouts (DBAPIError) as well as pool
    exhaustion (sqlalchemy.exc.TimeoutError), which is not a DBAPIError.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        raise DependencyError(message) from exc


def get_pool_status() -> dict:
    """Pool state for /health."""
    pool = engine.pool
    if not hasattr(pool, "checkedout"):
        return {"pool": type(pool).__name__}
    return {
        "pool_size": pool.size(),
        "checked_in": pool.checkedin(),
        "checked_out": pool.checkedout(),
        "overflow": pool.overflow(),
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
    }
