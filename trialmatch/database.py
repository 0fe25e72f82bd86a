"""Engine, session factory and the FastAPI session dependency"""

import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import (
    DATABASE_URL,
    DB_MAX_OVERFLOW,
    DB_POOL_RECYCLE,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
    DB_SLOW_QUERY_SECONDS,
    SQLITE_BUSY_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # API threads and the sweep share the file; the busy timeout lets a
        # second writer queue behind the first instead of failing
        return create_engine(
            url, connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
        )

    engine = create_engine(
        url,
        pool_pre_ping=True,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_timeout=DB_POOL_TIMEOUT,
        pool_recycle=DB_POOL_RECYCLE,
    )
    logger.info(f"📊 DB pool size={DB_POOL_SIZE} overflow={DB_MAX_OVERFLOW} timeout={DB_POOL_TIMEOUT}s")
    return engine


def log_slow_queries(engine: Engine, threshold: float) -> None:
    """Warn about any statement on this engine that runs longer than threshold seconds"""

    @event.listens_for(engine, "before_cursor_execute")
    def _started(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("statement_started", []).append(time.perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def _finished(conn, cursor, statement, parameters, context, executemany):
        elapsed = time.perf_counter() - conn.info["statement_started"].pop()
        if elapsed > threshold:
            logger.warning(f"🐌 {elapsed:.2f}s statement: {statement[:200]}")


try:
    engine = build_engine(DATABASE_URL)
except Exception as e:
    # Only the part after the credentials goes to the log
    logger.error(f"❌ Could not create database engine for {DATABASE_URL.split('@')[-1]}: {e}")
    raise

if DB_SLOW_QUERY_SECONDS > 0:
    log_slow_queries(engine, DB_SLOW_QUERY_SECONDS)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
