from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from loguru import logger

from venue_presence.core.config import (
    DATABASE_URL,
    DB_POOL_TIMEOUT_SECONDS,
    DB_STATEMENT_TIMEOUT_MS,
)

# --- Base (single source of truth) ---
Base = declarative_base()


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    if url.startswith("postgresql"):
        # every statement gets a bounded server-side timeout
        return {"options": f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"}
    return {}


def build_engine(url: str, **kwargs):
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=False,
            future=True,
            connect_args=_connect_args(url),
            **kwargs,
        )
    else:
        engine = create_engine(
            url,
            echo=False,
            future=True,
            pool_pre_ping=True,
            pool_timeout=DB_POOL_TIMEOUT_SECONDS,
            connect_args=_connect_args(url),
            **kwargs,
        )

    # --- SQL query logging ---
    @event.listens_for(engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        logger.debug(f"SQL: {statement}")

    return engine


# --- Engine ---
engine = build_engine(DATABASE_URL)

# --- Session factory ---
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)

# --- FastAPI dependency ---
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
