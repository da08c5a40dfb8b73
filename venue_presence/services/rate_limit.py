"""
Per-user request limits shared across every API instance.

Counters live in the database, one row per (bucket, fixed window). The
sliding-window estimate weights the previous window by how much of it still
overlaps the last ``window_seconds``:

    estimate = previous_hits * (1 - elapsed / window) + current_hits
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends
from loguru import logger
from sqlalchemy import text
from sqlalchemy.orm import Session

from venue_presence.core.auth import get_current_user_id
from venue_presence.core.clock import as_utc, utcnow
from venue_presence.core.config import (
    RATE_LIMIT_NONCE_PER_MIN,
    RATE_LIMIT_PING_PER_MIN,
    RATE_LIMIT_VERIFY_PER_MIN,
)
from venue_presence.core.db import get_db
from venue_presence.core.errors import RateLimited, store_call

WINDOW_SECONDS = 60


@store_call
def hit(
    db: Session,
    bucket_key: str,
    limit: int,
    window_seconds: int = WINDOW_SECONDS,
    now: Optional[datetime] = None,
) -> bool:
    """Count one request for ``bucket_key``; False when it is over the limit."""
    epoch = as_utc(now or utcnow()).timestamp()
    window_start = int(epoch) - int(epoch) % window_seconds
    previous_start = window_start - window_seconds

    db.execute(
        text(
            """
            INSERT INTO rate_limit_windows (bucket_key, window_start, hits)
            VALUES (:bucket_key, :window_start, 1)
            ON CONFLICT (bucket_key, window_start)
            DO UPDATE SET hits = rate_limit_windows.hits + 1
            """
        ),
        {"bucket_key": bucket_key, "window_start": window_start},
    )

    rows = db.execute(
        text(
            """
            SELECT window_start, hits
            FROM rate_limit_windows
            WHERE bucket_key = :bucket_key
              AND window_start IN (:window_start, :previous_start)
            """
        ),
        {"bucket_key": bucket_key, "window_start": window_start, "previous_start": previous_start},
    ).mappings().all()

    db.execute(
        text(
            """
            DELETE FROM rate_limit_windows
            WHERE bucket_key = :bucket_key AND window_start < :previous_start
            """
        ),
        {"bucket_key": bucket_key, "previous_start": previous_start},
    )
    db.commit()

    hits = {int(r["window_start"]): int(r["hits"]) for r in rows}
    overlap = 1 - (epoch - window_start) / window_seconds
    estimate = hits.get(previous_start, 0) * overlap + hits.get(window_start, 0)

    return estimate <= limit


def rate_limiter(endpoint: str, limit: int) -> Callable[..., str]:
    """
    FastAPI dependency enforcing ``limit`` requests per minute per user.
    Resolves to the caller's user id so routes can depend on it directly.
    """

    def dependency(
        user_id: str = Depends(get_current_user_id),
        db: Session = Depends(get_db),
    ) -> str:
        if not hit(db, f"{endpoint}:{user_id}", limit):
            logger.warning(f"Rate limit exceeded for {endpoint} by user {user_id}")
            raise RateLimited(endpoint, retry_after=WINDOW_SECONDS)
        return user_id

    return dependency


limit_nonce_requests = rate_limiter("nonce_request", RATE_LIMIT_NONCE_PER_MIN)
limit_entry_verifications = rate_limiter("entry_verify", RATE_LIMIT_VERIFY_PER_MIN)
limit_pings = rate_limiter("ping", RATE_LIMIT_PING_PER_MIN)
