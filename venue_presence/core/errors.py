"""
Infrastructure error handling for store access.

Business rejections (invalid_qr, venue_closed, ...) are plain result values and
never pass through here. Only store failures do: they are retried with
exponential backoff and, once attempts are exhausted, surface as
StoreUnavailable so the API can answer "try again" instead of "not eligible".
"""
from __future__ import annotations

from functools import wraps
from typing import Any, Callable, TypeVar

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from venue_presence.core.config import STORE_RETRY_ATTEMPTS

F = TypeVar("F", bound=Callable[..., Any])

STATUS_SERVICE_UNAVAILABLE = 503
STATUS_RATE_LIMITED = 429

RETRYABLE_STORE_ERRORS = (OperationalError, PoolTimeoutError)


class StoreUnavailable(Exception):
    """The backing store could not be reached after bounded retries."""

    def __init__(self, operation: str):
        super().__init__(f"store unavailable during {operation}")
        self.operation = operation


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, RETRYABLE_STORE_ERRORS):
        return True
    # disconnects surface as generic DBAPIError with the invalidation flag set
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def _log_retry(operation: str, state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        f"Store call {operation} failed "
        f"(attempt {state.attempt_number}): {exc!r}"
    )


def store_call(fn: F) -> F:
    """
    Wrap a store operation taking ``db: Session`` as its first argument.

    Retryable errors roll the session back before the next attempt; after
    STORE_RETRY_ATTEMPTS they are converted to StoreUnavailable. Any other
    exception propagates unchanged.
    """

    @wraps(fn)
    def wrapper(db: Session, *args, **kwargs):
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(STORE_RETRY_ATTEMPTS),
                wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
                retry=retry_if_exception(_is_retryable),
                before_sleep=lambda state: _log_retry(fn.__name__, state),
                reraise=True,
            ):
                with attempt:
                    try:
                        return fn(db, *args, **kwargs)
                    except (DBAPIError, PoolTimeoutError):
                        db.rollback()
                        raise
        except (DBAPIError, PoolTimeoutError) as exc:
            if not _is_retryable(exc):
                raise
            logger.error(f"Store call {fn.__name__} exhausted retries: {exc!r}")
            raise StoreUnavailable(fn.__name__) from exc

    return wrapper  # type: ignore[return-value]


async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} -> store_unavailable ({exc.operation})")
    return JSONResponse(
        status_code=STATUS_SERVICE_UNAVAILABLE,
        content={"success": False, "reason": "store_unavailable", "retryable": True},
    )


class RateLimited(Exception):
    """Raised before protocol logic when a caller exceeds its request budget."""

    def __init__(self, endpoint: str, retry_after: int):
        super().__init__(f"rate limited on {endpoint}")
        self.endpoint = endpoint
        self.retry_after = retry_after


async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    return JSONResponse(
        status_code=STATUS_RATE_LIMITED,
        content={"success": False, "reason": "rate_limited"},
        headers={"Retry-After": str(exc.retry_after)},
    )
