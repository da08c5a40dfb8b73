from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from venue_presence.core.errors import StoreUnavailable
from venue_presence.models.security_log import SecurityLogEntry
from venue_presence.schemas.enums import AuditEventType, AuditResult
from venue_presence.services import venue_store


@dataclass(frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def short_nonce(nonce: Optional[str]) -> str:
    return f"{nonce[:8]}..." if nonce else "-"


def log_security_event(
    db: Session,
    event_type: AuditEventType,
    user_id: str,
    venue_id: str,
    result: AuditResult,
    now: datetime,
    nonce: Optional[str] = None,
    failure_reason: Optional[str] = None,
    mock_location_detected: bool = False,
    location_accuracy: Optional[float] = None,
    context: Optional[RequestContext] = None,
) -> None:
    """
    Append one audit row. Best effort: a failed write is logged and swallowed
    so it never changes the outcome of the request that produced it.
    """
    context = context or RequestContext()
    entry = SecurityLogEntry(
        event_type=event_type.value,
        user_id=user_id,
        venue_id=venue_id,
        nonce=nonce,
        result=result.value,
        failure_reason=failure_reason,
        mock_location_detected=mock_location_detected,
        location_accuracy=location_accuracy,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        created_at=now,
    )

    if result == AuditResult.failed or mock_location_detected:
        logger.warning(
            f"Security event {event_type.value}: result={result.value} "
            f"reason={failure_reason} mock={mock_location_detected} "
            f"user={user_id} venue={venue_id} nonce={short_nonce(nonce)}"
        )

    try:
        venue_store.append_audit_entry(db, entry)
    except (StoreUnavailable, SQLAlchemyError) as exc:
        db.rollback()
        logger.error(f"Audit write failed for {event_type.value} user={user_id} venue={venue_id}: {exc!r}")
