"""
Two-step venue entry.

Step 1 (issue_nonce): the user scans the static QR printed at the venue. If the
venue is open and the user is inside the geofence, a short-lived single-use
nonce is minted.

Step 2 (verify_entry): the client presents the nonce with a fresh location.
The geofence is re-checked with mock-location heuristics, then the nonce is
consumed with a guarded conditional write in the same transaction that opens
the presence session.

Every rejection is returned as a value. Only store failures raise.
"""
from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from loguru import logger
from sqlalchemy.orm import Session

from venue_presence.core.clock import to_naive_utc, utcnow
from venue_presence.core.errors import store_call
from venue_presence.core.presence_config import NONCE_BYTES
from venue_presence.models.entry_token import EntryToken
from venue_presence.models.presence_session import PresenceSession
from venue_presence.schemas.enums import AuditEventType, AuditResult, EntryReason, VenueState
from venue_presence.services import venue_config, venue_store
from venue_presence.services.geo import effective_radius, haversine_m
from venue_presence.services.mock_location import Location, detect_mock_location, remember_location
from venue_presence.services.presence_state_machine import record_state_change
from venue_presence.services.security_log import RequestContext, log_security_event, short_nonce
from venue_presence.services.venue_config import VenueEventConfig

QR_PAYLOAD_TYPE = "venue_event"


@dataclass
class EntryResult:
    success: bool
    reason: Optional[EntryReason] = None
    nonce: Optional[str] = None
    event_id: Optional[str] = None
    venue_rules: Optional[str] = None
    location_tips: Optional[str] = None
    requires_rescan: Optional[bool] = None


@dataclass(frozen=True)
class LocationCheck:
    ok: bool
    mock_detected: bool
    distance: float
    radius: float
    reason: Optional[str] = None


def _reject(reason: EntryReason, **kwargs: Any) -> EntryResult:
    return EntryResult(success=False, reason=reason, **kwargs)


def parse_qr_payload(static_qr_data: str) -> Optional[tuple[str, str]]:
    try:
        payload = json.loads(static_qr_data)
    except (TypeError, ValueError):
        return None

    if not isinstance(payload, dict) or payload.get("type") != QR_PAYLOAD_TYPE:
        return None

    venue_id = payload.get("venueId")
    qr_code_id = payload.get("qrCodeId")
    if not isinstance(venue_id, str) or not isinstance(qr_code_id, str):
        return None
    if not venue_id or not qr_code_id:
        return None

    return venue_id, qr_code_id


def generate_nonce() -> str:
    return secrets.token_hex(NONCE_BYTES)


def distance_to_venue(location: Location, config: VenueEventConfig) -> float:
    return haversine_m(config.venue_lat, config.venue_lng, location.lat, location.lng)


def check_location(
    db: Session,
    location: Location,
    config: VenueEventConfig,
    user_id: str,
) -> LocationCheck:
    distance = distance_to_venue(location, config)
    mock_detected = detect_mock_location(db, location, user_id)
    radius = effective_radius(config.location_radius, config.k_factor, mock_detected)

    if distance > radius:
        logger.info(
            f"User {user_id} outside radius of venue {config.venue_id}: "
            f"distance={distance:.1f}m radius={radius:.1f}m accuracy={location.accuracy} "
            f"mock={mock_detected}"
        )
        reason = "mock_location_strict_radius" if mock_detected else "outside_radius"
        return LocationCheck(ok=False, mock_detected=mock_detected, distance=distance, radius=radius, reason=reason)

    return LocationCheck(ok=True, mock_detected=mock_detected, distance=distance, radius=radius)


# ------------------------------------------------------------------
# STEP 1: static QR -> nonce
# ------------------------------------------------------------------

def issue_nonce(
    db: Session,
    static_qr_data: str,
    location: Location,
    user_id: str,
    session_id: str,
    now: Optional[datetime] = None,
    context: Optional[RequestContext] = None,
) -> EntryResult:
    now = to_naive_utc(now) if now else utcnow()
    logger.info(f"Requesting event nonce for user {user_id} session {session_id}")

    parsed = parse_qr_payload(static_qr_data)
    if parsed is None:
        logger.warning(f"Invalid QR payload from user {user_id}")
        return _reject(EntryReason.invalid_qr)

    venue_id, qr_code_id = parsed

    config = venue_config.resolve(db, venue_id, qr_code_id)
    if config is None:
        logger.warning(f"Venue event config not found: venue={venue_id}")
        return _reject(EntryReason.invalid_qr)

    if not venue_config.is_open(config, now):
        logger.info(f"Venue {venue_id} ({config.event_name}) is closed")
        log_security_event(
            db, AuditEventType.token_generation, user_id, venue_id, AuditResult.failed, now,
            failure_reason=EntryReason.venue_closed.value,
            location_accuracy=location.accuracy, context=context,
        )
        return _reject(EntryReason.venue_closed, venue_rules=config.venue_rules)

    distance = distance_to_venue(location, config)
    if distance > config.effective_radius:
        logger.info(
            f"User {user_id} outside venue {venue_id} radius: distance={distance:.1f}m "
            f"required={config.effective_radius:.1f}m accuracy={location.accuracy}"
        )
        log_security_event(
            db, AuditEventType.token_generation, user_id, venue_id, AuditResult.failed, now,
            failure_reason=EntryReason.outside_radius.value,
            location_accuracy=location.accuracy, context=context,
        )
        remember_location(db, location, user_id)
        return _reject(
            EntryReason.outside_radius,
            location_tips=config.location_tips,
            venue_rules=config.venue_rules,
        )

    nonce = generate_nonce()
    token = EntryToken(
        nonce=nonce,
        venue_id=venue_id,
        qr_code_id=qr_code_id,
        user_id=user_id,
        session_id=session_id,
        venue_type=config.venue_type.value,
        issued_at=now,
        expires_at=now + venue_config.token_lifetime(config.venue_type),
        consumed=False,
    )
    venue_store.save_token(db, token)

    # mock detection happens at verification
    log_security_event(
        db, AuditEventType.token_generation, user_id, venue_id, AuditResult.success, now,
        nonce=nonce, location_accuracy=location.accuracy, context=context,
    )
    remember_location(db, location, user_id)

    logger.info(f"Event nonce generated for user {user_id} at venue {venue_id}: {short_nonce(nonce)}")

    return EntryResult(
        success=True,
        nonce=nonce,
        event_id=config.event_id,
        venue_rules=config.venue_rules,
    )


# ------------------------------------------------------------------
# STEP 2: nonce + location -> session
# ------------------------------------------------------------------

def _validate_token(token: Optional[EntryToken], user_id: str, now: datetime) -> Optional[EntryReason]:
    if token is None:
        return EntryReason.invalid_token
    if now > token.expires_at:
        return EntryReason.expired_token
    if token.consumed:
        return EntryReason.token_consumed
    if token.user_id and token.user_id != user_id:
        return EntryReason.invalid_binding
    return None


@store_call
def _admit(db: Session, nonce: str, user_id: str, config: VenueEventConfig, now: datetime) -> Optional[PresenceSession]:
    """
    Consume the nonce and open the session in one transaction.
    Returns None when another verification consumed the nonce first.
    """
    if not venue_store.consume_token(db, nonce, now):
        db.rollback()
        return None

    existing = venue_store.lock_session(db, config.venue_id, user_id)
    previous_state = existing.state if existing is not None else VenueState.inactive

    session = PresenceSession.opened(config.venue_id, user_id, config.event_id, now)
    record_state_change(session, previous_state, VenueState.active, "qr_entry", now)
    merged = venue_store.put_session(db, session)

    db.commit()
    return merged


def verify_entry(
    db: Session,
    nonce: str,
    location: Location,
    user_id: str,
    now: Optional[datetime] = None,
    context: Optional[RequestContext] = None,
) -> EntryResult:
    now = to_naive_utc(now) if now else utcnow()
    logger.info(f"Verifying tokenized entry {short_nonce(nonce)} for user {user_id}")

    token = venue_store.get_token(db, nonce)
    failure = _validate_token(token, user_id, now)
    if failure is not None:
        logger.warning(f"Token {short_nonce(nonce)} rejected for user {user_id}: {failure.value}")
        if token is not None:
            log_security_event(
                db, AuditEventType.qr_validation, user_id, token.venue_id, AuditResult.failed, now,
                nonce=nonce, failure_reason=failure.value,
                location_accuracy=location.accuracy, context=context,
            )
        return _reject(failure, requires_rescan=failure == EntryReason.expired_token)

    venue_id = token.venue_id
    config = venue_config.resolve(db, venue_id, token.qr_code_id)
    if config is None:
        return _reject(EntryReason.invalid_qr)

    if not venue_config.is_open(config, now):
        return _reject(EntryReason.venue_closed)

    check = check_location(db, location, config, user_id)
    remember_location(db, location, user_id)

    if check.mock_detected:
        log_security_event(
            db, AuditEventType.mock_detection, user_id, venue_id,
            AuditResult.success if check.ok else AuditResult.failed, now,
            nonce=nonce, failure_reason=check.reason, mock_location_detected=True,
            location_accuracy=location.accuracy, context=context,
        )

    if not check.ok:
        log_security_event(
            db, AuditEventType.location_verification, user_id, venue_id, AuditResult.failed, now,
            nonce=nonce, failure_reason=check.reason, mock_location_detected=check.mock_detected,
            location_accuracy=location.accuracy, context=context,
        )
        if check.mock_detected:
            return _reject(EntryReason.mock_location, location_tips=config.location_tips, requires_rescan=True)
        return _reject(EntryReason.outside_radius, location_tips=config.location_tips, requires_rescan=False)

    if _admit(db, nonce, user_id, config, now) is None:
        # lost a race with a concurrent verification of the same nonce
        logger.warning(f"Token {short_nonce(nonce)} consumed concurrently, user {user_id}")
        return _reject(EntryReason.token_consumed, requires_rescan=False)

    log_security_event(
        db, AuditEventType.qr_validation, user_id, venue_id, AuditResult.success, now,
        nonce=nonce, mock_location_detected=check.mock_detected,
        location_accuracy=location.accuracy, context=context,
    )

    logger.info(f"User {user_id} joined venue event {config.event_name} at {venue_id}")

    return EntryResult(success=True, event_id=config.event_id)
