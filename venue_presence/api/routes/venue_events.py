from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from venue_presence.core.auth import get_current_user_id
from venue_presence.core.clock import utcnow
from venue_presence.core.db import get_db
from venue_presence.core.presence_config import MAX_NONCE_REQUEST_ACCURACY_METERS
from venue_presence.schemas.venue_events import (
    IssueNonceRequest,
    IssueNonceResponse,
    LocationIn,
    PingRequest,
    PingResponse,
    SessionResponse,
    StateChangeOut,
    VerifyEntryRequest,
    VerifyEntryResponse,
)
from venue_presence.services import entry, venue_store
from venue_presence.services.mock_location import Location
from venue_presence.services.presence_state_machine import process_ping
from venue_presence.services.rate_limit import (
    limit_entry_verifications,
    limit_nonce_requests,
    limit_pings,
)
from venue_presence.services.security_log import RequestContext

router = APIRouter()


# ------------------------------------------------------------------
# Utils
# ------------------------------------------------------------------

def _location(payload: LocationIn) -> Location:
    return Location(
        lat=payload.lat,
        lng=payload.lng,
        accuracy=payload.accuracy,
        timestamp=payload.timestamp or utcnow(),
    )


def _context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


# ------------------------------------------------------------------
# STEP 1: NONCE
# ------------------------------------------------------------------

@router.post("/nonce", response_model=IssueNonceResponse, response_model_exclude_none=True)
def request_event_nonce(
    payload: IssueNonceRequest,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(limit_nonce_requests),
):
    if payload.location.accuracy > MAX_NONCE_REQUEST_ACCURACY_METERS:
        raise HTTPException(
            status_code=400,
            detail="Location accuracy too poor. Please try again with better GPS signal.",
        )

    result = entry.issue_nonce(
        db,
        payload.static_qr_data,
        _location(payload.location),
        user_id,
        payload.session_id,
        context=_context(request),
    )

    return IssueNonceResponse(
        success=result.success,
        nonce=result.nonce,
        event_id=result.event_id,
        venue_rules=result.venue_rules,
        location_tips=result.location_tips,
        reason=result.reason.value if result.reason else None,
    )


# ------------------------------------------------------------------
# STEP 2: VERIFY
# ------------------------------------------------------------------

@router.post("/verify", response_model=VerifyEntryResponse, response_model_exclude_none=True)
def verify_tokenized_entry(
    payload: VerifyEntryRequest,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(limit_entry_verifications),
):
    result = entry.verify_entry(
        db,
        payload.nonce,
        _location(payload.location),
        user_id,
        context=_context(request),
    )

    return VerifyEntryResponse(
        success=result.success,
        event_id=result.event_id,
        reason=result.reason.value if result.reason else None,
        requires_rescan=result.requires_rescan,
        location_tips=result.location_tips,
    )


# ------------------------------------------------------------------
# PING
# ------------------------------------------------------------------

@router.post("/ping", response_model=PingResponse, response_model_exclude_none=True)
def venue_ping(
    payload: PingRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(limit_pings),
):
    outcome = process_ping(
        db,
        user_id,
        payload.venue_id,
        _location(payload.location),
        battery_level=payload.battery_level,
        movement_speed=payload.movement_speed,
    )

    return PingResponse(
        new_state=outcome.new_state,
        state_changed=outcome.state_changed,
        profile_visible=outcome.profile_visible,
        reason=outcome.reason,
        next_ping_interval_seconds=outcome.next_ping_interval,
        user_message=outcome.user_message,
    )


# ------------------------------------------------------------------
# SESSION
# ------------------------------------------------------------------

@router.get("/{venue_id}/session", response_model=SessionResponse)
def get_venue_session(
    venue_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    session = venue_store.get_session(db, venue_id, user_id)
    if session is None:
        raise HTTPException(status_code=404, detail="No session for this venue")

    return SessionResponse(
        venue_id=session.venue_id,
        event_id=session.event_id,
        state=session.state,
        profile_visible=session.profile_visible,
        joined_at=session.joined_at,
        last_ping_at=session.last_ping_at,
        total_duration_seconds=session.total_duration_seconds,
        recent_state_changes=[
            StateChangeOut(
                from_state=c["from"],
                to_state=c["to"],
                timestamp=c["timestamp"],
                reason=c["reason"],
            )
            for c in session.recent_state_changes or []
        ],
    )
