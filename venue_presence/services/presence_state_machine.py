"""
Server-authoritative presence state machine for venue events.

    inactive -> active    QR entry, or an inside ping within 30 min of joining
    active   -> paused    3 consecutive outside pings (each >= 60s apart)
    paused   -> active    inside ping, or within 100m during the 10 min grace window
    paused   -> inactive  still outside once the grace window has elapsed
    any      -> inactive  venue schedule closed

profile_visible always equals (state == active).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy.orm import Session

from venue_presence.core.clock import to_naive_utc, utcnow
from venue_presence.core.errors import store_call
from venue_presence.core.presence_config import (
    BASE_PING_INTERVAL_SECONDS,
    FAR_DISTANCE_METERS,
    FAR_DISTANCE_MULTIPLIER,
    GRACE_RESUME_DISTANCE_METERS,
    MIN_PING_INTERVAL_SECONDS,
    OUTSIDE_PINGS_TO_PAUSE,
    POOR_ACCURACY_METERS,
    POOR_ACCURACY_MULTIPLIER,
    RE_ENTRY_GRACE_PERIOD,
    RECENT_JOIN_WINDOW,
    STATE_HISTORY_LIMIT,
)
from venue_presence.models.presence_session import PresenceSession
from venue_presence.schemas.enums import VenueState
from venue_presence.services import venue_config, venue_store
from venue_presence.services.geo import haversine_m
from venue_presence.services.mock_location import Location, remember_location

MSG_SCAN_QR = "Please scan the venue QR code to join the event."
MSG_VENUE_CLOSED = "The venue event has ended."
MSG_REACTIVATED = "Welcome back! You're now visible to other users."
MSG_STEPPED_AWAY = "You've stepped away. Your profile is hidden but your matches are kept. Come back to re-activate."
MSG_RETURNED = "Welcome back! You're visible again."
MSG_GRACE_RESUME = "Auto-resumed during grace period. You're visible again!"
MSG_GRACE_EXPIRED = "Session expired. Please scan the QR code again to rejoin."


@dataclass(frozen=True)
class LocationPing:
    is_inside: bool
    distance: float
    accuracy: float


@dataclass
class PingOutcome:
    new_state: VenueState
    profile_visible: bool
    state_changed: bool
    reason: str
    next_ping_interval: int
    user_message: Optional[str] = None


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def next_ping_interval(state: VenueState, distance: float, accuracy: float) -> int:
    interval = float(BASE_PING_INTERVAL_SECONDS[state.value])

    # further away: ping less often
    if distance > FAR_DISTANCE_METERS:
        interval *= FAR_DISTANCE_MULTIPLIER

    # poor accuracy: ping less often to avoid flip-flopping
    if accuracy > POOR_ACCURACY_METERS:
        interval *= POOR_ACCURACY_MULTIPLIER

    return int(round(max(MIN_PING_INTERVAL_SECONDS, interval)))


def record_state_change(
    session: PresenceSession,
    from_state: VenueState,
    to_state: VenueState,
    reason: str,
    now: datetime,
) -> None:
    changes = list(session.recent_state_changes or [])
    changes.append({
        "from": from_state.value,
        "to": to_state.value,
        "timestamp": now.isoformat(),
        "reason": reason,
    })
    # reassign so the JSON column is flagged dirty
    session.recent_state_changes = changes[-STATE_HISTORY_LIMIT:]

    logger.info(
        f"Venue state transition user={session.user_id} venue={session.venue_id} "
        f"{from_state.value} -> {to_state.value} ({reason}) "
        f"total_duration={session.total_duration_seconds}s"
    )


def _set_state(session: PresenceSession, state: VenueState) -> None:
    session.current_state = state.value
    session.profile_visible = state == VenueState.active


def _transition(session: PresenceSession, to_state: VenueState, reason: str, now: datetime) -> None:
    from_state = session.state
    _set_state(session, to_state)
    record_state_change(session, from_state, to_state, reason, now)


def _outcome(
    session: PresenceSession,
    ping: LocationPing,
    changed: bool,
    reason: str,
    message: Optional[str] = None,
) -> PingOutcome:
    return PingOutcome(
        new_state=session.state,
        profile_visible=session.profile_visible,
        state_changed=changed,
        reason=reason,
        next_ping_interval=next_ping_interval(session.state, ping.distance, ping.accuracy),
        user_message=message,
    )


def no_session_outcome(ping: LocationPing) -> PingOutcome:
    return PingOutcome(
        new_state=VenueState.inactive,
        profile_visible=False,
        state_changed=False,
        reason="no_session",
        next_ping_interval=next_ping_interval(VenueState.inactive, ping.distance, ping.accuracy),
        user_message=MSG_SCAN_QR,
    )


# ------------------------------------------------------------------
# Per-state handlers
# ------------------------------------------------------------------

def _on_inactive(session: PresenceSession, ping: LocationPing, now: datetime) -> PingOutcome:
    # stale pings can reach a session that was already closed out; only a
    # recent join may come back without a fresh QR scan
    recent_join = session.joined_at is not None and (now - session.joined_at) < RECENT_JOIN_WINDOW

    if ping.is_inside and recent_join:
        session.consecutive_outside_pings = 0
        session.last_inside_ping_at = now
        session.paused_at = None
        _transition(session, VenueState.active, "inside_with_recent_join", now)
        return _outcome(session, ping, True, "reactivated", MSG_REACTIVATED)

    return _outcome(session, ping, False, "needs_qr_scan", MSG_SCAN_QR)


def _on_active(session: PresenceSession, ping: LocationPing, now: datetime) -> PingOutcome:
    if ping.is_inside:
        session.consecutive_outside_pings = 0
        session.last_inside_ping_at = now
        return _outcome(session, ping, False, "staying_active")

    session.consecutive_outside_pings = (session.consecutive_outside_pings or 0) + 1

    if session.consecutive_outside_pings >= OUTSIDE_PINGS_TO_PAUSE:
        session.paused_at = now
        _transition(session, VenueState.paused, "consecutive_outside_pings", now)
        return _outcome(session, ping, True, "stepped_away", MSG_STEPPED_AWAY)

    return _outcome(session, ping, False, f"outside_ping_{session.consecutive_outside_pings}")


def _on_paused(session: PresenceSession, ping: LocationPing, now: datetime) -> PingOutcome:
    if ping.is_inside:
        session.consecutive_outside_pings = 0
        session.last_inside_ping_at = now
        session.paused_at = None
        _transition(session, VenueState.active, "returned_inside", now)
        return _outcome(session, ping, True, "returned", MSG_RETURNED)

    if session.paused_at is None:
        return _outcome(session, ping, False, "staying_paused")

    if now - session.paused_at <= RE_ENTRY_GRACE_PERIOD:
        if ping.distance <= GRACE_RESUME_DISTANCE_METERS:
            session.consecutive_outside_pings = 0
            session.paused_at = None
            _transition(session, VenueState.active, "grace_period_resume", now)
            return _outcome(session, ping, True, "grace_resume", MSG_GRACE_RESUME)
        return _outcome(session, ping, False, "staying_paused")

    session.consecutive_outside_pings = 0
    session.paused_at = None
    _transition(session, VenueState.inactive, "grace_period_expired", now)
    return _outcome(session, ping, True, "grace_expired", MSG_GRACE_EXPIRED)


_HANDLERS = {
    VenueState.inactive: _on_inactive,
    VenueState.active: _on_active,
    VenueState.paused: _on_paused,
}


# ------------------------------------------------------------------
# Transition function
# ------------------------------------------------------------------

def on_ping(
    session: PresenceSession,
    ping: LocationPing,
    now: datetime,
    venue_open: bool,
) -> PingOutcome:
    """
    Advance ``session`` in place for one location ping.

    Closing time outranks everything, including a pending grace resume.
    Pings closer than MIN_PING_INTERVAL_SECONDS to the previous accepted ping
    change nothing and do not move last_ping_at.
    """
    if not venue_open:
        was = session.state
        session.consecutive_outside_pings = 0
        session.paused_at = None
        if was != VenueState.inactive:
            _transition(session, VenueState.inactive, "venue_closed", now)
        else:
            _set_state(session, VenueState.inactive)
        return _outcome(session, ping, was != VenueState.inactive, "venue_closed", MSG_VENUE_CLOSED)

    elapsed = (now - session.last_ping_at).total_seconds() if session.last_ping_at else None
    if elapsed is not None and elapsed < MIN_PING_INTERVAL_SECONDS:
        logger.warning(
            f"Ping too frequent user={session.user_id} venue={session.venue_id} "
            f"elapsed={elapsed:.0f}s"
        )
        return _outcome(session, ping, False, "too_frequent")

    if elapsed is not None and session.state == VenueState.active:
        session.total_duration_seconds = (session.total_duration_seconds or 0) + max(0, int(elapsed))
    session.last_ping_at = now

    return _HANDLERS[session.state](session, ping, now)


# ------------------------------------------------------------------
# Ping processing (store I/O)
# ------------------------------------------------------------------

@store_call
def _apply_ping(
    db: Session,
    venue_id: str,
    user_id: str,
    ping: LocationPing,
    now: datetime,
    venue_open: bool,
) -> PingOutcome:
    session = venue_store.lock_session(db, venue_id, user_id)
    if session is None:
        db.rollback()
        return no_session_outcome(ping)

    outcome = on_ping(session, ping, now, venue_open)

    if outcome.reason == "too_frequent":
        db.rollback()
    else:
        db.commit()
    return outcome


def process_ping(
    db: Session,
    user_id: str,
    venue_id: str,
    location: Location,
    battery_level: Optional[float] = None,
    movement_speed: Optional[float] = None,
    now: Optional[datetime] = None,
) -> PingOutcome:
    now = to_naive_utc(now) if now else utcnow()

    config = venue_config.resolve_venue(db, venue_id)
    if config is None:
        # event hub removed or disabled: treat as closed
        venue_open = False
        ping = LocationPing(is_inside=False, distance=0.0, accuracy=location.accuracy)
    else:
        venue_open = venue_config.is_open(config, now)
        distance = haversine_m(config.venue_lat, config.venue_lng, location.lat, location.lng)
        ping = LocationPing(
            is_inside=distance <= config.effective_radius,
            distance=distance,
            accuracy=location.accuracy,
        )

    logger.info(
        f"Processing venue ping user={user_id} venue={venue_id} inside={ping.is_inside} "
        f"distance={ping.distance:.1f}m accuracy={location.accuracy} "
        f"battery={battery_level} speed={movement_speed}"
    )

    outcome = _apply_ping(db, venue_id, user_id, ping, now, venue_open)

    if outcome.reason not in ("too_frequent", "no_session"):
        remember_location(db, location, user_id)

    return outcome
