from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger
from sqlalchemy.orm import Session

from venue_presence.core.clock import as_utc
from venue_presence.core.presence_config import (
    DEFAULT_K_FACTOR,
    DEFAULT_LOCATION_RADIUS_METERS,
    DEFAULT_TIMEZONE,
    DEFAULT_TOKEN_LIFETIME_MINUTES,
    TOKEN_LIFETIME_MINUTES,
)
from venue_presence.schemas.enums import VenueType
from venue_presence.services import venue_store

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# business type -> venue type; anything unlisted is treated as outdoor
_BUSINESS_VENUE_TYPES: Dict[str, VenueType] = {
    "club": VenueType.indoor_complex,
    "venue": VenueType.indoor_complex,
    "restaurant": VenueType.indoor_simple,
    "bar": VenueType.indoor_simple,
    "cafe": VenueType.indoor_simple,
}


@dataclass(frozen=True)
class DaySchedule:
    enabled: bool
    start_time: str
    end_time: str


@dataclass(frozen=True)
class VenueEventConfig:
    """
    Read-only view over a venue's event-hub settings.
    Built on every read, never stored on its own.
    """

    event_id: str
    venue_id: str
    event_name: str
    qr_code_id: str
    venue_lat: float
    venue_lng: float
    location_radius: float
    k_factor: float
    timezone: str
    venue_type: VenueType
    schedule: Dict[str, DaySchedule] = field(default_factory=dict)
    venue_rules: str = ""
    location_tips: str = ""

    @property
    def effective_radius(self) -> float:
        return self.location_radius * self.k_factor


def infer_venue_type(business_type: Optional[str]) -> VenueType:
    key = (business_type or "").strip().lower()
    return _BUSINESS_VENUE_TYPES.get(key, VenueType.outdoor)


def token_lifetime(venue_type: VenueType | str | None) -> timedelta:
    key = venue_type.value if isinstance(venue_type, VenueType) else venue_type
    minutes = TOKEN_LIFETIME_MINUTES.get(key or "", DEFAULT_TOKEN_LIFETIME_MINUTES)
    return timedelta(minutes=minutes)


def _normalize_hhmm(value: Any) -> Optional[str]:
    try:
        hours, minutes = str(value).strip().split(":")[:2]
        h, m = int(hours), int(minutes)
    except (ValueError, AttributeError):
        return None
    if not (0 <= h <= 23 and 0 <= m <= 59):
        return None
    return f"{h:02d}:{m:02d}"


def _parse_schedule(raw: Any) -> Dict[str, DaySchedule]:
    schedule: Dict[str, DaySchedule] = {}
    if not isinstance(raw, dict):
        return schedule

    for day, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        start = _normalize_hhmm(entry.get("startTime"))
        end = _normalize_hhmm(entry.get("endTime"))
        enabled = bool(entry.get("enabled")) and start is not None and end is not None
        schedule[str(day).lower()] = DaySchedule(
            enabled=enabled,
            start_time=start or "00:00",
            end_time=end or "00:00",
        )
    return schedule


def _positive(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def resolve(db: Session, venue_id: str, qr_code_id: str) -> Optional[VenueEventConfig]:
    """
    Build the event config for a venue, or None when the venue is unknown,
    has no enabled event hub, or the scanned QR id is not the venue's.
    """
    config = resolve_venue(db, venue_id)
    if config is None:
        return None

    if not qr_code_id or config.qr_code_id != qr_code_id:
        logger.warning(f"QR code mismatch for venue {venue_id}")
        return None

    return config


def resolve_venue(db: Session, venue_id: str) -> Optional[VenueEventConfig]:
    """Same view as resolve(), for callers that already hold a session and no QR id."""
    venue = venue_store.get_venue(db, venue_id)
    if venue is None:
        return None

    settings = venue.event_hub_settings or {}
    if not settings.get("enabled") or not settings.get("qrCodeId"):
        return None

    return VenueEventConfig(
        event_id=f"{venue_id}_recurring_event",
        venue_id=venue_id,
        event_name=settings.get("eventName") or venue.name,
        qr_code_id=settings["qrCodeId"],
        venue_lat=venue.lat,
        venue_lng=venue.lng,
        location_radius=_positive(settings.get("locationRadius"), DEFAULT_LOCATION_RADIUS_METERS),
        k_factor=_positive(settings.get("kFactor"), DEFAULT_K_FACTOR),
        timezone=settings.get("timezone") or DEFAULT_TIMEZONE,
        venue_type=infer_venue_type(venue.business_type),
        schedule=_parse_schedule(settings.get("schedule")),
        venue_rules=settings.get("venueRules") or "",
        location_tips=settings.get("locationTips") or "",
    )


def _venue_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown venue timezone {name!r}, falling back to {DEFAULT_TIMEZONE}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def is_open(config: VenueEventConfig, now: datetime) -> bool:
    local = as_utc(now).astimezone(_venue_zone(config.timezone))
    day = config.schedule.get(WEEKDAYS[local.weekday()])
    if day is None or not day.enabled:
        return False

    current = local.strftime("%H:%M")

    # overnight window, e.g. 22:00 - 02:00
    if day.end_time < day.start_time:
        return current >= day.start_time or current <= day.end_time

    return day.start_time <= current <= day.end_time
