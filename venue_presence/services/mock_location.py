"""
GPS spoofing heuristics.

These checks only make spoofing harder to get away with. A careful spoofer
who reports realistic accuracy values passes them; a real device with an
unusually good fix can be flagged. Callers respond to a flag by applying a
tighter radius, not by rejecting outright.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from venue_presence.core.clock import to_naive_utc
from venue_presence.core.presence_config import (
    ACCURACY_JUMP_FROM_METERS,
    ACCURACY_JUMP_TO_METERS,
    RECENT_SAMPLE_HISTORY,
    SUSPICIOUS_ACCURACY_METERS,
)
from venue_presence.models.location_sample import LocationSample
from venue_presence.services import venue_store


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    accuracy: float
    timestamp: datetime


def mock_signals(location: Location, previous: Optional[Location]) -> List[str]:
    signals: List[str] = []

    # real GPS rarely reports sub-5m accuracy
    if location.accuracy < SUSPICIOUS_ACCURACY_METERS:
        signals.append("suspicious_accuracy")

    if (
        previous is not None
        and previous.accuracy > ACCURACY_JUMP_FROM_METERS
        and location.accuracy < ACCURACY_JUMP_TO_METERS
    ):
        signals.append("accuracy_jump")

    return signals


def previous_location(db: Session, user_id: str) -> Optional[Location]:
    rows = venue_store.recent_samples(db, user_id, limit=1)
    if not rows:
        return None
    row = rows[0]
    return Location(lat=row.lat, lng=row.lng, accuracy=row.accuracy, timestamp=row.captured_at)


def detect_mock_location(db: Session, location: Location, user_id: str) -> bool:
    signals = mock_signals(location, previous_location(db, user_id))
    if signals:
        logger.warning(
            f"Mock location signals for user {user_id}: {signals} "
            f"(accuracy={location.accuracy})"
        )
    return bool(signals)


def remember_location(db: Session, location: Location, user_id: str) -> None:
    venue_store.record_sample(
        db,
        LocationSample(
            user_id=user_id,
            lat=location.lat,
            lng=location.lng,
            accuracy=location.accuracy,
            captured_at=to_naive_utc(location.timestamp),
        ),
        keep=RECENT_SAMPLE_HISTORY,
    )
