from datetime import datetime

from sqlalchemy import Column, String, Integer, Boolean, DateTime, JSON, Index

from venue_presence.core.db import Base
from venue_presence.schemas.enums import VenueState


class PresenceSession(Base):
    __tablename__ = "venue_event_sessions"

    venue_id = Column(String, primary_key=True)
    user_id = Column(String, primary_key=True)
    event_id = Column(String, nullable=False)

    current_state = Column(String, nullable=False, default=VenueState.inactive.value)
    # kept in lock-step with current_state == active
    profile_visible = Column(Boolean, nullable=False, default=False)

    joined_at = Column(DateTime, nullable=False)
    last_ping_at = Column(DateTime, nullable=False)
    last_inside_ping_at = Column(DateTime, nullable=True)
    paused_at = Column(DateTime, nullable=True)

    total_duration_seconds = Column(Integer, nullable=False, default=0)
    consecutive_outside_pings = Column(Integer, nullable=False, default=0)

    # last STATE_HISTORY_LIMIT transitions: [{"from", "to", "timestamp", "reason"}]
    recent_state_changes = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("idx_venue_sessions_user", "user_id"),
    )

    @classmethod
    def opened(cls, venue_id: str, user_id: str, event_id: str, now: datetime) -> "PresenceSession":
        return cls(
            venue_id=venue_id,
            user_id=user_id,
            event_id=event_id,
            current_state=VenueState.active.value,
            profile_visible=True,
            joined_at=now,
            last_ping_at=now,
            last_inside_ping_at=now,
            paused_at=None,
            total_duration_seconds=0,
            consecutive_outside_pings=0,
            recent_state_changes=[],
        )

    @property
    def state(self) -> VenueState:
        return VenueState(self.current_state)
