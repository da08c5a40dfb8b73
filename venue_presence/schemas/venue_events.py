from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from venue_presence.core.presence_config import NONCE_BYTES
from venue_presence.schemas.base import BaseSchema
from venue_presence.schemas.enums import VenueState

NONCE_PATTERN = rf"^[0-9a-fA-F]{{{NONCE_BYTES * 2}}}$"


# ---------- shared ----------
class LocationIn(BaseSchema):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy: float = Field(..., ge=0)
    timestamp: Optional[datetime] = None


# ---------- nonce ----------
class IssueNonceRequest(BaseSchema):
    static_qr_data: str = Field(..., alias="staticQRData", min_length=1)
    location: LocationIn
    session_id: str = Field(..., alias="sessionId", min_length=1)


class IssueNonceResponse(BaseSchema):
    success: bool
    nonce: Optional[str] = None
    event_id: Optional[str] = Field(default=None, alias="eventId")
    venue_rules: Optional[str] = Field(default=None, alias="venueRules")
    location_tips: Optional[str] = Field(default=None, alias="locationTips")
    reason: Optional[str] = None


# ---------- verify ----------
class VerifyEntryRequest(BaseSchema):
    nonce: str = Field(..., pattern=NONCE_PATTERN)
    location: LocationIn

    @field_validator("nonce", mode="after")
    @classmethod
    def lower_nonce(cls, v: str) -> str:
        return v.lower()


class VerifyEntryResponse(BaseSchema):
    success: bool
    event_id: Optional[str] = Field(default=None, alias="eventId")
    reason: Optional[str] = None
    requires_rescan: Optional[bool] = Field(default=None, alias="requiresRescan")
    location_tips: Optional[str] = Field(default=None, alias="locationTips")


# ---------- ping ----------
class PingRequest(BaseSchema):
    venue_id: str = Field(..., alias="venueId", min_length=1)
    location: LocationIn
    battery_level: Optional[float] = Field(default=None, alias="batteryLevel", ge=0, le=100)
    movement_speed: Optional[float] = Field(default=None, alias="movementSpeed", ge=0)


class PingResponse(BaseSchema):
    new_state: VenueState = Field(..., alias="newState")
    state_changed: bool = Field(..., alias="stateChanged")
    profile_visible: bool = Field(..., alias="profileVisible")
    reason: str
    next_ping_interval_seconds: int = Field(..., alias="nextPingIntervalSeconds")
    user_message: Optional[str] = Field(default=None, alias="userMessage")


# ---------- session ----------
class StateChangeOut(BaseSchema):
    from_state: VenueState = Field(..., alias="from")
    to_state: VenueState = Field(..., alias="to")
    timestamp: datetime
    reason: str


class SessionResponse(BaseSchema):
    venue_id: str = Field(..., alias="venueId")
    event_id: str = Field(..., alias="eventId")
    state: VenueState
    profile_visible: bool = Field(..., alias="profileVisible")
    joined_at: datetime = Field(..., alias="joinedAt")
    last_ping_at: datetime = Field(..., alias="lastPingAt")
    total_duration_seconds: int = Field(..., alias="totalDurationSeconds")
    recent_state_changes: List[StateChangeOut] = Field(default_factory=list, alias="recentStateChanges")
