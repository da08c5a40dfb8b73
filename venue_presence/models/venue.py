from sqlalchemy import Column, String, Float, DateTime, JSON
from sqlalchemy.sql import func

from venue_presence.core.db import Base


class Venue(Base):
    __tablename__ = "venues"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)

    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)

    # free text from the venue admin: "club", "bar", "park", ...
    business_type = Column(String, nullable=True)

    # {"enabled", "eventName", "qrCodeId", "locationRadius", "kFactor",
    #  "timezone", "schedule": {"monday": {"enabled", "startTime", "endTime"}},
    #  "venueRules", "locationTips"}
    event_hub_settings = Column(JSON, nullable=True)

    updated_at = Column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )
