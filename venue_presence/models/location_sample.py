from sqlalchemy import Column, Integer, String, Float, DateTime, Index

from venue_presence.core.db import Base


class LocationSample(Base):
    __tablename__ = "venue_location_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False)

    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=False)

    # device-reported; ordering uses id (server arrival)
    captured_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_location_samples_user_id", "user_id", "id"),
    )
