from sqlalchemy import Column, Integer, String, Boolean, Float, DateTime, Index

from venue_presence.core.db import Base


class SecurityLogEntry(Base):
    """Append-only. Nothing in this service updates or deletes rows."""

    __tablename__ = "venue_security_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    event_type = Column(String, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    venue_id = Column(String, nullable=False, index=True)
    nonce = Column(String(64), nullable=True)

    result = Column(String, nullable=False)
    failure_reason = Column(String, nullable=True)
    mock_location_detected = Column(Boolean, nullable=False, default=False)
    location_accuracy = Column(Float, nullable=True)

    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_security_logs_created_at", "created_at"),
    )
