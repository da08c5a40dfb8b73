from sqlalchemy import Column, String, Boolean, DateTime, Index

from venue_presence.core.db import Base


class EntryToken(Base):
    __tablename__ = "venue_tokens"

    nonce = Column(String(64), primary_key=True)

    venue_id = Column(String, nullable=False, index=True)
    qr_code_id = Column(String, nullable=False)

    # optional binding to prevent sharing
    user_id = Column(String, nullable=True)
    session_id = Column(String, nullable=True)

    venue_type = Column(String, nullable=False)

    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    consumed = Column(Boolean, nullable=False, default=False)
    consumed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_venue_tokens_expires_at", "expires_at"),
    )
