from sqlalchemy import Column, String, Integer

from venue_presence.core.db import Base


class RateLimitWindow(Base):
    __tablename__ = "rate_limit_windows"

    # "<endpoint>:<user_id>"
    bucket_key = Column(String, primary_key=True)
    # epoch seconds at the start of the window
    window_start = Column(Integer, primary_key=True)
    hits = Column(Integer, nullable=False, default=0)
