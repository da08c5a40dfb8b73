from loguru import logger
from venue_presence.core.db import engine, Base

# Import all models so SQLAlchemy registers them
from venue_presence.models.venue import Venue
from venue_presence.models.entry_token import EntryToken
from venue_presence.models.presence_session import PresenceSession
from venue_presence.models.security_log import SecurityLogEntry
from venue_presence.models.location_sample import LocationSample
from venue_presence.models.rate_limit import RateLimitWindow

def init_db(bind=None):
    logger.info("Creating database tables")
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")
