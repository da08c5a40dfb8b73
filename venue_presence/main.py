from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from loguru import logger

from venue_presence.core.logging import setup_logging
from venue_presence.core.init_db import init_db
from venue_presence.core.errors import (
    RateLimited,
    StoreUnavailable,
    rate_limited_handler,
    store_unavailable_handler,
)
from venue_presence.api.router import api_router

setup_logging()
logger.info("Starting venue presence backend")


app = FastAPI(
    title="Venue Presence Backend",
    version="0.1.0"
)

app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
app.add_exception_handler(RateLimited, rate_limited_handler)

# All API routes (venue entry + presence via router.py)
app.include_router(api_router)

# Init DB after app is created
init_db()

@app.get("/health")
def health():
    logger.debug("Health check hit")
    return {"status": "ok"}
