from fastapi import APIRouter

from venue_presence.api.routes import venue_events

api_router = APIRouter(prefix="/v1")

api_router.include_router(venue_events.router, prefix="/venue-events", tags=["venue-events"])
