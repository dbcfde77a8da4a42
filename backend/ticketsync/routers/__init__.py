"""API routers."""

from ticketsync.routers.health import router as health_router
from ticketsync.routers.sync import router as sync_router

__all__ = ["health_router", "sync_router"]
