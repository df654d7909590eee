"""
API Module
FastAPI routers for the DoseLedger application
"""

from api.commands import router as commands_router
from api.events import router as events_router
from api.jobs import router as jobs_router

from api.deps import (
    get_db,
    services,
)


__all__ = [
    # Routers
    "commands_router",
    "events_router",
    "jobs_router",
    # Dependencies
    "get_db",
    "services",
]


def include_routers(app, prefix: str = "/api/v1"):
    """
    Include all API routers in the FastAPI app

    Usage:
        from api import include_routers
        include_routers(app)
    """
    app.include_router(commands_router, prefix=prefix)
    app.include_router(events_router, prefix=prefix)
    app.include_router(jobs_router, prefix=prefix)
