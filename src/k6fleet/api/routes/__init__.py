"""API routers."""

from k6fleet.api.routes.agents import router as agents_router
from k6fleet.api.routes.tasks import router as tasks_router

__all__ = ["agents_router", "tasks_router"]
