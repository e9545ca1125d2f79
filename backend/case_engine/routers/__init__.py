"""Case Engine - API Routers"""
from .cases import router as cases_router
from .tasks import router as tasks_router
from .escalations import router as escalations_router
from .scheduler import router as scheduler_router

__all__ = [
    "cases_router",
    "tasks_router",
    "escalations_router",
    "scheduler_router",
]
