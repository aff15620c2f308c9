"""FastAPI routes for the sync engine."""

from fastapi import APIRouter

from .workflows import router as workflows_router
from .executions import router as executions_router
from .statistics import router as statistics_router

api_router = APIRouter(prefix="/api")
api_router.include_router(workflows_router, tags=["Workflows"])
api_router.include_router(executions_router, tags=["Executions"])
api_router.include_router(statistics_router, tags=["Statistics"])

__all__ = [
    "api_router",
]
