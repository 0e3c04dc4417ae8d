"""Route assembly for the treasury API."""

from __future__ import annotations

from fastapi import APIRouter

from backend.api.routes.activity import router as activity_router
from backend.api.routes.agent import router as agent_router
from backend.api.routes.health import router as health_router
from backend.api.routes.operations import router as operations_router
from backend.api.routes.snapshots import router as snapshots_router
from backend.api.routes.balance import router as balance_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(operations_router, tags=["operations"])
api_router.include_router(snapshots_router, tags=["snapshots"])
api_router.include_router(balance_router, tags=["treasury"])
api_router.include_router(activity_router, tags=["activity"])
api_router.include_router(agent_router, tags=["agent"])
