"""API routers for sinkmorph.

``build_router()`` composes the health, synchronous solve and job routers
into a single APIRouter mounted on the FastAPI application.
"""

from __future__ import annotations

from fastapi import APIRouter

from sinkmorph.api.routes.health import build_health_router
from sinkmorph.api.routes.jobs import build_jobs_router
from sinkmorph.api.routes.solve import build_solve_router


def build_router() -> APIRouter:
    """Compose all domain routers into a single APIRouter."""
    router = APIRouter()
    router.include_router(build_health_router())
    router.include_router(build_solve_router())
    router.include_router(build_jobs_router())
    return router
