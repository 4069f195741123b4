"""Health and status endpoints."""

from fastapi import APIRouter, Request

from sinkmorph import __version__
from sinkmorph.api.routes._helpers import get_queue, get_service
from sinkmorph.core.backends import probe_backends
from sinkmorph.schemas import HealthResponse, StatusResponse


def build_health_router() -> APIRouter:
    router = APIRouter(tags=["Health"])

    @router.get("/health", response_model=HealthResponse, summary="Liveness check")
    def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    @router.get("/status", response_model=StatusResponse, summary="Compute backend and queue status")
    def get_status(request: Request) -> StatusResponse:
        queue = get_queue(request)
        return StatusResponse(
            compute_backend=get_service(request).backend_info(),
            backends=probe_backends(),
            queue_depth=queue.depth(),
            worker_threads=queue.worker_count,
        )

    return router
