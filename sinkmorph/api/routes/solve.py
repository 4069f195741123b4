"""Synchronous solve and blend endpoints."""

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from sinkmorph.api.error_handling import service_errors
from sinkmorph.api.routes._helpers import get_service
from sinkmorph.schemas import BlendRequest, BlendResponse, SolveRequest, SolveResponse


def build_solve_router() -> APIRouter:
    router = APIRouter(tags=["Solve"])

    @router.post("/solve", response_model=SolveResponse, summary="Solve entropic OT between two point sets")
    @service_errors
    async def solve(request: Request, body: SolveRequest) -> SolveResponse:
        service = get_service(request)
        return await run_in_threadpool(service.solve, body)

    @router.post("/blend", response_model=BlendResponse, summary="Blend displacement maps towards several targets")
    @service_errors
    async def blend(request: Request, body: BlendRequest) -> BlendResponse:
        service = get_service(request)
        return await run_in_threadpool(service.blend, body)

    return router
