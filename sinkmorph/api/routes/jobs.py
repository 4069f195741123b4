"""Queued solve/blend jobs: submit, inspect, cancel and stream progress."""

import asyncio
import json as json_mod
from typing import Any

from fastapi import APIRouter, Query, Request
from starlette.responses import StreamingResponse

from sinkmorph.api.error_handling import service_errors
from sinkmorph.api.routes._helpers import get_queue
from sinkmorph.schemas import (
    BlendRequest,
    JobResponse,
    JobSubmitResponse,
    ProgressEvent,
    SolveRequest,
)


def build_jobs_router() -> APIRouter:
    router = APIRouter(prefix="/jobs", tags=["Jobs"])

    @router.post("/solve", response_model=JobSubmitResponse, status_code=202, summary="Queue a solve")
    @service_errors
    async def submit_solve(request: Request, body: SolveRequest) -> JobSubmitResponse:
        payload = get_queue(request).submit_solve(body)
        return JobSubmitResponse(job_id=payload["job_id"], kind=payload["kind"], status=payload["status"])

    @router.post("/blend", response_model=JobSubmitResponse, status_code=202, summary="Queue a blend")
    @service_errors
    async def submit_blend(request: Request, body: BlendRequest) -> JobSubmitResponse:
        payload = get_queue(request).submit_blend(body)
        return JobSubmitResponse(job_id=payload["job_id"], kind=payload["kind"], status=payload["status"])

    @router.get("/{job_id}", response_model=JobResponse, summary="Get job status and result")
    @service_errors
    async def get_job(request: Request, job_id: str) -> JobResponse:
        return JobResponse(**get_queue(request).get(job_id))

    @router.get("/{job_id}/progress", response_model=list[ProgressEvent], summary="Poll progress events")
    @service_errors
    async def get_progress(
        request: Request, job_id: str, since: int = Query(default=0, ge=0),
    ) -> list[ProgressEvent]:
        return [ProgressEvent(**ev) for ev in get_queue(request).progress(job_id, since=since)]

    @router.delete("/{job_id}", response_model=JobResponse, summary="Cancel a job")
    @service_errors
    async def cancel_job(request: Request, job_id: str) -> JobResponse:
        return JobResponse(**get_queue(request).cancel(job_id))

    @router.get("/{job_id}/events", summary="Stream job progress via SSE")
    @service_errors
    async def job_events(
        request: Request, job_id: str,
        poll_interval: float = Query(default=0.25, ge=0.05, le=10.0),
    ) -> StreamingResponse:
        queue = get_queue(request)
        queue.get(job_id)

        async def event_generator() -> Any:
            last_seq = 0
            while True:
                if await request.is_disconnected():
                    break
                try:
                    events = queue.progress(job_id, since=last_seq)
                    for ev in events:
                        last_seq = ev["seq"]
                        yield f"event: progress\ndata: {json_mod.dumps(ev)}\n\n"
                    snapshot = queue.get(job_id)
                    if snapshot["status"] in ("completed", "failed", "cancelled"):
                        for ev in queue.progress(job_id, since=last_seq):
                            last_seq = ev["seq"]
                            yield f"event: progress\ndata: {json_mod.dumps(ev)}\n\n"
                        done = {"job_id": job_id, "final_status": snapshot["status"], "result": snapshot["result"]}
                        yield f"event: done\ndata: {json_mod.dumps(done)}\n\n"
                        break
                except Exception as exc:
                    yield f"event: error\ndata: {json_mod.dumps({'error': str(exc)})}\n\n"
                    break
                await asyncio.sleep(poll_interval)

        return StreamingResponse(
            event_generator(), media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
        )

    return router
