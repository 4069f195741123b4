import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sinkmorph import __version__
from sinkmorph.api.correlation import CorrelationIDMiddleware
from sinkmorph.api.routes import build_router
from sinkmorph.config import Settings
from sinkmorph.core.backends import ComputeBackend, build_backend
from sinkmorph.exceptions import ConfigurationError
from sinkmorph.logging_config import setup_logging
from sinkmorph.services.solve_queue import SolveJobQueue
from sinkmorph.services.solver_service import SolverService

logger = logging.getLogger(__name__)


def _build_backend(settings: Settings) -> ComputeBackend | None:
    try:
        return build_backend(settings.compute_backend, torch_device=settings.torch_device)
    except (RuntimeError, ValueError) as exc:
        raise ConfigurationError(
            f"compute backend {settings.compute_backend!r} unavailable: {exc}",
            error_code="BACKEND_UNAVAILABLE",
            context={"backend": settings.compute_backend},
        ) from exc


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(level=settings.log_level, use_json=settings.log_json)
    backend = _build_backend(settings)
    service = SolverService(settings, backend)
    queue = SolveJobQueue(
        service,
        worker_count=settings.solve_worker_threads,
        max_queued=settings.max_queued_jobs,
        retention=settings.job_retention,
        progress_history=settings.progress_history,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "starting sinkmorph v%s backend=%s workers=%s blend_workers=%s max_points=%s",
            __version__,
            service.backend_info().get("name"),
            settings.solve_worker_threads,
            settings.blend_max_workers,
            settings.max_points,
            extra={"backend": service.backend_info().get("name")},
        )
        queue.start()
        try:
            yield
        finally:
            queue.stop()
            logger.info("sinkmorph v%s shutdown complete", __version__)

    app = FastAPI(
        title="sinkmorph",
        version=__version__,
        description="Entropic optimal transport between weighted 2-D point clouds. "
                    "Sinkhorn solves, multi-target displacement blends and queued jobs with progress streaming.",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Health", "description": "Liveness and backend status"},
            {"name": "Solve", "description": "Synchronous solves and blends"},
            {"name": "Jobs", "description": "Queued solves and blends with progress and cancellation"},
        ],
    )
    # add_middleware wraps in reverse order: CorrelationID ends up outermost.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIDMiddleware)

    app.state.settings = settings
    app.state.solver_service = service
    app.state.solve_queue = queue
    app.include_router(build_router(), prefix="/api/v1")
    app.include_router(build_router())
    return app


def run() -> None:
    port = int(os.getenv("SINKMORPH_PORT", "8000"))
    uvicorn.run("sinkmorph.main:create_app", factory=True, host="0.0.0.0", port=port, reload=False)


if __name__ == "__main__":
    run()
