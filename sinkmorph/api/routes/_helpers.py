"""Shared helpers for route handlers."""

from __future__ import annotations

from fastapi import Request

from sinkmorph.services.solve_queue import SolveJobQueue
from sinkmorph.services.solver_service import SolverService


def get_service(request: Request) -> SolverService:
    """Extract the SolverService from application state."""
    svc: SolverService = request.app.state.solver_service
    return svc


def get_queue(request: Request) -> SolveJobQueue:
    """Extract the SolveJobQueue from application state."""
    q: SolveJobQueue = request.app.state.solve_queue
    return q
