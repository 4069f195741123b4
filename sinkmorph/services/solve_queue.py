"""Background solve/blend queue with per-job progress and cancellation.

Jobs are held in memory only.  Each job owns a cancel :class:`~threading.Event`
that is handed to the solver as its cancellation token, and a bounded history
of progress events that clients can poll (or stream) by sequence number:

    queued -> running -> completed | cancelled | failed

Cancelling a queued job finalises it immediately; cancelling a running job
sets its event and the partial result the solver returns is stored.  Finished
jobs are kept for inspection up to ``retention`` entries, oldest evicted first.
"""

import logging
import math
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from queue import Empty, Queue
from threading import Event, Lock, Thread
from typing import Any

from sinkmorph.exceptions import InvalidStateError, NotFoundError, TransientError
from sinkmorph.logging_config import log_context
from sinkmorph.schemas import BlendRequest, JobKind, JobStatus, SolveRequest
from sinkmorph.services.solver_service import SolverService

logger = logging.getLogger(__name__)

_TERMINAL: frozenset[str] = frozenset({"completed", "cancelled", "failed"})


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class _Job:
    job_id: str
    kind: JobKind
    request: SolveRequest | BlendRequest
    progress: deque[tuple[int, float | None]]
    status: JobStatus = "queued"
    created_at: str = field(default_factory=_now)
    finished_at: str | None = None
    seq: int = 0
    result: dict[str, Any] | None = None
    error: str | None = None
    cancel: Event = field(default_factory=Event)
    done: Event = field(default_factory=Event)

    def snapshot(self) -> dict[str, Any]:
        latest = self.progress[-1][1] if self.progress else None
        return {
            "job_id": self.job_id,
            "kind": self.kind,
            "status": self.status,
            "progress": latest,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
            "result": self.result,
            "error": self.error,
        }


class SolveJobQueue:
    def __init__(
        self,
        service: SolverService,
        worker_count: int = 1,
        max_queued: int = 64,
        retention: int = 256,
        progress_history: int = 1000,
    ) -> None:
        self.service = service
        self.worker_count = max(1, worker_count)
        self.max_queued = max(1, max_queued)
        self.retention = max(1, retention)
        self.progress_history = max(1, progress_history)
        self._queue: Queue[str | None] = Queue()
        self._stop_event = Event()
        self._threads: list[Thread] = []
        self._lock = Lock()
        self._jobs: OrderedDict[str, _Job] = OrderedDict()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._stop_event.clear()
        for idx in range(self.worker_count):
            thread = Thread(
                target=self._worker,
                name=f"sinkmorph-solve-worker-{idx}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.info("solve queue started workers=%s max_queued=%s", self.worker_count, self.max_queued)

    def stop(self) -> None:
        remaining = self._queue.qsize()
        self._stop_event.set()
        with self._lock:
            running = [job for job in self._jobs.values() if job.status == "running"]
            queued = [job for job in self._jobs.values() if job.status == "queued"]
            for job in queued:
                job.cancel.set()
                self._finish(job, "cancelled")
        for job in running:
            job.cancel.set()
        for _ in self._threads:
            self._queue.put(None)
        for thread in self._threads:
            thread.join(timeout=5.0)
        self._threads.clear()
        logger.info(
            "solve queue stopped remaining_jobs=%s cancelled_queued=%s cancelled_running=%s",
            remaining, len(queued), len(running),
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_solve(self, req: SolveRequest) -> dict[str, Any]:
        return self._submit("solve", req)

    def submit_blend(self, req: BlendRequest) -> dict[str, Any]:
        return self._submit("blend", req)

    def _submit(self, kind: JobKind, req: SolveRequest | BlendRequest) -> dict[str, Any]:
        if self._stop_event.is_set():
            raise TransientError("solve queue is shutting down", error_code="QUEUE_STOPPED")
        job = _Job(
            job_id=uuid.uuid4().hex,
            kind=kind,
            request=req,
            progress=deque(maxlen=self.progress_history),
        )
        with self._lock:
            queued = sum(1 for j in self._jobs.values() if j.status == "queued")
            if queued >= self.max_queued:
                raise TransientError(
                    f"solve queue is full ({queued} jobs waiting)",
                    error_code="QUEUE_FULL",
                    context={"max_queued": self.max_queued},
                )
            self._jobs[job.job_id] = job
            self._evict_finished()
            snapshot = job.snapshot()
        self._queue.put(job.job_id)
        logger.info("solve queue enqueue kind=%s", kind, extra={"job_id": job.job_id})
        return snapshot

    def _evict_finished(self) -> None:
        finished = [jid for jid, j in self._jobs.items() if j.status in _TERMINAL]
        for jid in finished[: max(0, len(finished) - self.retention)]:
            del self._jobs[jid]

    # ------------------------------------------------------------------
    # Inspection / control
    # ------------------------------------------------------------------

    def _require(self, job_id: str) -> _Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(
                f"job {job_id} does not exist", error_code="JOB_NOT_FOUND", context={"job_id": job_id},
            )
        return job

    def get(self, job_id: str) -> dict[str, Any]:
        with self._lock:
            return self._require(job_id).snapshot()

    def progress(self, job_id: str, since: int = 0) -> list[dict[str, Any]]:
        """Progress events with sequence number greater than ``since``."""
        with self._lock:
            job = self._require(job_id)
            return [{"seq": seq, "residual": res} for seq, res in job.progress if seq > since]

    def cancel(self, job_id: str) -> dict[str, Any]:
        with self._lock:
            job = self._require(job_id)
            if job.status in _TERMINAL:
                raise InvalidStateError(
                    f"job {job_id} already {job.status}",
                    error_code="JOB_FINISHED",
                    context={"job_id": job_id, "status": job.status},
                )
            job.cancel.set()
            if job.status == "queued":
                self._finish(job, "cancelled")
            snapshot = job.snapshot()
        logger.info("solve queue cancel", extra={"job_id": job_id, "status": snapshot["status"]})
        return snapshot

    def wait(self, job_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Block until the job reaches a terminal status (or ``timeout``)."""
        with self._lock:
            job = self._require(job_id)
        job.done.wait(timeout)
        with self._lock:
            return job.snapshot()

    def depth(self) -> int:
        """Return the number of queued items (approximate)."""
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _finish(self, job: _Job, status: JobStatus) -> None:
        job.status = status
        job.finished_at = _now()
        job.done.set()

    def _record_progress(self, job: _Job, residual: float) -> None:
        with self._lock:
            job.seq += 1
            job.progress.append((job.seq, residual if math.isfinite(residual) else None))

    def _worker(self) -> None:
        while not self._stop_event.is_set():
            try:
                item = self._queue.get(timeout=0.5)
            except Empty:
                continue
            if item is None:
                self._queue.task_done()
                break
            try:
                self._run(item)
            finally:
                self._queue.task_done()

    def _run(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != "queued":
                return
            job.status = "running"

        with log_context(job_id=job_id):
            logger.info("solve job started kind=%s", job.kind, extra={"status": "running"})
            try:
                def on_progress(residual: float) -> None:
                    self._record_progress(job, residual)

                if isinstance(job.request, BlendRequest):
                    response = self.service.blend(job.request, on_progress=on_progress, cancel=job.cancel)
                else:
                    response = self.service.solve(job.request, on_progress=on_progress, cancel=job.cancel)
            except Exception as exc:
                with self._lock:
                    job.error = str(exc)
                    self._finish(job, "failed")
                logger.error("solve job failed: %s", exc, extra={"status": "failed"})
                return

            with self._lock:
                job.result = response.model_dump()
                self._finish(job, "cancelled" if response.cancelled else "completed")
                status = job.status
            logger.info(
                "solve job finished", extra={"status": status, "iterations": response.iterations},
            )
