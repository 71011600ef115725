"""HTTP control surface for rollovers.

Endpoints:
  GET  /healthz
  POST /rollovers                 start a rollover on a worker thread (202)
  GET  /rollovers/{job_id}        progress or final result
  POST /rollovers/{job_id}/cancel request cooperative cancellation
  GET  /status                    router, autoscaler and environment snapshot
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
from threading import Event as ThreadEvent, Lock, Thread
from typing import Any
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from rollover.config.settings import get_settings
from rollover.contracts.errors import RolloverError
from rollover.contracts.models import RolloverRequest, RolloverResult
from rollover.contracts.types import FailureKind
from rollover.orchestrator.factory import build_event_bus, build_orchestrator, kubernetes_platform
from rollover.orchestrator.orchestrator import RolloverOrchestrator

logger = logging.getLogger(__name__)

_ERROR_STATUS = {FailureKind.INVALID: 400, FailureKind.TRANSIENT: 503}


@dataclass(slots=True)
class _Job:
    job_id: str
    request: RolloverRequest
    cancel: ThreadEvent = field(default_factory=ThreadEvent)
    result: RolloverResult | None = None
    error: str | None = None
    thread: Thread | None = None

    @property
    def running(self) -> bool:
        return self.result is None and self.error is None

    def view(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "job_id": self.job_id,
            "target": self.request.target,
            "image_ref": self.request.image_ref,
            "status": "running" if self.running else ("failed" if self.error else "finished"),
            "cancel_requested": self.cancel.is_set(),
        }
        if self.result is not None:
            body["result"] = self.result.model_dump(mode="json")
        if self.error is not None:
            body["error"] = self.error
        return body


class RolloverJobs:
    """Tracks rollovers started over HTTP; at most one runs at a time."""

    def __init__(self, orchestrator: RolloverOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._jobs: dict[str, _Job] = {}
        self._lock = Lock()

    def start(self, request: RolloverRequest) -> _Job:
        with self._lock:
            if any(job.running for job in self._jobs.values()):
                raise HTTPException(status_code=409, detail="a rollover is already running")
            job = _Job(job_id=str(uuid.uuid4()), request=request)
            job.thread = Thread(
                target=self._run, args=(job,), name=f"rollover-{job.job_id}", daemon=True
            )
            self._jobs[job.job_id] = job
        job.thread.start()
        logger.info(
            "api.rollover.started",
            extra={"extra": {"job_id": job.job_id, "target": request.target}},
        )
        return job

    def _run(self, job: _Job) -> None:
        try:
            job.result = self.orchestrator.run_rollover(job.request, cancel=job.cancel)
        except Exception as exc:  # noqa: BLE001
            logger.exception("api.rollover.crashed", extra={"extra": {"job_id": job.job_id}})
            job.error = str(exc) or exc.__class__.__name__

    def get(self, job_id: str) -> _Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"unknown rollover {job_id}")
        return job

    def cancel(self, job_id: str) -> _Job:
        job = self.get(job_id)
        if job.running:
            job.cancel.set()
            logger.info("api.rollover.cancel_requested", extra={"extra": {"job_id": job_id}})
        return job

    def cancel_all(self) -> None:
        with self._lock:
            jobs = [job for job in self._jobs.values() if job.running]
        for job in jobs:
            job.cancel.set()

    def join_all(self, timeout: float | None = None) -> list[_Job]:
        """Wait for worker threads; returns the jobs still running afterwards."""
        with self._lock:
            jobs = [job for job in self._jobs.values() if job.thread is not None]
        for job in jobs:
            job.thread.join(timeout)
        return [job for job in jobs if job.thread.is_alive()]

    def wait(self, job_id: str, timeout: float | None = None) -> _Job:
        job = self.get(job_id)
        if job.thread is not None:
            job.thread.join(timeout)
        return job


def _default_orchestrator() -> RolloverOrchestrator:
    settings = get_settings()
    return build_orchestrator(
        kubernetes_platform(settings), settings, bus=build_event_bus(settings)
    )


def create_app(orchestrator: RolloverOrchestrator | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ----- startup -----
        app.state.jobs = RolloverJobs(orchestrator or _default_orchestrator())
        logger.info("service.start", extra={"extra": {"service": get_settings().service_name}})
        try:
            yield
        finally:
            # ----- shutdown -----
            jobs = app.state.jobs
            jobs.cancel_all()
            # A switched rollover still rebinds after cancellation; let it finish.
            stuck = jobs.join_all(timeout=get_settings().shutdown_timeout_seconds)
            if stuck:
                logger.error(
                    "service.stop.jobs_running",
                    extra={"extra": {"job_ids": [job.job_id for job in stuck]}},
                )
            jobs.orchestrator.close()
            logger.info("service.stop", extra={"extra": {"service": get_settings().service_name}})

    app = FastAPI(
        title="Rollover API",
        description="Blue/green deploy, health gate and traffic switch",
        lifespan=lifespan,
    )

    @app.exception_handler(RolloverError)
    async def rollover_error(request: Request, exc: RolloverError) -> JSONResponse:
        return JSONResponse(
            status_code=_ERROR_STATUS.get(exc.kind, 409),
            content={"detail": str(exc), "kind": exc.kind.value},
        )

    @app.get("/healthz", tags=["meta"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/rollovers", status_code=202, tags=["rollovers"])
    def start_rollover(body: RolloverRequest, request: Request) -> dict[str, Any]:
        return request.app.state.jobs.start(body).view()

    @app.get("/rollovers/{job_id}", tags=["rollovers"])
    def get_rollover(job_id: str, request: Request) -> dict[str, Any]:
        return request.app.state.jobs.get(job_id).view()

    @app.post("/rollovers/{job_id}/cancel", status_code=202, tags=["rollovers"])
    def cancel_rollover(job_id: str, request: Request) -> dict[str, Any]:
        return request.app.state.jobs.cancel(job_id).view()

    @app.get("/status", tags=["meta"])
    def status(request: Request) -> dict[str, Any]:
        return request.app.state.jobs.orchestrator.status()

    return app


app = create_app()
