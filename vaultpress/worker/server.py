"""HTTP front door for the build worker."""

from __future__ import annotations

import hmac
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from vaultpress import __version__
from vaultpress.config.models import VaultpressConfig

from .models import TaskRequest
from .orchestrator import DuplicateJobError, JobOrchestrator

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


INVALID_JOB_ID = (
    "Invalid jobId: use letters, digits, '.', '_' or '-', starting with a letter or digit"
)


def _bad_job_id(error: ValidationError) -> bool:
    """A jobId was sent but cannot be used as a directory or key name."""
    return any(
        e["loc"] == ("jobId",) and e["type"] in ("string_pattern_mismatch", "string_too_long")
        for e in error.errors()
    )


def _check_auth(request: Request, secret: str | None) -> JSONResponse | None:
    """Accepts ``Authorization: Bearer <secret>`` or the raw secret."""
    if not secret:
        return None
    header = request.headers.get("authorization")
    if not header:
        return _error(401, "Missing Authorization header")
    token = header[7:] if header.startswith("Bearer ") else header
    if not hmac.compare_digest(token.encode(), secret.encode()):
        return _error(403, "Invalid authorization token")
    return None


def create_app(config: VaultpressConfig, orchestrator: JobOrchestrator | None = None) -> FastAPI:
    started = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.orchestrator = orchestrator or JobOrchestrator(config)
        if not config.worker.secret:
            logger.warning("No worker secret configured; /process accepts unauthenticated requests")
        yield
        await app.state.orchestrator.aclose()

    app = FastAPI(title="vaultpress worker", version=__version__, lifespan=lifespan)

    @app.post("/process", status_code=202)
    async def process(request: Request):
        denied = _check_auth(request, config.worker.secret)
        if denied is not None:
            return denied
        try:
            body = await request.json()
        except ValueError:
            return _error(400, "Request body must be JSON")
        if not isinstance(body, dict):
            return _error(400, "Request body must be a JSON object")
        try:
            task_request = TaskRequest.model_validate(body)
        except ValidationError as e:
            if _bad_job_id(e):
                return _error(400, INVALID_JOB_ID)
            return _error(
                400, "Missing required fields: jobId, task, and callbackUrl are required"
            )

        try:
            job = request.app.state.orchestrator.submit(task_request)
        except DuplicateJobError as e:
            return _error(409, str(e))
        return {"status": "accepted", "jobId": job.id}

    @app.get("/health")
    async def health(request: Request):
        return {
            "status": "ok",
            "version": __version__,
            "activeJobs": request.app.state.orchestrator.active_jobs,
            "uptime": round(time.monotonic() - started, 3),
        }

    return app
