"""JobOrchestrator: accept now, run in the background, call back once."""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from datetime import UTC, datetime
from pathlib import Path

import httpx

from vaultpress.config.models import VaultpressConfig
from vaultpress.interfaces.plugin import SharedResources
from vaultpress.interfaces.storage import ObjectStore
from vaultpress.logs import capture_job_logs, mask_sensitive
from vaultpress.publish import create_store

from .audit import CallbackAuditLog
from .models import CallbackEnvelope, Job, JobState, TaskKind, TaskRequest
from .tasks import TaskContext, TaskFn, resolve_task

logger = logging.getLogger(__name__)


class DuplicateJobError(Exception):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} is already running")


class JobOrchestrator:
    """Owns the lifecycle of every job submitted to this process.

    Jobs run as independent asyncio tasks with their own temp directory.
    The object store and loaded models are shared across jobs. Each job
    ends with exactly one callback POST, which is audited and never retried.
    A running job cannot be cancelled.
    """

    def __init__(
        self,
        config: VaultpressConfig,
        store: ObjectStore | None = None,
        resources: SharedResources | None = None,
        http_client: httpx.AsyncClient | None = None,
        audit: CallbackAuditLog | None = None,
        tasks: dict[TaskKind, TaskFn] | None = None,
    ) -> None:
        self.config = config
        self.store = store or create_store(config.storage)
        self.resources = resources or SharedResources()
        self.audit = audit or CallbackAuditLog(config.worker.audit_db_path)
        self.tasks = tasks
        self._http = http_client or httpx.AsyncClient(timeout=config.worker.callback_timeout)
        self._owns_http = http_client is None
        self.jobs: dict[str, Job] = {}
        self._running: set[asyncio.Task] = set()

    @property
    def active_jobs(self) -> int:
        return len(self.jobs)

    def submit(self, request: TaskRequest) -> Job:
        """Register the job and schedule it. Returns while the job is still accepted."""
        if request.job_id in self.jobs:
            raise DuplicateJobError(request.job_id)
        job = Job.from_request(request)
        self.jobs[job.id] = job
        logger.info("Accepted job %s (%s)", job.id, job.task)
        task = asyncio.create_task(self.run(job), name=f"job-{job.id}")
        self._running.add(task)
        task.add_done_callback(self._running.discard)
        return job

    def work_dir(self, job: Job) -> Path:
        """The job's private directory, which must sit strictly inside tmp_root."""
        root = Path(self.config.worker.tmp_root).resolve()
        path = (root / job.id).resolve()
        if path == root or not path.is_relative_to(root):
            raise ValueError(f"Job id {job.id!r} does not name a directory under {root}")
        return path

    def _retain(self, job: Job, ctx: TaskContext | None) -> bool:
        if ctx is not None and ctx.retain_work_dir:
            return True
        return bool(self.config.worker.keep_tmp_files or job.data.get("keepTmpFiles"))

    async def run(self, job: Job) -> CallbackEnvelope:
        start = time.monotonic()
        ctx: TaskContext | None = None
        try:
            with capture_job_logs(job.id) as logs:
                logger.info("Job %s data: %s", job.id, mask_sensitive(job.data))
                try:
                    task = resolve_task(job.task, self.tasks)
                    work_dir = self.work_dir(job)
                    work_dir.mkdir(parents=True, exist_ok=True)
                    job.temp_path = str(work_dir)
                    job.transition(JobState.running)
                    ctx = TaskContext(
                        job=job,
                        work_dir=work_dir,
                        config=self.config,
                        store=self.store,
                        resources=self.resources,
                    )
                    job.result = await task(ctx)
                    job.transition(JobState.completed)
                    logger.info("Job %s completed in %.2fs", job.id, time.monotonic() - start)
                except Exception as e:
                    job.error = str(e) or type(e).__name__
                    job.transition(JobState.failed)
                    logger.error("Job %s failed: %s", job.id, job.error, exc_info=True)

                envelope = CallbackEnvelope(
                    job_id=job.id,
                    status=job.state,
                    result=job.result,
                    error=job.error,
                    processed_at=datetime.now(UTC),
                    duration=round(time.monotonic() - start, 3),
                    logs=list(logs.lines),
                )
                await self.deliver(job, envelope)
                await self._cleanup(job, ctx)
            return envelope
        finally:
            self.jobs.pop(job.id, None)

    async def deliver(self, job: Job, envelope: CallbackEnvelope) -> bool:
        """POST the envelope to the job's callback URL. One attempt only."""
        status_code: int | None = None
        error: str | None = None
        try:
            response = await self._http.post(job.callback_url, json=envelope.to_payload())
            status_code = response.status_code
            response.raise_for_status()
        except httpx.HTTPError as e:
            error = str(e) or type(e).__name__
            logger.error(
                "Cannot reach back to server for job %s at %s: %s", job.id, job.callback_url, error
            )
        else:
            logger.info("Callback delivered for job %s (%d)", job.id, status_code)
        await asyncio.to_thread(
            self.audit.record, job.id, job.callback_url, envelope.status.value, status_code, error
        )
        return error is None

    async def _cleanup(self, job: Job, ctx: TaskContext | None = None) -> None:
        if not job.temp_path:
            return
        if self._retain(job, ctx):
            logger.info("Keeping temp files for job %s at %s", job.id, job.temp_path)
            return
        await asyncio.to_thread(shutil.rmtree, job.temp_path, ignore_errors=True)
        logger.debug("Purged %s", job.temp_path)

    async def drain(self) -> None:
        """Wait for every scheduled job to finish."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._owns_http:
            await self._http.aclose()
        self.audit.close()
