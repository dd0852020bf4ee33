"""Job request, lifecycle and callback models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from vaultpress.publish.optimizer import SAFE_ID_PATTERN


class JobState(str, Enum):
    """Lifecycle states for a build job."""

    accepted = "accepted"
    running = "running"
    completed = "completed"
    failed = "failed"


class TaskKind(str, Enum):
    process_all = "process-all"
    build_assets = "build-assets"
    build_database = "build-database"
    acquire_user_repo = "acquire-user-repo"
    process_with_repo = "process-with-repo"
    deploy_repo = "deploy-repo"
    publish_build_files = "publish-build-files"
    wp_import = "wp-import"


class TaskRequest(BaseModel):
    """Body of POST /process."""

    # used as a work directory name and in storage keys
    job_id: str = Field(alias="jobId", min_length=1, max_length=128, pattern=SAFE_ID_PATTERN)
    task: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    callback_url: str = Field(alias="callbackUrl", min_length=1)

    model_config = {"populate_by_name": True}

    @field_validator("job_id", "task", "callback_url")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("cannot be empty or whitespace")
        return v


class Job(BaseModel):
    """A unit of work tracked by the orchestrator.

    Mutable: state, timestamps, result and error change over the job's lifetime.
    """

    id: str = Field(min_length=1)
    task: str
    data: dict[str, Any] = Field(default_factory=dict)
    callback_url: str
    state: JobState = JobState.accepted
    temp_path: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    result: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def from_request(cls, request: TaskRequest) -> Job:
        return cls(
            id=request.job_id,
            task=request.task,
            data=request.data,
            callback_url=request.callback_url,
        )

    def transition(self, state: JobState) -> None:
        allowed = {
            JobState.accepted: {JobState.running, JobState.failed},
            JobState.running: {JobState.completed, JobState.failed},
        }
        if state not in allowed.get(self.state, set()):
            raise ValueError(f"Invalid job transition {self.state.value} -> {state.value}")
        self.state = state
        self.updated_at = datetime.now(UTC)


class CallbackEnvelope(BaseModel):
    """The single POST delivered to a job's callback URL."""

    job_id: str = Field(serialization_alias="jobId")
    status: JobState
    result: dict[str, Any] | None = None
    error: str | None = None
    processed_at: datetime = Field(serialization_alias="processedAt")
    duration: float
    logs: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", by_alias=True)
        if self.result is None:
            payload.pop("result")
        if self.error is None:
            payload.pop("error")
        return payload
