from .acquire import SourceAcquisitionError, acquire_source
from .audit import CallbackAuditLog
from .models import CallbackEnvelope, Job, JobState, TaskKind, TaskRequest
from .orchestrator import DuplicateJobError, JobOrchestrator
from .tasks import TASKS, TaskContext, TaskDataError, UnknownTaskError, resolve_task

__all__ = [
    "CallbackAuditLog",
    "CallbackEnvelope",
    "DuplicateJobError",
    "Job",
    "JobOrchestrator",
    "JobState",
    "SourceAcquisitionError",
    "TASKS",
    "TaskContext",
    "TaskDataError",
    "TaskKind",
    "TaskRequest",
    "UnknownTaskError",
    "acquire_source",
    "resolve_task",
]
