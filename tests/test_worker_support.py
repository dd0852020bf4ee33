"""Tests for job models, the callback audit log and log helpers."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from vaultpress.logs import (
    JsonFormatter,
    capture_job_logs,
    current_job_id,
    mask_sensitive,
    mask_value,
)
from vaultpress.worker.audit import CallbackAuditLog
from vaultpress.worker.models import CallbackEnvelope, Job, JobState, TaskRequest
from vaultpress.worker.tasks import TASKS, UnknownTaskError, process_all, resolve_task


# -- Job models ---------------------------------------------------------------


def _make_job(**overrides) -> Job:
    defaults = dict(id="job-1", task="process-all", callback_url="https://cms.example.com/hook")
    defaults.update(overrides)
    return Job(**defaults)


class TestJob:
    def test_happy_path_transitions(self):
        job = _make_job()
        job.transition(JobState.running)
        job.transition(JobState.completed)
        assert job.state == JobState.completed

    def test_accepted_can_fail_directly(self):
        job = _make_job()
        job.transition(JobState.failed)
        assert job.state == JobState.failed

    @pytest.mark.parametrize("path", [
        [JobState.completed],
        [JobState.running, JobState.accepted],
        [JobState.running, JobState.completed, JobState.failed],
    ])
    def test_invalid_transitions(self, path):
        job = _make_job()
        with pytest.raises(ValueError, match="Invalid job transition"):
            for state in path:
                job.transition(state)

    def test_request_aliases(self):
        req = TaskRequest.model_validate({
            "jobId": "j", "task": "build-assets", "callbackUrl": "https://x", "data": {"a": 1},
        })
        job = Job.from_request(req)
        assert (job.id, job.callback_url, job.data) == ("j", "https://x", {"a": 1})

    def test_request_rejects_blank(self):
        with pytest.raises(ValidationError):
            TaskRequest.model_validate({"jobId": " ", "task": "t", "callbackUrl": "u"})

    @pytest.mark.parametrize("job_id", ["..", ".", "../x", "a/b", "a\\b", "-lead", "x" * 129])
    def test_request_rejects_job_id_unusable_as_directory(self, job_id):
        with pytest.raises(ValidationError):
            TaskRequest.model_validate({"jobId": job_id, "task": "t", "callbackUrl": "u"})

    def test_request_accepts_dotted_job_id(self):
        req = TaskRequest.model_validate({"jobId": "job-1.2_x", "task": "t", "callbackUrl": "u"})
        assert req.job_id == "job-1.2_x"


class TestCallbackEnvelope:
    def test_payload_uses_camel_case_and_drops_empty(self):
        envelope = CallbackEnvelope(
            job_id="j",
            status=JobState.completed,
            result={"posts": 2},
            processed_at=datetime(2024, 1, 1, tzinfo=UTC),
            duration=1.5,
        )
        payload = envelope.to_payload()
        assert payload == {
            "jobId": "j",
            "status": "completed",
            "result": {"posts": 2},
            "processedAt": "2024-01-01T00:00:00Z",
            "duration": 1.5,
            "logs": [],
        }

    def test_failed_payload_has_error_not_result(self):
        payload = CallbackEnvelope(
            job_id="j", status=JobState.failed, error="boom",
            processed_at=datetime.now(UTC), duration=0.0,
        ).to_payload()
        assert payload["error"] == "boom"
        assert "result" not in payload


class TestTaskRouting:
    def test_every_task_kind_routed(self):
        assert resolve_task("process-all") is process_all
        assert resolve_task("process-with-repo") is process_all
        assert len(TASKS) == 8

    def test_unknown_task(self):
        with pytest.raises(UnknownTaskError, match="expected one of: process-all"):
            resolve_task("nope")

    def test_kind_missing_from_custom_registry(self):
        with pytest.raises(UnknownTaskError):
            resolve_task("deploy-repo", {})


# -- Audit log ------------------------------------------------------------------


class TestCallbackAuditLog:
    def test_records_every_attempt(self, tmp_path):
        audit = CallbackAuditLog(str(tmp_path / "nested" / "audit.db"))
        audit.record("a", "https://x", "completed", 200)
        audit.record("b", "https://x", "failed", None, "connection refused")
        audit.record("a", "https://x", "completed", 500)

        assert [a.job_id for a in audit.attempts()] == ["a", "b", "a"]
        first, second = audit.attempts("a")
        assert first.delivered
        assert not second.delivered
        failed = audit.attempts("b")[0]
        assert failed.error == "connection refused"
        assert not failed.delivered
        audit.close()

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "audit.db")
        audit = CallbackAuditLog(path)
        audit.record("a", "https://x", "completed", 204)
        audit.close()

        reopened = CallbackAuditLog(path)
        assert len(reopened.attempts()) == 1
        reopened.close()


# -- Logging helpers ------------------------------------------------------------


class TestMasking:
    def test_mask_value(self):
        assert mask_value("short") == "***"
        assert mask_value("ghp_1234567890") == "ghp...890"

    def test_mask_sensitive_nested(self):
        data = {
            "repoUrl": "https://github.com/o/r",
            "gitToken": "ghp_1234567890",
            "nested": {"apiKey": "abcdefghijk", "items": [{"password": "hunter2"}]},
            "count": 3,
        }
        assert mask_sensitive(data) == {
            "repoUrl": "https://github.com/o/r",
            "gitToken": "ghp...890",
            "nested": {"apiKey": "abc...ijk", "items": [{"password": "***"}]},
            "count": 3,
        }

    def test_original_untouched(self):
        data = {"secret": "value-that-is-long"}
        mask_sensitive(data)
        assert data["secret"] == "value-that-is-long"


class TestJobLogCapture:
    def test_only_matching_job_collected(self):
        log = logging.getLogger("vaultpress.tests.capture")
        log.setLevel(logging.INFO)
        with capture_job_logs("j1") as collector:
            assert current_job_id.get() == "j1"
            log.info("inside")
        log.info("outside")
        assert current_job_id.get() is None
        assert len(collector.lines) == 1
        assert collector.lines[0].endswith("[INFO] inside")

    def test_json_formatter(self):
        record = logging.LogRecord("vaultpress.x", logging.WARNING, __file__, 1, "hi %s", ("there",), None)
        record.job_id = "j9"
        entry = json.loads(JsonFormatter().format(record))
        assert entry["level"] == "warning"
        assert entry["message"] == "hi there"
        assert entry["job_id"] == "j9"
        assert entry["logger"] == "vaultpress.x"
