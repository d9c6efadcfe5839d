"""Tests for the filesystem workflow instance store and audit log."""

import json

import pytest

from helmsman.domain.audit import AuditEvent, AuditEventType
from helmsman.domain.exceptions import WorkflowInstanceNotFoundError
from helmsman.domain.models import WorkflowInstance
from helmsman.infrastructure.persistence.audit_log import FilesystemAuditLog
from helmsman.infrastructure.persistence.instances import FilesystemWorkflowInstanceStore


def make_instance(instance_id, workflow="verify-fix", updated_at="2025-01-01T12:00:00+00:00"):
    return WorkflowInstance(
        id=instance_id,
        workflow_name=workflow,
        current_step="run-checks",
        started_at="2025-01-01T12:00:00+00:00",
        updated_at=updated_at,
        state={"checks_status": "fail", "failed_checks": ["lint"]},
        history=["run-checks", "fix", "run-checks"],
    )


class TestFilesystemWorkflowInstanceStore:
    def test_round_trip(self, tmp_path):
        store = FilesystemWorkflowInstanceStore(tmp_path)
        instance = make_instance("verify-fix-1-abcd")

        store.save(instance)

        assert (tmp_path / "workflows" / "instances" / "verify-fix-1-abcd.json").exists()
        assert FilesystemWorkflowInstanceStore(tmp_path).load(instance.id) == instance

    def test_missing_instance(self, tmp_path):
        with pytest.raises(WorkflowInstanceNotFoundError):
            FilesystemWorkflowInstanceStore(tmp_path).load("ghost")

    def test_list_filters_by_workflow(self, tmp_path):
        store = FilesystemWorkflowInstanceStore(tmp_path)
        store.save(make_instance("a", updated_at="2025-01-01T12:00:00+00:00"))
        store.save(make_instance("b", updated_at="2025-01-01T13:00:00+00:00"))
        store.save(make_instance("c", workflow="plan-review"))

        assert [i.id for i in store.list_instances("verify-fix")] == ["b", "a"]
        assert len(store.list_instances()) == 3


class TestFilesystemAuditLog:
    def test_appends_one_json_line_per_event(self, tmp_path):
        log = FilesystemAuditLog(tmp_path)

        log.append(
            AuditEvent(
                event_id="e1",
                event_type=AuditEventType.STATE_CHANGE,
                at="2025-01-01T12:00:00+00:00",
                agent="agent-1",
                run_id="run-1",
                details={"from": "ready", "to": "active/executing"},
            )
        )
        log.append(
            AuditEvent(event_id="e2", event_type=AuditEventType.RUNS_EXPORTED, at="t")
        )

        lines = (tmp_path / "events.jsonl").read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["event"] == "state_change"
        assert first["details"]["to"] == "active/executing"
        assert "run_id" not in json.loads(lines[1])

    def test_query_survives_reopen(self, tmp_path):
        FilesystemAuditLog(tmp_path).append(
            AuditEvent(event_id="e1", event_type=AuditEventType.RUN_CLAIMED, at="t", run_id="r")
        )

        events = FilesystemAuditLog(tmp_path).get_events(run_id="r")

        assert [e.event_type for e in events] == [AuditEventType.RUN_CLAIMED]

    def test_empty_log(self, tmp_path):
        assert FilesystemAuditLog(tmp_path).get_events() == []
