"""Tests for RunLifecycle."""

import re

import pytest

from helmsman.application.lifecycle import RunLifecycle, generate_run_id
from helmsman.domain.audit import AuditEventType
from helmsman.domain.exceptions import (
    ClaimNotHeldError,
    HelmsmanValidationError,
    InvalidTransitionError,
    RunNotFoundError,
    StaleWriteError,
)
from helmsman.domain.states import (
    ABANDONED,
    ACTIVE_EXECUTING,
    APPROVED,
    COMPLETE,
    PROPOSED,
    READY,
    VERIFYING_TESTING,
)
from helmsman.infrastructure.persistence.memory import InMemoryRunStore


class TestCreateRun:
    """Tests for run creation and lookup."""

    def test_generated_ids_are_opaque(self):
        assert re.fullmatch(r"run-[0-9a-f]{8}", generate_run_id())

    def test_create_run_defaults(self, lifecycle, memory_store):
        run = lifecycle.create_run("plans/02-01-PLAN.md", intent="Add login")

        assert run.state == PROPOSED
        assert run.plan_ref == "02-01"
        assert run.created == run.updated == "2025-01-01T12:00:00+00:00"
        assert memory_store.load(run.id).intent == "Add login"

    def test_create_run_is_idempotent_per_plan(self, lifecycle, memory_store):
        first = lifecycle.create_run("plans/02-01-PLAN.md")
        second = lifecycle.create_run("./plans/02-01-PLAN.md")

        assert second.id == first.id
        assert len(memory_store.list_runs()) == 1

    def test_create_run_rejects_unknown_state(self, lifecycle):
        with pytest.raises(HelmsmanValidationError):
            lifecycle.create_run("plans/x-PLAN.md", initial_state="active")

    def test_create_run_is_audited(self, lifecycle, audit_log):
        run = lifecycle.create_run("plans/02-01-PLAN.md", by="planner")

        events = audit_log.get_events(run_id=run.id)
        assert [e.event_type for e in events] == [AuditEventType.RUN_CREATED]
        assert events[0].agent == "planner"

    def test_resolve_by_id_and_plan_ref(self, lifecycle):
        run = lifecycle.create_run("plans/06.6-25-PLAN.md")

        assert lifecycle.resolve(run.id).id == run.id
        assert lifecycle.resolve("06.6-25").id == run.id
        assert lifecycle.resolve("6.6-25").id == run.id

    def test_resolve_unknown(self, lifecycle):
        with pytest.raises(RunNotFoundError):
            lifecycle.resolve("99-99")

    def test_list_runs_validates_query(self, lifecycle):
        lifecycle.create_run("plans/01-01-PLAN.md", initial_state=READY)

        assert len(lifecycle.list_runs("ready")) == 1
        assert lifecycle.list_runs("active") == []
        with pytest.raises(HelmsmanValidationError):
            lifecycle.list_runs("bogus")

    def test_default_run_prefers_active_work(self, lifecycle, clock):
        lifecycle.create_run("plans/01-01-PLAN.md", initial_state=PROPOSED)
        clock.advance(minutes=1)
        active = lifecycle.create_run("plans/01-02-PLAN.md", initial_state=ACTIVE_EXECUTING)
        clock.advance(minutes=1)
        lifecycle.create_run("plans/01-03-PLAN.md", initial_state=READY)

        assert lifecycle.get_default_run().id == active.id

    def test_default_run_none_when_empty(self, lifecycle):
        assert lifecycle.get_default_run() is None

    def test_delete_run(self, lifecycle, memory_store, audit_log):
        run = lifecycle.create_run("plans/01-01-PLAN.md")

        lifecycle.delete_run(run.id, by="admin", reason="duplicate")

        assert not memory_store.exists(run.id)
        assert audit_log.get_events(event_type=AuditEventType.RUN_DELETED)[0].details == {
            "reason": "duplicate"
        }


class TestTransition:
    """Tests for validated, versioned transitions."""

    def test_full_lifecycle(self, lifecycle, memory_store):
        run = lifecycle.create_run("plans/01-01-PLAN.md")

        for target in (APPROVED, READY, ACTIVE_EXECUTING, VERIFYING_TESTING):
            lifecycle.transition(run.id, target, by="agent-1")
        lifecycle.transition(run.id, "verifying/passed", by="agent-1")
        result = lifecycle.transition(run.id, COMPLETE, by="human", reason="shipped")

        stored = memory_store.load(run.id)
        assert stored.state == COMPLETE
        assert len(stored.transitions) == 6
        assert stored.transitions[-1].reason == "shipped"
        assert result.to_state == COMPLETE

    def test_invalid_transition_carries_targets(self, lifecycle, memory_store):
        run = lifecycle.create_run("plans/01-01-PLAN.md")

        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.transition(run.id, ACTIVE_EXECUTING)

        assert set(exc_info.value.valid_targets) == {APPROVED, ABANDONED}
        assert memory_store.load(run.id).state == PROPOSED

    def test_transition_audited(self, lifecycle, audit_log):
        run = lifecycle.create_run("plans/01-01-PLAN.md")

        lifecycle.transition(run.id, APPROVED, by="reviewer", reason="lgtm")

        event = audit_log.get_events(event_type=AuditEventType.STATE_CHANGE)[0]
        assert event.agent == "reviewer"
        assert event.details == {"from": PROPOSED, "to": APPROVED, "reason": "lgtm"}

    def test_transition_respects_claims(self, lifecycle, claims):
        run = lifecycle.create_run("plans/01-01-PLAN.md", initial_state=READY)
        claims.claim(run.id, "agent-1")

        with pytest.raises(ClaimNotHeldError):
            lifecycle.transition(run.id, ACTIVE_EXECUTING, by="agent-2", claimant="agent-2")

        result = lifecycle.transition(run.id, ACTIVE_EXECUTING, by="agent-1", claimant="agent-1")
        assert result.to_state == ACTIVE_EXECUTING

    def test_force_transition(self, lifecycle, memory_store, audit_log):
        run = lifecycle.create_run("plans/01-01-PLAN.md")

        result = lifecycle.force_transition(run.id, COMPLETE, by="admin", reason="done elsewhere")

        assert result.forced
        assert memory_store.load(run.id).transitions[-1].forced
        assert audit_log.get_events(event_type=AuditEventType.FORCED_STATE_CHANGE)

    def test_retries_after_interleaved_write(self, memory_store, clock):
        """A write that lands between read and save costs one retry, not the update."""

        class InterleavingStore(InMemoryRunStore):
            interleave = 1

            def save_if_fresh(self, run):
                if self.interleave:
                    self.interleave -= 1
                    other = self.load(run.id)
                    other.intent = "edited concurrently"
                    self.save(other)
                return super().save_if_fresh(run)

        store = InterleavingStore()
        lifecycle = RunLifecycle(store, clock=clock)
        run = lifecycle.create_run("plans/01-01-PLAN.md")

        lifecycle.transition(run.id, APPROVED)

        stored = store.load(run.id)
        assert stored.state == APPROVED
        assert stored.intent == "edited concurrently"
        assert len(stored.transitions) == 1

    def test_gives_up_after_retry_budget(self, clock):
        class AlwaysStaleStore(InMemoryRunStore):
            def save_if_fresh(self, run):
                raise StaleWriteError(run.id, run.version, "other")

        store = AlwaysStaleStore()
        lifecycle = RunLifecycle(store, clock=clock, max_conflict_retries=2)
        run = lifecycle.create_run("plans/01-01-PLAN.md")

        with pytest.raises(StaleWriteError):
            lifecycle.transition(run.id, APPROVED)
        assert store.load(run.id).state == PROPOSED
