"""Tests for ClaimManager."""

import pytest

from helmsman.application.claims import ClaimManager
from helmsman.domain.audit import AuditEventType
from helmsman.domain.exceptions import (
    AlreadyClaimedError,
    ClaimNotHeldError,
    RunNotFoundError,
    StaleWriteError,
)
from helmsman.domain.interfaces import ExternalClaimPrimitive
from helmsman.domain.states import ACTIVE_EXECUTING, COMPLETE, PROPOSED, READY
from helmsman.infrastructure.persistence.memory import InMemoryRunStore


@pytest.fixture
def new_run(lifecycle):
    counter = iter(range(1, 100))

    def _make(state=READY, **kwargs):
        return lifecycle.create_run(f"plans/01-{next(counter):02d}-PLAN.md", initial_state=state, **kwargs)

    return _make


class TestClaim:
    """Tests for claim, release and expiry."""

    def test_claim_sets_lease(self, claims, memory_store, new_run):
        run = new_run()

        claimed = claims.claim(run.id, "agent-1")

        stored = memory_store.load(run.id)
        assert stored.claimed_by == "agent-1"
        assert stored.claimed_at == "2025-01-01T12:00:00+00:00"
        assert stored.claim_expires == "2025-01-01T12:30:00+00:00"
        assert claimed.claimed_by == "agent-1"

    def test_custom_ttl(self, claims, new_run):
        run = new_run()

        claimed = claims.claim(run.id, "agent-1", ttl_minutes=5)

        assert claimed.claim_expires == "2025-01-01T12:05:00+00:00"

    def test_second_agent_rejected_while_live(self, claims, new_run):
        run = new_run()
        claims.claim(run.id, "agent-1")

        with pytest.raises(AlreadyClaimedError) as exc_info:
            claims.claim(run.id, "agent-2")

        assert exc_info.value.holder == "agent-1"

    def test_reclaim_by_holder_rejected_unless_forced(self, claims, new_run):
        run = new_run()
        claims.claim(run.id, "agent-1")

        with pytest.raises(AlreadyClaimedError):
            claims.claim(run.id, "agent-1")
        assert claims.claim(run.id, "agent-1", force=True).claimed_by == "agent-1"

    def test_force_takes_over(self, claims, new_run):
        run = new_run()
        claims.claim(run.id, "agent-1")

        assert claims.claim(run.id, "agent-2", force=True).claimed_by == "agent-2"

    def test_expired_claim_can_be_taken(self, claims, clock, new_run):
        run = new_run()
        claims.claim(run.id, "agent-1")
        clock.advance(minutes=31)

        assert claims.claim(run.id, "agent-2").claimed_by == "agent-2"

    def test_claim_unknown_run(self, claims):
        with pytest.raises(RunNotFoundError):
            claims.claim("run-missing", "agent-1")

    def test_release_is_unconditional(self, claims, memory_store, audit_log, new_run):
        run = new_run()
        claims.claim(run.id, "agent-1")

        claims.release(run.id, by="agent-2")

        stored = memory_store.load(run.id)
        assert stored.claimed_by is None
        assert stored.claim_expires is None
        event = audit_log.get_events(event_type=AuditEventType.RUN_RELEASED)[0]
        assert event.details == {"previous_holder": "agent-1"}

    def test_claim_is_audited(self, claims, audit_log, new_run):
        run = new_run()

        claims.claim(run.id, "agent-1")

        event = audit_log.get_events(event_type=AuditEventType.RUN_CLAIMED)[0]
        assert event.agent == "agent-1"
        assert event.details["expires"] == "2025-01-01T12:30:00+00:00"


class TestClaimRace:
    """Two agents claiming from the same read."""

    def test_loser_learns_the_winner(self, claims, memory_store, new_run):
        run = new_run()
        seen_by_a = memory_store.load_versioned(run.id)
        seen_by_b = memory_store.load_versioned(run.id)

        claims.claim_loaded(seen_by_a, "agent-a")
        with pytest.raises(AlreadyClaimedError) as exc_info:
            claims.claim_loaded(seen_by_b, "agent-b")

        assert exc_info.value.holder == "agent-a"
        assert memory_store.load(run.id).claimed_by == "agent-a"

    def test_non_claim_write_surfaces_as_stale(self, claims, lifecycle, memory_store, new_run):
        run = new_run()
        seen = memory_store.load_versioned(run.id)
        lifecycle.transition(run.id, ACTIVE_EXECUTING)

        with pytest.raises(StaleWriteError):
            claims.claim_loaded(seen, "agent-1")

    def test_claim_by_id_retries_from_fresh_read(self, memory_store, clock, new_run):
        run = new_run()

        store = InMemoryRunStore()
        store.save(memory_store.load(run.id))
        original = store.save_if_fresh
        calls = []

        def interleaving_save(r):
            if not calls:
                calls.append(r.id)
                other = store.load(r.id)
                other.intent = "touched"
                store.save(other)
            return original(r)

        store.save_if_fresh = interleaving_save
        manager = ClaimManager(store, clock=clock)

        claimed = manager.claim(run.id, "agent-1")

        assert claimed.claimed_by == "agent-1"
        assert store.load(run.id).intent == "touched"


class TestRequireClaim:
    def test_holder_and_unclaimed_pass(self, claims, memory_store, new_run):
        run = new_run()
        claims.require_claim(memory_store.load(run.id), "anyone")

        claims.claim(run.id, "agent-1")
        claims.require_claim(memory_store.load(run.id), "agent-1")

    def test_other_agent_rejected(self, claims, memory_store, new_run):
        run = new_run()
        claims.claim(run.id, "agent-1")

        with pytest.raises(ClaimNotHeldError) as exc_info:
            claims.require_claim(memory_store.load(run.id), "agent-2")

        assert exc_info.value.holder == "agent-1"

    def test_strict_rejects_unclaimed(self, claims, memory_store, new_run):
        run = new_run()

        with pytest.raises(ClaimNotHeldError):
            claims.require_claim(memory_store.load(run.id), "agent-1", strict=True)

    def test_expired_claim_does_not_block(self, claims, clock, memory_store, new_run):
        run = new_run()
        claims.claim(run.id, "agent-1")
        clock.advance(hours=1)

        claims.require_claim(memory_store.load(run.id), "agent-2")


class TestGarbageCollection:
    def test_gc_releases_only_expired(self, claims, clock, memory_store, audit_log, new_run):
        old = new_run()
        fresh = new_run()
        claims.claim(old.id, "agent-1", ttl_minutes=10)
        claims.claim(fresh.id, "agent-2", ttl_minutes=60)
        clock.advance(minutes=20)

        released = claims.gc_stale_claims()

        assert [r.id for r in released] == [old.id]
        assert memory_store.load(old.id).claimed_by is None
        assert memory_store.load(fresh.id).claimed_by == "agent-2"
        event = audit_log.get_events(event_type=AuditEventType.STALE_CLAIM_GC)[0]
        assert event.details["previous_holder"] == "agent-1"

    def test_claim_taken_after_sweep_is_kept(
        self, claims, clock, memory_store, audit_log, new_run, monkeypatch
    ):
        run = new_run()
        claims.claim(run.id, "agent-1", ttl_minutes=10)
        clock.advance(minutes=20)
        list_runs = memory_store.list_runs

        def list_then_claim(*args, **kwargs):
            runs = list_runs(*args, **kwargs)
            claims.claim(run.id, "agent-b")
            return runs

        monkeypatch.setattr(memory_store, "list_runs", list_then_claim)

        assert claims.gc_stale_claims() == []
        assert memory_store.load(run.id).claimed_by == "agent-b"
        assert audit_log.get_events(event_type=AuditEventType.STALE_CLAIM_GC) == []

    def test_dry_run_changes_nothing(self, claims, clock, memory_store, new_run):
        run = new_run()
        claims.claim(run.id, "agent-1", ttl_minutes=1)
        clock.advance(minutes=2)

        stale = claims.gc_stale_claims(dry_run=True)

        assert [r.id for r in stale] == [run.id]
        assert memory_store.load(run.id).claimed_by == "agent-1"


class TestScheduling:
    """Tests for dependency blocking, file conflicts and the ready list."""

    def test_unknown_dependencies_do_not_block(self, claims, new_run):
        run = new_run(depends_on=["run-ghost"])
        assert not claims.is_blocked(run)

    def test_incomplete_dependency_blocks(self, claims, lifecycle, new_run):
        dep = new_run(state=PROPOSED)
        run = new_run(depends_on=[dep.id])

        assert claims.blocking_dependencies(run) == [dep.id]

        lifecycle.force_transition(dep.id, COMPLETE)
        assert not claims.is_blocked(run)

    def test_file_conflicts_with_active_runs(self, claims, new_run):
        active = new_run(state=ACTIVE_EXECUTING, files_touched=["src/a.py", "src/b.py"])
        new_run(state=READY, files_touched=["src/a.py"])
        run = new_run(state=READY, files_touched=["src/b.py", "src/c.py"])

        assert claims.detect_file_conflicts(run) == [active.id]

    def test_ready_runs(self, claims, new_run):
        dep = new_run(state=PROPOSED)
        low = new_run(state=READY, priority=5)
        high = new_run(state=READY, priority=1, files_touched=["x.py"])
        active = new_run(state=ACTIVE_EXECUTING, files_touched=["x.py"])
        taken = new_run(state=READY)
        new_run(state=READY, depends_on=[dep.id])
        claims.claim(taken.id, "agent-1")

        ready = claims.ready_runs()

        ids = [r.run.id for r in ready]
        assert ids.index(high.id) < ids.index(low.id)
        assert set(ids) == {low.id, high.id, active.id}
        assert next(r for r in ready if r.run.id == high.id).conflicts == (active.id,)


class FakeTracker(ExternalClaimPrimitive):
    """Tracker whose claim call may silently lose to another agent."""

    def __init__(self, owners=None, steal_to=None):
        self.owners = dict(owners or {})
        self.steal_to = steal_to

    def claim(self, task_id, agent_id):
        if task_id not in self.owners:
            raise RunNotFoundError(task_id)
        holder = self.owners[task_id]
        if holder and holder != agent_id:
            raise AlreadyClaimedError(task_id, holder)
        self.owners[task_id] = self.steal_to or agent_id

    def get_owner(self, task_id):
        if task_id not in self.owners:
            raise RunNotFoundError(task_id)
        return self.owners[task_id]


class TestClaimWithVerification:
    def test_success(self, claims):
        outcome = claims.claim_with_verification(FakeTracker({"t1": None}), "t1", "agent-1")
        assert outcome.success
        assert outcome.actual_owner == "agent-1"

    def test_already_claimed(self, claims):
        outcome = claims.claim_with_verification(FakeTracker({"t1": "agent-2"}), "t1", "agent-1")
        assert not outcome.success
        assert outcome.error == "already_claimed"
        assert outcome.actual_owner == "agent-2"

    def test_silent_loss_detected(self, claims):
        tracker = FakeTracker({"t1": None}, steal_to="agent-3")

        outcome = claims.claim_with_verification(tracker, "t1", "agent-1")

        assert outcome.error == "lost_race"
        assert outcome.actual_owner == "agent-3"

    def test_not_found(self, claims):
        outcome = claims.claim_with_verification(FakeTracker(), "t9", "agent-1")
        assert outcome.error == "not_found"
