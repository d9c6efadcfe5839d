"""Application service for run creation, lookup and lifecycle transitions."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import PurePath
from typing import TYPE_CHECKING

from helmsman.application.audit_emitter import AuditEmitter
from helmsman.application.retry import DEFAULT_ATTEMPTS, retry_on_conflict
from helmsman.domain.claims import require_claim
from helmsman.domain.exceptions import HelmsmanValidationError, RunNotFoundError
from helmsman.domain.models import DEFAULT_PRIORITY, Run, TransitionResult
from helmsman.domain.plan_ref import normalize_plan_path, normalize_plan_ref, parse_plan_ref
from helmsman.domain.states import (
    PROPOSED,
    apply_transition,
    force_transition,
    is_valid_state,
    is_valid_state_query,
)

if TYPE_CHECKING:
    from helmsman.domain.interfaces import RunStoreInterface

logger = logging.getLogger(__name__)

# Parent-level queries tried in order by get_default_run()
DEFAULT_RUN_PRIORITY = ("active", "verifying", "ready", "approved", "proposed")


def _utc_now() -> datetime:
    return datetime.now(UTC)


def generate_run_id() -> str:
    """Opaque run id (``run-`` + 8 hex chars), never derived from the plan."""
    return f"run-{uuid.uuid4().hex[:8]}"


class RunLifecycle:
    """Creates runs and moves them through the lifecycle.

    Every state change is a versioned read, an in-memory transition and a
    conditional write. When another process interleaves, the whole
    operation is retried from a fresh read.
    """

    def __init__(
        self,
        store: RunStoreInterface,
        emitter: AuditEmitter | None = None,
        clock: Callable[[], datetime] = _utc_now,
        max_conflict_retries: int = DEFAULT_ATTEMPTS,
        project_root: PurePath | None = None,
    ) -> None:
        """Initialize the lifecycle service.

        Args:
            store: Run store shared with other processes.
            emitter: Audit emitter (no auditing when omitted).
            clock: Source of the current time.
            max_conflict_retries: Attempts per transition on stale read/write.
            project_root: Root that absolute plan paths are made relative to.
        """
        self._store = store
        self._emitter = emitter or AuditEmitter()
        self._clock = clock
        self._attempts = max_conflict_retries
        self._project_root = project_root

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def find_by_plan_path(self, plan_path: str) -> Run | None:
        wanted = normalize_plan_path(plan_path, self._project_root)
        for run in self._store.list_runs():
            if normalize_plan_path(run.plan_path, self._project_root) == wanted:
                return run
        return None

    def create_run(
        self,
        plan_path: str,
        intent: str = "",
        initial_state: str = PROPOSED,
        by: str = "human",
        files_touched: Iterable[str] = (),
        depends_on: Iterable[str] = (),
        priority: int = DEFAULT_PRIORITY,
    ) -> Run:
        """Create a run for a plan, or return the existing one.

        Idempotent per normalized plan path, so repeated or parallel
        creation for the same plan yields one run.

        Raises:
            HelmsmanValidationError: If ``initial_state`` is not a state.
        """
        if not is_valid_state(initial_state):
            raise HelmsmanValidationError(f"Unknown initial state: {initial_state}")

        existing = self.find_by_plan_path(plan_path)
        if existing is not None:
            logger.debug("Run %s already exists for %s", existing.id, plan_path)
            return existing

        run_id = generate_run_id()
        while self._store.exists(run_id):
            run_id = generate_run_id()

        now = self._clock().isoformat()
        run = Run(
            id=run_id,
            intent=intent,
            state=initial_state,
            plan_path=normalize_plan_path(plan_path, self._project_root),
            created=now,
            updated=now,
            files_touched=sorted(set(files_touched)),
            depends_on=list(dict.fromkeys(depends_on)),
            priority=priority,
        )
        self._store.save(run)
        self._emitter.run_created(run, by)
        logger.info("Created run %s (%s) for %s", run.id, run.state, run.plan_path)
        return run

    def get(self, run_id: str) -> Run:
        return self._store.load(run_id)

    def resolve(self, ref: str) -> Run:
        """Find a run by id or by plan reference (``02-01``, ``6.6-25``).

        Raises:
            RunNotFoundError: If nothing matches.
        """
        if self._store.exists(ref):
            return self._store.load(ref)
        wanted = {ref, normalize_plan_ref(ref) or ref}
        for run in self._store.list_runs():
            if parse_plan_ref(run.plan_path) in wanted:
                return run
        raise RunNotFoundError(ref)

    def list_runs(self, state_query: str | None = None) -> list[Run]:
        """
        Raises:
            HelmsmanValidationError: If the query names no state or parent.
        """
        if state_query and not is_valid_state_query(state_query):
            raise HelmsmanValidationError(f"Invalid state query: {state_query}")
        return self._store.list_runs(state_query)

    def get_default_run(self) -> Run | None:
        """Most recently updated run in the highest-priority occupied state group."""
        for query in DEFAULT_RUN_PRIORITY:
            runs = self._store.list_runs(query)
            if runs:
                return runs[0]
        return None

    def delete_run(self, run_id: str, by: str = "human", reason: str | None = None) -> None:
        self._store.delete(run_id)
        self._emitter.run_deleted(run_id, by, reason)
        logger.info("Deleted run %s", run_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        to_state: str,
        by: str = "human",
        reason: str | None = None,
        claimant: str | None = None,
    ) -> TransitionResult:
        """Validate and apply a lifecycle transition.

        Args:
            run_id: Run to move.
            to_state: Target state.
            by: Actor recorded in the transition log.
            reason: Optional note recorded with the transition.
            claimant: When given, the transition is refused unless this
                agent holds the claim or nobody does.

        Raises:
            InvalidTransitionError: Carries the valid targets. Not retried.
            ClaimNotHeldError: If another agent holds the claim.
            StaleWriteError: If conflicts persist past the retry budget.
        """

        def attempt() -> TransitionResult:
            run = self._store.load_versioned(run_id)
            now = self._clock()
            if claimant is not None:
                require_claim(run, claimant, now)
            result = apply_transition(run, to_state, by, now.isoformat(), reason)
            self._store.save_if_fresh(run)
            return result

        result = retry_on_conflict(attempt, self._attempts)
        self._emitter.state_change(result, by, reason)
        logger.info("Run %s: %s -> %s (%s)", run_id, result.from_state, result.to_state, by)
        return result

    def force_transition(
        self,
        run_id: str,
        to_state: str,
        by: str = "human",
        reason: str | None = None,
    ) -> TransitionResult:
        """Move a run to any state, bypassing the lifecycle table.

        Recorded as a forced transition and audited separately from
        normal transitions.
        """

        def attempt() -> TransitionResult:
            run = self._store.load_versioned(run_id)
            result = force_transition(run, to_state, by, self._clock().isoformat(), reason)
            self._store.save_if_fresh(run)
            return result

        result = retry_on_conflict(attempt, self._attempts)
        self._emitter.state_change(result, by, reason)
        logger.warning(
            "Forced run %s: %s -> %s by %s (%s)",
            run_id,
            result.from_state,
            result.to_state,
            by,
            reason or "no reason given",
        )
        return result
