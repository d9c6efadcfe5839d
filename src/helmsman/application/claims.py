"""Application service for claims (leases) on runs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from helmsman.application.audit_emitter import AuditEmitter
from helmsman.application.retry import DEFAULT_ATTEMPTS, retry_on_conflict
from helmsman.domain import claims as rules
from helmsman.domain.exceptions import (
    AlreadyClaimedError,
    HelmsmanNotFoundError,
    StaleWriteError,
)
from helmsman.domain.models import ClaimOutcome, ReadyRun, Run
from helmsman.domain.states import READY, match_state

if TYPE_CHECKING:
    from helmsman.domain.interfaces import ExternalClaimPrimitive, RunStoreInterface

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ClaimManager:
    """Grants, releases and reclaims time-bounded claims on runs.

    Claims are advisory: the store accepts writes from anyone. Callers
    that mutate claim-holder-only fields are expected to go through
    :meth:`require_claim` first.
    """

    def __init__(
        self,
        store: RunStoreInterface,
        emitter: AuditEmitter | None = None,
        clock: Callable[[], datetime] = _utc_now,
        ttl_minutes: int = rules.DEFAULT_CLAIM_TTL_MINUTES,
        max_conflict_retries: int = DEFAULT_ATTEMPTS,
    ) -> None:
        self._store = store
        self._emitter = emitter or AuditEmitter()
        self._clock = clock
        self._ttl_minutes = ttl_minutes
        self._attempts = max_conflict_retries

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def is_claim_expired(self, run: Run) -> bool:
        return rules.is_claim_expired(run, self._clock())

    def is_available(self, run: Run) -> bool:
        return rules.is_available(run, self._clock())

    def require_claim(self, run: Run, agent_id: str, strict: bool = False) -> None:
        """Raise ClaimNotHeldError unless ``agent_id`` may mutate ``run``."""
        rules.require_claim(run, agent_id, self._clock(), strict=strict)

    # ------------------------------------------------------------------
    # Claim / release
    # ------------------------------------------------------------------

    def claim_loaded(
        self,
        run: Run,
        agent_id: str,
        ttl_minutes: int | None = None,
        force: bool = False,
    ) -> Run:
        """Claim a run the caller has already loaded.

        A run loaded with a version token is written conditionally. If
        another writer got there first, the record is re-read: when that
        writer left a live claim, the loss is reported as
        AlreadyClaimedError naming the winner.

        Args:
            run: Run to claim, ideally from load_versioned().
            agent_id: Identity taking the claim.
            ttl_minutes: Lease length (manager default when omitted).
            force: Take over a live claim held by someone else.

        Raises:
            AlreadyClaimedError: If the run is claimed and unexpired.
            StaleWriteError: If the write lost to a non-claim update.
        """
        now = self._clock()
        if not force and not rules.is_available(run, now):
            raise AlreadyClaimedError(run.id, run.claimed_by or "unknown", run.claim_expires)

        previous_holder = run.claimed_by
        rules.set_claim(run, agent_id, now, ttl_minutes or self._ttl_minutes)
        if run.version is None:
            self._store.save(run)
        else:
            try:
                self._store.save_if_fresh(run)
            except StaleWriteError:
                current = self._store.load(run.id)
                if current.claimed_by and not rules.is_claim_expired(current, self._clock()):
                    logger.info("Lost claim race on %s to %s", run.id, current.claimed_by)
                    raise AlreadyClaimedError(
                        run.id, current.claimed_by, current.claim_expires
                    ) from None
                raise

        if force and previous_holder and previous_holder != agent_id:
            logger.warning("%s took over claim on %s from %s", agent_id, run.id, previous_holder)
        self._emitter.run_claimed(run)
        logger.info("%s claimed %s until %s", agent_id, run.id, run.claim_expires)
        return run

    def claim(
        self,
        run_id: str,
        agent_id: str,
        ttl_minutes: int | None = None,
        force: bool = False,
    ) -> Run:
        """Claim a run by id (versioned read + conditional write, retried)."""
        return retry_on_conflict(
            lambda: self.claim_loaded(
                self._store.load_versioned(run_id), agent_id, ttl_minutes, force
            ),
            self._attempts,
        )

    def _release(self, run_id: str) -> tuple[Run, str | None]:
        run = self._store.load_versioned(run_id)
        previous = run.claimed_by
        run.clear_claim()
        run.updated = self._clock().isoformat()
        self._store.save_if_fresh(run)
        return run, previous

    def _release_if_expired(self, run_id: str) -> tuple[Run, str, str | None] | None:
        run = self._store.load_versioned(run_id)
        if not run.claimed_by or not rules.is_claim_expired(run, self._clock()):
            return None
        holder, expired_at = run.claimed_by, run.claim_expires
        run.clear_claim()
        run.updated = self._clock().isoformat()
        self._store.save_if_fresh(run)
        return run, holder, expired_at

    def release(self, run_id: str, by: str | None = None) -> Run:
        """Clear the claim unconditionally; no ownership check."""
        run, previous = retry_on_conflict(lambda: self._release(run_id), self._attempts)
        self._emitter.run_released(run_id, by, previous)
        logger.info("Released %s (was %s)", run_id, previous or "unclaimed")
        return run

    def gc_stale_claims(self, dry_run: bool = False) -> list[Run]:
        """Release every claim whose lease has expired.

        Returns:
            The runs whose claims were (or, with ``dry_run``, would be) released
        """
        now = self._clock()
        stale = [
            run
            for run in self._store.list_runs()
            if run.claimed_by and rules.is_claim_expired(run, now)
        ]
        if dry_run:
            return stale

        released: list[Run] = []
        for run in stale:
            outcome = retry_on_conflict(
                lambda r=run: self._release_if_expired(r.id), self._attempts
            )
            if outcome is None:
                logger.info("Claim on %s was renewed or released before collection", run.id)
                continue
            updated, holder, expired_at = outcome
            self._emitter.stale_claim_gc(run.id, holder, expired_at)
            logger.info("Reclaimed stale claim on %s from %s", run.id, holder)
            released.append(updated)
        return released

    # ------------------------------------------------------------------
    # Scheduling helpers
    # ------------------------------------------------------------------

    def detect_file_conflicts(self, run: Run) -> list[str]:
        return rules.detect_file_conflicts(run, self._store.list_runs("active"))

    def blocking_dependencies(self, run: Run) -> list[str]:
        runs_by_id = {r.id: r for r in self._store.list_runs()}
        return rules.blocking_dependencies(run, runs_by_id)

    def is_blocked(self, run: Run) -> bool:
        return bool(self.blocking_dependencies(run))

    def ready_runs(self) -> list[ReadyRun]:
        """Runs an agent could pick up now, highest priority first.

        Ready or active, unclaimed (or expired), not blocked by an
        incomplete dependency; each annotated with file conflicts.
        """
        now = self._clock()
        all_runs = self._store.list_runs()
        runs_by_id = {r.id: r for r in all_runs}
        active = [r for r in all_runs if match_state(r.state, "active")]

        candidates = [
            run
            for run in all_runs
            if (run.state == READY or match_state(run.state, "active"))
            and rules.is_available(run, now)
            and not rules.blocking_dependencies(run, runs_by_id)
        ]
        return sorted(
            (
                ReadyRun(run=run, conflicts=tuple(rules.detect_file_conflicts(run, active)))
                for run in candidates
            ),
            key=lambda r: r.run.priority,
        )

    # ------------------------------------------------------------------
    # External claim primitives
    # ------------------------------------------------------------------

    def claim_with_verification(
        self, primitive: ExternalClaimPrimitive, task_id: str, agent_id: str
    ) -> ClaimOutcome:
        """Claim through an external tracker and confirm ownership.

        The tracker's claim call is not atomic from here, so a call that
        does not raise proves nothing: the owner is re-read and compared.
        """
        try:
            primitive.claim(task_id, agent_id)
        except AlreadyClaimedError as e:
            return ClaimOutcome(
                success=False, task_id=task_id, error="already_claimed", actual_owner=e.holder
            )
        except HelmsmanNotFoundError:
            return ClaimOutcome(success=False, task_id=task_id, error="not_found")

        try:
            owner = primitive.get_owner(task_id)
        except HelmsmanNotFoundError:
            return ClaimOutcome(success=False, task_id=task_id, error="not_found")

        if owner != agent_id:
            logger.info("Lost race for %s: owner is %s, not %s", task_id, owner, agent_id)
            return ClaimOutcome(
                success=False, task_id=task_id, error="lost_race", actual_owner=owner
            )
        return ClaimOutcome(success=True, task_id=task_id, actual_owner=owner)
