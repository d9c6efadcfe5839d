"""Application service recording verification events and concluding verification."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from helmsman.application.audit_emitter import AuditEmitter
from helmsman.application.retry import DEFAULT_ATTEMPTS, retry_on_conflict
from helmsman.domain.claims import require_claim
from helmsman.domain.exceptions import HelmsmanValidationError
from helmsman.domain.models import Run, TransitionResult
from helmsman.domain.states import (
    VERIFYING_FAILED,
    VERIFYING_PASSED,
    VERIFYING_RETESTING,
    VERIFYING_TESTING,
)
from helmsman.domain.verification import (
    CheckDefinition,
    CheckStatus,
    VerificationEvent,
    VerificationEventType,
    VerificationSnapshot,
    derive_snapshot,
)

if TYPE_CHECKING:
    from helmsman.application.lifecycle import RunLifecycle
    from helmsman.domain.interfaces import CheckRunnerInterface, RunStoreInterface

logger = logging.getLogger(__name__)

CONCLUDABLE_STATES = (VERIFYING_TESTING, VERIFYING_RETESTING)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class VerificationRecorder:
    """Appends verification events to runs and derives their status.

    Events are only ever appended, one conditional write per event, so a
    crash part-way through a check run keeps the results recorded so far.
    """

    def __init__(
        self,
        store: RunStoreInterface,
        lifecycle: RunLifecycle,
        emitter: AuditEmitter | None = None,
        clock: Callable[[], datetime] = _utc_now,
        max_conflict_retries: int = DEFAULT_ATTEMPTS,
    ) -> None:
        self._store = store
        self._lifecycle = lifecycle
        self._emitter = emitter or AuditEmitter()
        self._clock = clock
        self._attempts = max_conflict_retries

    def _now(self) -> str:
        return self._clock().isoformat()

    def append_event(
        self, run_id: str, event: VerificationEvent, claimant: str | None = None
    ) -> Run:
        """Append one event to a run's verification log and persist it.

        Raises:
            ClaimNotHeldError: If ``claimant`` is given and another agent
                holds the claim.
        """

        def attempt() -> Run:
            run = self._store.load_versioned(run_id)
            if claimant is not None:
                require_claim(run, claimant, self._clock())
            run.verification_events.append(event)
            run.updated = event.at
            self._store.save_if_fresh(run)
            return run

        run = retry_on_conflict(attempt, self._attempts)
        self._emitter.verification_recorded(
            run_id,
            event.by,
            event.event_type.value,
            event.name,
            event.status.value if event.status else None,
        )
        return run

    def start_run(
        self, run_id: str, checks: Sequence[CheckDefinition], by: str = "agent"
    ) -> Run:
        return self.append_event(
            run_id,
            VerificationEvent(
                event_type=VerificationEventType.RUN_STARTED,
                at=self._now(),
                by=by,
                checks_planned=tuple(c.name for c in checks),
            ),
        )

    def run_checks(
        self,
        run_id: str,
        checks: Sequence[CheckDefinition],
        runner: CheckRunnerInterface,
        by: str = "agent",
        claimant: str | None = None,
        on_progress: Callable[[str, int, int], None] | None = None,
    ) -> VerificationSnapshot:
        """Execute every command check in declared order and record the results.

        Appends a ``run_started`` event, then one ``check_executed`` event
        per command check. Manual checks are left for :meth:`record_manual`.

        Returns:
            Snapshot derived after the last check
        """
        if claimant is not None:
            require_claim(self._store.load(run_id), claimant, self._clock())

        self.start_run(run_id, checks, by)
        command_checks = [c for c in checks if c.cmd and not c.manual]
        run = self._store.load(run_id)
        for index, check in enumerate(command_checks, start=1):
            if on_progress:
                on_progress(check.name, index, len(command_checks))
            result = runner.execute(check)
            logger.info("Check %s: %s", check.name, result.status.value)
            run = self.append_event(
                run_id,
                VerificationEvent(
                    event_type=VerificationEventType.CHECK_EXECUTED,
                    at=self._now(),
                    by=by,
                    name=check.name,
                    status=result.status,
                    exit_code=result.exit_code,
                    output_tail=result.output_tail,
                ),
            )
        return derive_snapshot(run.verification_events, checks)

    def record_manual(
        self,
        run_id: str,
        name: str,
        status: CheckStatus | str,
        reason: str | None = None,
        by: str = "human",
        checks: Sequence[CheckDefinition] | None = None,
        claimant: str | None = None,
    ) -> Run:
        """Record a manual pass/fail assessment for one check.

        Raises:
            HelmsmanValidationError: If the status is not pass/fail, or
                ``checks`` is given and does not declare ``name``.
        """
        status = CheckStatus(status)
        if status not in (CheckStatus.PASS, CheckStatus.FAIL):
            raise HelmsmanValidationError(
                f"Manual checks are recorded as pass or fail, not {status.value}"
            )
        if checks is not None and name not in {c.name for c in checks}:
            declared = ", ".join(c.name for c in checks) or "none"
            raise HelmsmanValidationError(
                f"Check '{name}' is not declared. Declared: {declared}"
            )
        return self.append_event(
            run_id,
            VerificationEvent(
                event_type=VerificationEventType.MANUAL_RECORDED,
                at=self._now(),
                by=by,
                name=name,
                status=status,
                reason=reason,
            ),
            claimant=claimant,
        )

    def snapshot(self, run_id: str, checks: Sequence[CheckDefinition]) -> VerificationSnapshot:
        return derive_snapshot(self._store.load(run_id).verification_events, checks)

    def conclude(
        self,
        run_id: str,
        checks: Sequence[CheckDefinition],
        by: str = "agent",
        skip_manual: bool = False,
    ) -> TransitionResult:
        """Move a run under test to verifying/passed or verifying/failed.

        Any failed or errored check fails the run. A pass requires every
        check to pass; pending manual checks may be waived with
        ``skip_manual``, pending command checks may not.

        Raises:
            HelmsmanValidationError: If the run is not under test, or the
                outcome is still pending.
        """
        run = self._store.load(run_id)
        if run.state not in CONCLUDABLE_STATES:
            raise HelmsmanValidationError(
                f"Cannot conclude verification of run '{run_id}' in state {run.state}. "
                f"Valid states: {', '.join(CONCLUDABLE_STATES)}"
            )

        snap = derive_snapshot(run.verification_events, checks)
        status = snap.status
        pending_cmd = [
            c.name for c in snap.checks if c.kind == "cmd" and c.status == CheckStatus.PENDING
        ]
        if status == CheckStatus.PENDING and skip_manual and not pending_cmd:
            logger.warning(
                "Run %s: waiving pending manual checks: %s",
                run_id,
                ", ".join(snap.pending_manual_checks),
            )
            status = CheckStatus.PASS

        if status == CheckStatus.FAIL:
            return self._lifecycle.transition(run_id, VERIFYING_FAILED, by, "checks failed")
        if status == CheckStatus.PASS:
            reason = "manual checks waived" if snap.manual_pending else "all checks passed"
            return self._lifecycle.transition(run_id, VERIFYING_PASSED, by, reason)

        pending = pending_cmd + snap.pending_manual_checks
        raise HelmsmanValidationError(
            f"Verification of run '{run_id}' is still pending: {', '.join(pending)}"
            + ("" if pending_cmd or skip_manual else " (use skip_manual to waive manual checks)")
        )
