"""Audit event emission service."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from helmsman.domain.audit import AuditEvent, AuditEventType

if TYPE_CHECKING:
    from helmsman.domain.interfaces import AuditLogInterface
    from helmsman.domain.models import Run, SyncStats, TransitionResult, WorkflowInstance


class AuditEmitter:
    """Emits audit events to a log.

    Provides one method per audited operation, handling ID generation and
    timestamps. With no log attached every call is a no-op, so services
    can always emit without checking.
    """

    def __init__(self, audit_log: AuditLogInterface | None = None) -> None:
        self._log = audit_log

    def _emit(
        self,
        event_type: AuditEventType,
        *,
        agent: str | None = None,
        run_id: str | None = None,
        instance_id: str | None = None,
        **details: Any,
    ) -> str | None:
        if self._log is None:
            return None
        return self._log.append(
            AuditEvent(
                event_id=str(uuid.uuid4()),
                event_type=event_type,
                at=self._now(),
                agent=agent,
                run_id=run_id,
                instance_id=instance_id,
                details={k: v for k, v in details.items() if v is not None},
            )
        )

    def _now(self) -> str:
        return datetime.now(UTC).isoformat()

    # Runs

    def run_created(self, run: Run, by: str) -> None:
        self._emit(
            AuditEventType.RUN_CREATED,
            agent=by,
            run_id=run.id,
            plan=run.plan_path,
            state=run.state,
        )

    def state_change(self, result: TransitionResult, by: str, reason: str | None = None) -> None:
        """Emit state_change, or forced_state_change when validation was bypassed."""
        event_type = (
            AuditEventType.FORCED_STATE_CHANGE if result.forced else AuditEventType.STATE_CHANGE
        )
        self._emit(
            event_type,
            agent=by,
            run_id=result.run_id,
            **{"from": result.from_state, "to": result.to_state, "reason": reason},
        )

    def run_deleted(self, run_id: str, by: str, reason: str | None = None) -> None:
        self._emit(AuditEventType.RUN_DELETED, agent=by, run_id=run_id, reason=reason)

    # Claims

    def run_claimed(self, run: Run) -> None:
        self._emit(
            AuditEventType.RUN_CLAIMED,
            agent=run.claimed_by,
            run_id=run.id,
            expires=run.claim_expires,
        )

    def run_released(self, run_id: str, by: str | None, previous_holder: str | None) -> None:
        self._emit(
            AuditEventType.RUN_RELEASED,
            agent=by,
            run_id=run_id,
            previous_holder=previous_holder,
        )

    def stale_claim_gc(self, run_id: str, previous_holder: str | None, expired_at: str | None) -> None:
        self._emit(
            AuditEventType.STALE_CLAIM_GC,
            run_id=run_id,
            previous_holder=previous_holder,
            expired_at=expired_at,
        )

    # Verification

    def verification_recorded(
        self,
        run_id: str,
        by: str,
        kind: str,
        name: str | None = None,
        status: str | None = None,
    ) -> None:
        self._emit(
            AuditEventType.VERIFICATION_RECORDED,
            agent=by,
            run_id=run_id,
            kind=kind,
            check=name,
            status=status,
        )

    # Workflows

    def workflow_started(self, instance: WorkflowInstance) -> None:
        self._emit(
            AuditEventType.WORKFLOW_STARTED,
            instance_id=instance.id,
            workflow=instance.workflow_name,
            step=instance.current_step,
        )

    def step_completed(
        self, instance_id: str, from_step: str, to_step: str, forced: bool = False
    ) -> None:
        self._emit(
            AuditEventType.STEP_COMPLETED,
            instance_id=instance_id,
            **{"from": from_step, "to": to_step, "forced": forced or None},
        )

    def workflow_completed(self, instance_id: str, final_step: str) -> None:
        self._emit(AuditEventType.WORKFLOW_COMPLETED, instance_id=instance_id, step=final_step)

    # Bulk sync

    def runs_exported(self, path: str, stats: SyncStats) -> None:
        self._emit(AuditEventType.RUNS_EXPORTED, path=path, count=stats.exported)

    def runs_imported(self, path: str, stats: SyncStats) -> None:
        self._emit(
            AuditEventType.RUNS_IMPORTED,
            path=path,
            created=stats.created,
            updated=stats.updated,
            unchanged=stats.unchanged,
            skipped=stats.skipped,
        )
