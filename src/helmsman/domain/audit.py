"""Audit trail records for state-changing operations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AuditEventType(str, Enum):
    """Types of audited operations."""

    RUN_CREATED = "run_created"
    STATE_CHANGE = "state_change"
    FORCED_STATE_CHANGE = "forced_state_change"
    RUN_CLAIMED = "run_claimed"
    RUN_RELEASED = "run_released"
    STALE_CLAIM_GC = "stale_claim_gc"
    VERIFICATION_RECORDED = "verification_recorded"
    WORKFLOW_STARTED = "workflow_started"
    STEP_COMPLETED = "step_completed"
    WORKFLOW_COMPLETED = "workflow_completed"
    RUNS_EXPORTED = "runs_exported"
    RUNS_IMPORTED = "runs_imported"
    RUN_DELETED = "run_deleted"


@dataclass(frozen=True)
class AuditEvent:
    """Single audited operation.

    ``run_id`` and ``instance_id`` are both optional: run operations set
    the former, workflow operations the latter, bulk operations neither.
    """

    event_id: str
    event_type: AuditEventType
    at: str  # ISO 8601
    agent: str | None = None
    run_id: str | None = None
    instance_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
