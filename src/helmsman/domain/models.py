"""
Domain models for run coordination.

Result records are immutable (frozen dataclasses). ``Run`` and
``WorkflowInstance`` are the two mutable aggregates: they are loaded,
changed by exactly one operation, and written back.
"""

from dataclasses import dataclass, field
from typing import Any

from helmsman.domain.plan_ref import parse_plan_ref
from helmsman.domain.verification import VerificationEvent

DEFAULT_PRIORITY = 99


# =============================================================================
# RUN
# =============================================================================


@dataclass(frozen=True)
class Transition:
    """One entry in a run's append-only transition log."""

    from_state: str
    to_state: str
    at: str  # ISO timestamp
    by: str  # agent or human identity
    reason: str | None = None
    forced: bool = False  # Bypassed lifecycle validation


@dataclass
class Run:
    """
    The persisted unit of trackable work.

    ``id`` is generated once and never derived from the plan file name;
    the human-facing ``plan_ref`` is computed from ``plan_path`` on every
    access.

    ``version`` and ``read_at`` are populated only by a versioned load and
    are never written to disk.
    """

    id: str
    state: str
    plan_path: str
    created: str
    updated: str
    intent: str = ""
    transitions: list[Transition] = field(default_factory=list)

    # Lease (all three set or all three None)
    claimed_by: str | None = None
    claimed_at: str | None = None
    claim_expires: str | None = None

    files_touched: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    priority: int = DEFAULT_PRIORITY
    verification_events: list[VerificationEvent] = field(default_factory=list)

    # Transient; optimistic-lock token and wall-clock read time
    version: str | None = field(default=None, compare=False)
    read_at: str | None = field(default=None, compare=False)

    @property
    def plan_ref(self) -> str:
        return parse_plan_ref(self.plan_path) or self.id

    @property
    def last_transition(self) -> Transition | None:
        return self.transitions[-1] if self.transitions else None

    def clear_claim(self) -> None:
        self.claimed_by = None
        self.claimed_at = None
        self.claim_expires = None


# =============================================================================
# WORKFLOW INSTANCE
# =============================================================================


@dataclass
class WorkflowInstance:
    """
    One execution of a workflow definition.

    ``state`` only ever gains or overwrites keys. ``history`` records every
    visited step, repeats included.
    """

    id: str
    workflow_name: str
    current_step: str
    started_at: str
    updated_at: str
    state: dict[str, Any] = field(default_factory=dict)
    history: list[str] = field(default_factory=list)

    def merge_outputs(self, outputs: dict[str, Any] | None) -> None:
        if outputs:
            self.state.update(outputs)


# =============================================================================
# OPERATION RESULTS
# =============================================================================


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a successful lifecycle transition."""

    run_id: str
    from_state: str
    to_state: str
    at: str
    forced: bool = False


@dataclass(frozen=True)
class ClaimOutcome:
    """
    Outcome of a verified claim against an external claim primitive.

    ``error`` is one of ``already_claimed``, ``lost_race``, ``not_found``
    when ``success`` is False.
    """

    success: bool
    task_id: str
    error: str | None = None
    actual_owner: str | None = None


@dataclass(frozen=True)
class ReadyRun:
    """A claimable run plus the active runs whose touched files overlap it."""

    run: Run
    conflicts: tuple[str, ...] = ()


@dataclass(frozen=True)
class NextStep:
    """One outgoing edge of the current step, evaluated against instance state."""

    target: str
    condition: str | None
    label: str | None
    condition_met: bool
    is_default: bool


@dataclass(frozen=True)
class AdvanceResult:
    """Outcome of advancing a workflow instance by one step."""

    instance_id: str
    from_step: str
    to_step: str
    completed: bool  # Instance sits at a terminal step with no edge taken
    state: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of driving a workflow instance in a loop."""

    instance_id: str
    final_step: str
    steps_executed: int
    completed: bool
    aborted: bool = False  # Output collector declined to continue
    hit_limit: bool = False  # max_steps reached before completion
    history: tuple[str, ...] = ()


@dataclass(frozen=True)
class SyncStats:
    """Counts reported by a bulk export or import."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    exported: int = 0
    errors: tuple[str, ...] = ()
