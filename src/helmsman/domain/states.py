"""
Hierarchical run states and the lifecycle transition table.

States come in two tiers. Plan-tier states are flat (``proposed``,
``approved``, ``ready``). Run-tier states are either flat (``complete``,
``abandoned``) or ``parent/child`` pairs such as ``active/executing``.
A bare parent token is only a query pattern, never a state a run can
hold.
"""

from dataclasses import dataclass

from helmsman.domain.exceptions import InvalidTransitionError
from helmsman.domain.models import Run, Transition, TransitionResult

SEPARATOR = "/"

# Plan tier
PROPOSED = "proposed"
APPROVED = "approved"
READY = "ready"

# Run tier
ACTIVE_EXECUTING = "active/executing"
ACTIVE_PAUSED = "active/paused"
ACTIVE_CHECKPOINT = "active/checkpoint"
VERIFYING_TESTING = "verifying/testing"
VERIFYING_PASSED = "verifying/passed"
VERIFYING_FAILED = "verifying/failed"
VERIFYING_FIXING = "verifying/fixing"
VERIFYING_RETESTING = "verifying/retesting"
COMPLETE = "complete"
ABANDONED = "abandoned"

PLAN_STATES: frozenset[str] = frozenset({PROPOSED, APPROVED, READY})
PARENT_STATES: frozenset[str] = frozenset({"active", "verifying"})
TERMINAL_SUCCESS = COMPLETE

# Exact-key adjacency. Parent tokens never appear as keys.
TRANSITIONS: dict[str, tuple[str, ...]] = {
    PROPOSED: (APPROVED, ABANDONED),
    APPROVED: (READY, ABANDONED),
    READY: (ACTIVE_EXECUTING, ABANDONED),
    ACTIVE_EXECUTING: (ACTIVE_PAUSED, ACTIVE_CHECKPOINT, VERIFYING_TESTING, ABANDONED),
    ACTIVE_PAUSED: (ACTIVE_EXECUTING, ABANDONED),
    ACTIVE_CHECKPOINT: (ACTIVE_EXECUTING,),
    VERIFYING_TESTING: (VERIFYING_PASSED, VERIFYING_FAILED, ACTIVE_EXECUTING),
    VERIFYING_PASSED: (COMPLETE, ACTIVE_EXECUTING),
    VERIFYING_FAILED: (VERIFYING_FIXING, ACTIVE_EXECUTING),
    VERIFYING_FIXING: (VERIFYING_RETESTING, ACTIVE_EXECUTING),
    VERIFYING_RETESTING: (VERIFYING_PASSED, VERIFYING_FAILED, ACTIVE_EXECUTING),
    COMPLETE: (ACTIVE_EXECUTING,),
    ABANDONED: (),
}

ALL_STATES: tuple[str, ...] = tuple(TRANSITIONS)

# Flat states written by older versions of the store.
LEGACY_STATES: dict[str, str] = {
    "active": ACTIVE_EXECUTING,
    "paused": ACTIVE_PAUSED,
    "checkpoint": ACTIVE_CHECKPOINT,
    "verifying": VERIFYING_TESTING,
}


@dataclass(frozen=True)
class ParsedState:
    """A state split into its parent token and optional child token."""

    parent: str
    child: str | None = None


def parse_state(state: str) -> ParsedState:
    if SEPARATOR in state:
        parent, child = state.split(SEPARATOR, 1)
        return ParsedState(parent=parent, child=child)
    return ParsedState(parent=state)


def is_valid_state(state: str) -> bool:
    """True if ``state`` is a concrete state a run may hold."""
    return state in TRANSITIONS


def is_valid_state_query(query: str) -> bool:
    """True for concrete states, bare parents and ``parent/*`` wildcards."""
    if query in TRANSITIONS or query in PARENT_STATES:
        return True
    if query.endswith(SEPARATOR + "*"):
        return query[:-2] in PARENT_STATES
    return False


def match_state(state: str, query: str) -> bool:
    """
    Match a run state against a query pattern.

    ``"active"`` and ``"active/*"`` match every ``active/...`` state; any
    other query must match exactly.

    Example:
        >>> match_state("active/paused", "active")
        True
        >>> match_state("active/paused", "active/executing")
        False
    """
    if query.endswith(SEPARATOR + "*"):
        query = query[:-2]
    if SEPARATOR not in query and query in PARENT_STATES:
        return parse_state(state).parent == query
    return state == query


def is_run_state(state: str) -> bool:
    """True for run-tier states (anything past the plan tier)."""
    return state not in PLAN_STATES


def normalize_state(state: str) -> str:
    """Map a legacy flat state to its hierarchical equivalent."""
    return LEGACY_STATES.get(state, state)


def can_transition(from_state: str, to_state: str) -> bool:
    """
    Check whether ``from_state -> to_state`` is a legal lifecycle move.

    From any plan-tier state the only run-tier target accepted is
    ``active/executing``, regardless of what the table says.
    """
    if from_state in PLAN_STATES and is_run_state(to_state):
        if to_state != ACTIVE_EXECUTING and to_state != ABANDONED:
            return False
    return to_state in TRANSITIONS.get(from_state, ())


def valid_targets(from_state: str) -> list[str]:
    """States reachable from ``from_state`` under :func:`can_transition`."""
    return [t for t in TRANSITIONS.get(from_state, ()) if can_transition(from_state, t)]


def pre_execution_gate_reason(from_state: str, to_state: str) -> str | None:
    """Explain a rejection caused by the plan-tier gate, if that is the cause."""
    if (
        from_state in PLAN_STATES
        and is_run_state(to_state)
        and to_state not in (ACTIVE_EXECUTING, ABANDONED)
    ):
        return "execution must begin by entering active/executing"
    return None


def _record(
    run: Run, to_state: str, by: str, at: str, reason: str | None, forced: bool
) -> TransitionResult:
    from_state = run.state
    run.transitions.append(
        Transition(
            from_state=from_state,
            to_state=to_state,
            at=at,
            by=by,
            reason=reason,
            forced=forced,
        )
    )
    run.state = to_state
    run.updated = at
    return TransitionResult(
        run_id=run.id, from_state=from_state, to_state=to_state, at=at, forced=forced
    )


def apply_transition(
    run: Run, to_state: str, by: str, at: str, reason: str | None = None
) -> TransitionResult:
    """
    Validate and apply a lifecycle transition in memory.

    Appends a ``Transition`` record, then updates ``state`` and ``updated``.
    Persisting the run is the caller's job.

    Raises:
        InvalidTransitionError: If the move is not allowed; carries the
            currently valid targets. The run is left untouched.
    """
    if not can_transition(run.state, to_state):
        raise InvalidTransitionError(
            run.id,
            run.state,
            to_state,
            valid_targets(run.state),
            reason=pre_execution_gate_reason(run.state, to_state),
        )
    return _record(run, to_state, by, at, reason, forced=False)


def force_transition(
    run: Run, to_state: str, by: str, at: str, reason: str | None = None
) -> TransitionResult:
    """
    Move a run to any concrete state, bypassing the lifecycle table.

    The transition log still records the move, flagged as forced.

    Raises:
        InvalidTransitionError: If ``to_state`` is not a concrete state.
    """
    if not is_valid_state(to_state):
        raise InvalidTransitionError(
            run.id, run.state, to_state, ALL_STATES, reason="unknown state"
        )
    return _record(run, to_state, by, at, reason, forced=True)
