"""
Workflow definitions: step graphs with condition-guarded edges.

Definitions are validated once, when loaded. A definition that passes
``build_definition`` can never produce a dangling-edge or bad-condition
error during traversal.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from helmsman.domain.conditions import evaluate_condition, validate_condition
from helmsman.domain.exceptions import (
    NoValidTransitionError,
    StepNotFoundError,
    WorkflowValidationError,
)
from helmsman.domain.models import NextStep

# =============================================================================
# DEFINITION MODEL
# =============================================================================


@dataclass(frozen=True)
class WorkflowEdge:
    """Outgoing edge; ``condition=None`` marks the default edge."""

    target: str
    condition: str | None = None
    label: str | None = None

    @property
    def is_default(self) -> bool:
        return self.condition is None


@dataclass(frozen=True)
class WorkflowStepDefinition:
    id: str
    name: str
    description: str | None = None
    outputs: tuple[str, ...] = ()
    next: tuple[WorkflowEdge, ...] = ()


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    A named, versioned step graph.

    Steps keep their declaration order; edge order within a step is the
    evaluation order.
    """

    name: str
    version: str
    description: str
    initial_step: str
    terminal_steps: tuple[str, ...]
    steps: tuple[WorkflowStepDefinition, ...]

    @property
    def step_ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self.steps)

    def get_step(self, step_id: str) -> WorkflowStepDefinition:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise StepNotFoundError(step_id, self.name)

    def is_terminal(self, step_id: str) -> bool:
        return step_id in self.terminal_steps


# =============================================================================
# LOAD-TIME VALIDATION
# =============================================================================


@dataclass(frozen=True)
class ValidationIssue:
    """One problem found in a raw definition, addressed by field path."""

    kind: str  # missing_field | invalid_edge | invalid_step | invalid_condition | ...
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass(frozen=True)
class ValidationReport:
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    @property
    def valid(self) -> bool:
        return not self.errors


_REQUIRED_STRINGS = ("name", "version", "description", "initial_step")


def _validate_edges(
    step_id: str, edges: Any, step_ids: set[str], errors: list[ValidationIssue]
) -> None:
    if edges is None:
        return
    if not isinstance(edges, list):
        errors.append(
            ValidationIssue("invalid_field", f"steps.{step_id}.next", "must be an array")
        )
        return
    defaults = 0
    for i, edge in enumerate(edges):
        path = f"steps.{step_id}.next[{i}]"
        if not isinstance(edge, Mapping):
            errors.append(ValidationIssue("invalid_field", path, "edge must be a table"))
            continue
        target = edge.get("target")
        if not target or not isinstance(target, str):
            errors.append(
                ValidationIssue("missing_field", f"{path}.target", "edge missing 'target'")
            )
        elif target not in step_ids:
            errors.append(
                ValidationIssue(
                    "invalid_edge", f"{path}.target", f"edge target '{target}' does not exist"
                )
            )
        condition = edge.get("condition")
        if condition is None:
            defaults += 1
        elif not isinstance(condition, str):
            errors.append(
                ValidationIssue("invalid_condition", f"{path}.condition", "must be a string")
            )
        else:
            problem = validate_condition(condition)
            if problem:
                errors.append(
                    ValidationIssue(
                        "invalid_condition",
                        f"{path}.condition",
                        f"invalid condition '{condition}': {problem}",
                    )
                )
    if defaults > 1:
        errors.append(
            ValidationIssue(
                "multiple_defaults",
                f"steps.{step_id}.next",
                f"step '{step_id}' has {defaults} default edges (at most one allowed)",
            )
        )


def _reachable(raw_steps: Mapping[str, Any], start: str) -> set[str]:
    seen: set[str] = set()
    frontier = [start]
    while frontier:
        step_id = frontier.pop()
        if step_id in seen or step_id not in raw_steps:
            continue
        seen.add(step_id)
        step = raw_steps[step_id]
        edges = step.get("next") if isinstance(step, Mapping) else None
        for edge in edges if isinstance(edges, list) else ():
            if isinstance(edge, Mapping) and isinstance(edge.get("target"), str):
                frontier.append(edge["target"])
    return seen


def validate_definition(raw: Mapping[str, Any]) -> ValidationReport:
    """
    Check a raw (parsed-but-untyped) definition for graph integrity.

    Errors: missing required fields, edges to unknown steps, unknown
    initial/terminal steps, conditions that do not parse, and more than
    one default edge on a step.

    Warnings: steps unreachable from the initial step, and non-terminal
    steps with no outgoing edges.
    """
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    for key in _REQUIRED_STRINGS:
        value = raw.get(key)
        if not value or not isinstance(value, str):
            errors.append(
                ValidationIssue("missing_field", key, f"missing or invalid '{key}' field")
            )

    terminal_steps = raw.get("terminal_steps")
    if not isinstance(terminal_steps, list) or not terminal_steps:
        errors.append(
            ValidationIssue(
                "missing_field", "terminal_steps", "missing or empty 'terminal_steps' array"
            )
        )
        terminal_steps = []

    raw_steps = raw.get("steps")
    if not isinstance(raw_steps, Mapping) or not raw_steps:
        errors.append(ValidationIssue("missing_field", "steps", "missing 'steps' section"))
        return ValidationReport(errors=tuple(errors))

    step_ids = set(raw_steps)
    for step_id, step in raw_steps.items():
        if not isinstance(step, Mapping):
            errors.append(ValidationIssue("invalid_field", f"steps.{step_id}", "must be a table"))
            continue
        name = step.get("name")
        if not name or not isinstance(name, str):
            errors.append(
                ValidationIssue(
                    "missing_field",
                    f"steps.{step_id}.name",
                    f"step '{step_id}' missing required 'name' field",
                )
            )
        outputs = step.get("outputs")
        if outputs is not None and not isinstance(outputs, list):
            errors.append(
                ValidationIssue(
                    "invalid_field",
                    f"steps.{step_id}.outputs",
                    f"step '{step_id}' has invalid 'outputs' (must be array)",
                )
            )
        _validate_edges(step_id, step.get("next"), step_ids, errors)

    initial = raw.get("initial_step")
    if isinstance(initial, str) and initial and initial not in step_ids:
        errors.append(
            ValidationIssue("invalid_step", "initial_step", f"initial step '{initial}' does not exist")
        )
    for i, terminal in enumerate(terminal_steps):
        if not isinstance(terminal, str) or terminal not in step_ids:
            errors.append(
                ValidationIssue(
                    "invalid_step",
                    f"terminal_steps[{i}]",
                    f"terminal step '{terminal}' does not exist",
                )
            )

    if isinstance(initial, str) and initial in step_ids:
        reachable = _reachable(raw_steps, initial)
        for step_id in raw_steps:
            if step_id not in reachable:
                warnings.append(
                    ValidationIssue(
                        "unreachable_step",
                        f"steps.{step_id}",
                        f"step '{step_id}' is not reachable from '{initial}'",
                    )
                )
    for step_id, step in raw_steps.items():
        if not isinstance(step, Mapping) or step_id in terminal_steps:
            continue
        if not step.get("next"):
            warnings.append(
                ValidationIssue(
                    "dead_end",
                    f"steps.{step_id}.next",
                    f"non-terminal step '{step_id}' has no outgoing edges",
                )
            )

    return ValidationReport(errors=tuple(errors), warnings=tuple(warnings))


def _to_definition(raw: Mapping[str, Any]) -> WorkflowDefinition:
    steps = []
    for step_id, raw_step in raw["steps"].items():
        edges = tuple(
            WorkflowEdge(
                target=str(edge["target"]),
                condition=None if edge.get("condition") is None else str(edge["condition"]),
                label=str(edge["label"]) if edge.get("label") else None,
            )
            for edge in raw_step.get("next") or ()
        )
        steps.append(
            WorkflowStepDefinition(
                id=step_id,
                name=str(raw_step["name"]),
                description=str(raw_step["description"]) if raw_step.get("description") else None,
                outputs=tuple(str(o) for o in raw_step.get("outputs") or ()),
                next=edges,
            )
        )
    return WorkflowDefinition(
        name=str(raw["name"]),
        version=str(raw["version"]),
        description=str(raw["description"]),
        initial_step=str(raw["initial_step"]),
        terminal_steps=tuple(str(t) for t in raw["terminal_steps"]),
        steps=tuple(steps),
    )


def build_definition(
    raw: Mapping[str, Any], source: str | None = None
) -> tuple[WorkflowDefinition, ValidationReport]:
    """
    Validate a raw definition and convert it to a ``WorkflowDefinition``.

    Returns:
        The definition and the validation report (for its warnings)

    Raises:
        WorkflowValidationError: If the report has any errors.
    """
    report = validate_definition(raw)
    if not report.valid:
        raise WorkflowValidationError([str(e) for e in report.errors], source=source)
    return _to_definition(raw), report


# =============================================================================
# ROUTING
# =============================================================================


def get_next_steps(
    definition: WorkflowDefinition, current_step: str, state: Mapping[str, Any]
) -> list[NextStep]:
    """
    Evaluate every outgoing edge of ``current_step``.

    Ordered for display and selection: satisfied edges first, and within
    each group conditional edges before the default edge. Declaration order
    is otherwise preserved.
    """
    step = definition.get_step(current_step)
    results = [
        NextStep(
            target=edge.target,
            condition=edge.condition,
            label=edge.label,
            condition_met=evaluate_condition(edge.condition, state),
            is_default=edge.is_default,
        )
        for edge in step.next
    ]
    return sorted(results, key=lambda n: (not n.condition_met, n.is_default))


def select_next_step(
    definition: WorkflowDefinition, current_step: str, state: Mapping[str, Any]
) -> str | None:
    """
    Pick the edge to take from ``current_step``.

    The first satisfied conditional edge in declaration order wins; the
    default edge is taken only when none is satisfied.

    Returns:
        Target step id, None if this is a terminal step with nothing to take

    Raises:
        NoValidTransitionError: Non-terminal step with no satisfied edge.
    """
    for candidate in get_next_steps(definition, current_step, state):
        if candidate.condition_met:
            return candidate.target
    if definition.is_terminal(current_step):
        return None
    raise NoValidTransitionError(current_step, dict(state))
