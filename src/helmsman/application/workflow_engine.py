"""Workflow instance engine: starts instances and walks them through their step graph."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from helmsman.application.audit_emitter import AuditEmitter
from helmsman.domain.exceptions import InvalidStepTransitionError
from helmsman.domain.models import AdvanceResult, ExecuteResult, NextStep, WorkflowInstance
from helmsman.domain.workflow import get_next_steps, select_next_step

if TYPE_CHECKING:
    from helmsman.domain.interfaces import (
        WorkflowDefinitionStoreInterface,
        WorkflowInstanceStoreInterface,
    )
    from helmsman.domain.workflow import WorkflowDefinition

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 50

# Called with (instance, step id) before each advance; returns the step's
# outputs, or None to stop execution.
OutputCollector = Callable[[WorkflowInstance, str], "dict[str, Any] | None"]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class WorkflowEngine:
    """Starts workflow instances and advances them along satisfied edges.

    Instances are persisted after every change. Definitions are read
    through the definition store, which has already validated them, so
    traversal never meets a dangling edge or a malformed condition.
    """

    def __init__(
        self,
        definitions: WorkflowDefinitionStoreInterface,
        instances: WorkflowInstanceStoreInterface,
        emitter: AuditEmitter | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._definitions = definitions
        self._instances = instances
        self._emitter = emitter or AuditEmitter()
        self._clock = clock

    def _definition_for(self, instance: WorkflowInstance) -> WorkflowDefinition:
        return self._definitions.load(instance.workflow_name)

    def generate_instance_id(self, workflow_name: str) -> str:
        """``<workflow-name>-<unix-seconds>-<4 hex>``"""
        return f"{workflow_name}-{int(self._clock().timestamp())}-{secrets.token_hex(2)}"

    def start(
        self, workflow_name: str, initial_state: dict[str, Any] | None = None
    ) -> WorkflowInstance:
        """Create and persist an instance at the definition's initial step.

        Raises:
            WorkflowNotFoundError: If no definition has that name.
        """
        definition = self._definitions.load(workflow_name)
        now = self._clock().isoformat()
        instance = WorkflowInstance(
            id=self.generate_instance_id(definition.name),
            workflow_name=definition.name,
            current_step=definition.initial_step,
            started_at=now,
            updated_at=now,
            state=dict(initial_state or {}),
            history=[definition.initial_step],
        )
        self._instances.save(instance)
        self._emitter.workflow_started(instance)
        logger.info("Started %s at step %s", instance.id, instance.current_step)
        return instance

    def get(self, instance_id: str) -> WorkflowInstance:
        return self._instances.load(instance_id)

    def next_steps(self, instance_id: str) -> list[NextStep]:
        instance = self._instances.load(instance_id)
        return get_next_steps(
            self._definition_for(instance), instance.current_step, instance.state
        )

    def is_complete(self, instance: WorkflowInstance) -> bool:
        """Terminal step and no satisfied edge left to take."""
        definition = self._definition_for(instance)
        if not definition.is_terminal(instance.current_step):
            return False
        return select_next_step(definition, instance.current_step, instance.state) is None

    def advance(
        self,
        instance_id: str,
        outputs: dict[str, Any] | None = None,
        to: str | None = None,
    ) -> AdvanceResult:
        """Complete the current step and move along one edge.

        Outputs are merged into the instance state before any condition is
        evaluated. With ``to`` the named edge is taken without evaluating
        its condition, but it must still be an edge of the current step.

        Returns:
            AdvanceResult; ``completed`` is True when the instance sits at
            a terminal step and no edge was taken (history unchanged)

        Raises:
            InvalidStepTransitionError: ``to`` is not a target of the current step.
            NoValidTransitionError: Non-terminal step with no satisfied edge.
        """
        instance = self._instances.load(instance_id)
        definition = self._definition_for(instance)
        from_step = instance.current_step
        instance.merge_outputs(outputs)

        if to is not None:
            targets = [edge.target for edge in definition.get_step(from_step).next]
            if to not in targets:
                raise InvalidStepTransitionError(from_step, to, targets)
            target: str | None = to
        else:
            target = select_next_step(definition, from_step, instance.state)

        instance.updated_at = self._clock().isoformat()
        if target is None:
            self._instances.save(instance)
            self._emitter.workflow_completed(instance.id, from_step)
            logger.info("Workflow %s completed at %s", instance.id, from_step)
            return AdvanceResult(
                instance_id=instance.id,
                from_step=from_step,
                to_step=from_step,
                completed=True,
                state=dict(instance.state),
            )

        instance.current_step = target
        instance.history.append(target)
        self._instances.save(instance)
        self._emitter.step_completed(instance.id, from_step, target, forced=to is not None)
        logger.info("Workflow %s: %s -> %s", instance.id, from_step, target)
        return AdvanceResult(
            instance_id=instance.id,
            from_step=from_step,
            to_step=target,
            completed=False,
            state=dict(instance.state),
        )

    def execute(
        self,
        instance_id: str,
        collect_outputs: OutputCollector,
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> ExecuteResult:
        """Drive an instance until it completes, the collector stops, or ``max_steps``.

        For each step the collector is asked for that step's outputs and
        the instance is advanced with them. Cyclic graphs are bounded by
        ``max_steps``.
        """
        steps_executed = 0
        completed = aborted = False
        instance = self._instances.load(instance_id)

        while steps_executed < max_steps:
            outputs = collect_outputs(instance, instance.current_step)
            if outputs is None:
                aborted = True
                logger.info(
                    "Workflow %s stopped by collector at %s", instance_id, instance.current_step
                )
                break
            result = self.advance(instance_id, outputs)
            steps_executed += 1
            instance = self._instances.load(instance_id)
            if result.completed:
                completed = True
                break

        if not completed and not aborted and self.is_complete(instance):
            completed = True
        hit_limit = not completed and not aborted
        if hit_limit:
            logger.warning(
                "Workflow %s hit max_steps=%d at %s", instance_id, max_steps, instance.current_step
            )
        return ExecuteResult(
            instance_id=instance_id,
            final_step=instance.current_step,
            steps_executed=steps_executed,
            completed=completed,
            aborted=aborted,
            hit_limit=hit_limit,
            history=tuple(instance.history),
        )
