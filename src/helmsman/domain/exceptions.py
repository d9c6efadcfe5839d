"""
Domain exceptions for run coordination.

Three families, distinguishable by type:

- HelmsmanValidationError: the request is wrong (bad transition, bad
  condition, dangling edge). Never retried automatically.
- ConcurrencyError: another process interleaved (stale read/write,
  claim held elsewhere). The only family where re-reading and retrying
  the whole operation is a correct response.
- HelmsmanNotFoundError: the addressed thing does not exist. Terminal.
"""

from collections.abc import Sequence


class HelmsmanError(Exception):
    """Base class for all helmsman errors."""


class ConfigurationError(HelmsmanError):
    """Raised when configuration files are invalid or missing."""


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class HelmsmanValidationError(HelmsmanError):
    """The request violates a rule; retrying it unchanged cannot succeed."""


class InvalidTransitionError(HelmsmanValidationError):
    """
    Raised when a run state transition is not in the lifecycle table.

    Carries the targets that are legal from the current state so the
    caller can pick one (or escalate to a forced transition).
    """

    def __init__(
        self,
        run_id: str,
        from_state: str,
        to_state: str,
        valid_targets: Sequence[str],
        reason: str | None = None,
    ):
        """
        Args:
            run_id: Run the transition was attempted on
            from_state: Current state of the run
            to_state: Requested state
            valid_targets: States reachable from from_state
            reason: Extra context (e.g. pre-execution gate)
        """
        self.run_id = run_id
        self.from_state = from_state
        self.to_state = to_state
        self.valid_targets = tuple(valid_targets)
        msg = (
            f"Cannot transition run '{run_id}' from '{from_state}' to '{to_state}'. "
            f"Valid: {', '.join(self.valid_targets) or 'none'}"
        )
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class InvalidStepTransitionError(HelmsmanValidationError):
    """Raised when a forced workflow edge does not exist from the current step."""

    def __init__(self, from_step: str, to_step: str, valid_targets: Sequence[str]):
        self.from_step = from_step
        self.to_step = to_step
        self.valid_targets = tuple(valid_targets)
        super().__init__(
            f"Invalid transition: '{to_step}' is not reachable from '{from_step}'. "
            f"Valid targets: {', '.join(self.valid_targets) or 'none'}"
        )


class NoValidTransitionError(HelmsmanValidationError):
    """Raised when no edge is satisfied from a non-terminal step."""

    def __init__(self, step_id: str, state: dict):
        self.step_id = step_id
        self.state = dict(state)
        super().__init__(
            f"No valid transition from step '{step_id}' with current state "
            f"(keys: {', '.join(sorted(self.state)) or 'none'})"
        )


class ConditionSyntaxError(HelmsmanValidationError):
    """Raised when an edge condition does not parse."""

    def __init__(self, expression: str, detail: str):
        self.expression = expression
        self.detail = detail
        super().__init__(f"Invalid condition '{expression}': {detail}")


class WorkflowValidationError(HelmsmanValidationError):
    """
    Raised when a workflow definition fails load-time validation.

    Attributes:
        errors: Human-readable messages, each prefixed with its field path
    """

    def __init__(self, errors: Sequence[str], source: str | None = None):
        self.errors = list(errors)
        self.source = source
        where = f" in {source}" if source else ""
        super().__init__(f"Invalid workflow definition{where}: {'; '.join(self.errors)}")


class MissingVersionTokenError(HelmsmanValidationError):
    """Raised when a conditional write is attempted without a version token."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(
            f"Run '{run_id}' carries no version token; "
            "load it with load_versioned() before save_if_fresh()"
        )


# =============================================================================
# CONCURRENCY ERRORS
# =============================================================================

_GRANULARITY_NOTE = (
    "Version tokens are file modification times; writes within one "
    "filesystem timestamp tick (sub-second on ext4/APFS, 1s on HFS+, 2s on FAT) "
    "cannot be told apart."
)


class ConcurrencyError(HelmsmanError):
    """Another process interleaved with this operation."""

    retriable: bool = False


class StaleReadError(ConcurrencyError):
    """Raised when a run file changed while it was being read."""

    retriable = True

    def __init__(self, run_id: str, expected_version: str, actual_version: str | None):
        self.run_id = run_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Run '{run_id}' changed during read: expected version {expected_version}, "
            f"got {actual_version or 'unknown'}. {_GRANULARITY_NOTE}"
        )


class StaleWriteError(ConcurrencyError):
    """Raised when a conditional write finds a different version on disk."""

    retriable = True

    def __init__(self, run_id: str, expected_version: str, actual_version: str | None):
        self.run_id = run_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Refusing write to run '{run_id}': version mismatch (expected "
            f"{expected_version}, found {actual_version or 'file deleted'}). "
            f"Another process may have modified it. {_GRANULARITY_NOTE}"
        )


class AlreadyClaimedError(ConcurrencyError):
    """Raised when claiming a run held by another agent with an unexpired lease."""

    def __init__(self, run_id: str, holder: str, expires: str | None = None):
        self.run_id = run_id
        self.holder = holder
        self.expires = expires
        msg = f"Run '{run_id}' already claimed by {holder}"
        if expires:
            msg += f" (expires {expires})"
        super().__init__(msg)


class ClaimNotHeldError(ConcurrencyError):
    """Raised when a mutation is attempted by an agent that does not hold the claim."""

    def __init__(self, run_id: str, agent_id: str, holder: str | None):
        self.run_id = run_id
        self.agent_id = agent_id
        self.holder = holder
        if holder:
            msg = f"Run '{run_id}' is claimed by {holder}, not {agent_id}"
        else:
            msg = f"Run '{run_id}' is not claimed; {agent_id} must claim it first"
        super().__init__(msg)


# =============================================================================
# NOT-FOUND ERRORS
# =============================================================================


class HelmsmanNotFoundError(HelmsmanError, KeyError):
    """The addressed entity does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class RunNotFoundError(HelmsmanNotFoundError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class StepNotFoundError(HelmsmanNotFoundError):
    def __init__(self, step_id: str, workflow_name: str | None = None):
        self.step_id = step_id
        self.workflow_name = workflow_name
        where = f" in workflow '{workflow_name}'" if workflow_name else ""
        super().__init__(f"Step not found{where}: {step_id}")


class WorkflowNotFoundError(HelmsmanNotFoundError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Workflow definition not found: {name}")


class WorkflowInstanceNotFoundError(HelmsmanNotFoundError):
    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")
