"""
Domain layer for run coordination.

Contains the lifecycle rules, condition language and projections, with no
I/O and no external dependencies.
"""

from helmsman.domain.audit import AuditEvent, AuditEventType
from helmsman.domain.conditions import evaluate_condition, parse_condition
from helmsman.domain.exceptions import (
    AlreadyClaimedError,
    ClaimNotHeldError,
    ConcurrencyError,
    ConditionSyntaxError,
    ConfigurationError,
    HelmsmanError,
    HelmsmanNotFoundError,
    HelmsmanValidationError,
    InvalidStepTransitionError,
    InvalidTransitionError,
    MissingVersionTokenError,
    NoValidTransitionError,
    RunNotFoundError,
    StaleReadError,
    StaleWriteError,
    StepNotFoundError,
    WorkflowInstanceNotFoundError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from helmsman.domain.interfaces import (
    AuditLogInterface,
    CheckRunnerInterface,
    ExternalClaimPrimitive,
    RunStoreInterface,
    WorkflowDefinitionStoreInterface,
    WorkflowInstanceStoreInterface,
)
from helmsman.domain.models import (
    AdvanceResult,
    ClaimOutcome,
    ExecuteResult,
    NextStep,
    ReadyRun,
    Run,
    SyncStats,
    Transition,
    TransitionResult,
    WorkflowInstance,
)
from helmsman.domain.states import can_transition, match_state, valid_targets
from helmsman.domain.verification import (
    CheckDefinition,
    CheckStatus,
    VerificationEvent,
    VerificationEventType,
    VerificationSnapshot,
    aggregate_status,
    derive_snapshot,
)
from helmsman.domain.workflow import (
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowStepDefinition,
)

__all__ = [
    # Models
    "Run",
    "Transition",
    "WorkflowInstance",
    "TransitionResult",
    "ClaimOutcome",
    "ReadyRun",
    "NextStep",
    "AdvanceResult",
    "ExecuteResult",
    "SyncStats",
    # Workflow definitions
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowStepDefinition",
    # Verification
    "CheckDefinition",
    "CheckStatus",
    "VerificationEvent",
    "VerificationEventType",
    "VerificationSnapshot",
    "derive_snapshot",
    "aggregate_status",
    # Rules
    "can_transition",
    "match_state",
    "valid_targets",
    "parse_condition",
    "evaluate_condition",
    # Audit
    "AuditEvent",
    "AuditEventType",
    # Interfaces
    "RunStoreInterface",
    "WorkflowInstanceStoreInterface",
    "WorkflowDefinitionStoreInterface",
    "AuditLogInterface",
    "CheckRunnerInterface",
    "ExternalClaimPrimitive",
    # Exceptions
    "HelmsmanError",
    "ConfigurationError",
    "HelmsmanValidationError",
    "InvalidTransitionError",
    "InvalidStepTransitionError",
    "NoValidTransitionError",
    "ConditionSyntaxError",
    "WorkflowValidationError",
    "MissingVersionTokenError",
    "ConcurrencyError",
    "StaleReadError",
    "StaleWriteError",
    "AlreadyClaimedError",
    "ClaimNotHeldError",
    "HelmsmanNotFoundError",
    "RunNotFoundError",
    "StepNotFoundError",
    "WorkflowNotFoundError",
    "WorkflowInstanceNotFoundError",
]
