"""
helmsman: run coordination for cooperating agents.

Tracks units of work ("runs", one per plan document) through a
hierarchical lifecycle in a shared on-disk store, with time-bounded
claims, event-sourced verification and condition-driven workflows.

Example:
    from helmsman import ClaimManager, FilesystemRunStore, RunLifecycle

    store = FilesystemRunStore(".helmsman")
    lifecycle = RunLifecycle(store)
    claims = ClaimManager(store)

    run = lifecycle.create_run("plans/02-01-PLAN.md", intent="Add login", initial_state="ready")
    claims.claim(run.id, "agent-1")
    lifecycle.transition(run.id, "active/executing", by="agent-1", claimant="agent-1")
"""

# Application layer (orchestration)
from helmsman.application import (
    AuditEmitter,
    ClaimManager,
    RunLifecycle,
    VerificationRecorder,
    WorkflowEngine,
    retry_on_conflict,
)

# Domain exceptions
from helmsman.domain.exceptions import (
    AlreadyClaimedError,
    ClaimNotHeldError,
    ConcurrencyError,
    HelmsmanError,
    HelmsmanNotFoundError,
    HelmsmanValidationError,
    InvalidTransitionError,
    StaleReadError,
    StaleWriteError,
)

# Domain models
from helmsman.domain.models import Run, Transition, WorkflowInstance
from helmsman.domain.verification import CheckDefinition, CheckStatus, VerificationEvent

# Infrastructure (explicit import encouraged for dependency injection)
from helmsman.infrastructure import (
    FilesystemAuditLog,
    FilesystemRunStore,
    FilesystemWorkflowInstanceStore,
    InMemoryAuditLog,
    InMemoryRunStore,
    InMemoryWorkflowInstanceStore,
    JsonlRunSync,
    SubprocessCheckRunner,
    TomlWorkflowDefinitionStore,
)

__version__ = "0.4.0"

__all__ = [
    # Version
    "__version__",
    # Domain models
    "Run",
    "Transition",
    "WorkflowInstance",
    "CheckDefinition",
    "CheckStatus",
    "VerificationEvent",
    # Domain exceptions
    "HelmsmanError",
    "HelmsmanValidationError",
    "HelmsmanNotFoundError",
    "InvalidTransitionError",
    "ConcurrencyError",
    "StaleReadError",
    "StaleWriteError",
    "AlreadyClaimedError",
    "ClaimNotHeldError",
    # Application layer
    "AuditEmitter",
    "ClaimManager",
    "RunLifecycle",
    "VerificationRecorder",
    "WorkflowEngine",
    "retry_on_conflict",
    # Infrastructure - Persistence
    "InMemoryRunStore",
    "FilesystemRunStore",
    "InMemoryWorkflowInstanceStore",
    "FilesystemWorkflowInstanceStore",
    "InMemoryAuditLog",
    "FilesystemAuditLog",
    "JsonlRunSync",
    # Infrastructure - Definitions and checks
    "TomlWorkflowDefinitionStore",
    "SubprocessCheckRunner",
]
