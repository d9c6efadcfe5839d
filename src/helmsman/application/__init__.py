"""
Application layer for run coordination.

Contains the services that orchestrate domain rules over the store ports.
"""

from helmsman.application.audit_emitter import AuditEmitter
from helmsman.application.claims import ClaimManager
from helmsman.application.lifecycle import RunLifecycle, generate_run_id
from helmsman.application.retry import retry_on_conflict
from helmsman.application.verification import VerificationRecorder
from helmsman.application.workflow_engine import WorkflowEngine

__all__ = [
    "AuditEmitter",
    "ClaimManager",
    "RunLifecycle",
    "VerificationRecorder",
    "WorkflowEngine",
    "generate_run_id",
    "retry_on_conflict",
]
