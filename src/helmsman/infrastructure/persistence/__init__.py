"""
Persistence adapters for runs, workflow instances and the audit log.
"""

from helmsman.infrastructure.persistence.audit_log import (
    FilesystemAuditLog,
    InMemoryAuditLog,
)
from helmsman.infrastructure.persistence.filesystem import FilesystemRunStore
from helmsman.infrastructure.persistence.instances import (
    FilesystemWorkflowInstanceStore,
    InMemoryWorkflowInstanceStore,
)
from helmsman.infrastructure.persistence.jsonl_sync import JsonlRunSync
from helmsman.infrastructure.persistence.memory import InMemoryRunStore

__all__ = [
    "InMemoryRunStore",
    "FilesystemRunStore",
    "InMemoryWorkflowInstanceStore",
    "FilesystemWorkflowInstanceStore",
    "InMemoryAuditLog",
    "FilesystemAuditLog",
    "JsonlRunSync",
]
