"""
Infrastructure layer for run coordination.

Contains adapters for external concerns (file stores, TOML definitions,
subprocess checks).
"""

from helmsman.infrastructure.checks import SubprocessCheckRunner, load_check_definitions
from helmsman.infrastructure.definitions import TomlWorkflowDefinitionStore
from helmsman.infrastructure.persistence import (
    FilesystemAuditLog,
    FilesystemRunStore,
    FilesystemWorkflowInstanceStore,
    InMemoryAuditLog,
    InMemoryRunStore,
    InMemoryWorkflowInstanceStore,
    JsonlRunSync,
)

__all__ = [
    # Persistence
    "InMemoryRunStore",
    "FilesystemRunStore",
    "InMemoryWorkflowInstanceStore",
    "FilesystemWorkflowInstanceStore",
    "InMemoryAuditLog",
    "FilesystemAuditLog",
    "JsonlRunSync",
    # Definitions
    "TomlWorkflowDefinitionStore",
    # Verification
    "SubprocessCheckRunner",
    "load_check_definitions",
]
