"""
Domain interfaces (Ports) for run coordination.

These abstract base classes define the contracts that adapters must satisfy.
They have no external dependencies and represent the core domain boundaries.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from helmsman.domain.audit import AuditEvent, AuditEventType
    from helmsman.domain.models import Run, WorkflowInstance
    from helmsman.domain.verification import CheckDefinition, CheckExecution
    from helmsman.domain.workflow import WorkflowDefinition


class RunStoreInterface(ABC):
    """
    Port for run persistence.

    One record per run, addressable by id. The store is shared between
    independent processes with no central server, so it offers a versioned
    load/save pair on top of plain last-writer-wins access.
    """

    @abstractmethod
    def load(self, run_id: str) -> "Run":
        """
        Load a run without a version token.

        Raises:
            RunNotFoundError: If no run has this id
        """

    @abstractmethod
    def save(self, run: "Run") -> None:
        """Write a run unconditionally (last writer wins)."""

    @abstractmethod
    def load_versioned(self, run_id: str) -> "Run":
        """
        Load a run with ``version`` and ``read_at`` populated.

        Raises:
            RunNotFoundError: If no run has this id
            StaleReadError: If the record changed while being read
        """

    @abstractmethod
    def save_if_fresh(self, run: "Run") -> str:
        """
        Write a run only if the stored version still equals ``run.version``.

        Args:
            run: A run obtained from load_versioned()

        Returns:
            The new version token (also set on ``run.version``)

        Raises:
            MissingVersionTokenError: If the run carries no token
            StaleWriteError: If another writer got there first
        """

    @abstractmethod
    def exists(self, run_id: str) -> bool:
        pass

    @abstractmethod
    def list_runs(self, state_query: str | None = None) -> list["Run"]:
        """
        List runs, optionally filtered by a state query (``active``,
        ``active/*`` or an exact state). Most recently updated first.
        """

    @abstractmethod
    def delete(self, run_id: str) -> None:
        """
        Raises:
            RunNotFoundError: If no run has this id
        """


class WorkflowInstanceStoreInterface(ABC):
    """Port for workflow instance persistence (one record per instance)."""

    @abstractmethod
    def load(self, instance_id: str) -> "WorkflowInstance":
        """
        Raises:
            WorkflowInstanceNotFoundError: If no instance has this id
        """

    @abstractmethod
    def save(self, instance: "WorkflowInstance") -> None:
        pass

    @abstractmethod
    def list_instances(self, workflow_name: str | None = None) -> list["WorkflowInstance"]:
        """List instances, most recently updated first."""


class WorkflowDefinitionStoreInterface(ABC):
    """Port for loading validated workflow definitions by name."""

    @abstractmethod
    def load(self, name: str) -> "WorkflowDefinition":
        """
        Load and validate a definition.

        Raises:
            WorkflowNotFoundError: If no definition has this name
            WorkflowValidationError: If the definition is malformed
        """

    @abstractmethod
    def list_names(self) -> list[str]:
        pass


class AuditLogInterface(ABC):
    """Port for the append-only audit trail."""

    @abstractmethod
    def append(self, event: "AuditEvent") -> str:
        """
        Append an event.

        Returns:
            The event_id
        """

    @abstractmethod
    def get_events(
        self,
        run_id: str | None = None,
        event_type: "AuditEventType | None" = None,
        instance_id: str | None = None,
        limit: int | None = None,
    ) -> list["AuditEvent"]:
        """
        Read events in append order, filtered.

        Args:
            limit: Keep only the most recent ``limit`` matching events
        """


class CheckRunnerInterface(ABC):
    """Port for executing command-based verification checks."""

    @abstractmethod
    def execute(self, check: "CheckDefinition") -> "CheckExecution":
        """
        Run one command check to completion or timeout.

        Never raises for command failures: non-zero exits, timeouts and
        exec errors are all reported through the returned status.
        """


class ExternalClaimPrimitive(ABC):
    """
    Port for a task tracker that hands out claims of its own.

    Its claim call is not atomic from this process's point of view, so a
    call that does not raise is not proof of ownership.
    """

    @abstractmethod
    def claim(self, task_id: str, agent_id: str) -> None:
        """
        Attempt to claim a task.

        Raises:
            AlreadyClaimedError: If the tracker reports another owner
            HelmsmanNotFoundError: If the task does not exist
        """

    @abstractmethod
    def get_owner(self, task_id: str) -> str | None:
        """
        Raises:
            HelmsmanNotFoundError: If the task does not exist
        """
