"""Workflow instance store implementations."""

import json
from pathlib import Path
from typing import Any

from helmsman.domain.exceptions import WorkflowInstanceNotFoundError
from helmsman.domain.interfaces import WorkflowInstanceStoreInterface
from helmsman.domain.models import WorkflowInstance
from helmsman.infrastructure.persistence.records import dict_to_instance, instance_to_dict


class InMemoryWorkflowInstanceStore(WorkflowInstanceStoreInterface):
    """In-memory implementation for testing."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}

    def load(self, instance_id: str) -> WorkflowInstance:
        if instance_id not in self._records:
            raise WorkflowInstanceNotFoundError(instance_id)
        return dict_to_instance(json.loads(json.dumps(self._records[instance_id])))

    def save(self, instance: WorkflowInstance) -> None:
        self._records[instance.id] = json.loads(json.dumps(instance_to_dict(instance)))

    def list_instances(self, workflow_name: str | None = None) -> list[WorkflowInstance]:
        instances = [self.load(i) for i in self._records]
        if workflow_name:
            instances = [i for i in instances if i.workflow_name == workflow_name]
        return sorted(instances, key=lambda i: i.updated_at, reverse=True)


class FilesystemWorkflowInstanceStore(WorkflowInstanceStoreInterface):
    """Filesystem implementation: one JSON file per instance."""

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path)
        self.instances_dir = self.base_path / "workflows" / "instances"
        self.instances_dir.mkdir(parents=True, exist_ok=True)

    def _get_instance_file(self, instance_id: str) -> Path:
        return self.instances_dir / f"{instance_id}.json"

    def load(self, instance_id: str) -> WorkflowInstance:
        path = self._get_instance_file(instance_id)
        try:
            with open(path) as f:
                return dict_to_instance(json.load(f))
        except FileNotFoundError:
            raise WorkflowInstanceNotFoundError(instance_id) from None

    def save(self, instance: WorkflowInstance) -> None:
        path = self._get_instance_file(instance.id)
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(instance_to_dict(instance), f, indent=2)
        temp_path.replace(path)

    def list_instances(self, workflow_name: str | None = None) -> list[WorkflowInstance]:
        instances: list[WorkflowInstance] = []
        for path in self.instances_dir.glob("*.json"):
            with open(path) as f:
                instance = dict_to_instance(json.load(f))
            if workflow_name and instance.workflow_name != workflow_name:
                continue
            instances.append(instance)
        return sorted(instances, key=lambda i: i.updated_at, reverse=True)
