"""
Workflow definition store backed by TOML files.

Definitions are looked up by name as ``<name>.toml``, first in the
project's workflow directory and then among the definitions shipped with
the package. Every definition is validated in two passes before it is
returned: structure against the JSON Schema, then graph integrity.
"""

import logging
import tomllib
from importlib.resources import files
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import jsonschema

from helmsman.domain.exceptions import WorkflowNotFoundError, WorkflowValidationError
from helmsman.domain.interfaces import WorkflowDefinitionStoreInterface
from helmsman.domain.workflow import WorkflowDefinition, build_definition
from helmsman.schemas import format_validation_error, validate_workflow

logger = logging.getLogger(__name__)

BUILTIN_PACKAGE = "helmsman.workflows"


def parse_definition(text: str, source: str) -> WorkflowDefinition:
    """
    Parse and validate one TOML workflow definition.

    Raises:
        WorkflowValidationError: On TOML syntax, schema or graph errors.
    """
    try:
        raw: dict[str, Any] = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise WorkflowValidationError([f"invalid TOML: {e}"], source=source) from e

    try:
        validate_workflow(raw)
    except jsonschema.ValidationError as e:
        raise WorkflowValidationError([format_validation_error(e)], source=source) from e

    definition, report = build_definition(raw, source=source)
    for warning in report.warnings:
        logger.warning("%s: %s", source, warning)
    return definition


class TomlWorkflowDefinitionStore(WorkflowDefinitionStoreInterface):
    """
    Loads definitions from a project directory with a built-in fallback.

    Args:
        project_dir: Directory holding project-specific ``*.toml`` files
        include_builtin: Also search the definitions shipped with helmsman
    """

    def __init__(self, project_dir: str | Path | None = None, include_builtin: bool = True):
        self._project_dir = Path(project_dir) if project_dir else None
        self._include_builtin = include_builtin
        self._cache: dict[str, WorkflowDefinition] = {}

    def _candidates(self) -> list[Traversable | Path]:
        roots: list[Traversable | Path] = []
        if self._project_dir and self._project_dir.is_dir():
            roots.append(self._project_dir)
        if self._include_builtin:
            roots.append(files(BUILTIN_PACKAGE))
        return roots

    def _find(self, name: str) -> Traversable | Path | None:
        for root in self._candidates():
            candidate = root.joinpath(f"{name}.toml")
            if candidate.is_file():
                return candidate
        return None

    def load(self, name: str) -> WorkflowDefinition:
        if name in self._cache:
            return self._cache[name]
        path = self._find(name)
        if path is None:
            raise WorkflowNotFoundError(name)
        definition = parse_definition(path.read_text(), source=str(path))
        if definition.name != name:
            logger.warning(
                "Workflow file %s declares name '%s'", path, definition.name
            )
        self._cache[name] = definition
        return definition

    def list_names(self) -> list[str]:
        names: set[str] = set()
        for root in self._candidates():
            for entry in root.iterdir():
                if entry.name.endswith(".toml") and entry.is_file():
                    names.add(entry.name[: -len(".toml")])
        return sorted(names)

    def validate_file(self, path: str | Path) -> WorkflowDefinition:
        """Validate an arbitrary definition file without caching it."""
        path = Path(path)
        return parse_definition(path.read_text(), source=str(path))
