"""helmsman JSON Schema definitions and validation utilities.

Schemas:
    - workflow.schema.json: Workflow definition files (steps, edges)
    - run.schema.json: Run records as stored on disk and in bulk exports
    - config.schema.json: ``.helmsman/config.toml``

Usage:
    from helmsman.schemas import validate_run

    validate_run(record)  # Raises jsonschema.ValidationError if invalid
"""

from __future__ import annotations

import json
from functools import cache
from importlib.resources import files
from typing import Any

import jsonschema


@cache
def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema from the schemas package.

    Args:
        name: Schema filename (e.g., 'workflow.schema.json')

    Returns:
        Parsed JSON schema as a dictionary
    """
    schema_text = files("helmsman.schemas").joinpath(name).read_text()
    result: dict[str, Any] = json.loads(schema_text)
    return result


def get_workflow_schema() -> dict[str, Any]:
    return _load_schema("workflow.schema.json")


def get_run_schema() -> dict[str, Any]:
    return _load_schema("run.schema.json")


def get_config_schema() -> dict[str, Any]:
    return _load_schema("config.schema.json")


def validate_workflow(data: dict[str, Any]) -> None:
    """Validate a workflow definition's structure against the schema.

    Args:
        data: Parsed workflow definition

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_workflow_schema())


def validate_run(data: dict[str, Any]) -> None:
    """Validate a run record against the schema.

    Args:
        data: Run record dictionary

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_run_schema())


def validate_config(data: dict[str, Any]) -> None:
    """Validate a configuration file against the schema.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_config_schema())


def format_validation_error(error: jsonschema.ValidationError) -> str:
    """Render a schema error as ``path: message``."""
    path = ".".join(str(p) for p in error.absolute_path) or "<root>"
    return f"{path}: {error.message}"


__all__ = [
    "get_workflow_schema",
    "get_run_schema",
    "get_config_schema",
    "validate_workflow",
    "validate_run",
    "validate_config",
    "format_validation_error",
]
