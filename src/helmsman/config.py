"""Configuration loading for helmsman.

Settings come from ``<root>/.helmsman/config.toml`` when it exists, then
from ``HELMSMAN_*`` environment variables, which win over the file.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jsonschema

from helmsman.application.retry import DEFAULT_ATTEMPTS
from helmsman.application.workflow_engine import DEFAULT_MAX_STEPS
from helmsman.domain.claims import DEFAULT_CLAIM_TTL_MINUTES
from helmsman.domain.exceptions import ConfigurationError
from helmsman.domain.verification import DEFAULT_CHECK_TIMEOUT
from helmsman.schemas import format_validation_error, validate_config

DEFAULT_STATE_DIR = ".helmsman"
CONFIG_FILE = "config.toml"

ENV_STATE_DIR = "HELMSMAN_DIR"
ENV_AGENT = "HELMSMAN_AGENT"
ENV_CLAIM_TTL = "HELMSMAN_CLAIM_TTL"


@dataclass(frozen=True)
class HelmsmanConfig:
    """Effective settings for one project root."""

    root: Path
    state_dir: Path
    workflows_dir: Path
    agent: str | None = None
    claim_ttl_minutes: int = DEFAULT_CLAIM_TTL_MINUTES
    check_timeout_seconds: int = DEFAULT_CHECK_TIMEOUT
    max_conflict_retries: int = DEFAULT_ATTEMPTS
    max_steps: int = DEFAULT_MAX_STEPS

    @property
    def audit_log_path(self) -> Path:
        return self.state_dir / "events.jsonl"


def _read_file(path: Path) -> dict[str, Any]:
    """Load and schema-check the config file; a missing file is empty config.

    Raises:
        ConfigurationError: If the file is not valid TOML or fails the schema
    """
    if not path.is_file():
        return {}
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e
    try:
        validate_config(data)
    except jsonschema.ValidationError as e:
        raise ConfigurationError(f"Invalid config {path}: {format_validation_error(e)}") from e
    return data


def _resolve(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


def _env_int(environ: Mapping[str, str], name: str) -> int | None:
    raw = environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'") from None
    if value < 1:
        raise ConfigurationError(f"{name} must be at least 1, got {value}")
    return value


def load_config(
    root: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> HelmsmanConfig:
    """
    Build the effective configuration for a project root.

    The state directory is located first (``HELMSMAN_DIR`` or the
    default ``.helmsman``), since the config file lives inside it.

    Args:
        root: Project root (current directory when omitted)
        environ: Environment to read overrides from (``os.environ`` by default)

    Raises:
        ConfigurationError: On an invalid config file or override
    """
    root_path = Path(root) if root is not None else Path.cwd()
    env = os.environ if environ is None else environ

    env_dir = env.get(ENV_STATE_DIR)
    state_dir = _resolve(root_path, env_dir or DEFAULT_STATE_DIR)
    data = _read_file(state_dir / CONFIG_FILE)
    if not env_dir and "state_dir" in data:
        state_dir = _resolve(root_path, data["state_dir"])

    workflows = data.get("workflows", {})
    workflows_dir = (
        _resolve(root_path, workflows["dir"]) if "dir" in workflows else state_dir / "workflows"
    )
    ttl = _env_int(env, ENV_CLAIM_TTL) or data.get("claims", {}).get(
        "ttl_minutes", DEFAULT_CLAIM_TTL_MINUTES
    )

    return HelmsmanConfig(
        root=root_path,
        state_dir=state_dir,
        workflows_dir=workflows_dir,
        agent=env.get(ENV_AGENT) or data.get("agent"),
        claim_ttl_minutes=ttl,
        check_timeout_seconds=data.get("verification", {}).get(
            "timeout_seconds", DEFAULT_CHECK_TIMEOUT
        ),
        max_conflict_retries=data.get("concurrency", {}).get(
            "max_conflict_retries", DEFAULT_ATTEMPTS
        ),
        max_steps=workflows.get("max_steps", DEFAULT_MAX_STEPS),
    )
