"""
Subprocess check runner.

Runs each command check through the shell with a per-check timeout and
reports the outcome as data: exit 0 is ``pass``, any other exit is
``fail``, and a timeout or a command that cannot be started is ``error``.
"""

import logging
import subprocess
import tomllib
from pathlib import Path

from helmsman.domain.exceptions import HelmsmanValidationError
from helmsman.domain.interfaces import CheckRunnerInterface
from helmsman.domain.verification import (
    CheckDefinition,
    CheckExecution,
    CheckStatus,
    truncate_output,
)

logger = logging.getLogger(__name__)


def _as_text(output: str | bytes | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


class SubprocessCheckRunner(CheckRunnerInterface):
    """
    Executes command checks in a working directory.

    Args:
        cwd: Directory commands run in (defaults to the current directory)
        default_timeout: Seconds allowed when a check declares no timeout
    """

    def __init__(self, cwd: str | Path | None = None, default_timeout: int | None = None):
        self._cwd = Path(cwd) if cwd else None
        self._default_timeout = default_timeout

    def execute(self, check: CheckDefinition) -> CheckExecution:
        if not check.cmd:
            raise ValueError(f"Check '{check.name}' has no command to execute")
        timeout = check.timeout or self._default_timeout or check.effective_timeout

        logger.debug("Running check %s: %s (timeout %ss)", check.name, check.cmd, timeout)
        try:
            result = subprocess.run(
                check.cmd,
                shell=True,
                capture_output=True,
                timeout=timeout,
                cwd=self._cwd,
            )
        except subprocess.TimeoutExpired as e:
            output = (_as_text(e.stdout) + _as_text(e.stderr)).strip()
            logger.warning("Check %s timed out after %ss", check.name, timeout)
            return CheckExecution(
                status=CheckStatus.ERROR,
                exit_code=None,
                output_tail=truncate_output(f"(timeout after {timeout}s)\n{output}"),
            )
        except OSError as e:
            logger.warning("Check %s could not be executed: %s", check.name, e)
            return CheckExecution(
                status=CheckStatus.ERROR,
                exit_code=None,
                output_tail=truncate_output(f"(exec error: {e})"),
            )

        output = truncate_output((_as_text(result.stdout) + _as_text(result.stderr)).strip())
        status = CheckStatus.PASS if result.returncode == 0 else CheckStatus.FAIL
        logger.debug("Check %s finished with exit code %d", check.name, result.returncode)
        return CheckExecution(status=status, exit_code=result.returncode, output_tail=output)


def load_check_definitions(path: str | Path) -> list[CheckDefinition]:
    """
    Read the checks a plan declares from a TOML file of ``[[check]]`` tables.

    Each table needs a ``name`` and either a ``cmd`` or ``manual = true``;
    ``timeout`` and ``description`` are optional.

    Raises:
        HelmsmanValidationError: On TOML errors, duplicate names or
            incomplete entries.
    """
    path = Path(path)
    try:
        raw = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as e:
        raise HelmsmanValidationError(f"{path}: invalid TOML: {e}") from e

    checks: list[CheckDefinition] = []
    seen: set[str] = set()
    for i, entry in enumerate(raw.get("check", [])):
        name = entry.get("name")
        if not name:
            raise HelmsmanValidationError(f"{path}: check[{i}] has no name")
        if name in seen:
            raise HelmsmanValidationError(f"{path}: duplicate check '{name}'")
        manual = bool(entry.get("manual", False))
        cmd = entry.get("cmd")
        if not manual and not cmd:
            raise HelmsmanValidationError(f"{path}: check '{name}' needs a cmd or manual = true")
        seen.add(name)
        checks.append(
            CheckDefinition(
                name=name,
                cmd=cmd,
                manual=manual,
                timeout=entry.get("timeout"),
                description=entry.get("description"),
            )
        )
    return checks
