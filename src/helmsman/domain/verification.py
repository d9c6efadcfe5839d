"""
Event-sourced verification.

A run's verification history is an append-only list of
``VerificationEvent`` records. Current check status is never stored; it is
projected from the events and the checks the plan declares right now
(``derive_snapshot``). Re-running checks only appends events, so the
snapshot always reflects the latest outcome per check while the log keeps
every attempt.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

DEFAULT_CHECK_TIMEOUT = 120
MAX_OUTPUT_LINES = 50
MAX_OUTPUT_BYTES = 4096
TRUNCATION_MARKER = "\n(truncated)"
_MARKER_ROOM = 20


class VerificationEventType(str, Enum):
    """Kinds of facts recorded in the verification log."""

    RUN_STARTED = "run_started"
    CHECK_EXECUTED = "check_executed"
    MANUAL_RECORDED = "manual_recorded"


# Event types that carry a check status
STATUS_EVENT_TYPES = frozenset(
    {VerificationEventType.CHECK_EXECUTED, VerificationEventType.MANUAL_RECORDED}
)


class CheckStatus(str, Enum):
    PENDING = "pending"
    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


@dataclass(frozen=True)
class VerificationEvent:
    """
    One immutable verification fact.

    Which optional fields are populated depends on ``event_type``:

    - run_started: ``checks_planned``
    - check_executed: ``name``, ``status``, ``exit_code``, ``output_tail``
    - manual_recorded: ``name``, ``status``, ``reason``
    """

    event_type: VerificationEventType
    at: str  # ISO timestamp
    by: str  # agent or human identity
    name: str | None = None
    status: CheckStatus | None = None
    exit_code: int | None = None
    output_tail: str | None = None
    reason: str | None = None
    checks_planned: tuple[str, ...] = ()


@dataclass(frozen=True)
class CheckDefinition:
    """A check declared by a plan: either a shell command or a manual assessment."""

    name: str
    cmd: str | None = None
    manual: bool = False
    timeout: int | None = None  # seconds, DEFAULT_CHECK_TIMEOUT when unset
    description: str | None = None

    @property
    def kind(self) -> str:
        return "manual" if self.manual else "cmd"

    @property
    def effective_timeout(self) -> int:
        return self.timeout if self.timeout is not None else DEFAULT_CHECK_TIMEOUT


@dataclass(frozen=True)
class DerivedCheck:
    """Current status of one declared check, projected from the event log."""

    name: str
    kind: str  # "cmd" | "manual"
    status: CheckStatus = CheckStatus.PENDING
    exit_code: int | None = None
    output_tail: str | None = None
    timeout: int | None = None
    updated_at: str | None = None
    by: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class VerificationSnapshot:
    """Derived view: the events plus per-check status for the declared checks."""

    events: tuple[VerificationEvent, ...]
    checks: tuple[DerivedCheck, ...] = field(default_factory=tuple)
    manual_pending: bool = False

    @property
    def status(self) -> CheckStatus:
        return aggregate_status(self.checks)

    @property
    def pending_manual_checks(self) -> list[str]:
        return [
            c.name
            for c in self.checks
            if c.kind == "manual" and c.status == CheckStatus.PENDING
        ]


def _latest_status_event(
    events: Sequence[VerificationEvent], name: str
) -> VerificationEvent | None:
    for event in reversed(events):
        if event.event_type in STATUS_EVENT_TYPES and event.name == name:
            return event
    return None


def derive_snapshot(
    events: Iterable[VerificationEvent], declared: Iterable[CheckDefinition]
) -> VerificationSnapshot:
    """
    Project per-check status from the event log.

    For every declared check, the most recent ``check_executed`` or
    ``manual_recorded`` event with the same name decides the status.
    Checks with no such event are ``pending``. Checks no longer declared
    do not appear, though their events stay in ``events``.

    Args:
        events: Verification log in append order
        declared: Checks the plan currently declares, in plan order

    Returns:
        VerificationSnapshot; a pure function of its inputs
    """
    log = tuple(events)
    checks: list[DerivedCheck] = []
    for definition in declared:
        latest = _latest_status_event(log, definition.name)
        if latest is None:
            checks.append(
                DerivedCheck(
                    name=definition.name,
                    kind=definition.kind,
                    timeout=definition.timeout,
                )
            )
            continue
        checks.append(
            DerivedCheck(
                name=definition.name,
                kind=definition.kind,
                status=latest.status or CheckStatus.PENDING,
                exit_code=latest.exit_code,
                output_tail=latest.output_tail,
                timeout=definition.timeout,
                updated_at=latest.at,
                by=latest.by,
                reason=latest.reason,
            )
        )

    manual_pending = any(
        c.kind == "manual" and c.status == CheckStatus.PENDING for c in checks
    )
    return VerificationSnapshot(
        events=log, checks=tuple(checks), manual_pending=manual_pending
    )


def aggregate_status(checks: Iterable[DerivedCheck]) -> CheckStatus:
    """
    Roll check statuses up into one.

    Any ``fail`` or ``error`` gives ``fail``; all ``pass`` (including no
    checks at all) gives ``pass``; anything else is ``pending``.
    """
    statuses = [c.status for c in checks]
    if any(s in (CheckStatus.FAIL, CheckStatus.ERROR) for s in statuses):
        return CheckStatus.FAIL
    if all(s == CheckStatus.PASS for s in statuses):
        return CheckStatus.PASS
    return CheckStatus.PENDING


def truncate_output(output: str) -> str:
    """
    Keep at most the first 50 lines and 4 KB of command output.

    The byte cut never splits a UTF-8 character and leaves room for the
    ``(truncated)`` marker, which is appended whenever anything was cut.
    """
    truncated = False
    lines = output.split("\n")
    if len(lines) > MAX_OUTPUT_LINES:
        output = "\n".join(lines[:MAX_OUTPUT_LINES])
        truncated = True

    encoded = output.encode("utf-8")
    if len(encoded) > MAX_OUTPUT_BYTES:
        output = encoded[: MAX_OUTPUT_BYTES - _MARKER_ROOM].decode("utf-8", errors="ignore")
        truncated = True

    if truncated:
        output += TRUNCATION_MARKER
    return output


@dataclass(frozen=True)
class CheckExecution:
    """Raw outcome of executing one command check."""

    status: CheckStatus  # pass | fail | error
    exit_code: int | None  # None when the command could not run to completion
    output_tail: str
