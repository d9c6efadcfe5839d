"""
Claim (lease) rules.

A claim gives one agent identity working rights over a run until
``claim_expires``. Nothing stops a process from writing a run it has not
claimed; every mutating entry point is expected to call
:func:`require_claim` first.
"""

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from helmsman.domain.exceptions import ClaimNotHeldError
from helmsman.domain.models import Run
from helmsman.domain.states import TERMINAL_SUCCESS, match_state

DEFAULT_CLAIM_TTL_MINUTES = 30


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def is_claim_expired(run: Run, now: datetime) -> bool:
    """A run with no expiry counts as expired."""
    if not run.claim_expires:
        return True
    return parse_timestamp(run.claim_expires) < now


def is_available(run: Run, now: datetime) -> bool:
    return not run.claimed_by or is_claim_expired(run, now)


def set_claim(run: Run, agent_id: str, now: datetime, ttl_minutes: int) -> None:
    run.claimed_by = agent_id
    run.claimed_at = now.isoformat()
    run.claim_expires = (now + timedelta(minutes=ttl_minutes)).isoformat()
    run.updated = now.isoformat()


def require_claim(run: Run, agent_id: str, now: datetime, strict: bool = False) -> None:
    """
    Guard for mutations only the claim holder should perform.

    Passes when ``agent_id`` holds the claim or when the claim is held by
    nobody live. With ``strict`` an unclaimed run is rejected too.

    Raises:
        ClaimNotHeldError: If another agent holds an unexpired claim, or
            (strict) nobody holds one.
    """
    if run.claimed_by == agent_id and not is_claim_expired(run, now):
        return
    if run.claimed_by and run.claimed_by != agent_id and not is_claim_expired(run, now):
        raise ClaimNotHeldError(run.id, agent_id, run.claimed_by)
    if strict:
        raise ClaimNotHeldError(run.id, agent_id, None)


def detect_file_conflicts(run: Run, others: Iterable[Run]) -> list[str]:
    """
    Ids of other active runs whose touched files overlap ``run``'s.

    A soft signal only; the caller decides what to do about it.
    """
    if not run.files_touched:
        return []
    mine = set(run.files_touched)
    return sorted(
        other.id
        for other in others
        if other.id != run.id
        and match_state(other.state, "active")
        and mine.intersection(other.files_touched)
    )


def blocking_dependencies(run: Run, runs_by_id: dict[str, Run]) -> list[str]:
    """
    Dependencies that exist and are not complete.

    Dependencies that are not in the store do not block.
    """
    return [
        dep
        for dep in run.depends_on
        if dep in runs_by_id and runs_by_id[dep].state != TERMINAL_SUCCESS
    ]
