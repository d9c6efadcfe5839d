"""
JSON record conversion for runs and workflow instances.

Shared by every adapter that writes these aggregates (run files, instance
files, bulk JSONL export) so the on-disk shape is defined in one place.
"""

from datetime import UTC, datetime
from typing import Any

from helmsman.domain.models import DEFAULT_PRIORITY, Run, Transition, WorkflowInstance
from helmsman.domain.states import PROPOSED, normalize_state
from helmsman.domain.verification import (
    CheckStatus,
    VerificationEvent,
    VerificationEventType,
)

# Never written to disk
TRANSIENT_FIELDS = ("version", "read_at")


# =============================================================================
# VERIFICATION EVENTS
# =============================================================================


def verification_event_to_dict(event: VerificationEvent) -> dict[str, Any]:
    data: dict[str, Any] = {"type": event.event_type.value, "at": event.at, "by": event.by}
    if event.event_type == VerificationEventType.RUN_STARTED:
        data["checks_planned"] = list(event.checks_planned)
        return data
    data["name"] = event.name
    data["status"] = event.status.value if event.status else None
    if event.event_type == VerificationEventType.CHECK_EXECUTED:
        data["exit_code"] = event.exit_code
        data["output_tail"] = event.output_tail or ""
    elif event.reason is not None:
        data["reason"] = event.reason
    return data


def dict_to_verification_event(data: dict[str, Any]) -> VerificationEvent:
    status = data.get("status")
    return VerificationEvent(
        event_type=VerificationEventType(data["type"]),
        at=data.get("at", ""),
        by=data.get("by", "agent"),
        name=data.get("name"),
        status=CheckStatus(status) if status else None,
        exit_code=data.get("exit_code"),
        output_tail=data.get("output_tail"),
        reason=data.get("reason"),
        checks_planned=tuple(data.get("checks_planned", ())),
    )


# =============================================================================
# RUNS
# =============================================================================


def _transition_to_dict(transition: Transition) -> dict[str, Any]:
    data: dict[str, Any] = {
        "from": transition.from_state,
        "to": transition.to_state,
        "at": transition.at,
        "by": transition.by,
    }
    if transition.reason:
        data["reason"] = transition.reason
    if transition.forced:
        data["forced"] = True
    return data


def _dict_to_transition(data: dict[str, Any]) -> Transition:
    return Transition(
        from_state=normalize_state(data["from"]),
        to_state=normalize_state(data["to"]),
        at=data.get("at", ""),
        by=data.get("by", "human"),
        reason=data.get("reason"),
        forced=bool(data.get("forced", False)),
    )


def run_to_dict(run: Run) -> dict[str, Any]:
    """Serialize a run; ``version``/``read_at`` and ``plan_ref`` are never included."""
    return {
        "id": run.id,
        "intent": run.intent,
        "state": run.state,
        "plan_path": run.plan_path,
        "created": run.created,
        "updated": run.updated,
        "transitions": [_transition_to_dict(t) for t in run.transitions],
        "claimed_by": run.claimed_by,
        "claimed_at": run.claimed_at,
        "claim_expires": run.claim_expires,
        "files_touched": list(run.files_touched),
        "depends_on": list(run.depends_on),
        "priority": run.priority,
        "verification": {
            "events": [verification_event_to_dict(e) for e in run.verification_events]
        },
    }


def run_from_dict(data: dict[str, Any]) -> Run:
    """
    Deserialize a run, filling defaults for fields older records lack.

    Legacy flat states are migrated and ``run_id`` is accepted as an alias
    of ``id``. Any transient fields present in ``data`` are ignored.

    Raises:
        KeyError: If the record has neither ``id`` nor ``run_id``.
    """
    run_id = data.get("id") or data["run_id"]
    now = datetime.now(UTC).isoformat()
    verification = data.get("verification") or {}
    return Run(
        id=run_id,
        intent=data.get("intent") or "",
        state=normalize_state(data.get("state") or PROPOSED),
        plan_path=data.get("plan_path") or "",
        created=data.get("created") or now,
        updated=data.get("updated") or now,
        transitions=[_dict_to_transition(t) for t in data.get("transitions") or ()],
        claimed_by=data.get("claimed_by"),
        claimed_at=data.get("claimed_at"),
        claim_expires=data.get("claim_expires"),
        files_touched=list(data.get("files_touched") or ()),
        depends_on=list(data.get("depends_on") or ()),
        priority=data.get("priority", DEFAULT_PRIORITY),
        verification_events=[
            dict_to_verification_event(e) for e in verification.get("events") or ()
        ],
    )


# =============================================================================
# WORKFLOW INSTANCES
# =============================================================================


def instance_to_dict(instance: WorkflowInstance) -> dict[str, Any]:
    return {
        "id": instance.id,
        "workflow_name": instance.workflow_name,
        "current_step": instance.current_step,
        "state": dict(instance.state),
        "history": list(instance.history),
        "started_at": instance.started_at,
        "updated_at": instance.updated_at,
    }


def dict_to_instance(data: dict[str, Any]) -> WorkflowInstance:
    return WorkflowInstance(
        id=data["id"],
        workflow_name=data["workflow_name"],
        current_step=data["current_step"],
        state=dict(data.get("state") or {}),
        history=list(data.get("history") or ()),
        started_at=data.get("started_at", ""),
        updated_at=data.get("updated_at", ""),
    )
