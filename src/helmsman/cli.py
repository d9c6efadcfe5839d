"""helmsman command line.

Thin boundary over the application services: parse arguments, call one
service method, render the result with rich. Exit status is 2 when the
addressed run, workflow or instance does not exist and 1 for any other
refused operation.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from functools import cached_property, wraps
from pathlib import Path
from typing import Any, TypeVar

import click

from helmsman import console as out
from helmsman.application import (
    AuditEmitter,
    ClaimManager,
    RunLifecycle,
    VerificationRecorder,
    WorkflowEngine,
)
from helmsman.config import HelmsmanConfig, load_config
from helmsman.domain.exceptions import (
    AlreadyClaimedError,
    HelmsmanError,
    HelmsmanNotFoundError,
    InvalidTransitionError,
    StaleWriteError,
)
from helmsman.domain.models import Run
from helmsman.domain.states import PROPOSED
from helmsman.domain.verification import CheckDefinition
from helmsman.infrastructure import (
    FilesystemAuditLog,
    FilesystemRunStore,
    FilesystemWorkflowInstanceStore,
    JsonlRunSync,
    SubprocessCheckRunner,
    TomlWorkflowDefinitionStore,
    load_check_definitions,
)
from helmsman.infrastructure.persistence.records import run_to_dict
from helmsman.logging_setup import setup_logging

EXIT_FAILURE = 1
EXIT_NOT_FOUND = 2

DEFAULT_EXPORT_FILE = "runs.jsonl"


class AppContext:
    """Services wired to the filesystem stores of one project root."""

    def __init__(self, config: HelmsmanConfig) -> None:
        self.config = config

    @cached_property
    def store(self) -> FilesystemRunStore:
        return FilesystemRunStore(self.config.state_dir)

    @cached_property
    def emitter(self) -> AuditEmitter:
        return AuditEmitter(FilesystemAuditLog(self.config.state_dir))

    @cached_property
    def lifecycle(self) -> RunLifecycle:
        return RunLifecycle(
            self.store,
            self.emitter,
            max_conflict_retries=self.config.max_conflict_retries,
            project_root=self.config.root,
        )

    @cached_property
    def claims(self) -> ClaimManager:
        return ClaimManager(
            self.store,
            self.emitter,
            ttl_minutes=self.config.claim_ttl_minutes,
            max_conflict_retries=self.config.max_conflict_retries,
        )

    @cached_property
    def recorder(self) -> VerificationRecorder:
        return VerificationRecorder(
            self.store,
            self.lifecycle,
            self.emitter,
            max_conflict_retries=self.config.max_conflict_retries,
        )

    @cached_property
    def definitions(self) -> TomlWorkflowDefinitionStore:
        return TomlWorkflowDefinitionStore(self.config.workflows_dir)

    @cached_property
    def engine(self) -> WorkflowEngine:
        return WorkflowEngine(
            self.definitions,
            FilesystemWorkflowInstanceStore(self.config.state_dir),
            self.emitter,
        )

    def resolve_run(self, ref: str | None) -> Run:
        """Run by id or plan ref; the default run when ``ref`` is omitted."""
        if ref:
            return self.lifecycle.resolve(ref)
        run = self.lifecycle.get_default_run()
        if run is None:
            raise click.UsageError("No runs yet; pass a run id or plan ref")
        return run

    def require_agent(self, agent: str | None) -> str:
        agent = agent or self.config.agent
        if not agent:
            raise click.UsageError("No agent identity: pass --agent or set HELMSMAN_AGENT")
        return agent


pass_app = click.make_pass_decorator(AppContext)


F = TypeVar("F", bound=Callable[..., Any])


def handle_errors(func: F) -> F:
    """Render domain errors and map them to exit codes."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except HelmsmanNotFoundError as e:
            out.print_error(str(e))
            raise SystemExit(EXIT_NOT_FOUND) from None
        except InvalidTransitionError as e:
            hint = f"valid targets: {', '.join(e.valid_targets)}" if e.valid_targets else None
            out.print_error(str(e), hint=hint)
            raise SystemExit(EXIT_FAILURE) from None
        except AlreadyClaimedError as e:
            out.print_error(str(e), hint="use --force to take over the claim")
            raise SystemExit(EXIT_FAILURE) from None
        except StaleWriteError as e:
            out.print_error(str(e), hint="another process kept writing this run; try again")
            raise SystemExit(EXIT_FAILURE) from None
        except HelmsmanError as e:
            out.print_error(str(e))
            raise SystemExit(EXIT_FAILURE) from None

    return wrapper  # type: ignore[return-value]


def parse_assignments(values: tuple[str, ...]) -> dict[str, Any]:
    """``key=value`` pairs; values that parse as JSON keep their JSON type."""
    result: dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got '{item}'", param_hint="--set")
        try:
            result[key] = json.loads(raw)
        except json.JSONDecodeError:
            result[key] = raw
    return result


def _load_checks(path: str | None) -> list[CheckDefinition]:
    return load_check_definitions(path) if path else []


checks_option = click.option(
    "--checks",
    "checks_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="TOML file of [[check]] tables declared by the plan",
)


@click.group()
@click.option(
    "--root",
    type=click.Path(file_okay=False),
    default=None,
    help="Project root (default: current directory)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose (DEBUG) logging")
@click.option("--log-file", type=click.Path(), default=None, help="Path to log file")
@click.version_option(package_name="helmsman")
@click.pass_context
def main(ctx: click.Context, root: str | None, verbose: bool, log_file: str | None) -> None:
    """Coordinate plan runs between cooperating agents."""
    setup_logging(verbose=verbose, log_file=log_file)
    try:
        config = load_config(root)
    except HelmsmanError as e:
        out.print_error(str(e))
        raise SystemExit(EXIT_FAILURE) from None
    ctx.obj = AppContext(config)


# =============================================================================
# Runs
# =============================================================================


@main.command()
@click.argument("plan_path")
@click.option("--intent", default="", help="One-line statement of what the run achieves")
@click.option("--state", "initial_state", default=PROPOSED, show_default=True)
@click.option("--depends-on", multiple=True, help="Run id this run waits for (repeatable)")
@click.option("--file", "files", multiple=True, help="File the run expects to touch (repeatable)")
@click.option("--priority", type=int, default=99, show_default=True, help="0 is highest")
@click.option("--by", default="human", show_default=True)
@pass_app
@handle_errors
def create(
    app: AppContext,
    plan_path: str,
    intent: str,
    initial_state: str,
    depends_on: tuple[str, ...],
    files: tuple[str, ...],
    priority: int,
    by: str,
) -> None:
    """Create a run for PLAN_PATH (returns the existing run if there is one)."""
    run = app.lifecycle.create_run(
        plan_path,
        intent=intent,
        initial_state=initial_state,
        by=by,
        files_touched=files,
        depends_on=depends_on,
        priority=priority,
    )
    out.print_success(f"{run.id} {run.state} {run.plan_path}")


@main.command()
@click.argument("ref", required=False)
@click.option("--json", "as_json", is_flag=True, help="Print the stored record as JSON")
@pass_app
@handle_errors
def show(app: AppContext, ref: str | None, as_json: bool) -> None:
    """Show a run (the current default run when REF is omitted)."""
    run = app.resolve_run(ref)
    if as_json:
        click.echo(json.dumps(run_to_dict(run), indent=2))
        return
    out.print_run(run)


@main.command("list")
@click.option("--state", "state_query", default=None, help="State, parent, or parent/*")
@pass_app
@handle_errors
def list_runs(app: AppContext, state_query: str | None) -> None:
    """List runs, most recently updated first."""
    out.print_runs(app.lifecycle.list_runs(state_query))


@main.command()
@click.argument("ref")
@click.argument("to_state")
@click.option("--reason", default=None)
@click.option("--force", is_flag=True, help="Bypass lifecycle validation")
@click.option("--by", default=None, help="Actor to record (default: agent or 'human')")
@click.option("--agent", default=None, help="Refuse unless this agent holds or may take the run")
@pass_app
@handle_errors
def transition(
    app: AppContext,
    ref: str,
    to_state: str,
    reason: str | None,
    force: bool,
    by: str | None,
    agent: str | None,
) -> None:
    """Move run REF to TO_STATE."""
    run = app.lifecycle.resolve(ref)
    actor = by or agent or app.config.agent or "human"
    if force:
        result = app.lifecycle.force_transition(run.id, to_state, actor, reason)
    else:
        result = app.lifecycle.transition(run.id, to_state, actor, reason, claimant=agent)
    suffix = " (forced)" if result.forced else ""
    out.print_success(f"{result.run_id}: {result.from_state} → {result.to_state}{suffix}")


@main.command()
@click.argument("ref")
@click.option("--reason", default=None)
@click.option("--by", default="human", show_default=True)
@click.confirmation_option(prompt="Delete this run?")
@pass_app
@handle_errors
def delete(app: AppContext, ref: str, reason: str | None, by: str) -> None:
    """Delete run REF."""
    run = app.lifecycle.resolve(ref)
    app.lifecycle.delete_run(run.id, by, reason)
    out.print_success(f"Deleted {run.id}")


# =============================================================================
# Claims
# =============================================================================


@main.command()
@click.argument("ref")
@click.option("--agent", default=None, help="Claiming identity (default: HELMSMAN_AGENT)")
@click.option("--ttl", type=int, default=None, help="Lease length in minutes")
@click.option("--force", is_flag=True, help="Take over a live claim")
@pass_app
@handle_errors
def claim(app: AppContext, ref: str, agent: str | None, ttl: int | None, force: bool) -> None:
    """Claim run REF for an agent."""
    agent_id = app.require_agent(agent)
    run = app.claims.claim(app.lifecycle.resolve(ref).id, agent_id, ttl, force=force)
    out.print_success(f"{agent_id} claimed {run.id} until {run.claim_expires}")


@main.command()
@click.argument("ref")
@click.option("--by", default=None)
@pass_app
@handle_errors
def release(app: AppContext, ref: str, by: str | None) -> None:
    """Release the claim on run REF (whoever holds it)."""
    run = app.claims.release(app.lifecycle.resolve(ref).id, by or app.config.agent)
    out.print_success(f"Released {run.id}")


@main.command()
@click.option("--dry-run", is_flag=True, help="Only list the expired claims")
@pass_app
@handle_errors
def gc(app: AppContext, dry_run: bool) -> None:
    """Release every expired claim."""
    runs = app.claims.gc_stale_claims(dry_run=dry_run)
    verb = "Would release" if dry_run else "Released"
    out.print_success(f"{verb} {len(runs)} stale claim(s)")
    for run in runs:
        out.console.print(f"  {run.id}")


@main.command()
@pass_app
@handle_errors
def ready(app: AppContext) -> None:
    """List runs an agent could pick up now."""
    out.print_ready(app.claims.ready_runs())


# =============================================================================
# Bulk sync
# =============================================================================


@main.command("export")
@click.argument("path", required=False, type=click.Path(dir_okay=False))
@pass_app
@handle_errors
def export_runs(app: AppContext, path: str | None) -> None:
    """Export all runs to PATH as JSONL (default: <state dir>/runs.jsonl)."""
    target = Path(path) if path else app.config.state_dir / DEFAULT_EXPORT_FILE
    stats = JsonlRunSync(app.store).export(target)
    app.emitter.runs_exported(str(target), stats)
    out.print_success(f"Exported {stats.exported} run(s) to {target}")


@main.command("import")
@click.argument("path", required=False, type=click.Path(dir_okay=False))
@pass_app
@handle_errors
def import_runs(app: AppContext, path: str | None) -> None:
    """Merge runs from a JSONL export; newer records win."""
    source = Path(path) if path else app.config.state_dir / DEFAULT_EXPORT_FILE
    stats = JsonlRunSync(app.store).import_(source)
    app.emitter.runs_imported(str(source), stats)
    out.print_sync_stats(stats)


# =============================================================================
# Verification
# =============================================================================


@main.group()
def verify() -> None:
    """Record and inspect verification of a run."""


@verify.command("run")
@click.argument("ref")
@checks_option
@click.option("--agent", default=None)
@click.option("--conclude", is_flag=True, help="Move the run to passed/failed afterwards")
@pass_app
@handle_errors
def verify_run(
    app: AppContext, ref: str, checks_path: str | None, agent: str | None, conclude: bool
) -> None:
    """Execute the command checks of run REF."""
    run = app.lifecycle.resolve(ref)
    checks = _load_checks(checks_path)
    runner = SubprocessCheckRunner(app.config.root, app.config.check_timeout_seconds)
    by = agent or app.config.agent or "agent"
    snapshot = app.recorder.run_checks(
        run.id,
        checks,
        runner,
        by=by,
        claimant=agent,
        on_progress=lambda name, i, n: out.console.print(f"[dim]({i}/{n}) {name}[/dim]"),
    )
    out.print_snapshot(snapshot)
    if conclude:
        result = app.recorder.conclude(run.id, checks, by=by)
        out.print_success(f"{result.run_id}: {result.from_state} → {result.to_state}")


@verify.command("manual")
@click.argument("ref")
@click.argument("name")
@click.argument("status", type=click.Choice(["pass", "fail"]))
@click.option("--reason", default=None)
@click.option("--by", default="human", show_default=True)
@checks_option
@pass_app
@handle_errors
def verify_manual(
    app: AppContext,
    ref: str,
    name: str,
    status: str,
    reason: str | None,
    by: str,
    checks_path: str | None,
) -> None:
    """Record a manual pass/fail for check NAME on run REF."""
    run = app.lifecycle.resolve(ref)
    checks = _load_checks(checks_path) if checks_path else None
    app.recorder.record_manual(run.id, name, status, reason=reason, by=by, checks=checks)
    out.print_success(f"{run.id}: {name} {status}")


@verify.command("status")
@click.argument("ref", required=False)
@checks_option
@pass_app
@handle_errors
def verify_status(app: AppContext, ref: str | None, checks_path: str | None) -> None:
    """Show derived check status for run REF."""
    run = app.resolve_run(ref)
    out.print_snapshot(app.recorder.snapshot(run.id, _load_checks(checks_path)))


@verify.command("conclude")
@click.argument("ref")
@checks_option
@click.option("--skip-manual", is_flag=True, help="Waive pending manual checks")
@click.option("--by", default="human", show_default=True)
@pass_app
@handle_errors
def verify_conclude(
    app: AppContext, ref: str, checks_path: str | None, skip_manual: bool, by: str
) -> None:
    """Move run REF to verifying/passed or verifying/failed."""
    run = app.lifecycle.resolve(ref)
    result = app.recorder.conclude(
        run.id, _load_checks(checks_path), by=by, skip_manual=skip_manual
    )
    out.print_success(f"{result.run_id}: {result.from_state} → {result.to_state}")


# =============================================================================
# Workflows
# =============================================================================


@main.group()
def workflow() -> None:
    """Start and validate workflow definitions."""


@workflow.command("list")
@pass_app
@handle_errors
def workflow_list(app: AppContext) -> None:
    """List available workflow definitions."""
    for name in app.definitions.list_names():
        out.console.print(name)


@workflow.command("start")
@click.argument("name")
@click.option("--set", "assignments", multiple=True, help="Initial state key=value (repeatable)")
@pass_app
@handle_errors
def workflow_start(app: AppContext, name: str, assignments: tuple[str, ...]) -> None:
    """Start an instance of workflow NAME."""
    instance = app.engine.start(name, parse_assignments(assignments))
    out.print_success(f"Started {instance.id} at {instance.current_step}")


@workflow.command("validate")
@click.argument("target")
@pass_app
@handle_errors
def workflow_validate(app: AppContext, target: str) -> None:
    """Validate a definition file, or a definition by name."""
    path = Path(target)
    if path.is_file():
        definition = app.definitions.validate_file(path)
    else:
        definition = app.definitions.load(path.stem if path.suffix == ".toml" else target)
    out.print_success(
        f"{definition.name} v{definition.version}: {len(definition.steps)} steps, "
        f"terminal {', '.join(definition.terminal_steps)}"
    )


@workflow.command("show")
@click.argument("instance_id")
@pass_app
@handle_errors
def workflow_show(app: AppContext, instance_id: str) -> None:
    """Show a workflow instance."""
    out.print_instance(app.engine.get(instance_id))


@main.group()
def step() -> None:
    """Move a workflow instance between steps."""


@step.command("next")
@click.argument("instance_id")
@pass_app
@handle_errors
def step_next(app: AppContext, instance_id: str) -> None:
    """List the outgoing edges of the current step."""
    instance = app.engine.get(instance_id)
    out.print_instance(instance)
    out.print_next_steps(app.engine.next_steps(instance_id))


@step.command("done")
@click.argument("instance_id")
@click.option("--set", "assignments", multiple=True, help="Step output key=value (repeatable)")
@click.option("--to", "to_step", default=None, help="Take this edge regardless of its condition")
@pass_app
@handle_errors
def step_done(
    app: AppContext, instance_id: str, assignments: tuple[str, ...], to_step: str | None
) -> None:
    """Complete the current step and advance."""
    result = app.engine.advance(instance_id, parse_assignments(assignments), to=to_step)
    if result.completed:
        out.print_success(f"{result.instance_id} completed at {result.to_step}")
    else:
        out.print_success(f"{result.instance_id}: {result.from_step} → {result.to_step}")


if __name__ == "__main__":
    main()
