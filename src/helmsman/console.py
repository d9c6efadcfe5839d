"""Rich console rendering for the helmsman command line."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from helmsman.domain.verification import CheckStatus

if TYPE_CHECKING:
    from helmsman.domain.models import NextStep, ReadyRun, Run, SyncStats, WorkflowInstance
    from helmsman.domain.verification import VerificationSnapshot

# Shared console instances
console = Console()
error_console = Console(stderr=True)

STATUS_STYLES = {
    CheckStatus.PASS: "green",
    CheckStatus.FAIL: "red",
    CheckStatus.ERROR: "bold red",
    CheckStatus.PENDING: "yellow",
}


def print_error(message: str, hint: str | None = None) -> None:
    """Print formatted error message to stderr."""
    content = Text(f"ERROR: {message}", style="bold red")
    if hint:
        content.append(f"\n\nHint: {hint}", style="yellow")
    error_console.print(Panel(content, title="Error", border_style="red"))


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_run(run: Run) -> None:
    """Print one run's fields and transition history."""
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    table.add_row("Run", run.id)
    table.add_row("Plan", f"{run.plan_path} ({run.plan_ref})")
    table.add_row("State", run.state)
    if run.intent:
        table.add_row("Intent", run.intent)
    table.add_row("Priority", str(run.priority))
    if run.claimed_by:
        table.add_row("Claimed by", f"{run.claimed_by} until {run.claim_expires}")
    if run.depends_on:
        table.add_row("Depends on", ", ".join(run.depends_on))
    if run.files_touched:
        table.add_row("Files", ", ".join(run.files_touched))
    table.add_row("Created", run.created)
    table.add_row("Updated", run.updated)
    console.print(table)

    if run.transitions:
        console.print("\n[bold]Transitions:[/bold]")
        for t in run.transitions:
            forced = " [red](forced)[/red]" if t.forced else ""
            reason = f" - {t.reason}" if t.reason else ""
            console.print(f"  {t.at}  {t.from_state} → {t.to_state} by {t.by}{forced}{reason}")


def print_runs(runs: Sequence[Run], title: str = "Runs") -> None:
    if not runs:
        console.print("[dim]No runs.[/dim]")
        return
    table = Table(title=title)
    table.add_column("Run", style="cyan", no_wrap=True)
    table.add_column("Ref")
    table.add_column("State", style="magenta")
    table.add_column("Claimed by")
    table.add_column("Updated", style="dim")
    for run in runs:
        table.add_row(run.id, run.plan_ref, run.state, run.claimed_by or "", run.updated)
    console.print(table)


def print_ready(ready: Sequence[ReadyRun]) -> None:
    if not ready:
        console.print("[dim]Nothing ready.[/dim]")
        return
    table = Table(title="Ready")
    table.add_column("Priority", justify="right")
    table.add_column("Run", style="cyan", no_wrap=True)
    table.add_column("State", style="magenta")
    table.add_column("Conflicts", style="yellow")
    for item in ready:
        table.add_row(
            str(item.run.priority), item.run.id, item.run.state, ", ".join(item.conflicts)
        )
    console.print(table)


def print_snapshot(snapshot: VerificationSnapshot) -> None:
    """Print per-check status and the aggregate."""
    table = Table(title="Verification")
    table.add_column("Check", style="cyan")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Exit", justify="right")
    table.add_column("By", style="dim")
    for check in snapshot.checks:
        style = STATUS_STYLES[check.status]
        table.add_row(
            check.name,
            check.kind,
            f"[{style}]{check.status.value}[/{style}]",
            "" if check.exit_code is None else str(check.exit_code),
            check.by or "",
        )
    console.print(table)
    style = STATUS_STYLES[snapshot.status]
    console.print(f"Overall: [{style}]{snapshot.status.value}[/{style}]")

    for check in snapshot.checks:
        if check.status in (CheckStatus.FAIL, CheckStatus.ERROR) and check.output_tail:
            console.print(f"\n[red]--- {check.name} output ---[/red]")
            console.print(check.output_tail, markup=False, highlight=False)


def print_instance(instance: WorkflowInstance) -> None:
    console.print(f"[bold]{instance.id}[/bold] ({instance.workflow_name})")
    console.print(f"  Current step: [cyan]{instance.current_step}[/cyan]")
    console.print(f"  History: {' → '.join(instance.history)}")
    if instance.state:
        console.print(f"  State: {instance.state}")


def print_next_steps(steps: Sequence[NextStep]) -> None:
    if not steps:
        console.print("[dim]No outgoing edges.[/dim]")
        return
    table = Table(title="Next steps")
    table.add_column("Target", style="cyan")
    table.add_column("Label")
    table.add_column("Condition")
    table.add_column("Met")
    for step in steps:
        condition = "(default)" if step.is_default else step.condition or ""
        met = "[green]yes[/green]" if step.condition_met else "[dim]no[/dim]"
        table.add_row(step.target, step.label or "", condition, met)
    console.print(table)


def print_sync_stats(stats: SyncStats) -> None:
    console.print(
        f"created {stats.created}, updated {stats.updated}, "
        f"unchanged {stats.unchanged}, skipped {stats.skipped}"
    )
    for error in stats.errors:
        error_console.print(f"[yellow]skipped:[/yellow] {error}", markup=True)
