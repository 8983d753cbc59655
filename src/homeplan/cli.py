"""Typer CLI for homeplan."""

from __future__ import annotations

import logging
from datetime import date
from typing import Annotated, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from homeplan.errors import HomeplanError
from homeplan.forecast import ScheduleStatus
from homeplan.models import (
    GateBlockMode,
    GateScope,
    PunchSeverity,
    PunchStatus,
    TaskStatus,
    TransitionKind,
)
from homeplan.persistence import DEFAULT_DB_FILE, Store
from homeplan.planner import Planner
from homeplan.state_machine import TransitionResult
from homeplan.workdays import working_days_between

app = typer.Typer(
    name="homeplan",
    help="Dependency-aware construction scheduling for homes.",
    no_args_is_help=True,
)
item_app = typer.Typer(help="Manage the shared work-item template.", no_args_is_help=True)
home_app = typer.Typer(help="Create homes and inspect their forecasts.", no_args_is_help=True)
task_app = typer.Typer(help="Move home tasks through their lifecycle.", no_args_is_help=True)
punch_app = typer.Typer(help="Record and clear punch items.", no_args_is_help=True)
gate_app = typer.Typer(help="Hold back later categories until a category is finished.", no_args_is_help=True)
app.add_typer(item_app, name="item")
app.add_typer(home_app, name="home")
app.add_typer(task_app, name="task")
app.add_typer(punch_app, name="punch")
app.add_typer(gate_app, name="category-gate")

console = Console()

_state = {"db": DEFAULT_DB_FILE}

STATUS_STYLES = {
    ScheduleStatus.ON_TRACK: "green",
    ScheduleStatus.AT_RISK: "yellow",
    ScheduleStatus.BEHIND: "bold red",
}


def _get_planner() -> Planner:
    return Planner(Store(_state["db"]))


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid date '{value}', expected YYYY-MM-DD.[/red]")
        raise typer.Exit(1)


def _fail(error: HomeplanError) -> NoReturn:
    console.print(f"[red]{error}[/red]")
    raise typer.Exit(1)


def _fmt(d: date | None) -> str:
    return d.strftime("%a %b %d, %Y") if d else "-"


@app.callback()
def main(
    db: Annotated[str, typer.Option("--db", envvar="HOMEPLAN_DB", help="Path to the database file")] = DEFAULT_DB_FILE,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log engine activity")] = False,
) -> None:
    _state["db"] = db
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.command()
def init(
    skip_weekends: Annotated[
        Optional[bool], typer.Option("--skip-weekends/--no-skip-weekends", help="Treat Saturdays and Sundays as non-working")
    ] = None,
    holiday: Annotated[Optional[list[str]], typer.Option("--holiday", help="Non-working date (YYYY-MM-DD), repeatable; replaces the list")] = None,
    at_risk_days: Annotated[Optional[int], typer.Option(help="Calendar days past target still counted as at risk")] = None,
) -> None:
    """Initialize (or update) engine settings.

    Settings that are not given keep their current values.
    """
    holidays = [_parse_date(h) for h in holiday] if holiday else None
    config = _get_planner().configure(
        skip_weekends=skip_weekends,
        holidays=holidays,
        at_risk_days=at_risk_days,
    )
    console.print(
        f"[green]Settings saved.[/green] Weekends skipped: {config.skip_weekends}, "
        f"holidays: {len(config.holidays)}, at-risk window: {config.at_risk_days} days"
    )


# ---------------------------------------------------------------------------
# Template items
# ---------------------------------------------------------------------------


@item_app.command("add")
def item_add(
    name: str,
    duration: Annotated[int, typer.Option("--duration", "-d", help="Duration in working days")],
    sort: Annotated[Optional[int], typer.Option("--sort", help="Sort order (defaults to last)")] = None,
    category: Annotated[Optional[str], typer.Option("--category", "-c")] = None,
    gate: Annotated[bool, typer.Option("--gate", help="Item is a critical quality gate")] = False,
    gate_scope: Annotated[GateScope, typer.Option(help="Which tasks the gate blocks")] = GateScope.DOWNSTREAM_ONLY,
    gate_mode: Annotated[GateBlockMode, typer.Option(help="Which transitions the gate blocks")] = GateBlockMode.SCHEDULE_ONLY,
    gate_name: Annotated[Optional[str], typer.Option(help="Gate display name (defaults to category)")] = None,
) -> None:
    """Add a work item to the template."""
    try:
        item = _get_planner().add_template_item(
            name,
            duration,
            sort_order=sort,
            category=category,
            is_critical_gate=gate,
            gate_scope=gate_scope,
            gate_block_mode=gate_mode,
            gate_name=gate_name,
        )
    except HomeplanError as e:
        _fail(e)
    console.print(f"[green]Added '{name}' as {item.id}[/green]")


@item_app.command("list")
def item_list() -> None:
    """List template items with their dependencies."""
    planner = _get_planner()
    items = planner.template_items()
    if not items:
        console.print("[dim]No template items.[/dim]")
        return

    table = Table(title="Template")
    table.add_column("ID")
    table.add_column("Sort")
    table.add_column("Name")
    table.add_column("Days")
    table.add_column("Category")
    table.add_column("Depends On")
    table.add_column("Gate")
    for item in items:
        gate = "-"
        if item.is_critical_gate:
            gate = f"{item.gate_label} ({item.gate_scope.value}, {item.gate_block_mode.value})"
        table.add_row(
            item.id,
            str(item.sort_order),
            item.name,
            str(item.duration_days),
            item.category or "-",
            ", ".join(planner.get_dependencies(item.id)) or "-",
            gate,
            style="bold yellow" if item.is_critical_gate else None,
        )
    console.print(table)


@item_app.command("deps")
def item_deps(
    item_id: str,
    on: Annotated[Optional[list[str]], typer.Option("--on", help="Item IDs this depends on")] = None,
) -> None:
    """Replace the dependencies of a template item.

    Dependencies can be given individually (--on TI-1 --on TI-2) or
    comma-separated (--on TI-1,TI-2). Omit --on to clear them.
    """
    expanded: list[str] = []
    for d in on or []:
        expanded.extend(part.strip() for part in d.split(",") if part.strip())

    try:
        committed = _get_planner().set_dependencies(item_id, expanded)
    except HomeplanError as e:
        _fail(e)
    console.print(f"[green]{item_id} now depends on: {', '.join(committed) or '(nothing)'}[/green]")


@item_app.command("delete")
def item_delete(item_id: str) -> None:
    """Delete a template item no home uses."""
    try:
        _get_planner().delete_template_item(item_id)
    except HomeplanError as e:
        _fail(e)
    console.print(f"[green]Deleted {item_id}[/green]")


# ---------------------------------------------------------------------------
# Category gates
# ---------------------------------------------------------------------------


@gate_app.command("set")
def category_gate_set(
    category: str,
    name: Annotated[Optional[str], typer.Option("--name", help="Gate display name (defaults to '<category> Gate')")] = None,
    mode: Annotated[GateBlockMode, typer.Option(help="Which transitions the gate blocks")] = GateBlockMode.SCHEDULE_ONLY,
) -> None:
    """Gate a category: later categories wait until all its tasks are done."""
    try:
        gate = _get_planner().set_category_gate(category, name, mode)
    except HomeplanError as e:
        _fail(e)
    console.print(f"[green]Gate '{gate.gate_label}' set on category {gate.category}[/green]")


@gate_app.command("remove")
def category_gate_remove(category: str) -> None:
    """Remove the gate from a category."""
    try:
        _get_planner().remove_category_gate(category)
    except HomeplanError as e:
        _fail(e)
    console.print(f"[green]Removed the gate on {category}[/green]")


@gate_app.command("list")
def category_gate_list() -> None:
    """List category gates."""
    gates = _get_planner().category_gates()
    if not gates:
        console.print("[dim]No category gates.[/dim]")
        return
    table = Table(title="Category Gates")
    table.add_column("Category")
    table.add_column("Gate")
    table.add_column("Blocks")
    for g in gates:
        table.add_row(g.category, g.gate_label, g.gate_block_mode.value)
    console.print(table)


# ---------------------------------------------------------------------------
# Homes
# ---------------------------------------------------------------------------


@home_app.command("add")
def home_add(
    label: str,
    start: Annotated[Optional[str], typer.Option(help="Construction start date (YYYY-MM-DD)")] = None,
    target: Annotated[Optional[str], typer.Option(help="Target completion date (YYYY-MM-DD)")] = None,
) -> None:
    """Create a home from the current template."""
    home = _get_planner().create_home(label, _parse_date(start), _parse_date(target))
    console.print(f"[green]Created {label} as {home.id}[/green]")
    if home.forecast_completion_date:
        console.print(f"Forecast completion: [bold]{_fmt(home.forecast_completion_date)}[/bold]")


@home_app.command("show")
def home_show(
    home_id: str,
    critical: Annotated[bool, typer.Option("--critical", help="Only critical-path tasks")] = False,
) -> None:
    """Show a home's tasks with their forecast dates."""
    planner = _get_planner()
    try:
        home = planner.get_home(home_id)
        tasks = planner.home_tasks(home_id)
    except HomeplanError as e:
        _fail(e)

    if critical:
        tasks = [t for t in tasks if t.is_critical_path]

    table = Table(title=f"{home.label} ({home.id})")
    table.add_column("ID")
    table.add_column("Task")
    table.add_column("Days")
    table.add_column("Status")
    table.add_column("Scheduled")
    table.add_column("Forecast Start")
    table.add_column("Forecast Finish")
    table.add_column("Slack")
    for t in tasks:
        style = None
        if t.status == TaskStatus.COMPLETED:
            style = "dim"
        elif t.is_critical_path:
            style = "bold yellow"
        table.add_row(
            t.id,
            t.name_snapshot,
            str(t.duration_days_snapshot),
            t.status.value,
            _fmt(t.scheduled_date),
            _fmt(t.forecast_start_date),
            _fmt(t.forecast_date),
            "-" if t.slack_days is None else str(t.slack_days),
            style=style,
        )
    console.print(table)
    _print_home_summary(planner, home_id)


def _print_home_summary(planner: Planner, home_id: str) -> None:
    home = planner.get_home(home_id)
    status = planner.schedule_status(home_id)
    console.print(f"Start:    {_fmt(home.start_date)}")
    console.print(f"Target:   {_fmt(home.target_completion_date)}")
    console.print(
        f"Forecast: [bold]{_fmt(home.forecast_completion_date)}[/bold]"
        f"  ({home.forecast_total_working_days if home.forecast_total_working_days is not None else '-'} working days)"
    )
    console.print(f"Status:   [{STATUS_STYLES[status]}]{status.value.replace('_', ' ')}[/]")


@home_app.command("forecast")
def home_forecast(home_id: str) -> None:
    """Recompute a home's critical-path forecast."""
    planner = _get_planner()
    try:
        forecast = planner.compute_home_forecast(home_id)
    except HomeplanError as e:
        _fail(e)
    console.print(f"[green]Recomputed forecast for {home_id}: {len(forecast.tasks)} task(s).[/green]")
    crit = forecast.critical_path
    if crit:
        console.print("Critical path: " + " -> ".join(tf.task.name_snapshot for tf in crit))
    _print_home_summary(planner, home_id)


@home_app.command("gates")
def home_gates(home_id: str) -> None:
    """Show every gate of a home and whether it is blocking."""
    planner = _get_planner()
    try:
        statuses = planner.gate_statuses(home_id)
        category_statuses = planner.category_gate_statuses(home_id)
    except HomeplanError as e:
        _fail(e)
    if not statuses and not category_statuses:
        console.print("[dim]This home has no gates.[/dim]")
        return

    if statuses:
        table = Table(title="Critical Gates")
        table.add_column("Task")
        table.add_column("Gate")
        table.add_column("Sort")
        table.add_column("Scope")
        table.add_column("Blocks")
        table.add_column("Open Punch")
        for s in statuses:
            table.add_row(
                f"{s.task_name} ({s.task_id})",
                s.gate_name,
                str(s.sort_order),
                s.gate_scope.value,
                s.gate_block_mode.value,
                str(s.open_punch_count),
                style="bold red" if s.is_blocked else "green",
            )
        console.print(table)

    if category_statuses:
        table = Table(title="Category Gates")
        table.add_column("Gate")
        table.add_column("Blocks")
        table.add_column("Unfinished Tasks")
        for c in category_statuses:
            table.add_row(
                c.gate_name,
                c.gate_block_mode.value,
                ", ".join(c.incomplete_task_names) or "-",
                style="bold red" if c.is_blocked else "green",
            )
        console.print(table)


@home_app.command("list")
def home_list() -> None:
    """List homes with their forecast status."""
    planner = _get_planner()
    homes = planner.homes()
    if not homes:
        console.print("[dim]No homes.[/dim]")
        return

    table = Table(title="Homes")
    table.add_column("ID")
    table.add_column("Home")
    table.add_column("Start")
    table.add_column("Target")
    table.add_column("Forecast")
    table.add_column("Status")
    for home in homes:
        status = planner.schedule_status(home.id)
        table.add_row(
            home.id,
            home.label,
            _fmt(home.start_date),
            _fmt(home.target_completion_date),
            _fmt(home.forecast_completion_date),
            f"[{STATUS_STYLES[status]}]{status.value.replace('_', ' ')}[/]",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def _run_transition(
    task_id: str,
    kind: TransitionKind,
    scheduled: str | None = None,
    contractor: str | None = None,
) -> TransitionResult:
    try:
        result = _get_planner().transition(task_id, kind, _parse_date(scheduled), contractor)
    except HomeplanError as e:
        _fail(e)
    if result.rejection is not None:
        console.print(f"[bold red]{result.rejection.message}[/bold red]")
        raise typer.Exit(2)
    console.print(
        f"[green]{result.task.name_snapshot} ({task_id}): "
        f"{result.previous_status.value} -> {result.task.status.value}[/green]"
    )
    return result


@task_app.command("show")
def task_show(task_id: str) -> None:
    """Show one task, including whether gates currently block scheduling it."""
    planner = _get_planner()
    try:
        task = planner.get_task(task_id)
        gate = planner.check_gate_blocking(task_id, TransitionKind.SCHEDULE)
        waiting = planner.incomplete_prerequisites(task_id)
    except HomeplanError as e:
        _fail(e)

    console.print(f"[bold]{task.name_snapshot}[/bold] ({task.id}, home {task.home_id})")
    console.print(f"  Status:          {task.status.value}")
    console.print(f"  Duration:        {task.duration_days_snapshot} working day(s)")
    console.print(f"  Scheduled:       {_fmt(task.scheduled_date)}")
    console.print(f"  Forecast start:  {_fmt(task.forecast_start_date)}")
    console.print(f"  Forecast finish: {_fmt(task.forecast_date)}")
    if task.completed_at:
        console.print(f"  Completed:       {task.completed_at:%Y-%m-%d %H:%M}")
    if gate.is_blocked:
        if gate.incomplete_task_names:
            reason = f"waiting on {', '.join(gate.incomplete_task_names)}"
        else:
            reason = f"{gate.open_punch_count} open punch item(s)"
        console.print(f"  [red]Blocked by gate '{gate.blocking_gate_name}' ({reason})[/red]")
    if waiting:
        names = ", ".join(t.name_snapshot for t in waiting)
        console.print(f"  [yellow]Waiting on prerequisites: {names}[/yellow]")


@task_app.command("schedule")
def task_schedule(
    task_id: str,
    on: Annotated[str, typer.Argument(help="Scheduled date (YYYY-MM-DD)")],
    contractor: Annotated[Optional[str], typer.Option(help="Contractor ID")] = None,
) -> None:
    """Schedule an unscheduled task."""
    _run_transition(task_id, TransitionKind.SCHEDULE, on, contractor)


@task_app.command("reschedule")
def task_reschedule(
    task_id: str,
    on: Annotated[str, typer.Argument(help="New scheduled date (YYYY-MM-DD)")],
    contractor: Annotated[Optional[str], typer.Option(help="Contractor ID")] = None,
) -> None:
    """Move a scheduled task to a new date."""
    _run_transition(task_id, TransitionKind.RESCHEDULE, on, contractor)


@task_app.command("request-confirm")
def task_request_confirm(task_id: str) -> None:
    """Ask the contractor to confirm a scheduled task."""
    _run_transition(task_id, TransitionKind.REQUEST_CONFIRMATION)


@task_app.command("confirm")
def task_confirm(task_id: str) -> None:
    """Record the contractor's confirmation."""
    _run_transition(task_id, TransitionKind.CONFIRM)


@task_app.command("decline")
def task_decline(task_id: str) -> None:
    """Record that the contractor declined."""
    _run_transition(task_id, TransitionKind.DECLINE)


@task_app.command("complete")
def task_complete(task_id: str) -> None:
    """Mark a task completed."""
    task = _run_transition(task_id, TransitionKind.COMPLETE).task
    if task.scheduled_date and task.completed_at:
        elapsed = working_days_between(task.scheduled_date, task.completed_at.date(), _get_planner().config())
        console.print(
            f"  Finished {elapsed} working day(s) after its scheduled start "
            f"(estimate {task.duration_days_snapshot})."
        )


@task_app.command("cancel")
def task_cancel(task_id: str) -> None:
    """Cancel a task's schedule, returning it to Unscheduled."""
    _run_transition(task_id, TransitionKind.CANCEL)


# ---------------------------------------------------------------------------
# Punch items
# ---------------------------------------------------------------------------


@punch_app.command("add")
def punch_add(
    home_id: str,
    title: str,
    task: Annotated[Optional[str], typer.Option("--task", help="Related home task ID")] = None,
    category: Annotated[Optional[str], typer.Option(help="Category the item belongs to")] = None,
    severity: PunchSeverity = PunchSeverity.MINOR,
) -> None:
    """Record a punch item."""
    try:
        punch = _get_planner().add_punch_item(home_id, title, task, category, severity)
    except HomeplanError as e:
        _fail(e)
    console.print(f"[green]Added punch item {punch.id}[/green]")


@punch_app.command("set-status")
def punch_set_status(punch_id: str, status: PunchStatus) -> None:
    """Move a punch item to Open, ReadyForReview or Closed."""
    try:
        punch = _get_planner().set_punch_status(punch_id, status)
    except HomeplanError as e:
        _fail(e)
    console.print(f"[green]{punch.id} is now {punch.status.value}[/green]")


@punch_app.command("close")
def punch_close(punch_id: str) -> None:
    """Close a punch item."""
    punch_set_status(punch_id, PunchStatus.CLOSED)


@punch_app.command("list")
def punch_list(
    home_id: str,
    open_only: Annotated[bool, typer.Option("--open", help="Only open items")] = False,
) -> None:
    """List a home's punch items."""
    try:
        items = _get_planner().punch_items(home_id, open_only)
    except HomeplanError as e:
        _fail(e)
    if not items:
        console.print("[dim]No punch items.[/dim]")
        return

    table = Table(title="Punch List")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Task")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Status")
    for p in items:
        table.add_row(
            p.id,
            p.title,
            p.related_home_task_id or "-",
            p.category or "-",
            p.severity.value,
            p.status.value,
            style=None if p.status.is_open else "dim",
        )
    console.print(table)
