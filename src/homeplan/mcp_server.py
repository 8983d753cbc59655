"""MCP server for homeplan: exposes the scheduling engine to AI assistants."""

from __future__ import annotations

import json
import os
from datetime import date

from mcp.server.fastmcp import FastMCP

from homeplan.errors import HomeplanError
from homeplan.forecast import HomeForecast
from homeplan.models import GateBlockMode, HomeTask, PunchSeverity, PunchStatus, TransitionKind
from homeplan.persistence import DEFAULT_DB_FILE, Store
from homeplan.planner import Planner

mcp = FastMCP(
    "homeplan",
    instructions="""\
homeplan schedules construction work across homes. Every home is created from a \
shared template of work items; each home task is a snapshot of one item \
(name, duration in working days, sort order).

Key concepts:
- **Dependencies**: template items depend on other template items. The graph is \
kept acyclic; edits that would create a cycle are rejected with the names of the \
items involved.
- **Forecast**: for each home the critical path (longest dependency chain) from the \
home's start date gives the forecast completion date. Durations are working days; \
weekends are skipped.
- **Gates**: some items are quality gates. While a gate's punch list has open items \
it blocks scheduling of downstream tasks (and, in ScheduleAndConfirm mode, confirming \
and completing them). A blocked transition returns the gate name and open punch count.
- **Task lifecycle**: schedule -> request_confirmation -> confirm -> complete; \
reschedule, decline and cancel are also available. Cancel returns a task to Unscheduled.

Typical workflow:
1. Use get_forecast to see a home's tasks and forecast completion
2. Use check_gate before proposing a date, or just call transition_task
3. If a transition is gate-blocked, use get_gate_status and close the punch items
""",
)


def _get_planner() -> Planner:
    return Planner(Store(os.environ.get("HOMEPLAN_DB", DEFAULT_DB_FILE)))


def _error(e: HomeplanError) -> str:
    return json.dumps(e.to_dict(), indent=2)


def _task_to_dict(t: HomeTask) -> dict:
    d = {
        "id": t.id,
        "home_id": t.home_id,
        "name": t.name_snapshot,
        "duration_days": t.duration_days_snapshot,
        "sort_order": t.sort_order_snapshot,
        "status": t.status.value,
        "scheduled_date": t.scheduled_date.isoformat() if t.scheduled_date else None,
        "forecast_start": t.forecast_start_date.isoformat() if t.forecast_start_date else None,
        "forecast_finish": t.forecast_date.isoformat() if t.forecast_date else None,
        "slack_days": t.slack_days,
        "is_critical": t.is_critical_path,
    }
    if t.completed_at:
        d["completed_at"] = t.completed_at.isoformat()
    return d


def _forecast_to_dict(f: HomeForecast) -> dict:
    return {
        "home_id": f.home_id,
        "forecast_completion": f.completion_date.isoformat() if f.completion_date else None,
        "total_working_days": f.total_working_days,
        "critical_path": [tf.task.name_snapshot for tf in f.critical_path],
    }


# ---------------------------------------------------------------------------
# Template tools
# ---------------------------------------------------------------------------


@mcp.tool()
def get_dependencies(item_id: str) -> str:
    """List the template items a template item depends on.

    Args:
        item_id: Template item ID (e.g. "TI-4")
    """
    try:
        deps = _get_planner().get_dependencies(item_id)
    except HomeplanError as e:
        return _error(e)
    return json.dumps({"item_id": item_id, "depends_on": deps}, indent=2)


@mcp.tool()
def set_dependencies(item_id: str, depends_on: list[str]) -> str:
    """Replace the dependencies of a template item. Rejected if it would create a cycle.

    Args:
        item_id: Template item ID (e.g. "TI-4")
        depends_on: Template item IDs it should depend on (empty list clears them)
    """
    try:
        committed = _get_planner().set_dependencies(item_id, depends_on)
    except HomeplanError as e:
        return _error(e)
    return json.dumps({"item_id": item_id, "depends_on": committed}, indent=2)


@mcp.tool()
def set_category_gate(
    category: str,
    enabled: bool = True,
    gate_name: str | None = None,
    block_mode: str = "ScheduleOnly",
) -> str:
    """Gate a category so later categories wait until all of its tasks are done, or remove the gate.

    Args:
        category: Category name (e.g. "Foundation")
        enabled: False removes the gate
        gate_name: Display name (defaults to "<category> Gate")
        block_mode: ScheduleOnly or ScheduleAndConfirm
    """
    planner = _get_planner()
    try:
        if not enabled:
            planner.remove_category_gate(category)
            return f"Removed the gate on {category}"
        gate = planner.set_category_gate(category, gate_name, GateBlockMode(block_mode))
    except ValueError:
        return json.dumps({"error": "InvalidBlockMode", "message": "block_mode must be ScheduleOnly or ScheduleAndConfirm."})
    except HomeplanError as e:
        return _error(e)
    return f"Gate '{gate.gate_label}' set on category {gate.category}"


# ---------------------------------------------------------------------------
# Home tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_homes() -> str:
    """List every home with its start, target and forecast completion dates."""
    planner = _get_planner()
    homes = []
    for h in planner.homes():
        d = h.to_dict()
        d["id"] = h.id
        d["schedule_status"] = planner.schedule_status(h.id).value
        homes.append(d)
    return json.dumps(homes, indent=2)


@mcp.tool()
def get_forecast(home_id: str) -> str:
    """Show a home's tasks with forecast dates and its schedule status.

    Args:
        home_id: Home ID (e.g. "H-2")
    """
    planner = _get_planner()
    try:
        home = planner.get_home(home_id)
        tasks = planner.home_tasks(home_id)
        status = planner.schedule_status(home_id)
    except HomeplanError as e:
        return _error(e)
    return json.dumps(
        {
            "home": {"id": home.id, **home.to_dict()},
            "schedule_status": status.value,
            "tasks": [_task_to_dict(t) for t in tasks],
        },
        indent=2,
    )


@mcp.tool()
def recompute_forecast(home_id: str) -> str:
    """Recompute a home's critical-path forecast.

    Args:
        home_id: Home ID (e.g. "H-2")
    """
    try:
        forecast = _get_planner().compute_home_forecast(home_id)
    except HomeplanError as e:
        return _error(e)
    return json.dumps(_forecast_to_dict(forecast), indent=2)


@mcp.tool()
def get_gate_status(home_id: str) -> str:
    """List the gates of a home: critical gates with their open punch counts and
    category gates with their unfinished tasks.

    Args:
        home_id: Home ID (e.g. "H-2")
    """
    planner = _get_planner()
    try:
        statuses = planner.gate_statuses(home_id)
        category_statuses = planner.category_gate_statuses(home_id)
    except HomeplanError as e:
        return _error(e)
    return json.dumps(
        {
            "critical_gates": [s.to_dict() for s in statuses],
            "category_gates": [c.to_dict() for c in category_statuses],
        },
        indent=2,
    )


# ---------------------------------------------------------------------------
# Task tools
# ---------------------------------------------------------------------------


@mcp.tool()
def check_gate(task_id: str, transition: str = "schedule") -> str:
    """Check whether a gate would block a transition, without changing anything.

    Args:
        task_id: Home task ID (e.g. "HT-7")
        transition: One of schedule, reschedule, confirm, complete
    """
    try:
        kind = TransitionKind(transition)
    except ValueError:
        return json.dumps({"error": "InvalidTransition", "message": f"Unknown transition '{transition}'"})
    try:
        result = _get_planner().check_gate_blocking(task_id, kind)
    except HomeplanError as e:
        return _error(e)
    return json.dumps(
        {
            "is_blocked": result.is_blocked,
            "blocking_gate_name": result.blocking_gate_name,
            "open_punch_count": result.open_punch_count,
            "incomplete_tasks": list(result.incomplete_task_names),
        },
        indent=2,
    )


@mcp.tool()
def transition_task(
    task_id: str,
    transition: str,
    scheduled_date: str | None = None,
    contractor_id: str | None = None,
) -> str:
    """Move a task through its lifecycle.

    Args:
        task_id: Home task ID (e.g. "HT-7")
        transition: schedule, reschedule, request_confirmation, confirm, decline, complete or cancel
        scheduled_date: Required for schedule and reschedule (YYYY-MM-DD)
        contractor_id: Optional contractor to assign when scheduling
    """
    try:
        kind = TransitionKind(transition)
    except ValueError:
        return json.dumps({"error": "InvalidTransition", "message": f"Unknown transition '{transition}'"})
    try:
        when = date.fromisoformat(scheduled_date) if scheduled_date else None
    except ValueError:
        return json.dumps({"error": "InvalidDate", "message": "scheduled_date must be YYYY-MM-DD."})

    try:
        result = _get_planner().transition(task_id, kind, when, contractor_id)
    except HomeplanError as e:
        return _error(e)

    if result.rejection is not None:
        return json.dumps({"error": type(result.rejection).__name__, **result.rejection.to_dict()}, indent=2)
    return json.dumps(
        {
            "previous_status": result.previous_status.value,
            "task": _task_to_dict(result.task),
            "forecast_recomputed": result.recompute_forecast,
        },
        indent=2,
    )


# ---------------------------------------------------------------------------
# Punch tools
# ---------------------------------------------------------------------------


@mcp.tool()
def add_punch_item(
    home_id: str,
    title: str,
    task_id: str | None = None,
    category: str | None = None,
    severity: str = "Minor",
) -> str:
    """Record a punch item against a home task or a category.

    Args:
        home_id: Home ID (e.g. "H-2")
        title: Short description of the defect
        task_id: Related home task ID
        category: Category the item belongs to, when not tied to one task
        severity: Minor, Major or Critical
    """
    try:
        punch = _get_planner().add_punch_item(home_id, title, task_id, category, PunchSeverity(severity))
    except ValueError:
        return json.dumps({"error": "InvalidSeverity", "message": "severity must be Minor, Major or Critical."})
    except HomeplanError as e:
        return _error(e)
    return f"Added punch item {punch.id}"


@mcp.tool()
def set_punch_status(punch_id: str, status: str) -> str:
    """Change a punch item's status. Closing the last open item of a gate unblocks it.

    Args:
        punch_id: Punch item ID (e.g. "P-3")
        status: Open, ReadyForReview or Closed
    """
    try:
        new_status = PunchStatus(status)
    except ValueError:
        return json.dumps({"error": "InvalidStatus", "message": "status must be Open, ReadyForReview or Closed."})
    try:
        punch = _get_planner().set_punch_status(punch_id, new_status)
    except HomeplanError as e:
        return _error(e)
    return f"{punch.id} is now {punch.status.value}"


def main():
    """Entry point for the MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
