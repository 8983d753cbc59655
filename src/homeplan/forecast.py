"""Critical-path forecasting for a single home."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

import networkx as nx

from homeplan.errors import CycleDetected
from homeplan.graph import kahn_order
from homeplan.models import (
    Database,
    EngineConfig,
    Home,
    HomeTask,
    TaskStatus,
    TemplateDependency,
)
from homeplan.workdays import add_working_days

logger = logging.getLogger(__name__)


class ScheduleStatus(enum.StrEnum):
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BEHIND = "behind"


@dataclass
class TaskForecast:
    """A task with its computed offsets (in working days) and dates."""

    task: HomeTask
    early_start: int
    early_finish: int
    late_start: int
    late_finish: int
    start_date: date | None
    finish_date: date | None
    predecessors: list[str]

    @property
    def slack_days(self) -> int:
        return self.late_start - self.early_start

    @property
    def is_critical(self) -> bool:
        return self.slack_days <= 0


@dataclass
class HomeForecast:
    home_id: str
    tasks: list[TaskForecast]
    completion_date: date | None
    total_working_days: int | None

    @property
    def critical_path(self) -> list[TaskForecast]:
        return [tf for tf in self.tasks if tf.is_critical]

    def for_task(self, task_id: str) -> TaskForecast:
        return next(tf for tf in self.tasks if tf.task.id == task_id)


def build_home_dag(
    tasks: Iterable[HomeTask],
    dependencies: Iterable[TemplateDependency],
) -> nx.DiGraph:
    """Project the template graph onto one home's live tasks.

    Canceled tasks are left out, as is any edge whose endpoints do not both
    have a task in this home.
    """
    G = nx.DiGraph()
    by_item: dict[str, str] = {}
    for task in tasks:
        if task.status == TaskStatus.CANCELED:
            continue
        G.add_node(task.id, task=task)
        by_item[task.template_item_id] = task.id
    for dep in dependencies:
        prereq = by_item.get(dep.depends_on_item_id)
        dependent = by_item.get(dep.template_item_id)
        if prereq is None or dependent is None:
            continue
        G.add_edge(prereq, dependent)
    return G


def compute_forecast(
    home: Home,
    tasks: list[HomeTask],
    dependencies: Iterable[TemplateDependency],
    config: EngineConfig,
) -> HomeForecast:
    """Forward and backward pass over the home's task graph.

    Offsets are counted in working days from ``home.start_date``; dates are
    only filled in when the home has a start date. Raises ``CycleDetected``
    naming the tasks involved when the projected graph is cyclic.
    """
    G = build_home_dag(tasks, dependencies)
    if G.number_of_nodes() == 0:
        return HomeForecast(home.id, [], None, 0 if home.start_date else None)

    def sort_key(tid: str) -> tuple[int, str]:
        return (G.nodes[tid]["task"].sort_order_snapshot, tid)

    topo_order, residual = kahn_order(G, key=sort_key)
    if residual:
        raise CycleDetected([G.nodes[t]["task"].name_snapshot for t in residual], residual)

    # --- Forward pass (earliest start / earliest finish) ---
    es: dict[str, int] = {}
    ef: dict[str, int] = {}
    for tid in topo_order:
        preds = list(G.predecessors(tid))
        es[tid] = max((ef[p] for p in preds), default=0)
        ef[tid] = es[tid] + max(0, G.nodes[tid]["task"].duration_days_snapshot)

    total = max(ef.values())

    # --- Backward pass (latest start / latest finish) ---
    lf: dict[str, int] = {}
    ls: dict[str, int] = {}
    for tid in reversed(topo_order):
        succs = list(G.successors(tid))
        lf[tid] = min((ls[s] for s in succs), default=total)
        ls[tid] = lf[tid] - max(0, G.nodes[tid]["task"].duration_days_snapshot)

    results: list[TaskForecast] = []
    for tid in topo_order:
        start = finish = None
        if home.start_date is not None:
            start = add_working_days(home.start_date, es[tid], config)
            finish = add_working_days(home.start_date, ef[tid], config)
        results.append(
            TaskForecast(
                task=G.nodes[tid]["task"],
                early_start=es[tid],
                early_finish=ef[tid],
                late_start=ls[tid],
                late_finish=lf[tid],
                start_date=start,
                finish_date=finish,
                predecessors=sorted(G.predecessors(tid), key=sort_key),
            )
        )

    if home.start_date is None:
        return HomeForecast(home.id, results, None, None)

    completion = max(tf.finish_date for tf in results)
    return HomeForecast(home.id, results, completion, total)


def apply_forecast(db: Database, forecast: HomeForecast, now: datetime | None = None) -> date | None:
    """Write *forecast* onto the home and its tasks.

    Returns the previous ``forecast_completion_date`` of the home.
    """
    home = db.require_home(forecast.home_id)
    previous = home.forecast_completion_date
    by_id = {tf.task.id: tf for tf in forecast.tasks}

    for task in db.tasks_for_home(home.id):
        tf = by_id.get(task.id)
        if tf is None or tf.finish_date is None:
            task.clear_forecast()
            continue
        task.forecast_start_date = tf.start_date
        task.forecast_date = tf.finish_date
        task.early_start_offset = tf.early_start
        task.early_finish_offset = tf.early_finish
        task.slack_days = tf.slack_days
        task.is_critical_path = tf.is_critical
        task.blocked_by_count = len(tf.predecessors)

    home.forecast_completion_date = forecast.completion_date
    home.forecast_total_working_days = forecast.total_working_days
    home.forecast_computed_at = now or datetime.now()
    return previous


def recompute_home(db: Database, home_id: str, now: datetime | None = None) -> tuple[HomeForecast, date | None]:
    """Compute and apply the forecast for one home in *db*.

    Nothing is written when the computation fails.
    """
    home = db.require_home(home_id)
    forecast = compute_forecast(home, db.tasks_for_home(home_id), db.dependencies, db.config)
    previous = apply_forecast(db, forecast, now)
    logger.info(
        "Forecast for home %s: %s (%s working days)",
        home_id,
        forecast.completion_date or "unset",
        forecast.total_working_days,
    )
    return forecast, previous


def is_slip(previous: date | None, new: date | None) -> bool:
    return previous is not None and new is not None and new > previous


def schedule_status(
    forecast_completion: date | None,
    target_completion: date | None,
    config: EngineConfig,
) -> ScheduleStatus:
    """Compare a forecast with its target.

    On or before the target is on track; within ``config.at_risk_days``
    calendar days after it is at risk; anything later is behind. A missing
    date on either side counts as on track.
    """
    if forecast_completion is None or target_completion is None:
        return ScheduleStatus.ON_TRACK
    if forecast_completion <= target_completion:
        return ScheduleStatus.ON_TRACK
    if forecast_completion <= target_completion + timedelta(days=config.at_risk_days):
        return ScheduleStatus.AT_RISK
    return ScheduleStatus.BEHIND
