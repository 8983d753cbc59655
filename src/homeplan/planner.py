"""Unit-of-work facade over the store and the engine components.

Every state-changing call runs inside one ``Store.transaction()``: either all
of its writes land, or none do. Events are delivered only after the
transaction has committed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import date, datetime

from homeplan.errors import HomeplanError, InvalidTransition, ItemInUse, NotFound
from homeplan.events import Event, ForecastSlip, LogNotifier, Notifier, dispatch
from homeplan.forecast import HomeForecast, ScheduleStatus, is_slip, recompute_home, schedule_status
from homeplan.gates import (
    CategoryGateStatus,
    GateCheckResult,
    GateStatus,
    category_gate_statuses,
    check_gate_blocking,
    gate_statuses,
    incomplete_prerequisites,
)
from homeplan.graph import DependencyGraph
from homeplan.models import (
    CategoryGate,
    Database,
    EngineConfig,
    GateBlockMode,
    GateScope,
    Home,
    HomeTask,
    PunchItem,
    PunchSeverity,
    PunchStatus,
    TemplateItem,
    TransitionKind,
)
from homeplan.persistence import Store
from homeplan.state_machine import TaskStateMachine, TransitionResult

logger = logging.getLogger(__name__)


class Planner:
    def __init__(
        self,
        store: Store,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.notifier = notifier if notifier is not None else LogNotifier()
        self.clock = clock

    def _emit(self, events: Iterable[Event]) -> None:
        for event in events:
            dispatch(self.notifier, event)

    def _recompute(self, db: Database, home_id: str, events: list[Event]) -> HomeForecast:
        forecast, previous = recompute_home(db, home_id, self.clock())
        if is_slip(previous, forecast.completion_date):
            home = db.homes[home_id]
            events.append(ForecastSlip(home.id, home.label, previous, forecast.completion_date))
        return forecast

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def config(self) -> EngineConfig:
        return self.store.load().config

    def configure(
        self,
        skip_weekends: bool | None = None,
        holidays: list[date] | None = None,
        at_risk_days: int | None = None,
    ) -> EngineConfig:
        """Update engine settings and refresh every home's forecast."""
        events: list[Event] = []
        with self.store.transaction() as db:
            if skip_weekends is not None:
                db.config.skip_weekends = skip_weekends
            if holidays is not None:
                db.config.holidays = sorted(set(holidays))
            if at_risk_days is not None:
                db.config.at_risk_days = at_risk_days
            for home_id in db.homes:
                self._recompute(db, home_id, events)
            config = db.config
        self._emit(events)
        return config

    # ------------------------------------------------------------------
    # Template items and dependencies
    # ------------------------------------------------------------------

    def template_items(self) -> list[TemplateItem]:
        items = list(self.store.load().template_items.values())
        items.sort(key=lambda i: (i.sort_order, i.id))
        return items

    def add_template_item(
        self,
        name: str,
        duration_days: int,
        sort_order: int | None = None,
        category: str | None = None,
        is_critical_gate: bool = False,
        gate_scope: GateScope = GateScope.DOWNSTREAM_ONLY,
        gate_block_mode: GateBlockMode = GateBlockMode.SCHEDULE_ONLY,
        gate_name: str | None = None,
    ) -> TemplateItem:
        if duration_days < 0:
            raise HomeplanError("Duration must be zero or more working days")
        with self.store.transaction() as db:
            item_id = self.store.generate_id("TI", db.template_items)
            if sort_order is None:
                sort_order = max((i.sort_order for i in db.template_items.values()), default=0) + 1
            item = TemplateItem(
                id=item_id,
                name=name,
                duration_days=duration_days,
                sort_order=sort_order,
                category=category,
                is_critical_gate=is_critical_gate,
                gate_scope=gate_scope,
                gate_block_mode=gate_block_mode,
                gate_name=gate_name,
            )
            db.template_items[item_id] = item
        return item

    def delete_template_item(self, item_id: str) -> None:
        """Delete a template item that no home task references."""
        with self.store.transaction() as db:
            db.require_item(item_id)
            in_use = sum(1 for t in db.tasks.values() if t.template_item_id == item_id)
            if in_use:
                raise ItemInUse(item_id, in_use)
            graph = DependencyGraph(db.template_items, db.dependencies)
            graph.remove_item(item_id)
            db.dependencies = graph.edges()
        logger.info("Deleted template item %s", item_id)

    def get_dependencies(self, item_id: str) -> list[str]:
        db = self.store.load()
        db.require_item(item_id)
        return DependencyGraph(db.template_items, db.dependencies).dependencies_of(item_id)

    def set_dependencies(self, item_id: str, depends_on_ids: Iterable[str]) -> list[str]:
        """Replace the prerequisites of a template item.

        Raises ``InvalidDependency``, ``UnknownNode`` or ``CycleDetected``
        without touching the stored edges.
        """
        with self.store.transaction() as db:
            graph = DependencyGraph(db.template_items, db.dependencies)
            committed = graph.set_dependencies(item_id, depends_on_ids)
            db.dependencies = graph.edges()
        return committed

    # ------------------------------------------------------------------
    # Category gates
    # ------------------------------------------------------------------

    def category_gates(self) -> list[CategoryGate]:
        gates = list(self.store.load().category_gates.values())
        gates.sort(key=lambda g: g.category.casefold())
        return gates

    def set_category_gate(
        self,
        category: str,
        gate_name: str | None = None,
        gate_block_mode: GateBlockMode = GateBlockMode.SCHEDULE_ONLY,
    ) -> CategoryGate:
        """Create or replace the gate on *category*."""
        category = category.strip()
        if not category:
            raise HomeplanError("A category gate needs a category name")
        gate = CategoryGate(category=category, gate_name=gate_name, gate_block_mode=gate_block_mode)
        with self.store.transaction() as db:
            db.category_gates[category] = gate
        logger.info("Category gate set on %s", category)
        return gate

    def remove_category_gate(self, category: str) -> None:
        with self.store.transaction() as db:
            if db.category_gates.pop(category.strip(), None) is None:
                raise NotFound("category gate", category)
        logger.info("Category gate removed from %s", category)

    # ------------------------------------------------------------------
    # Homes
    # ------------------------------------------------------------------

    def homes(self) -> list[Home]:
        return list(self.store.load().homes.values())

    def get_home(self, home_id: str) -> Home:
        return self.store.load().require_home(home_id)

    def create_home(
        self,
        label: str,
        start_date: date | None = None,
        target_completion_date: date | None = None,
    ) -> Home:
        """Create a home with a task snapshot of every template item."""
        events: list[Event] = []
        with self.store.transaction() as db:
            home_id = self.store.generate_id("H", db.homes)
            home = Home(
                id=home_id,
                label=label,
                start_date=start_date,
                target_completion_date=target_completion_date,
            )
            db.homes[home_id] = home
            for item in sorted(db.template_items.values(), key=lambda i: (i.sort_order, i.id)):
                task_id = self.store.generate_id("HT", db.tasks)
                db.tasks[task_id] = HomeTask(
                    id=task_id,
                    home_id=home_id,
                    template_item_id=item.id,
                    name_snapshot=item.name,
                    duration_days_snapshot=item.duration_days,
                    sort_order_snapshot=item.sort_order,
                )
            self._recompute(db, home_id, events)
        self._emit(events)
        logger.info("Created home %s (%s)", home_id, label)
        return home

    def home_tasks(self, home_id: str) -> list[HomeTask]:
        """Tasks of a home, repairing any that are in an inconsistent state."""
        with self.store.transaction() as db:
            db.require_home(home_id)
            tasks = db.tasks_for_home(home_id)
            for task in tasks:
                TaskStateMachine.repair(task)
        return tasks

    def compute_home_forecast(self, home_id: str) -> HomeForecast:
        events: list[Event] = []
        with self.store.transaction() as db:
            forecast = self._recompute(db, home_id, events)
        self._emit(events)
        return forecast

    def schedule_status(self, home_id: str) -> ScheduleStatus:
        db = self.store.load()
        home = db.require_home(home_id)
        return schedule_status(home.forecast_completion_date, home.target_completion_date, db.config)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> HomeTask:
        with self.store.transaction() as db:
            task = db.require_task(task_id)
            TaskStateMachine.repair(task)
        return task

    def check_gate_blocking(self, task_id: str, kind: TransitionKind) -> GateCheckResult:
        db = self.store.load()
        task = db.require_task(task_id)
        return check_gate_blocking(db, task.home_id, task.id, task.sort_order_snapshot, kind)

    def gate_statuses(self, home_id: str) -> list[GateStatus]:
        return gate_statuses(self.store.load(), home_id)

    def category_gate_statuses(self, home_id: str) -> list[CategoryGateStatus]:
        return category_gate_statuses(self.store.load(), home_id)

    def incomplete_prerequisites(self, task_id: str) -> list[HomeTask]:
        """Prerequisite tasks that must be completed before *task_id* can be scheduled."""
        db = self.store.load()
        return incomplete_prerequisites(db, db.require_task(task_id))

    def transition(
        self,
        task_id: str,
        kind: TransitionKind,
        scheduled_date: date | None = None,
        contractor_id: str | None = None,
    ) -> TransitionResult:
        """Run one task transition and the forecast recompute it triggers.

        A gate or prerequisite rejection is returned on the result and
        changes nothing. ``InvalidTransition``, ``NotFound`` and
        ``CycleDetected`` abort the whole unit of work, except that a repair
        of the task's own inconsistent state is still saved.
        """
        events: list[Event] = []
        refused: InvalidTransition | None = None
        with self.store.transaction() as db:
            task = db.require_task(task_id)
            repaired = TaskStateMachine.repair(task)
            try:
                result = TaskStateMachine(db).apply(task, kind, scheduled_date, contractor_id, now=self.clock())
            except InvalidTransition as e:
                # apply() raises before touching anything, so only the repair is committed
                if not repaired:
                    raise
                refused = e
            else:
                if result.rejection is not None:
                    events.append(result.rejection)
                elif result.recompute_forecast:
                    self._recompute(db, task.home_id, events)
        if refused is not None:
            raise refused
        self._emit(events)
        return result

    # ------------------------------------------------------------------
    # Punch items
    # ------------------------------------------------------------------

    def punch_items(self, home_id: str, open_only: bool = False) -> list[PunchItem]:
        db = self.store.load()
        db.require_home(home_id)
        items = [p for p in db.punch_items.values() if p.home_id == home_id]
        if open_only:
            items = [p for p in items if p.status.is_open]
        return items

    def add_punch_item(
        self,
        home_id: str,
        title: str,
        task_id: str | None = None,
        category: str | None = None,
        severity: PunchSeverity = PunchSeverity.MINOR,
    ) -> PunchItem:
        with self.store.transaction() as db:
            db.require_home(home_id)
            if task_id is not None and db.require_task(task_id).home_id != home_id:
                raise HomeplanError(f"Task {task_id} does not belong to home {home_id}")
            punch_id = self.store.generate_id("P", db.punch_items)
            punch = PunchItem(
                id=punch_id,
                home_id=home_id,
                title=title,
                related_home_task_id=task_id,
                category=category,
                severity=severity,
            )
            db.punch_items[punch_id] = punch
        return punch

    def set_punch_status(self, punch_id: str, status: PunchStatus) -> PunchItem:
        with self.store.transaction() as db:
            punch = db.require_punch_item(punch_id)
            punch.status = status
        return punch
