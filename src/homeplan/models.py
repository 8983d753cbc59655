"""Template, home, task and punch-item models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime

from homeplan.errors import NotFound


class TaskStatus(enum.StrEnum):
    UNSCHEDULED = "Unscheduled"
    SCHEDULED = "Scheduled"
    PENDING_CONFIRM = "PendingConfirm"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELED = "Canceled"
    DECLINED = "Declined"


class GateScope(enum.StrEnum):
    DOWNSTREAM_ONLY = "DownstreamOnly"
    ALL = "All"

    @classmethod
    def _missing_(cls, value):
        # Older databases spell the unrestricted scope "AllScheduling".
        if value == "AllScheduling":
            return cls.ALL
        return None


class TransitionKind(enum.StrEnum):
    SCHEDULE = "schedule"
    RESCHEDULE = "reschedule"
    REQUEST_CONFIRMATION = "request_confirmation"
    CONFIRM = "confirm"
    DECLINE = "decline"
    COMPLETE = "complete"
    CANCEL = "cancel"


class GateBlockMode(enum.StrEnum):
    SCHEDULE_ONLY = "ScheduleOnly"
    SCHEDULE_AND_CONFIRM = "ScheduleAndConfirm"

    def blocks(self, kind: TransitionKind) -> bool:
        """Whether a gate in this mode can block a transition of *kind*."""
        if kind in (TransitionKind.SCHEDULE, TransitionKind.RESCHEDULE):
            return True
        if self is GateBlockMode.SCHEDULE_AND_CONFIRM:
            return kind in (TransitionKind.CONFIRM, TransitionKind.COMPLETE)
        return False


class PunchStatus(enum.StrEnum):
    OPEN = "Open"
    READY_FOR_REVIEW = "ReadyForReview"
    CLOSED = "Closed"

    @property
    def is_open(self) -> bool:
        return self is not PunchStatus.CLOSED


class PunchSeverity(enum.StrEnum):
    MINOR = "Minor"
    MAJOR = "Major"
    CRITICAL = "Critical"


def _date_or_none(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _iso_or_none(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class EngineConfig:
    """Engine-wide settings stored alongside the data."""

    skip_weekends: bool = True
    holidays: list[date] = field(default_factory=list)
    at_risk_days: int = 7

    def to_dict(self) -> dict:
        return {
            "skip_weekends": self.skip_weekends,
            "holidays": [d.isoformat() for d in self.holidays],
            "at_risk_days": self.at_risk_days,
        }

    @classmethod
    def from_dict(cls, d: dict) -> EngineConfig:
        return cls(
            skip_weekends=d.get("skip_weekends", True),
            holidays=[date.fromisoformat(h) for h in d.get("holidays", [])],
            at_risk_days=d.get("at_risk_days", 7),
        )


@dataclass
class TemplateItem:
    """A reusable unit of work shared by every home."""

    id: str
    name: str
    duration_days: int
    sort_order: int
    category: str | None = None
    is_critical_gate: bool = False
    gate_scope: GateScope = GateScope.DOWNSTREAM_ONLY
    gate_block_mode: GateBlockMode = GateBlockMode.SCHEDULE_ONLY
    gate_name: str | None = None

    @property
    def gate_label(self) -> str:
        return self.gate_name or self.category or "Critical Gate"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "duration_days": self.duration_days,
            "sort_order": self.sort_order,
            "category": self.category,
            "is_critical_gate": self.is_critical_gate,
            "gate_scope": self.gate_scope.value,
            "gate_block_mode": self.gate_block_mode.value,
            "gate_name": self.gate_name,
        }

    @classmethod
    def from_dict(cls, item_id: str, d: dict) -> TemplateItem:
        return cls(
            id=item_id,
            name=d["name"],
            duration_days=d["duration_days"],
            sort_order=d.get("sort_order", 0),
            category=d.get("category"),
            is_critical_gate=d.get("is_critical_gate", False),
            gate_scope=GateScope(d.get("gate_scope", "DownstreamOnly")),
            gate_block_mode=GateBlockMode(d.get("gate_block_mode", "ScheduleOnly")),
            gate_name=d.get("gate_name"),
        )


@dataclass
class CategoryGate:
    """Holds back later categories of a home until this category is finished.

    A category comes after another when its earliest task (by sort order)
    does; a task without a category is placed at its own sort order.
    """

    category: str
    gate_name: str | None = None
    gate_block_mode: GateBlockMode = GateBlockMode.SCHEDULE_ONLY

    @property
    def gate_label(self) -> str:
        return self.gate_name or f"{self.category} Gate"

    def to_dict(self) -> dict:
        return {
            "gate_name": self.gate_name,
            "gate_block_mode": self.gate_block_mode.value,
        }

    @classmethod
    def from_dict(cls, category: str, d: dict) -> CategoryGate:
        return cls(
            category=category,
            gate_name=d.get("gate_name"),
            gate_block_mode=GateBlockMode(d.get("gate_block_mode", "ScheduleOnly")),
        )


@dataclass(frozen=True)
class TemplateDependency:
    """``template_item_id`` depends on ``depends_on_item_id``."""

    depends_on_item_id: str
    template_item_id: str

    def to_dict(self) -> dict:
        return {
            "depends_on_item_id": self.depends_on_item_id,
            "template_item_id": self.template_item_id,
        }

    @classmethod
    def from_dict(cls, d: dict) -> TemplateDependency:
        return cls(d["depends_on_item_id"], d["template_item_id"])


@dataclass
class Home:
    id: str
    label: str
    start_date: date | None = None
    target_completion_date: date | None = None
    forecast_completion_date: date | None = None
    forecast_total_working_days: int | None = None
    forecast_computed_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "start_date": _iso_or_none(self.start_date),
            "target_completion_date": _iso_or_none(self.target_completion_date),
            "forecast_completion_date": _iso_or_none(self.forecast_completion_date),
            "forecast_total_working_days": self.forecast_total_working_days,
            "forecast_computed_at": _iso_or_none(self.forecast_computed_at),
        }

    @classmethod
    def from_dict(cls, home_id: str, d: dict) -> Home:
        computed_at = d.get("forecast_computed_at")
        return cls(
            id=home_id,
            label=d.get("label", home_id),
            start_date=_date_or_none(d.get("start_date")),
            target_completion_date=_date_or_none(d.get("target_completion_date")),
            forecast_completion_date=_date_or_none(d.get("forecast_completion_date")),
            forecast_total_working_days=d.get("forecast_total_working_days"),
            forecast_computed_at=datetime.fromisoformat(computed_at) if computed_at else None,
        )


@dataclass
class HomeTask:
    """A per-home snapshot of a template item.

    The snapshot fields are copied when the home is created and are never
    re-synced from the template, so later template edits do not move homes
    that are already underway.
    """

    id: str
    home_id: str
    template_item_id: str
    name_snapshot: str
    duration_days_snapshot: int
    sort_order_snapshot: int
    status: TaskStatus = TaskStatus.UNSCHEDULED
    scheduled_date: date | None = None
    completed_at: datetime | None = None
    contractor_id: str | None = None
    # Derived by the forecast engine
    forecast_start_date: date | None = None
    forecast_date: date | None = None
    early_start_offset: int | None = None
    early_finish_offset: int | None = None
    slack_days: int | None = None
    is_critical_path: bool = False
    blocked_by_count: int = 0

    def clear_forecast(self) -> None:
        self.forecast_start_date = None
        self.forecast_date = None
        self.early_start_offset = None
        self.early_finish_offset = None
        self.slack_days = None
        self.is_critical_path = False
        self.blocked_by_count = 0

    def to_dict(self) -> dict:
        return {
            "home_id": self.home_id,
            "template_item_id": self.template_item_id,
            "name_snapshot": self.name_snapshot,
            "duration_days_snapshot": self.duration_days_snapshot,
            "sort_order_snapshot": self.sort_order_snapshot,
            "status": self.status.value,
            "scheduled_date": _iso_or_none(self.scheduled_date),
            "completed_at": _iso_or_none(self.completed_at),
            "contractor_id": self.contractor_id,
            "forecast_start_date": _iso_or_none(self.forecast_start_date),
            "forecast_date": _iso_or_none(self.forecast_date),
            "early_start_offset": self.early_start_offset,
            "early_finish_offset": self.early_finish_offset,
            "slack_days": self.slack_days,
            "is_critical_path": self.is_critical_path,
            "blocked_by_count": self.blocked_by_count,
        }

    @classmethod
    def from_dict(cls, task_id: str, d: dict) -> HomeTask:
        completed_at = d.get("completed_at")
        return cls(
            id=task_id,
            home_id=d["home_id"],
            template_item_id=d["template_item_id"],
            name_snapshot=d["name_snapshot"],
            duration_days_snapshot=d["duration_days_snapshot"],
            sort_order_snapshot=d["sort_order_snapshot"],
            status=TaskStatus(d.get("status", "Unscheduled")),
            scheduled_date=_date_or_none(d.get("scheduled_date")),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            contractor_id=d.get("contractor_id"),
            forecast_start_date=_date_or_none(d.get("forecast_start_date")),
            forecast_date=_date_or_none(d.get("forecast_date")),
            early_start_offset=d.get("early_start_offset"),
            early_finish_offset=d.get("early_finish_offset"),
            slack_days=d.get("slack_days"),
            is_critical_path=d.get("is_critical_path", False),
            blocked_by_count=d.get("blocked_by_count", 0),
        )


@dataclass
class PunchItem:
    """A defect or follow-up recorded against a task (or a category of a home)."""

    id: str
    home_id: str
    title: str
    related_home_task_id: str | None = None
    category: str | None = None
    status: PunchStatus = PunchStatus.OPEN
    severity: PunchSeverity = PunchSeverity.MINOR

    def to_dict(self) -> dict:
        return {
            "home_id": self.home_id,
            "title": self.title,
            "related_home_task_id": self.related_home_task_id,
            "category": self.category,
            "status": self.status.value,
            "severity": self.severity.value,
        }

    @classmethod
    def from_dict(cls, punch_id: str, d: dict) -> PunchItem:
        return cls(
            id=punch_id,
            home_id=d["home_id"],
            title=d.get("title", ""),
            related_home_task_id=d.get("related_home_task_id"),
            category=d.get("category"),
            status=PunchStatus(d.get("status", "Open")),
            severity=PunchSeverity(d.get("severity", "Minor")),
        )


@dataclass
class Database:
    """Everything the engine reads and writes, loaded as one snapshot."""

    config: EngineConfig = field(default_factory=EngineConfig)
    template_items: dict[str, TemplateItem] = field(default_factory=dict)
    dependencies: list[TemplateDependency] = field(default_factory=list)
    homes: dict[str, Home] = field(default_factory=dict)
    tasks: dict[str, HomeTask] = field(default_factory=dict)
    punch_items: dict[str, PunchItem] = field(default_factory=dict)
    category_gates: dict[str, CategoryGate] = field(default_factory=dict)

    def require_item(self, item_id: str) -> TemplateItem:
        try:
            return self.template_items[item_id]
        except KeyError:
            raise NotFound("template item", item_id) from None

    def require_home(self, home_id: str) -> Home:
        try:
            return self.homes[home_id]
        except KeyError:
            raise NotFound("home", home_id) from None

    def require_task(self, task_id: str) -> HomeTask:
        try:
            return self.tasks[task_id]
        except KeyError:
            raise NotFound("task", task_id) from None

    def require_punch_item(self, punch_id: str) -> PunchItem:
        try:
            return self.punch_items[punch_id]
        except KeyError:
            raise NotFound("punch item", punch_id) from None

    def category_of(self, task: HomeTask) -> str | None:
        item = self.template_items.get(task.template_item_id)
        return item.category if item else None

    def tasks_for_home(self, home_id: str) -> list[HomeTask]:
        """Tasks of a home ordered by their sort-order snapshot."""
        tasks = [t for t in self.tasks.values() if t.home_id == home_id]
        tasks.sort(key=lambda t: (t.sort_order_snapshot, t.id))
        return tasks

    def open_punch_count(self, task: HomeTask) -> int:
        """Open punch items linked to *task* directly or through its category."""
        category = self.category_of(task)
        count = 0
        for punch in self.punch_items.values():
            if not punch.status.is_open:
                continue
            if punch.related_home_task_id == task.id:
                count += 1
            elif (
                punch.related_home_task_id is None
                and category is not None
                and punch.home_id == task.home_id
                and punch.category == category
            ):
                count += 1
        return count

    def to_dict(self) -> dict:
        return {
            "config": self.config.to_dict(),
            "template_items": {iid: i.to_dict() for iid, i in self.template_items.items()},
            "dependencies": [d.to_dict() for d in self.dependencies],
            "homes": {hid: h.to_dict() for hid, h in self.homes.items()},
            "tasks": {tid: t.to_dict() for tid, t in self.tasks.items()},
            "punch_items": {pid: p.to_dict() for pid, p in self.punch_items.items()},
            "category_gates": {c: g.to_dict() for c, g in self.category_gates.items()},
        }

    @classmethod
    def from_dict(cls, raw: dict) -> Database:
        return cls(
            config=EngineConfig.from_dict(raw.get("config", {})),
            template_items={
                iid: TemplateItem.from_dict(iid, d)
                for iid, d in raw.get("template_items", {}).items()
            },
            dependencies=[TemplateDependency.from_dict(d) for d in raw.get("dependencies", [])],
            homes={hid: Home.from_dict(hid, d) for hid, d in raw.get("homes", {}).items()},
            tasks={tid: HomeTask.from_dict(tid, d) for tid, d in raw.get("tasks", {}).items()},
            punch_items={
                pid: PunchItem.from_dict(pid, d)
                for pid, d in raw.get("punch_items", {}).items()
            },
            category_gates={
                c: CategoryGate.from_dict(c, d)
                for c, d in raw.get("category_gates", {}).items()
            },
        )
