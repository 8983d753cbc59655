"""Scheduling guards: critical gates, category gates and template prerequisites.

A critical gate is a home task whose template item is flagged
``is_critical_gate``. While the gate's punch list has open items it blocks
transitions on tasks of the same home, subject to its scope and block mode.

A category gate holds back every later category of a home until each task
in the gated category is Completed or Canceled.
"""

from __future__ import annotations

from dataclasses import dataclass

from homeplan.models import (
    CategoryGate,
    Database,
    GateBlockMode,
    GateScope,
    HomeTask,
    TaskStatus,
    TemplateItem,
    TransitionKind,
)

FINISHED = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELED})


@dataclass(frozen=True)
class GateCheckResult:
    is_blocked: bool
    blocking_gate_name: str | None = None
    blocking_task_id: str | None = None
    open_punch_count: int = 0
    # set when a category gate blocks
    incomplete_task_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class GateStatus:
    task_id: str
    task_name: str
    gate_name: str
    gate_scope: GateScope
    gate_block_mode: GateBlockMode
    sort_order: int
    open_punch_count: int

    @property
    def is_blocked(self) -> bool:
        return self.open_punch_count > 0

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "task_name": self.task_name,
            "gate_name": self.gate_name,
            "gate_scope": self.gate_scope.value,
            "gate_block_mode": self.gate_block_mode.value,
            "sort_order": self.sort_order,
            "open_punch_count": self.open_punch_count,
            "is_blocked": self.is_blocked,
        }


@dataclass(frozen=True)
class CategoryGateStatus:
    category: str
    gate_name: str
    gate_block_mode: GateBlockMode
    incomplete_task_names: tuple[str, ...]

    @property
    def is_blocked(self) -> bool:
        return bool(self.incomplete_task_names)

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "gate_name": self.gate_name,
            "gate_block_mode": self.gate_block_mode.value,
            "incomplete_tasks": list(self.incomplete_task_names),
            "is_blocked": self.is_blocked,
        }


def _norm(category: str) -> str:
    return category.strip().casefold()


def _gate_tasks(db: Database, home_id: str) -> list[tuple[HomeTask, TemplateItem]]:
    gates = []
    for task in db.tasks_for_home(home_id):
        item = db.template_items.get(task.template_item_id)
        if item is not None and item.is_critical_gate:
            gates.append((task, item))
    return gates


def _applies(
    item: TemplateItem,
    gate: HomeTask,
    candidate_sort_order: int,
    kind: TransitionKind,
) -> bool:
    if item.gate_scope == GateScope.DOWNSTREAM_ONLY and gate.sort_order_snapshot >= candidate_sort_order:
        return False
    return item.gate_block_mode.blocks(kind)


def _category_ranks(db: Database, tasks: list[HomeTask]) -> dict[str, int]:
    """Earliest sort order of each category present in *tasks*."""
    ranks: dict[str, int] = {}
    for task in tasks:
        category = db.category_of(task)
        if category is None:
            continue
        key = _norm(category)
        ranks[key] = min(ranks.get(key, task.sort_order_snapshot), task.sort_order_snapshot)
    return ranks


def _unfinished_in_category(db: Database, tasks: list[HomeTask], category: str) -> tuple[str, ...]:
    key = _norm(category)
    names = []
    for t in tasks:
        c = db.category_of(t)
        if c is not None and _norm(c) == key and t.status not in FINISHED:
            names.append(t.name_snapshot)
    return tuple(names)


def _check_critical_gates(
    db: Database,
    home_id: str,
    candidate_sort_order: int,
    kind: TransitionKind,
) -> GateCheckResult | None:
    blocking: list[tuple[HomeTask, TemplateItem, int]] = []
    for gate, item in _gate_tasks(db, home_id):
        if not _applies(item, gate, candidate_sort_order, kind):
            continue
        count = db.open_punch_count(gate)
        if count > 0:
            blocking.append((gate, item, count))

    if not blocking:
        return None

    gate, item, count = min(
        blocking,
        key=lambda b: (-b[0].sort_order_snapshot, b[1].gate_label, b[0].id),
    )
    return GateCheckResult(
        is_blocked=True,
        blocking_gate_name=item.gate_label,
        blocking_task_id=gate.id,
        open_punch_count=count,
    )


def _check_category_gates(
    db: Database,
    home_id: str,
    candidate_task_id: str,
    candidate_sort_order: int,
    kind: TransitionKind,
) -> GateCheckResult | None:
    if not db.category_gates:
        return None
    tasks = db.tasks_for_home(home_id)
    ranks = _category_ranks(db, tasks)

    candidate = db.tasks.get(candidate_task_id)
    own = db.category_of(candidate) if candidate is not None else None
    own_key = _norm(own) if own is not None else None
    own_rank = ranks.get(own_key, candidate_sort_order) if own_key else candidate_sort_order

    gates: list[tuple[int, CategoryGate]] = []
    for gate in db.category_gates.values():
        key = _norm(gate.category)
        rank = ranks.get(key)
        if rank is None or key == own_key or rank >= own_rank:
            continue
        if gate.gate_block_mode.blocks(kind):
            gates.append((rank, gate))

    # nearest upstream category first
    for _, gate in sorted(gates, key=lambda g: (-g[0], g[1].gate_label)):
        unfinished = _unfinished_in_category(db, tasks, gate.category)
        if unfinished:
            return GateCheckResult(
                is_blocked=True,
                blocking_gate_name=gate.gate_label,
                incomplete_task_names=unfinished,
            )
    return None


def check_gate_blocking(
    db: Database,
    home_id: str,
    candidate_task_id: str,
    candidate_sort_order: int,
    kind: TransitionKind,
) -> GateCheckResult:
    """Decide whether any gate of the home blocks *kind* on the candidate task.

    Critical gates are checked first. When several block, the one nearest
    upstream (highest sort order) is reported; equal sort orders fall back to
    gate name, then task id. An ``ALL`` gate also blocks its own task.
    Category gates are checked next.
    """
    result = _check_critical_gates(db, home_id, candidate_sort_order, kind)
    if result is None:
        result = _check_category_gates(db, home_id, candidate_task_id, candidate_sort_order, kind)
    return result or GateCheckResult(is_blocked=False)


def incomplete_prerequisites(db: Database, task: HomeTask) -> list[HomeTask]:
    """Tasks of the same home that *task*'s template item depends on and that
    are not Completed yet."""
    prereq_items = {
        d.depends_on_item_id for d in db.dependencies if d.template_item_id == task.template_item_id
    }
    if not prereq_items:
        return []
    return [
        t
        for t in db.tasks_for_home(task.home_id)
        if t.template_item_id in prereq_items and t.status != TaskStatus.COMPLETED
    ]


def gate_statuses(db: Database, home_id: str) -> list[GateStatus]:
    """Every critical gate of a home with its current open punch count."""
    db.require_home(home_id)
    return [
        GateStatus(
            task_id=gate.id,
            task_name=gate.name_snapshot,
            gate_name=item.gate_label,
            gate_scope=item.gate_scope,
            gate_block_mode=item.gate_block_mode,
            sort_order=gate.sort_order_snapshot,
            open_punch_count=db.open_punch_count(gate),
        )
        for gate, item in _gate_tasks(db, home_id)
    ]


def category_gate_statuses(db: Database, home_id: str) -> list[CategoryGateStatus]:
    """Every category gate with the home's unfinished tasks in that category."""
    db.require_home(home_id)
    tasks = db.tasks_for_home(home_id)
    return [
        CategoryGateStatus(
            category=gate.category,
            gate_name=gate.gate_label,
            gate_block_mode=gate.gate_block_mode,
            incomplete_task_names=_unfinished_in_category(db, tasks, gate.category),
        )
        for gate in sorted(db.category_gates.values(), key=lambda g: _norm(g.category))
    ]
