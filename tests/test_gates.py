from datetime import date

from homeplan.gates import (
    category_gate_statuses,
    check_gate_blocking,
    gate_statuses,
    incomplete_prerequisites,
)
from homeplan.models import (
    CategoryGate,
    Database,
    GateBlockMode,
    GateScope,
    Home,
    HomeTask,
    PunchItem,
    PunchStatus,
    TaskStatus,
    TemplateDependency,
    TemplateItem,
    TransitionKind,
)


def _db() -> Database:
    """Sort orders: Foundation 1, Frame Walk (gate) 2, Drywall 3, Paint 4."""
    db = Database()
    db.homes["H-1"] = Home("H-1", "Lot 1", start_date=date(2026, 3, 2))
    items = [
        TemplateItem("TI-1", "Foundation", 3, 1, category="Foundation"),
        TemplateItem(
            "TI-2", "Frame Walk", 1, 2,
            category="Structural",
            is_critical_gate=True,
            gate_name="Structural Walkthrough",
        ),
        TemplateItem("TI-3", "Drywall", 4, 3, category="Interior"),
        TemplateItem("TI-4", "Paint", 2, 4, category="Interior"),
    ]
    for item in items:
        db.template_items[item.id] = item
        tid = item.id.replace("TI", "HT")
        db.tasks[tid] = HomeTask(tid, "H-1", item.id, item.name, item.duration_days, item.sort_order)
    return db


def _punch(db: Database, punch_id: str, task_id: str | None = "HT-2", status=PunchStatus.OPEN, category=None):
    db.punch_items[punch_id] = PunchItem(
        punch_id, "H-1", "Nail pops", related_home_task_id=task_id, status=status, category=category
    )


def test_no_open_punch_items_means_not_blocked():
    db = _db()
    _punch(db, "P-1", status=PunchStatus.CLOSED)
    result = check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.SCHEDULE)
    assert result.is_blocked is False
    assert result.blocking_gate_name is None


def test_downstream_gate_blocks_later_tasks_only():
    db = _db()
    _punch(db, "P-1")

    downstream = check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.SCHEDULE)
    assert downstream.is_blocked is True
    assert downstream.blocking_gate_name == "Structural Walkthrough"
    assert downstream.blocking_task_id == "HT-2"
    assert downstream.open_punch_count == 1

    upstream = check_gate_blocking(db, "H-1", "HT-1", 1, TransitionKind.SCHEDULE)
    assert upstream.is_blocked is False


def test_ready_for_review_still_counts_as_open():
    db = _db()
    _punch(db, "P-1")
    _punch(db, "P-2", status=PunchStatus.READY_FOR_REVIEW)
    _punch(db, "P-3", status=PunchStatus.CLOSED)
    result = check_gate_blocking(db, "H-1", "HT-4", 4, TransitionKind.RESCHEDULE)
    assert result.open_punch_count == 2


def test_category_punch_items_count_toward_the_gate():
    db = _db()
    _punch(db, "P-1", task_id=None, category="Structural")
    _punch(db, "P-2", task_id=None, category="Interior")
    result = check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.SCHEDULE)
    assert result.is_blocked is True
    assert result.open_punch_count == 1


def test_all_scope_blocks_upstream_tasks_too():
    db = _db()
    db.template_items["TI-2"].gate_scope = GateScope.ALL
    _punch(db, "P-1")
    result = check_gate_blocking(db, "H-1", "HT-1", 1, TransitionKind.SCHEDULE)
    assert result.is_blocked is True


def test_all_scope_gate_blocks_its_own_task():
    db = _db()
    db.template_items["TI-2"].gate_scope = GateScope.ALL
    _punch(db, "P-1")
    result = check_gate_blocking(db, "H-1", "HT-2", 2, TransitionKind.SCHEDULE)
    assert result.is_blocked is True
    assert result.blocking_task_id == "HT-2"


def test_downstream_gate_leaves_its_own_task_alone():
    db = _db()
    _punch(db, "P-1")
    assert check_gate_blocking(db, "H-1", "HT-2", 2, TransitionKind.SCHEDULE).is_blocked is False


def test_schedule_only_gate_ignores_confirm_and_complete():
    db = _db()
    _punch(db, "P-1")
    for kind in (TransitionKind.CONFIRM, TransitionKind.COMPLETE):
        assert check_gate_blocking(db, "H-1", "HT-3", 3, kind).is_blocked is False

    db.template_items["TI-2"].gate_block_mode = GateBlockMode.SCHEDULE_AND_CONFIRM
    for kind in (TransitionKind.CONFIRM, TransitionKind.COMPLETE):
        assert check_gate_blocking(db, "H-1", "HT-3", 3, kind).is_blocked is True


def test_nearest_upstream_gate_is_reported():
    db = _db()
    db.template_items["TI-1"].is_critical_gate = True
    db.template_items["TI-1"].gate_name = "Foundation Inspection"
    _punch(db, "P-1", task_id="HT-1")
    _punch(db, "P-2", task_id="HT-1")
    _punch(db, "P-3", task_id="HT-2")

    result = check_gate_blocking(db, "H-1", "HT-4", 4, TransitionKind.SCHEDULE)
    assert result.blocking_gate_name == "Structural Walkthrough"
    assert result.open_punch_count == 1


def test_tied_gates_break_by_name():
    db = _db()
    db.template_items["TI-1"].is_critical_gate = True
    db.template_items["TI-1"].gate_name = "Zoning Check"
    db.tasks["HT-1"].sort_order_snapshot = 2
    _punch(db, "P-1", task_id="HT-1")
    _punch(db, "P-2", task_id="HT-2")

    result = check_gate_blocking(db, "H-1", "HT-4", 4, TransitionKind.SCHEDULE)
    assert result.blocking_gate_name == "Structural Walkthrough"


def test_gate_label_falls_back_to_category():
    db = _db()
    db.template_items["TI-2"].gate_name = None
    _punch(db, "P-1")
    result = check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.SCHEDULE)
    assert result.blocking_gate_name == "Structural"


def test_closing_last_punch_item_unblocks():
    db = _db()
    _punch(db, "P-1")
    assert check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.SCHEDULE).is_blocked

    db.punch_items["P-1"].status = PunchStatus.CLOSED
    assert not check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.SCHEDULE).is_blocked


def test_gate_statuses():
    db = _db()
    _punch(db, "P-1")
    statuses = gate_statuses(db, "H-1")
    assert len(statuses) == 1
    assert statuses[0].task_id == "HT-2"
    assert statuses[0].is_blocked is True
    assert statuses[0].to_dict()["gate_scope"] == "DownstreamOnly"


def test_category_gate_blocks_later_categories():
    db = _db()
    db.category_gates["Foundation"] = CategoryGate("Foundation")

    result = check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.SCHEDULE)
    assert result.is_blocked is True
    assert result.blocking_gate_name == "Foundation Gate"
    assert result.blocking_task_id is None
    assert result.incomplete_task_names == ("Foundation",)


def test_category_gate_ignores_its_own_and_earlier_categories():
    db = _db()
    db.category_gates["Structural"] = CategoryGate("Structural", gate_name="Framing Done")

    assert not check_gate_blocking(db, "H-1", "HT-1", 1, TransitionKind.SCHEDULE).is_blocked
    assert not check_gate_blocking(db, "H-1", "HT-2", 2, TransitionKind.SCHEDULE).is_blocked
    result = check_gate_blocking(db, "H-1", "HT-4", 4, TransitionKind.SCHEDULE)
    assert result.blocking_gate_name == "Framing Done"
    assert result.incomplete_task_names == ("Frame Walk",)


def test_finished_category_unblocks():
    db = _db()
    db.category_gates["foundation "] = CategoryGate("foundation ")
    db.tasks["HT-1"].status = TaskStatus.COMPLETED
    assert not check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.SCHEDULE).is_blocked

    db.tasks["HT-1"].status = TaskStatus.CANCELED
    assert not check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.SCHEDULE).is_blocked


def test_category_gate_respects_block_mode():
    db = _db()
    db.category_gates["Foundation"] = CategoryGate("Foundation")
    assert not check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.COMPLETE).is_blocked

    db.category_gates["Foundation"].gate_block_mode = GateBlockMode.SCHEDULE_AND_CONFIRM
    assert check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.COMPLETE).is_blocked


def test_category_gate_for_absent_category_is_ignored():
    db = _db()
    db.category_gates["Roofing"] = CategoryGate("Roofing")
    assert not check_gate_blocking(db, "H-1", "HT-4", 4, TransitionKind.SCHEDULE).is_blocked


def test_critical_gate_is_reported_before_category_gate():
    db = _db()
    db.category_gates["Foundation"] = CategoryGate("Foundation")
    _punch(db, "P-1")
    result = check_gate_blocking(db, "H-1", "HT-3", 3, TransitionKind.SCHEDULE)
    assert result.blocking_gate_name == "Structural Walkthrough"
    assert result.incomplete_task_names == ()


def test_category_gate_statuses():
    db = _db()
    db.category_gates["Interior"] = CategoryGate("Interior")
    db.tasks["HT-3"].status = TaskStatus.COMPLETED

    [status] = category_gate_statuses(db, "H-1")
    assert status.gate_name == "Interior Gate"
    assert status.incomplete_task_names == ("Paint",)
    assert status.to_dict()["is_blocked"] is True


def test_incomplete_prerequisites():
    db = _db()
    db.dependencies.append(TemplateDependency("TI-1", "TI-3"))
    db.dependencies.append(TemplateDependency("TI-2", "TI-3"))
    db.tasks["HT-1"].status = TaskStatus.COMPLETED

    assert [t.id for t in incomplete_prerequisites(db, db.tasks["HT-3"])] == ["HT-2"]
    assert incomplete_prerequisites(db, db.tasks["HT-4"]) == []

    db.tasks["HT-2"].status = TaskStatus.COMPLETED
    assert incomplete_prerequisites(db, db.tasks["HT-3"]) == []
