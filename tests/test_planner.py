from datetime import date, datetime

import pytest

from homeplan.errors import CycleDetected, HomeplanError, InvalidDependency, InvalidTransition, ItemInUse, NotFound
from homeplan.events import DependencyBlocked, ForecastSlip, GateBlocked, RecordingNotifier
from homeplan.forecast import ScheduleStatus
from homeplan.models import GateBlockMode, PunchStatus, TaskStatus, TransitionKind
from homeplan.persistence import Store
from homeplan.planner import Planner

MONDAY = date(2026, 3, 2)


class ExplodingNotifier:
    def notify(self, event):
        raise RuntimeError("SMS gateway down")


def _planner(tmp_path, notifier=None) -> Planner:
    return Planner(
        Store(tmp_path / "homeplan.json"),
        notifier=notifier or RecordingNotifier(),
        clock=lambda: datetime(2026, 3, 1, 7, 0),
    )


def _seed(planner: Planner) -> dict[str, str]:
    """Footings(2) -> Frame Walk gate(1) -> Drywall(3) -> Paint(1)."""
    ids = {
        "footings": planner.add_template_item("Footings", 2, category="Foundation").id,
        "walk": planner.add_template_item(
            "Frame Walk", 1, category="Structural", is_critical_gate=True, gate_name="Frame Walk"
        ).id,
        "drywall": planner.add_template_item("Drywall", 3, category="Interior").id,
        "paint": planner.add_template_item("Paint", 1, category="Interior").id,
    }
    planner.set_dependencies(ids["walk"], [ids["footings"]])
    planner.set_dependencies(ids["drywall"], [ids["walk"]])
    planner.set_dependencies(ids["paint"], [ids["drywall"]])
    return ids


def _task(planner: Planner, home_id: str, name: str):
    return next(t for t in planner.home_tasks(home_id) if t.name_snapshot == name)


def test_create_home_snapshots_template_and_forecasts(tmp_path):
    planner = _planner(tmp_path)
    _seed(planner)
    home = planner.create_home("Lot 12", start_date=MONDAY, target_completion_date=date(2026, 3, 20))

    tasks = planner.home_tasks(home.id)
    assert [t.name_snapshot for t in tasks] == ["Footings", "Frame Walk", "Drywall", "Paint"]
    assert all(t.status == TaskStatus.UNSCHEDULED for t in tasks)
    # 2 + 1 + 3 + 1 = 7 working days from Monday
    assert home.forecast_completion_date == date(2026, 3, 11)
    assert planner.schedule_status(home.id) == ScheduleStatus.ON_TRACK


def test_template_edits_do_not_resync_existing_homes(tmp_path):
    planner = _planner(tmp_path)
    ids = _seed(planner)
    home = planner.create_home("Lot 1", start_date=MONDAY)
    planner.set_dependencies(ids["paint"], [])

    planner.compute_home_forecast(home.id)
    # The per-home graph comes from the template edges, but durations stay snapshotted
    assert _task(planner, home.id, "Paint").duration_days_snapshot == 1
    assert _task(planner, home.id, "Paint").forecast_start_date == MONDAY


def test_set_dependencies_rejections_leave_file_unchanged(tmp_path):
    planner = _planner(tmp_path)
    ids = _seed(planner)
    db_file = tmp_path / "homeplan.json"
    before = db_file.read_bytes()

    with pytest.raises(InvalidDependency):
        planner.set_dependencies(ids["paint"], [ids["paint"]])
    with pytest.raises(CycleDetected) as exc:
        planner.set_dependencies(ids["footings"], [ids["paint"]])

    assert exc.value.names == ["Footings", "Frame Walk", "Drywall", "Paint"]
    assert db_file.read_bytes() == before
    assert planner.get_dependencies(ids["footings"]) == []


def test_schedule_recomputes_forecast(tmp_path):
    planner = _planner(tmp_path)
    _seed(planner)
    home = planner.create_home("Lot 1", start_date=MONDAY)
    footings = _task(planner, home.id, "Footings")

    result = planner.transition(footings.id, TransitionKind.SCHEDULE, scheduled_date=MONDAY)

    assert result.applied
    assert planner.get_task(footings.id).status == TaskStatus.SCHEDULED
    assert planner.get_home(home.id).forecast_computed_at == datetime(2026, 3, 1, 7, 0)


def test_gate_blocked_reschedule_scenario(tmp_path):
    notifier = RecordingNotifier()
    planner = _planner(tmp_path, notifier)
    _seed(planner)
    home = planner.create_home("Lot 1", start_date=MONDAY)
    walk = _task(planner, home.id, "Frame Walk")
    drywall = _task(planner, home.id, "Drywall")
    footings = _task(planner, home.id, "Footings")

    for task in (footings, walk):
        planner.transition(task.id, TransitionKind.SCHEDULE, scheduled_date=MONDAY)
        planner.transition(task.id, TransitionKind.COMPLETE)
    planner.transition(drywall.id, TransitionKind.SCHEDULE, scheduled_date=date(2026, 3, 9))
    planner.add_punch_item(home.id, "Missing hurricane strap", task_id=walk.id)
    planner.add_punch_item(home.id, "Header undersized", task_id=walk.id)

    result = planner.transition(drywall.id, TransitionKind.RESCHEDULE, scheduled_date=date(2026, 3, 16))

    assert result.applied is False
    assert result.rejection == GateBlocked(
        home_id=home.id,
        task_id=drywall.id,
        task_name="Drywall",
        transition="reschedule",
        blocking_gate_name="Frame Walk",
        blocking_task_id=walk.id,
        open_punch_count=2,
    )
    after = planner.get_task(drywall.id)
    assert after.status == TaskStatus.SCHEDULED
    assert after.scheduled_date == date(2026, 3, 9)
    assert notifier.events[-1] == result.rejection


def test_closing_last_punch_item_unblocks_scheduling(tmp_path):
    planner = _planner(tmp_path)
    _seed(planner)
    home = planner.create_home("Lot 1", start_date=MONDAY)
    walk = _task(planner, home.id, "Frame Walk")
    paint = _task(planner, home.id, "Paint")
    footings = _task(planner, home.id, "Footings")
    punch = planner.add_punch_item(home.id, "Squeaky subfloor", task_id=walk.id)

    assert planner.check_gate_blocking(paint.id, TransitionKind.SCHEDULE).is_blocked
    assert not planner.check_gate_blocking(footings.id, TransitionKind.SCHEDULE).is_blocked

    planner.set_punch_status(punch.id, PunchStatus.READY_FOR_REVIEW)
    assert planner.check_gate_blocking(paint.id, TransitionKind.SCHEDULE).is_blocked

    planner.set_punch_status(punch.id, PunchStatus.CLOSED)
    assert not planner.check_gate_blocking(paint.id, TransitionKind.SCHEDULE).is_blocked
    assert _task(planner, home.id, "Paint").status == TaskStatus.UNSCHEDULED
    assert planner.punch_items(home.id, open_only=True) == []


def test_forecast_slip_is_notified(tmp_path):
    notifier = RecordingNotifier()
    planner = _planner(tmp_path, notifier)
    ids = _seed(planner)
    home = planner.create_home("Lot 7", start_date=MONDAY)
    assert notifier.events == []

    # Paint also waiting on Footings does not move anything
    planner.set_dependencies(ids["paint"], [ids["drywall"], ids["footings"]])
    planner.compute_home_forecast(home.id)
    assert notifier.events == []

    planner.configure(holidays=[date(2026, 3, 3)])
    slip = notifier.events[-1]
    assert isinstance(slip, ForecastSlip)
    assert slip.home_label == "Lot 7"
    assert slip.previous_forecast == date(2026, 3, 11)
    assert slip.new_forecast == date(2026, 3, 12)
    assert slip.message == "Lot 7 forecast moved from Mar 11, 2026 to Mar 12, 2026."


def test_notifier_failure_does_not_roll_back(tmp_path):
    planner = _planner(tmp_path, ExplodingNotifier())
    _seed(planner)
    home = planner.create_home("Lot 3", start_date=MONDAY)

    planner.configure(holidays=[date(2026, 3, 3)])

    assert planner.get_home(home.id).forecast_completion_date == date(2026, 3, 12)


def test_cancel_and_complete(tmp_path):
    planner = _planner(tmp_path)
    _seed(planner)
    home = planner.create_home("Lot 1", start_date=MONDAY)
    footings = _task(planner, home.id, "Footings")

    planner.transition(footings.id, TransitionKind.SCHEDULE, scheduled_date=MONDAY, contractor_id="C-4")
    planner.transition(footings.id, TransitionKind.CANCEL)
    task = planner.get_task(footings.id)
    assert task.status == TaskStatus.UNSCHEDULED
    assert task.contractor_id is None

    planner.transition(footings.id, TransitionKind.SCHEDULE, scheduled_date=MONDAY)
    planner.transition(footings.id, TransitionKind.COMPLETE)
    task = planner.get_task(footings.id)
    assert task.status == TaskStatus.COMPLETED
    assert task.completed_at == datetime(2026, 3, 1, 7, 0)


def test_inconsistent_task_is_repaired_on_read(tmp_path):
    planner = _planner(tmp_path)
    _seed(planner)
    home = planner.create_home("Lot 1", start_date=MONDAY)
    footings = _task(planner, home.id, "Footings")

    with planner.store.transaction() as db:
        db.tasks[footings.id].status = TaskStatus.SCHEDULED

    assert planner.get_task(footings.id).status == TaskStatus.UNSCHEDULED
    assert planner.store.load().tasks[footings.id].status == TaskStatus.UNSCHEDULED


def test_delete_template_item(tmp_path):
    planner = _planner(tmp_path)
    ids = _seed(planner)
    spare = planner.add_template_item("Spare", 1)
    planner.set_dependencies(spare.id, [ids["paint"]])
    planner.delete_template_item(spare.id)
    assert spare.id not in {i.id for i in planner.template_items()}

    planner.create_home("Lot 1", start_date=MONDAY)
    with pytest.raises(ItemInUse):
        planner.delete_template_item(ids["paint"])


def test_missing_records_raise_not_found(tmp_path):
    planner = _planner(tmp_path)
    with pytest.raises(NotFound):
        planner.get_task("HT-404")
    with pytest.raises(NotFound):
        planner.compute_home_forecast("H-404")
    with pytest.raises(NotFound):
        planner.transition("HT-404", TransitionKind.CANCEL)


def test_schedule_before_prerequisites_is_refused_and_notified(tmp_path):
    notifier = RecordingNotifier()
    planner = _planner(tmp_path, notifier)
    _seed(planner)
    home = planner.create_home("Lot 1", start_date=MONDAY)
    walk = _task(planner, home.id, "Frame Walk")

    result = planner.transition(walk.id, TransitionKind.SCHEDULE, scheduled_date=MONDAY)

    assert result.applied is False
    assert isinstance(result.rejection, DependencyBlocked)
    assert result.rejection.prerequisite_names == ("Footings",)
    assert notifier.events == [result.rejection]
    assert planner.get_task(walk.id).status == TaskStatus.UNSCHEDULED
    assert [t.name_snapshot for t in planner.incomplete_prerequisites(walk.id)] == ["Footings"]


def test_repair_is_saved_when_transition_is_refused(tmp_path):
    planner = _planner(tmp_path)
    _seed(planner)
    home = planner.create_home("Lot 1", start_date=MONDAY)
    footings = _task(planner, home.id, "Footings")

    with planner.store.transaction() as db:
        db.tasks[footings.id].status = TaskStatus.SCHEDULED

    with pytest.raises(InvalidTransition):
        planner.transition(footings.id, TransitionKind.CONFIRM)

    assert planner.store.load().tasks[footings.id].status == TaskStatus.UNSCHEDULED


def test_category_gates_block_later_categories(tmp_path):
    planner = _planner(tmp_path)
    _seed(planner)
    home = planner.create_home("Lot 1", start_date=MONDAY)
    paint = _task(planner, home.id, "Paint")

    gate = planner.set_category_gate(" Foundation ", gate_block_mode=GateBlockMode.SCHEDULE_AND_CONFIRM)
    assert gate.category == "Foundation"
    assert gate.gate_label == "Foundation Gate"
    assert [g.category for g in planner.category_gates()] == ["Foundation"]

    blocked = planner.check_gate_blocking(paint.id, TransitionKind.SCHEDULE)
    assert blocked.blocking_gate_name == "Foundation Gate"
    assert blocked.incomplete_task_names == ("Footings",)
    [status] = planner.category_gate_statuses(home.id)
    assert status.is_blocked

    planner.remove_category_gate("Foundation")
    assert planner.category_gates() == []
    assert not planner.check_gate_blocking(paint.id, TransitionKind.SCHEDULE).is_blocked
    with pytest.raises(NotFound):
        planner.remove_category_gate("Foundation")
    with pytest.raises(HomeplanError):
        planner.set_category_gate("   ")
