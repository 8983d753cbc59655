"""Task status transitions with gate and prerequisite guards."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from homeplan.errors import InvalidTransition
from homeplan.events import DependencyBlocked, GateBlocked, Rejection
from homeplan.gates import check_gate_blocking, incomplete_prerequisites
from homeplan.models import Database, HomeTask, TaskStatus, TransitionKind

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    task: HomeTask
    kind: TransitionKind
    previous_status: TaskStatus
    applied: bool
    rejection: Rejection | None = None

    @property
    def recompute_forecast(self) -> bool:
        return self.applied and self.kind in TaskStateMachine.RECOMPUTES


class TaskStateMachine:
    """Allowed task transitions and their guards."""

    # kind -> (allowed source statuses, target status)
    TRANSITIONS = {
        TransitionKind.SCHEDULE: (
            {TaskStatus.UNSCHEDULED, TaskStatus.CANCELED},
            TaskStatus.SCHEDULED,
        ),
        TransitionKind.RESCHEDULE: (
            {TaskStatus.SCHEDULED, TaskStatus.PENDING_CONFIRM, TaskStatus.CONFIRMED},
            TaskStatus.SCHEDULED,
        ),
        TransitionKind.REQUEST_CONFIRMATION: (
            {TaskStatus.SCHEDULED},
            TaskStatus.PENDING_CONFIRM,
        ),
        TransitionKind.CONFIRM: (
            {TaskStatus.PENDING_CONFIRM},
            TaskStatus.CONFIRMED,
        ),
        TransitionKind.DECLINE: (
            {TaskStatus.PENDING_CONFIRM},
            TaskStatus.DECLINED,
        ),
        TransitionKind.COMPLETE: (
            {TaskStatus.SCHEDULED, TaskStatus.PENDING_CONFIRM, TaskStatus.CONFIRMED},
            TaskStatus.COMPLETED,
        ),
        # Cancel drops the task back to Unscheduled so it can be scheduled again.
        TransitionKind.CANCEL: (
            {
                TaskStatus.UNSCHEDULED,
                TaskStatus.SCHEDULED,
                TaskStatus.PENDING_CONFIRM,
                TaskStatus.CONFIRMED,
            },
            TaskStatus.UNSCHEDULED,
        ),
    }

    GATE_CHECKED = frozenset({
        TransitionKind.SCHEDULE,
        TransitionKind.RESCHEDULE,
        TransitionKind.CONFIRM,
        TransitionKind.COMPLETE,
    })

    RECOMPUTES = frozenset({
        TransitionKind.SCHEDULE,
        TransitionKind.RESCHEDULE,
        TransitionKind.COMPLETE,
        TransitionKind.CANCEL,
    })

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def repair(task: HomeTask) -> bool:
        """Downgrade a Scheduled task without a date to Unscheduled.

        Returns True when the task was changed.
        """
        if task.status == TaskStatus.SCHEDULED and task.scheduled_date is None:
            logger.warning("Task %s was Scheduled without a date; resetting to Unscheduled", task.id)
            task.status = TaskStatus.UNSCHEDULED
            return True
        return False

    def can_transition(self, task: HomeTask, kind: TransitionKind) -> bool:
        sources, _ = self.TRANSITIONS[kind]
        return task.status in sources

    def _guard(self, task: HomeTask, kind: TransitionKind) -> Rejection | None:
        # Prerequisites guard only the first booking of a task.
        if kind == TransitionKind.SCHEDULE:
            waiting = incomplete_prerequisites(self.db, task)
            if waiting:
                return DependencyBlocked(
                    home_id=task.home_id,
                    task_id=task.id,
                    task_name=task.name_snapshot,
                    transition=kind.value,
                    prerequisite_ids=tuple(t.id for t in waiting),
                    prerequisite_names=tuple(t.name_snapshot for t in waiting),
                )

        if kind not in self.GATE_CHECKED:
            return None
        gate = check_gate_blocking(self.db, task.home_id, task.id, task.sort_order_snapshot, kind)
        if not gate.is_blocked:
            return None
        return GateBlocked(
            home_id=task.home_id,
            task_id=task.id,
            task_name=task.name_snapshot,
            transition=kind.value,
            blocking_gate_name=gate.blocking_gate_name,
            blocking_task_id=gate.blocking_task_id,
            open_punch_count=gate.open_punch_count,
            incomplete_task_names=gate.incomplete_task_names,
        )

    def apply(
        self,
        task: HomeTask,
        kind: TransitionKind,
        scheduled_date: date | None = None,
        contractor_id: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Apply *kind* to *task* in place.

        Raises ``InvalidTransition`` when *kind* is not allowed from the
        task's status or a required date is missing. A gate or an unfinished
        prerequisite that blocks the transition is reported through
        ``TransitionResult.rejection`` and leaves the task untouched.
        """
        self.repair(task)
        previous = task.status
        if not self.can_transition(task, kind):
            raise InvalidTransition(task.status.value, kind.value)
        if kind in (TransitionKind.SCHEDULE, TransitionKind.RESCHEDULE) and scheduled_date is None:
            raise InvalidTransition(task.status.value, kind.value, f"A scheduled date is required to {kind.value}")

        rejection = self._guard(task, kind)
        if rejection is not None:
            logger.info("Task %s: %s", task.id, rejection.message)
            return TransitionResult(task, kind, previous, applied=False, rejection=rejection)

        _, target = self.TRANSITIONS[kind]
        task.status = target

        if kind in (TransitionKind.SCHEDULE, TransitionKind.RESCHEDULE):
            task.scheduled_date = scheduled_date
            if contractor_id is not None:
                task.contractor_id = contractor_id
        elif kind == TransitionKind.COMPLETE:
            if task.completed_at is None:
                task.completed_at = now or datetime.now()
        elif kind == TransitionKind.CANCEL:
            task.scheduled_date = None
            task.contractor_id = None

        logger.info("Task %s: %s -> %s", task.id, previous.value, target.value)
        return TransitionResult(task, kind, previous, applied=True)
