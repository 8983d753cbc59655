"""Typed events emitted by the engine and the notifier collaborator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForecastSlip:
    """A home's forecast completion moved later."""

    home_id: str
    home_label: str
    previous_forecast: date
    new_forecast: date

    @property
    def message(self) -> str:
        prev = self.previous_forecast.strftime("%b %d, %Y")
        new = self.new_forecast.strftime("%b %d, %Y")
        return f"{self.home_label} forecast moved from {prev} to {new}."

    def to_dict(self) -> dict:
        return {
            "event": "ForecastSlip",
            "home_id": self.home_id,
            "home_label": self.home_label,
            "previous_forecast": self.previous_forecast.isoformat(),
            "new_forecast": self.new_forecast.isoformat(),
        }


_VERBS = {
    "schedule": "Scheduling",
    "reschedule": "Rescheduling",
    "confirm": "Confirming",
    "complete": "Completing",
}


@dataclass(frozen=True)
class GateBlocked:
    """A transition was refused because an upstream gate is not cleared.

    Returned to the caller as the rejection of a transition and also passed
    to the notifier. Critical gates report their open punch count; category
    gates report the tasks still to finish.
    """

    home_id: str
    task_id: str
    task_name: str
    transition: str
    blocking_gate_name: str
    blocking_task_id: str | None
    open_punch_count: int
    incomplete_task_names: tuple[str, ...] = ()

    @property
    def message(self) -> str:
        verb = _VERBS.get(self.transition, "Scheduling")
        if self.incomplete_task_names:
            return (
                f'{verb} blocked until every task in "{self.blocking_gate_name}" is completed: '
                f"{', '.join(self.incomplete_task_names)}."
            )
        return (
            f'{verb} blocked until "{self.blocking_gate_name}" punchlist is cleared. '
            f"{self.open_punch_count} open punch item(s) remaining."
        )

    def to_dict(self) -> dict:
        return {
            "event": "GateBlocked",
            "home_id": self.home_id,
            "task_id": self.task_id,
            "task_name": self.task_name,
            "transition": self.transition,
            "blocking_gate_name": self.blocking_gate_name,
            "blocking_task_id": self.blocking_task_id,
            "open_punch_count": self.open_punch_count,
            "incomplete_tasks": list(self.incomplete_task_names),
            "message": self.message,
        }


@dataclass(frozen=True)
class DependencyBlocked:
    """Scheduling was refused because template prerequisites are unfinished."""

    home_id: str
    task_id: str
    task_name: str
    transition: str
    prerequisite_ids: tuple[str, ...]
    prerequisite_names: tuple[str, ...]

    @property
    def message(self) -> str:
        return f"Task blocked until prerequisites are completed: {', '.join(self.prerequisite_names)}"

    def to_dict(self) -> dict:
        return {
            "event": "DependencyBlocked",
            "home_id": self.home_id,
            "task_id": self.task_id,
            "task_name": self.task_name,
            "transition": self.transition,
            "prerequisite_ids": list(self.prerequisite_ids),
            "prerequisite_names": list(self.prerequisite_names),
            "message": self.message,
        }


Rejection = GateBlocked | DependencyBlocked
Event = ForecastSlip | GateBlocked | DependencyBlocked


class Notifier(Protocol):
    def notify(self, event: Event) -> None: ...


class LogNotifier:
    """Default notifier: writes every event to the log."""

    def notify(self, event: Event) -> None:
        logger.warning("%s: %s", type(event).__name__, event.message)


@dataclass
class RecordingNotifier:
    """Keeps every event it receives, in order."""

    events: list[Event] = field(default_factory=list)

    def notify(self, event: Event) -> None:
        self.events.append(event)


def dispatch(notifier: Notifier | None, event: Event) -> None:
    """Deliver *event* without letting delivery failures reach the caller."""
    if notifier is None:
        return
    try:
        notifier.notify(event)
    except Exception:
        logger.exception("Failed to deliver %s for home %s", type(event).__name__, event.home_id)
