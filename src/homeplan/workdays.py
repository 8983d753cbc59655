"""Working-day calendar arithmetic.

A working day is a calendar day that is neither a weekend day (when
``skip_weekends`` is on) nor one of the configured holidays. Durations are
whole working days.
"""

from __future__ import annotations

from datetime import date, timedelta

from homeplan.models import EngineConfig


def is_working_day(day: date, config: EngineConfig) -> bool:
    if config.skip_weekends and day.weekday() >= 5:
        return False
    return day not in config.holidays


def add_working_days(start: date, days: int, config: EngineConfig) -> date:
    """Advance *start* by *days* working days.

    *start* itself is offset 0 and is returned unchanged for a non-positive
    count, so a two-day task beginning on a Monday finishes on Wednesday.
    """
    if days <= 0:
        return start

    added = 0
    current = start
    while added < days:
        current += timedelta(days=1)
        if is_working_day(current, config):
            added += 1
    return current


def working_days_between(start: date, end: date, config: EngineConfig) -> int:
    """Count working days after *start* up to and including *end*."""
    if end <= start:
        return 0

    total = 0
    current = start
    while current < end:
        current += timedelta(days=1)
        if is_working_day(current, config):
            total += 1
    return total

