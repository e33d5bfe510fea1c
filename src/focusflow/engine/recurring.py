# src/focusflow/engine/recurring.py

"""
Recurring task scheduler.

On each externally driven check, every active template whose interval
has elapsed yields one new root task. This module only synthesizes the
tasks; inserting them and re-running aggregation (once per check) is the
store's job.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Final

from .model import DeadlineType, RecurringTemplate, Task

logger = logging.getLogger(__name__)

AUTO_GENERATED_SUFFIX: Final[str] = "auto-generated"


@dataclass(frozen=True, slots=True)
class Materialized:
    template: RecurringTemplate  # with last_triggered_at already advanced
    task: Task


def materialize_due(
    templates: Iterable[RecurringTemplate],
    now: datetime,
    new_id: Callable[[], str],
    *,
    suffix: str = AUTO_GENERATED_SUFFIX,
) -> list[Materialized]:
    """
    Return one Materialized entry per due template.

    Input templates are not modified.
    """
    out: list[Materialized] = []

    for tpl in templates:
        if not tpl.is_due(now):
            continue

        logger.info("Recurring template %s is due (every %d min)", tpl.id, tpl.interval_minutes)
        out.append(
            Materialized(
                template=replace(tpl, last_triggered_at=now),
                task=build_task(tpl, now, new_id(), suffix=suffix),
            )
        )

    return out


def build_task(tpl: RecurringTemplate, now: datetime, task_id: str, *, suffix: str) -> Task:
    deadline = None
    deadline_type = DeadlineType.NONE
    if tpl.deadline_offset_hours > 0:
        deadline = now + timedelta(hours=tpl.deadline_offset_hours)
        deadline_type = DeadlineType.EXACT

    description = f"{tpl.description}\n({suffix})" if tpl.description else f"({suffix})"

    return Task(
        id=task_id,
        zone_id=tpl.zone_id,
        parent_id=None,
        title=tpl.title,
        description=description,
        priority=tpl.priority,
        deadline=deadline,
        deadline_type=deadline_type,
        order=0,
        created_at=now,
        own_time=0,
        is_recurring=True,
    )
