# src/focusflow/engine/urgency.py

"""
Deadline ranking and urgency helpers.

Urgency is never stored: it is derived from the rank of a task's
effective deadline (own, or inherited from the nearest ancestor) among
all incomplete tasks that have one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .aggregate import EMPTY, Aggregate
from .model import DeadlineType, Priority, Task, Urgency
from .tree import index_by_id

logger = logging.getLogger(__name__)


class SortMode(str, Enum):
    ZONE = "zone"
    PRIORITY = "priority"
    URGENCY = "urgency"
    WEIGHTED = "weighted"
    WORK_TIME = "work_time"
    ESTIMATED_TIME = "estimated_time"
    TIME_DIFF = "time_diff"


# ---------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------

def inherited_deadline(task: Task, by_id: Mapping[str, Task]) -> Optional[datetime]:
    """
    Return the task's own deadline, else the nearest ancestor's.

    Returns None on a corrupted cycle instead of looping.
    """
    visited: set[str] = set()
    current: Optional[Task] = task

    while current is not None:
        if current.id in visited:
            logger.warning("Cycle detected while inheriting deadline for %s", task.id)
            return None
        visited.add(current.id)

        if current.deadline is not None:
            return current.deadline

        if current.parent_id is None:
            return None
        current = by_id.get(current.parent_id)

    return None


def resolve_deadline(
    deadline_type: DeadlineType,
    now: datetime,
    exact: Optional[datetime] = None,
) -> tuple[Optional[datetime], DeadlineType]:
    """
    Turn a quick deadline choice into a (deadline, deadline_type) pair.

    Relative kinds resolve to the last microsecond of the day in the
    timezone of `now`; "week" means the coming Sunday (today if Sunday).
    """
    end_of_today = now.replace(hour=23, minute=59, second=59, microsecond=999999)

    if deadline_type is DeadlineType.TODAY:
        return end_of_today, DeadlineType.TODAY

    if deadline_type is DeadlineType.TOMORROW:
        return end_of_today + timedelta(days=1), DeadlineType.TOMORROW

    if deadline_type is DeadlineType.WEEK:
        days_until_sunday = 6 - now.weekday()
        return end_of_today + timedelta(days=days_until_sunday), DeadlineType.WEEK

    if deadline_type is DeadlineType.EXACT and exact is not None:
        return exact, DeadlineType.EXACT

    return None, DeadlineType.NONE


# ---------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------

def rank_scores(tasks: Iterable[Task]) -> dict[str, float]:
    """
    Score incomplete tasks with an effective deadline in [0, 1].

    The earliest deadline scores 1, the latest 0; a single task scores 1.
    """
    by_id = index_by_id(tasks)
    dated = []
    for task in by_id.values():
        if task.completed:
            continue
        deadline = inherited_deadline(task, by_id)
        if deadline is not None:
            dated.append((deadline, task.id))

    dated.sort()
    count = len(dated)
    if count == 1:
        return {dated[0][1]: 1.0}

    return {task_id: (count - 1 - i) / (count - 1) for i, (_, task_id) in enumerate(dated)}


def urgency_for_score(score: float, has_deadline: bool) -> Urgency:
    if not has_deadline or score == 0:
        return Urgency.LOW
    if score >= 0.75:
        return Urgency.URGENT
    if score >= 0.5:
        return Urgency.HIGH
    if score >= 0.25:
        return Urgency.MEDIUM
    return Urgency.LOW


def urgency_for_task(task: Task, scores: Mapping[str, float]) -> Urgency:
    if task.completed or task.id not in scores:
        return Urgency.LOW
    return urgency_for_score(scores[task.id], True)


# ---------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------

def weighted_sort(
    tasks: Iterable[Task],
    priority_weight: float,
    urgency_weight: float,
    scores: Mapping[str, float],
    by_id: Optional[Mapping[str, Task]] = None,
) -> list[Task]:
    """
    Order tasks with a deadline by priority/rank score, highest first.

    A deadline inherited from an ancestor counts. Ties fall back to the
    earlier deadline. Tasks without any deadline (or completed ones)
    follow in their original order.
    """
    items = list(tasks)
    if by_id is None:
        by_id = index_by_id(items)
    deadlines = {t.id: inherited_deadline(t, by_id) for t in items}

    dated = [t for t in items if deadlines[t.id] is not None and not t.completed]
    rest = [t for t in items if deadlines[t.id] is None or t.completed]

    def key(t: Task) -> tuple[float, datetime]:
        score = t.priority.weight * priority_weight + scores.get(t.id, 0.0) * urgency_weight
        return (-score, deadlines[t.id])

    return sorted(dated, key=key) + rest


def sort_for_global_view(
    tasks: Iterable[Task],
    mode: SortMode,
    aggregates: Mapping[str, Aggregate],
    *,
    zone_order: Optional[Mapping[str, int]] = None,
    priority_weight: float = 0.4,
    urgency_weight: float = 0.6,
) -> list[Task]:
    """
    Order incomplete tasks for the cross-zone view.

    `time_diff` puts the tasks furthest over their estimate first
    (work seconds minus estimated seconds).
    """
    items = [t for t in tasks if not t.completed]
    scores = rank_scores(items)
    zone_order = zone_order or {}

    def agg(t: Task) -> Aggregate:
        return aggregates.get(t.id, EMPTY)

    if mode is SortMode.WEIGHTED:
        return weighted_sort(items, priority_weight, urgency_weight, scores)

    keys = {
        SortMode.ZONE: lambda t: (zone_order.get(t.zone_id, len(zone_order)), t.order),
        SortMode.PRIORITY: lambda t: (Priority.sort_key(t.priority), t.order),
        SortMode.URGENCY: lambda t: (-scores.get(t.id, 0.0), t.order),
        SortMode.WORK_TIME: lambda t: (-agg(t).total_work_time, t.order),
        SortMode.ESTIMATED_TIME: lambda t: (-agg(t).estimated_time, t.order),
        SortMode.TIME_DIFF: lambda t: (-(agg(t).total_work_time - agg(t).estimated_time * 60), t.order),
    }
    return sorted(items, key=keys[mode])
