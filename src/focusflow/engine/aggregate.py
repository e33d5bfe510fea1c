# src/focusflow/engine/aggregate.py

"""
Aggregation engine.

Derives, for every task id, the cumulative work time (own time plus all
descendants) and the effective estimated time (explicit value, or the
sum of the children's effective estimates).

The pass is a pure function of the task collection: order-independent,
idempotent, memoized per id and iterative, so deep trees never hit the
interpreter's recursion limit.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .model import Task
from .tree import ChildrenIndex, build_children_index, index_by_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Aggregate:
    """
    Derived metrics of one task.

    total_work_time is in seconds, estimated_time in minutes.
    """

    total_work_time: int = 0
    estimated_time: int = 0


EMPTY = Aggregate()


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def compute_aggregates(tasks: Iterable[Task]) -> dict[str, Aggregate]:
    """
    Compute {task_id: Aggregate} for the whole collection.

    Traversal starts from every root (orphans included). Tasks only
    reachable through a corrupted cycle are picked up afterwards in id
    order, so every id is present in the result.
    """
    by_id = index_by_id(tasks)
    index = build_children_index(by_id)
    out: dict[str, Aggregate] = {}

    for root in index.get(None, []):
        _aggregate_from(root.id, by_id, index, out)

    for task_id in sorted(by_id):
        if task_id not in out:
            _aggregate_from(task_id, by_id, index, out)

    return out


def apply_aggregates(tasks: Iterable[Task], aggregates: Mapping[str, Aggregate]) -> None:
    """
    Write derived total_work_time back onto task records.

    The explicit estimated_time field is never touched: an implicit
    estimate must stay implicit so it keeps following the children.
    """
    for task in tasks:
        task.total_work_time = aggregates.get(task.id, EMPTY).total_work_time


# ---------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------

def _aggregate_from(
    start: str,
    by_id: Mapping[str, Task],
    index: ChildrenIndex,
    out: dict[str, Aggregate],
) -> None:
    # Post-order walk: (task_id, children_done). A node is on `on_path`
    # between its first visit and its completion.
    on_path: set[str] = set()
    stack: list[tuple[str, bool]] = [(start, False)]

    while stack:
        task_id, children_done = stack.pop()

        if children_done:
            on_path.discard(task_id)
            out[task_id] = _combine(by_id[task_id], index.get(task_id, []), out)
            continue

        if task_id in out or task_id in on_path:
            continue

        on_path.add(task_id)
        stack.append((task_id, True))

        for child in index.get(task_id, []):
            if child.id in on_path:
                logger.warning("Cycle detected: task %s re-entered below %s", child.id, task_id)
                continue
            if child.id not in out:
                stack.append((child.id, False))


def _combine(task: Task, children: list[Task], out: Mapping[str, Aggregate]) -> Aggregate:
    total = task.own_time or 0
    children_estimate = 0

    for child in children:
        # A child missing here was cut off as part of a cycle; it contributes 0.
        agg = out.get(child.id)
        if agg is None:
            continue
        total += agg.total_work_time
        children_estimate += agg.estimated_time

    if task.has_explicit_estimate:
        return Aggregate(total_work_time=total, estimated_time=task.estimated_time)

    return Aggregate(total_work_time=total, estimated_time=children_estimate)
