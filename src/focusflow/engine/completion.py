# src/focusflow/engine/completion.py

"""
Completion propagation.

Toggling a task cascades:
- downward: every descendant takes the toggled task's new state;
- upward: each ancestor becomes completed iff all its direct children
  are completed.

An ancestor with `prevent_auto_complete` is a boundary: its own state
is left as the user set it and the upward walk stops there.

The same upward walk (`reconcile_ancestors`) re-settles ancestors after
a child is added, removed or moved.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Optional

from .model import Task, utcnow
from .tree import ChildrenIndex, build_children_index, iter_descendants

logger = logging.getLogger(__name__)


def toggle_completion(
    by_id: Mapping[str, Task],
    task_id: str,
    *,
    now: Optional[datetime] = None,
    index: Optional[ChildrenIndex] = None,
) -> list[str]:
    """
    Flip completion of `task_id` and cascade.

    Tasks in `by_id` are mutated in place. Returns the ids whose state
    changed (empty if the id is unknown).
    """
    task = by_id.get(task_id)
    if task is None:
        logger.debug("toggle_completion: unknown task %s", task_id)
        return []

    return set_completion(by_id, task_id, not task.completed, now=now, index=index)


def set_completion(
    by_id: Mapping[str, Task],
    task_id: str,
    value: bool,
    *,
    now: Optional[datetime] = None,
    index: Optional[ChildrenIndex] = None,
) -> list[str]:
    """
    Force `task_id` to `value` and cascade as for a toggle.
    """
    task = by_id.get(task_id)
    if task is None:
        return []

    now = now or utcnow()
    index = index if index is not None else build_children_index(by_id)
    changed: list[str] = []

    if task.completed != value:
        changed.append(task.id)
    task.set_completed(value, now)

    for child in iter_descendants(index, task_id):
        if child.completed != value or child.completed_at != task.completed_at:
            changed.append(child.id)
        child.set_completed(value, now)

    changed.extend(_propagate_up(by_id, index, task, now))
    return changed


def all_children_completed(index: ChildrenIndex, task_id: str) -> bool:
    return all(c.completed for c in index.get(task_id, []))


def reconcile_ancestors(
    by_id: Mapping[str, Task],
    index: ChildrenIndex,
    parent_id: Optional[str],
    now: Optional[datetime] = None,
) -> list[str]:
    """
    Bring `parent_id` and its ancestors in line with their children.

    Used after a structural change (a child added, removed or moved away).
    A parent left without children keeps its own state. Mutates `by_id`
    in place and returns the ids whose completion changed.
    """
    now = now or utcnow()
    return _climb(by_id, index, parent_id, now, visited=set())


# ---------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------

def _propagate_up(
    by_id: Mapping[str, Task],
    index: ChildrenIndex,
    start: Task,
    now: datetime,
) -> list[str]:
    return _climb(by_id, index, start.parent_id, now, visited={start.id})


def _climb(
    by_id: Mapping[str, Task],
    index: ChildrenIndex,
    parent_id: Optional[str],
    now: datetime,
    visited: set[str],
) -> list[str]:
    changed: list[str] = []

    while parent_id is not None:
        if parent_id in visited:
            logger.warning("Cycle detected while propagating completion at %s", parent_id)
            break
        visited.add(parent_id)

        parent = by_id.get(parent_id)
        if parent is None:
            break

        if parent.prevent_auto_complete or not index.get(parent.id):
            break

        target = all_children_completed(index, parent.id)
        if parent.completed == target:
            break

        parent.set_completed(target, now)
        changed.append(parent.id)
        parent_id = parent.parent_id

    return changed
