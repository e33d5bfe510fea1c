# src/focusflow/engine/tree.py

"""
Shared tree-traversal utilities.

Tasks are kept in an arena (id -> Task); parent/child structure is a
derived index rebuilt per operation. Every walk here is iterative and
guarded by a visited set, so corrupted data with cycles is truncated
instead of looping forever.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Optional

from .model import Task, sort_by_order

logger = logging.getLogger(__name__)

ChildrenIndex = dict[Optional[str], list[Task]]


# ---------------------------------------------------------------------
# Indexes
# ---------------------------------------------------------------------

def index_by_id(tasks: Iterable[Task]) -> dict[str, Task]:
    return {t.id: t for t in tasks}


def build_children_index(tasks: Iterable[Task]) -> ChildrenIndex:
    """
    Build a parent -> children index, children sorted by order.

    Orphans (parent id absent from the collection) are filed under the
    None key together with the real roots.
    """
    by_id = tasks if isinstance(tasks, Mapping) else index_by_id(tasks)
    index: ChildrenIndex = {None: []}

    for task in by_id.values():
        parent = task.parent_id
        if parent is not None and parent not in by_id:
            parent = None
        index.setdefault(parent, []).append(task)

    for key, children in index.items():
        index[key] = sort_by_order(children)

    return index


# ---------------------------------------------------------------------
# Walks
# ---------------------------------------------------------------------

def iter_descendants(index: ChildrenIndex, task_id: str) -> Iterator[Task]:
    """
    Yield every descendant of `task_id` in depth-first pre-order.

    The starting task itself is not yielded.
    """
    visited = {task_id}
    stack = list(reversed(index.get(task_id, [])))

    while stack:
        node = stack.pop()
        if node.id in visited:
            logger.warning("Cycle detected below task %s at %s", task_id, node.id)
            continue
        visited.add(node.id)
        yield node
        stack.extend(reversed(index.get(node.id, [])))


def subtree_ids(index: ChildrenIndex, task_id: str) -> set[str]:
    """Return the ids of `task_id` and all its descendants."""
    return {task_id, *(t.id for t in iter_descendants(index, task_id))}


def iter_ancestors(by_id: Mapping[str, Task], task_id: str) -> Iterator[Task]:
    """
    Yield ancestors of `task_id`, nearest first.

    Stops at a missing parent or when a task is re-entered.
    """
    task = by_id.get(task_id)
    if task is None:
        return

    visited = {task.id}
    parent_id = task.parent_id

    while parent_id is not None:
        if parent_id in visited:
            logger.warning("Cycle detected in ancestry of task %s", task_id)
            return
        parent = by_id.get(parent_id)
        if parent is None:
            return
        visited.add(parent_id)
        yield parent
        parent_id = parent.parent_id


def ancestor_path(by_id: Mapping[str, Task], task_id: str) -> list[Task]:
    """Return ancestors of `task_id` from the outermost root down."""
    return list(reversed(list(iter_ancestors(by_id, task_id))))


def is_descendant(by_id: Mapping[str, Task], task_id: str, ancestor_id: str) -> bool:
    return any(a.id == ancestor_id for a in iter_ancestors(by_id, task_id))


# ---------------------------------------------------------------------
# Sibling groups
# ---------------------------------------------------------------------

def sibling_group(
    tasks: Iterable[Task],
    zone_id: str,
    parent_id: Optional[str],
    *,
    exclude: Optional[str] = None,
) -> list[Task]:
    """
    Return tasks sharing (zone_id, parent_id), sorted by order.
    """
    return sort_by_order(
        t for t in tasks
        if t.zone_id == zone_id and t.parent_id == parent_id and t.id != exclude
    )


def renumber(siblings: list[Task]) -> None:
    """Rewrite order to the contiguous sequence 0..n-1."""
    for i, task in enumerate(siblings):
        task.order = i


def next_order(tasks: Iterable[Task], zone_id: str, parent_id: Optional[str]) -> int:
    orders = [t.order for t in tasks if t.zone_id == zone_id and t.parent_id == parent_id]
    return max(orders, default=-1) + 1
