# src/focusflow/engine/flatten.py

"""
Tree flattening.

Produces the ordered, depth-annotated list of visible tasks for a zone
(or for all zones), optionally zoomed onto a focus task.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

from .model import Task
from .tree import ancestor_path, build_children_index, index_by_id


@dataclass(frozen=True, slots=True)
class FlatTask:
    """
    A visible row: the task plus its nesting depth.

    Depth 0 means a direct child of the focus task in a zoomed view,
    or a root task otherwise.
    """

    task: Task
    depth: int

    @property
    def id(self) -> str:
        return self.task.id

    @property
    def parent_id(self) -> Optional[str]:
        return self.task.parent_id


def flatten_tasks(
    tasks: Iterable[Task],
    zone_id: Optional[str] = None,
    focus_task_id: Optional[str] = None,
    reveal_task_id: Optional[str] = None,
) -> list[FlatTask]:
    """
    Flatten the forest into pre-order rows.

    Rules:
    - focus_task_id set: roots are the focus task's children; the focus
      task and its ancestors are not emitted (see focus_path).
    - otherwise: roots are in-zone tasks without a (present) parent.
    - a node's children are emitted unless it is collapsed, except for
      nodes on the path to the focus (or revealed) task, which are
      always expanded.
    - zone filtering reads each node's own zone_id.
    """
    by_id = index_by_id(tasks)
    index = build_children_index(by_id)

    forced: set[str] = set()
    for target in (focus_task_id, reveal_task_id):
        if target is not None and target in by_id:
            forced.add(target)
            forced.update(t.id for t in ancestor_path(by_id, target))

    def in_scope(task: Task) -> bool:
        return zone_id is None or task.zone_id == zone_id

    if focus_task_id is not None:
        if focus_task_id not in by_id:
            return []
        roots = index.get(focus_task_id, [])
    else:
        roots = index.get(None, [])

    out: list[FlatTask] = []
    # The focus task itself counts as visited so a corrupted cycle cannot
    # re-emit it below its own children.
    visited: set[str] = {focus_task_id} if focus_task_id else set()
    stack = [(t, 0) for t in reversed(roots) if in_scope(t)]

    while stack:
        task, depth = stack.pop()
        if task.id in visited:
            continue
        visited.add(task.id)
        out.append(FlatTask(task=task, depth=depth))

        if task.is_collapsed and task.id not in forced:
            continue

        children = [c for c in index.get(task.id, []) if in_scope(c)]
        stack.extend((c, depth + 1) for c in reversed(children))

    return out


def focus_path(tasks: Iterable[Task], focus_task_id: Optional[str]) -> list[Task]:
    """
    Return the breadcrumb for a zoomed view: outermost ancestor first,
    ending with the focus task itself. Empty if there is no focus.
    """
    if focus_task_id is None:
        return []

    by_id = index_by_id(tasks)
    focus = by_id.get(focus_task_id)
    if focus is None:
        return []

    return [*ancestor_path(by_id, focus_task_id), focus]


def visible_descendant_ids(flat: list[FlatTask], task_id: str) -> set[str]:
    """
    Return ids of the rows directly following `task_id` that are nested
    under it in the flattened list.
    """
    out: set[str] = set()
    start = next((i for i, row in enumerate(flat) if row.id == task_id), None)
    if start is None:
        return out

    base = flat[start].depth
    for row in flat[start + 1:]:
        if row.depth <= base:
            break
        out.add(row.id)

    return out
