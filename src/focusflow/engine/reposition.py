# src/focusflow/engine/reposition.py

"""
Drag-and-drop reposition resolver.

Given one consistent snapshot of the flattened rows, the dragged task,
the row under the pointer and a horizontal pointer offset, compute where
the task lands: its new depth, its new parent and the sibling it must
follow (the anchor).

The anchor is a sibling id rather than an index. An index shifts as soon
as any row is inserted or removed; a sibling id stays valid until that
sibling itself is removed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Optional, Sequence

from .flatten import FlatTask, visible_descendant_ids

INDENT_WIDTH: Final[int] = 24

ROOT_BASE_DEPTH: Final[int] = 0


@dataclass(frozen=True, slots=True)
class Position:
    """
    Result of resolving a drop.

    new_parent_id is the focus root (or None) when new_depth is 0.
    anchor_id is None when the task becomes the first sibling.
    """

    new_depth: int
    new_parent_id: Optional[str]
    anchor_id: Optional[str]


@dataclass(frozen=True, slots=True)
class _Projection:
    rows: list[FlatTask]
    index: int  # where the dragged row sits in `rows`

    @property
    def previous(self) -> Optional[FlatTask]:
        return self.rows[self.index - 1] if self.index > 0 else None

    @property
    def next(self) -> Optional[FlatTask]:
        return self.rows[self.index + 1] if self.index + 1 < len(self.rows) else None


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def resolve_position(
    flat: Sequence[FlatTask],
    active_id: str,
    over_id: str,
    offset_px: float,
    focus_root_id: Optional[str] = None,
    *,
    indent_width: int = INDENT_WIDTH,
) -> Optional[Position]:
    """
    Resolve a drop of `active_id` onto the row `over_id`.

    Positive offset_px expresses an indent intent, negative an outdent.
    Returns None if either id is not part of `flat` (stale gesture).
    """
    proj = _project(flat, active_id, over_id)
    if proj is None:
        return None

    active = proj.rows[proj.index]
    depth = _clamp_depth(proj, active.depth + round(offset_px / indent_width))
    parent_id = _resolve_parent(proj, depth, focus_root_id)
    anchor_id = _resolve_anchor(proj, depth)

    return Position(new_depth=depth, new_parent_id=parent_id, anchor_id=anchor_id)


def depth_bounds(flat: Sequence[FlatTask], active_id: str, over_id: str) -> Optional[tuple[int, int]]:
    """
    Return the (min, max) depth a drop at `over_id` may take.

    Used by renderers to draw the indent guide while dragging.
    """
    proj = _project(flat, active_id, over_id)
    if proj is None:
        return None
    return _bounds(proj)


# ---------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------

def _project(flat: Sequence[FlatTask], active_id: str, over_id: str) -> Optional[_Projection]:
    """
    Simulate the drop: move the dragged row to the pointer's index.

    The dragged row is still present in `flat` during the gesture, so
    moving it first makes "previous" the row over the pointer when
    dragging down and the row above it when dragging up. Visible
    descendants of the dragged row travel with it and are left out.
    """
    ids = [row.id for row in flat]
    if active_id not in ids or over_id not in ids:
        return None

    active_index = ids.index(active_id)
    over_index = ids.index(over_id)

    travelling = visible_descendant_ids(list(flat), active_id)
    if over_id in travelling:
        over_index = active_index

    moved = list(flat)
    row = moved.pop(active_index)
    moved.insert(over_index, row)

    rows = [r for r in moved if r.id not in travelling]
    index = next(i for i, r in enumerate(rows) if r.id == active_id)
    return _Projection(rows=rows, index=index)


def _bounds(proj: _Projection) -> tuple[int, int]:
    previous, nxt = proj.previous, proj.next
    max_depth = previous.depth + 1 if previous else ROOT_BASE_DEPTH
    min_depth = nxt.depth if nxt else ROOT_BASE_DEPTH
    return min(min_depth, max_depth), max_depth


def _clamp_depth(proj: _Projection, desired: int) -> int:
    min_depth, max_depth = _bounds(proj)
    return max(min_depth, min(desired, max_depth))


def _resolve_parent(proj: _Projection, depth: int, focus_root_id: Optional[str]) -> Optional[str]:
    if depth == ROOT_BASE_DEPTH:
        return focus_root_id

    previous = proj.previous
    if previous is not None and depth == previous.depth + 1:
        return previous.id

    for row in reversed(proj.rows[:proj.index]):
        if row.depth == depth - 1:
            return row.id

    return focus_root_id


def _resolve_anchor(proj: _Projection, depth: int) -> Optional[str]:
    # In pre-order, the nearest earlier row at the same depth with no
    # shallower row in between is a sibling under the same parent.
    for row in reversed(proj.rows[:proj.index]):
        if row.depth < depth:
            return None
        if row.depth == depth:
            return row.id
    return None
