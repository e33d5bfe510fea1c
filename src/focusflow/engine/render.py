# src/focusflow/engine/render.py

"""
Rendering helpers for CLI output.

This module is responsible for:
- zone listing (zones),
- the flattened task tree (list),
- structured task detail view (show).

It is presentation-only: it consumes flattened rows and aggregates and
never mutates state.
"""

from __future__ import annotations

import re
import shutil
import sys
import textwrap
from collections.abc import Iterable, Mapping

from .aggregate import EMPTY, Aggregate
from .flatten import FlatTask
from .model import Priority, Task, Zone


# ---------------------------------------------------------------------
# ANSI / terminal helpers
# ---------------------------------------------------------------------

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")

_RESET = "\033[0m"
_DIM = "\033[90m"

_COLOR = {
    Priority.HIGH: "\033[31m",    # red
    Priority.MEDIUM: "\033[33m",  # yellow
    Priority.LOW: "\033[32m",     # green
}


def _supports_color() -> bool:
    """Return True if stdout is a TTY."""
    return sys.stdout.isatty()


def _visible_len(s: str) -> int:
    """Return string length without ANSI colour escapes."""
    return len(_ANSI_RE.sub("", s))


def format_duration(seconds: int) -> str:
    """
    Format seconds as `1h 5m` or `12m`.
    """
    hours, rest = divmod(max(0, int(seconds)), 3600)
    mins = rest // 60
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


# ---------------------------------------------------------------------
# Zones
# ---------------------------------------------------------------------

def render_zones(zones: Iterable[Zone], tasks: Iterable[Task]) -> None:
    counts: dict[str, list[int]] = {}
    for task in tasks:
        entry = counts.setdefault(task.zone_id, [0, 0])
        entry[0] += int(task.completed)
        entry[1] += 1

    for zone in zones:
        done, total = counts.get(zone.id, [0, 0])
        print(f"- {zone.name} ({done}/{total}) {zone.color} id: {zone.id}")


# ---------------------------------------------------------------------
# Task tree (list)
# ---------------------------------------------------------------------

def format_row(row: FlatTask, agg: Aggregate, *, color: bool = True) -> str:
    """
    Format one flattened row:

      <indent>[x] Title (work / estimate) id: ...
    """
    task = row.task
    mark = "[x]" if task.completed else "[ ]"
    if color and _supports_color():
        mark = f"{_COLOR.get(task.priority, '')}{mark}{_RESET}"

    fold = "+" if task.is_collapsed else " "

    times = format_duration(agg.total_work_time)
    if agg.estimated_time:
        times = f"{times} / {agg.estimated_time}m"

    line = f"{'  ' * row.depth}{fold}{mark} {task.title} ({times})"
    if color and _supports_color():
        return f"{line} {_DIM}id: {task.id}{_RESET}"
    return f"{line} id: {task.id}"


def render_tree(
    rows: Iterable[FlatTask],
    aggregates: Mapping[str, Aggregate],
    *,
    breadcrumbs: Iterable[Task] = (),
    color: bool = True,
) -> None:
    """
    Render flattened rows, preceded by the breadcrumb of a zoomed view.
    """
    trail = [t.title for t in breadcrumbs]
    if trail:
        print(" > ".join(trail))

    sep = "=" * 6
    print(sep)
    for row in rows:
        print(format_row(row, aggregates.get(row.id, EMPTY), color=color))
    print(sep)


# ---------------------------------------------------------------------
# Task detail view (show)
# ---------------------------------------------------------------------

def render_task_detail(task: Task, agg: Aggregate, *, color: bool = True) -> None:
    """
    Render a structured task detail view.

    Width is capped at 80 characters.
    """
    width = min(80, shutil.get_terminal_size(fallback=(80, 24)).columns)
    inner_w = max(20, width - 4)  # borders + padding

    def cprio(s: str) -> str:
        if not (color and _supports_color()):
            return s
        return f"{_COLOR.get(task.priority, '')}{s}{_RESET}"

    def wrap_lines(s: str, *, indent: str = "") -> list[str]:
        if not s:
            return []

        out: list[str] = []
        for ln in s.rstrip().splitlines() or [""]:
            if not ln.strip():
                out.append(indent.rstrip())
                continue

            wrapped = textwrap.wrap(
                ln,
                width=inner_w - len(indent),
                break_long_words=False,
                break_on_hyphens=False,
            ) or [""]

            out.extend([indent + x for x in wrapped])

        return out

    def box_rule(ch: str = "-") -> None:
        print(f"+{ch * (width - 2)}+")

    def box_line(content: str = "") -> None:
        raw = content[:inner_w]
        pad = inner_w - _visible_len(raw)
        if pad > 0:
            raw = raw + (" " * pad)
        print(f"| {raw} |")

    state = "done" if task.completed else "open"

    print()
    box_rule("=")
    box_line(f"{task.title} ({state}, {cprio(task.priority.value)})")
    box_rule("=")

    box_line(f"id: {task.id}")
    box_line(f"zone: {task.zone_id}")
    if task.parent_id:
        box_line(f"parent: {task.parent_id}")
    box_line(f"created: {task.created_at.isoformat(timespec='minutes')}")
    if task.completed_at:
        box_line(f"completed: {task.completed_at.isoformat(timespec='minutes')}")
    if task.deadline:
        box_line(f"deadline: {task.deadline.isoformat(timespec='minutes')} ({task.deadline_type.value})")

    box_rule()
    box_line(f"own time: {format_duration(task.own_time)}")
    box_line(f"total work: {format_duration(agg.total_work_time)}")
    box_line(f"estimate: {agg.estimated_time}m" + ("" if task.has_explicit_estimate else " (from subtasks)"))

    if task.description.strip():
        box_rule()
        box_line("Description:")
        for ln in wrap_lines(task.description, indent="  "):
            box_line(ln)

    box_rule("=")
    print()
