# src/focusflow/engine/validate.py

"""
Snapshot validation rules.

This module checks a parsed collection of zones and tasks against the
cross-record invariants of the task forest:
- every task's zone and parent exist,
- a task lives in its parent's zone,
- the parent relation is acyclic,
- sibling order values form the contiguous sequence 0..n-1.

It does NOT parse and never repairs anything: the store loads data
as-is and only reports what this module finds.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from .model import Task, Zone


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class ValidationError(Exception):
    """
    Fatal validation error used for command flow control.

    Raised when a command must abort immediately (e.g. a task id given
    on the command line does not exist).
    """


# ---------------------------------------------------------------------
# Result objects
# ---------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """
    A single validation problem.

    `code` is a stable identifier suitable for tests and future filtering.
    """

    code: str
    message: str


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """
    Aggregated validation result for one snapshot.
    """

    path: str
    issues: Sequence[ValidationIssue]

    @property
    def ok(self) -> bool:
        return not self.issues

    def codes(self) -> set[str]:
        return {i.code for i in self.issues}


# ---------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------

def validate_snapshot(
    zones: Iterable[Zone],
    tasks: Iterable[Task],
    *,
    path: str = "<snapshot>",
    check_order: bool = True,
) -> ValidationResult:
    """
    Validate a zone/task collection.

    `check_order` can be turned off for legacy data that predates
    contiguous renumbering.
    """
    zone_ids = {z.id for z in zones}
    by_id = {t.id: t for t in tasks}
    issues: list[ValidationIssue] = []

    # -----------------------------------------------------------------
    # References
    # -----------------------------------------------------------------

    for task in by_id.values():
        if task.zone_id not in zone_ids:
            issues.append(
                ValidationIssue(
                    code="zone_missing",
                    message=f"Task '{task.id}' references unknown zone '{task.zone_id}'",
                )
            )

        if task.parent_id is None:
            continue

        parent = by_id.get(task.parent_id)
        if parent is None:
            issues.append(
                ValidationIssue(
                    code="parent_missing",
                    message=f"Task '{task.id}' references unknown parent '{task.parent_id}'",
                )
            )
        elif parent.zone_id != task.zone_id:
            issues.append(
                ValidationIssue(
                    code="zone_mismatch",
                    message=(
                        f"Task '{task.id}' is in zone '{task.zone_id}' "
                        f"but its parent '{parent.id}' is in zone '{parent.zone_id}'"
                    ),
                )
            )

    # -----------------------------------------------------------------
    # Cycles
    # -----------------------------------------------------------------

    for task_id in sorted(cycle_members(by_id)):
        issues.append(
            ValidationIssue(
                code="cycle",
                message=f"Task '{task_id}' is part of a parent cycle",
            )
        )

    # -----------------------------------------------------------------
    # Sibling order
    # -----------------------------------------------------------------

    if check_order:
        _check_sibling_orders(by_id.values(), issues)

    return ValidationResult(path=path, issues=tuple(issues))


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def cycle_members(by_id: Mapping[str, Task]) -> set[str]:
    """
    Return ids of tasks that sit on a parent cycle.
    """
    # 0 = unknown, 1 = on the current walk, 2 = known acyclic or in a cycle
    state: dict[str, int] = {}
    members: set[str] = set()

    for start in by_id:
        if state.get(start):
            continue

        walk: list[str] = []
        current: Optional[str] = start
        while current is not None and current in by_id and not state.get(current):
            state[current] = 1
            walk.append(current)
            current = by_id[current].parent_id

        if current is not None and state.get(current) == 1:
            # `current` closed a loop within this walk.
            members.update(walk[walk.index(current):])

        for tid in walk:
            state[tid] = 2

    return members


def _check_sibling_orders(tasks: Iterable[Task], issues: list[ValidationIssue]) -> None:
    groups: dict[tuple[str, Optional[str]], list[int]] = defaultdict(list)
    for task in tasks:
        groups[(task.zone_id, task.parent_id)].append(task.order)

    for (zone_id, parent_id), orders in sorted(groups.items(), key=lambda kv: (kv[0][0], kv[0][1] or "")):
        where = f"zone '{zone_id}', parent '{parent_id or '-'}'"
        if len(set(orders)) != len(orders):
            issues.append(
                ValidationIssue(
                    code="order_duplicate",
                    message=f"Duplicate sibling order values in {where}",
                )
            )
        elif sorted(orders) != list(range(len(orders))):
            issues.append(
                ValidationIssue(
                    code="order_gap",
                    message=f"Sibling order values in {where} are not 0..{len(orders) - 1}",
                )
            )
