# src/focusflow/engine/model.py

"""
Core domain models.

This module defines the in-memory representations of zones, tasks
and recurring templates, along with their core invariants and default
ordering rules.

Derived metrics (total work time, implicit estimated time) live in
aggregate.py; the `total_work_time` field on Task is only a cache
written back by the store after every aggregation pass.

No filesystem access should happen here.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional


def utcnow() -> datetime:
    """Return an aware UTC timestamp (isolated for testability)."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------

class Priority(str, Enum):
    """
    Task priority.

    high > medium > low
    """

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def sort_key(cls, priority: "Priority") -> int:
        """
        Return numeric rank for list ordering.

        Lower value = higher priority.
        """
        order = {
            cls.HIGH: 0,
            cls.MEDIUM: 1,
            cls.LOW: 2,
        }
        return order[priority]

    @property
    def weight(self) -> float:
        """Score used by weighted sorting (1.0 for high, 0 for low)."""
        return {Priority.HIGH: 1.0, Priority.MEDIUM: 0.5, Priority.LOW: 0.0}[self]


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class DeadlineType(str, Enum):
    """
    How a deadline was chosen.

    Only EXACT carries a user-picked timestamp; the relative kinds are
    resolved to end-of-day timestamps when set (see urgency.resolve_deadline).
    """

    EXACT = "exact"
    TODAY = "today"
    TOMORROW = "tomorrow"
    WEEK = "week"
    NONE = "none"


class TemplateScope(str, Enum):
    GLOBAL = "global"
    WORKSPACE = "workspace"


# ---------------------------------------------------------------------
# Zone
# ---------------------------------------------------------------------

@dataclass(slots=True)
class Zone:
    """
    A named top-level bucket owning zero or more root tasks.

    `order` is the sequence index among zones.
    """

    id: str
    name: str
    color: str
    order: int
    created_at: datetime

    def validate(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("zone id must be a non-empty string")

        if not self.name or not self.name.strip():
            raise ValueError("zone name must be a non-empty string")


# ---------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------

@dataclass(slots=True)
class Task:
    """
    A node in the task forest.

    Notes:
    - parent_id is None for root tasks.
    - zone_id must equal the zone_id of the parent (a subtree never spans zones).
    - order is only meaningful among siblings sharing (zone_id, parent_id).
    - own_time is in seconds, estimated_time in minutes.
    - completed_at is set iff completed is True.
    """

    # Identity / placement
    id: str
    zone_id: str
    parent_id: Optional[str]
    title: str

    # Ordering / temporal fields
    order: int = 0
    created_at: datetime = field(default_factory=utcnow)

    # Content
    description: str = ""
    priority: Priority = Priority.MEDIUM
    deadline: Optional[datetime] = None
    deadline_type: DeadlineType = DeadlineType.NONE

    # Completion
    completed: bool = False
    completed_at: Optional[datetime] = None
    prevent_auto_complete: bool = False

    # Time tracking
    own_time: int = 0
    total_work_time: int = 0
    estimated_time: Optional[int] = None

    # View state
    is_collapsed: bool = False
    expanded: bool = False

    is_recurring: bool = False

    # -----------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------

    def validate(self) -> None:
        """
        Validate invariants that hold for a single record.

        Cross-record rules (parents, zones, sibling order) are checked
        by validate.validate_snapshot.
        """
        if not self.id or not self.id.strip():
            raise ValueError("task id must be a non-empty string")

        if not self.zone_id or not self.zone_id.strip():
            raise ValueError("zone_id must be a non-empty string")

        if self.parent_id == self.id:
            raise ValueError("task cannot be its own parent")

        if self.own_time < 0:
            raise ValueError("own_time must be >= 0")

        if self.estimated_time is not None and self.estimated_time < 0:
            raise ValueError("estimated_time must be >= 0")

        if self.completed and self.completed_at is None:
            raise ValueError("completed_at is required when completed")

    # -----------------------------------------------------------------
    # Convenience properties
    # -----------------------------------------------------------------

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def has_explicit_estimate(self) -> bool:
        return self.estimated_time is not None and self.estimated_time > 0

    @property
    def priority_rank(self) -> int:
        return Priority.sort_key(self.priority)

    def set_completed(self, value: bool, at: datetime) -> None:
        self.completed = value
        self.completed_at = at if value else None


# ---------------------------------------------------------------------
# Recurring template
# ---------------------------------------------------------------------

@dataclass(slots=True)
class RecurringTemplate:
    """
    A rule that periodically materializes a new root task in a zone.
    """

    id: str
    title: str
    zone_id: str
    interval_minutes: int
    last_triggered_at: datetime
    description: str = ""
    priority: Priority = Priority.MEDIUM
    deadline_offset_hours: float = 0
    is_active: bool = True
    scope: TemplateScope = TemplateScope.GLOBAL

    def is_due(self, now: datetime) -> bool:
        if not self.is_active or self.interval_minutes < 1:
            return False
        elapsed = (now - self.last_triggered_at).total_seconds() / 60
        return elapsed >= self.interval_minutes


# ---------------------------------------------------------------------
# Ordering helpers
# ---------------------------------------------------------------------

def sort_by_order(items: Iterable[Task]) -> list[Task]:
    """
    Default ordering within a sibling group:

    1. order
    2. created_at (stable tie-breaker for legacy duplicate orders)
    3. id
    """
    return sorted(items, key=lambda t: (t.order, t.created_at, t.id))


def sort_zones(zones: Iterable[Zone]) -> list[Zone]:
    return sorted(zones, key=lambda z: (z.order, z.created_at, z.id))
