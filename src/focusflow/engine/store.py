# src/focusflow/engine/store.py

"""
Tree store.

The canonical in-memory collection of zones, tasks and recurring
templates, and the only place where they are mutated.

Design principles:
- Tasks live in an arena (id -> Task); the parent/child index is rebuilt
  per operation.
- Every mutation works on copies and commits at the end, so no change
  is ever partially visible.
- Mutations referencing unknown ids are no-ops (False / None / empty
  result), never exceptions.
- After every commit: aggregation runs, listeners are notified, and the
  persistence callback is invoked without waiting on or re-raising its
  failures.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Optional

from .aggregate import EMPTY, Aggregate, apply_aggregates, compute_aggregates
from .completion import reconcile_ancestors, set_completion, toggle_completion
from .flatten import FlatTask, flatten_tasks, focus_path
from .model import (
    DeadlineType,
    Priority,
    RecurringTemplate,
    Task,
    TemplateScope,
    Urgency,
    Zone,
    sort_by_order,
    sort_zones,
    utcnow,
)
from .ops import new_id, snapshot_to_dict, task_to_record, zone_to_record
from .parse import ParseError, Snapshot, parse_snapshot, parse_task_record, parse_zone_record
from .recurring import AUTO_GENERATED_SUFFIX, materialize_due
from .reposition import INDENT_WIDTH, Position, resolve_position
from .tree import (
    build_children_index,
    is_descendant,
    iter_descendants,
    next_order,
    renumber,
    sibling_group,
    subtree_ids,
)
from .urgency import rank_scores, urgency_for_task
from .validate import cycle_members, validate_snapshot

logger = logging.getLogger(__name__)

DEFAULT_ZONE_COLOR = "#3b82f6"
COPY_SUFFIX = "(copy)"

Listener = Callable[["TreeStore"], None]
Persist = Callable[[dict[str, Any]], None]

# Fields update_task() may change. Placement, identity and derived
# fields go through their own operations.
_UPDATABLE = frozenset({
    "title",
    "description",
    "priority",
    "deadline",
    "deadline_type",
    "estimated_time",
    "own_time",
    "is_collapsed",
    "expanded",
    "prevent_auto_complete",
    "completed",
})
_PLACEMENT = frozenset({"id", "zone_id", "parent_id", "order"})


# ---------------------------------------------------------------------
# Result objects
# ---------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ImportResult:
    """
    Outcome of loading a snapshot or pasting a payload.

    `ids` holds the ids created by a paste (root first).
    """

    ok: bool
    error: str = ""
    ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TaskStats:
    total: int
    completed: int
    pending: int
    high_priority: int
    urgent: int


# ---------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------

class TreeStore:
    """Owns all zones, tasks and templates of one workspace."""

    def __init__(
        self,
        zones: Iterable[Zone] = (),
        tasks: Iterable[Task] = (),
        templates: Iterable[RecurringTemplate] = (),
        *,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[str], str] = new_id,
        persist: Optional[Persist] = None,
        auto_generated_suffix: str = AUTO_GENERATED_SUFFIX,
        copy_suffix: str = COPY_SUFFIX,
        indent_width: int = INDENT_WIDTH,
    ):
        self.clock = clock
        self.id_factory = id_factory
        self.persist = persist
        self.auto_generated_suffix = auto_generated_suffix
        self.copy_suffix = copy_suffix
        self.indent_width = indent_width

        self._zones: dict[str, Zone] = {z.id: replace(z) for z in zones}
        self._tasks: dict[str, Task] = {t.id: replace(t) for t in tasks}
        self._templates: list[RecurringTemplate] = [replace(t) for t in templates]
        self._listeners: list[Listener] = []

        self._aggregates: dict[str, Aggregate] = {}
        self._reaggregate()

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, **kwargs: Any) -> "TreeStore":
        return cls(snapshot.zones, snapshot.tasks, snapshot.templates, **kwargs)

    # -----------------------------------------------------------------
    # Read access
    # -----------------------------------------------------------------

    @property
    def zones(self) -> list[Zone]:
        return sort_zones(self._zones.values())

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    @property
    def templates(self) -> list[RecurringTemplate]:
        return list(self._templates)

    @property
    def aggregates(self) -> Mapping[str, Aggregate]:
        return MappingProxyType(self._aggregates)

    def metrics(self, task_id: str) -> Aggregate:
        return self._aggregates.get(task_id, EMPTY)

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def get_zone(self, zone_id: str) -> Optional[Zone]:
        return self._zones.get(zone_id)

    def get_template(self, template_id: str) -> Optional[RecurringTemplate]:
        return next((t for t in self._templates if t.id == template_id), None)

    def tasks_in_zone(self, zone_id: str) -> list[Task]:
        return [t for t in self._tasks.values() if t.zone_id == zone_id]

    def root_tasks(self, zone_id: str) -> list[Task]:
        return sibling_group(self._tasks.values(), zone_id, None)

    def child_tasks(self, parent_id: str) -> list[Task]:
        return sort_by_order(t for t in self._tasks.values() if t.parent_id == parent_id)

    def flatten(
        self,
        zone_id: Optional[str] = None,
        focus_task_id: Optional[str] = None,
        reveal_task_id: Optional[str] = None,
    ) -> list[FlatTask]:
        return flatten_tasks(self._tasks.values(), zone_id, focus_task_id, reveal_task_id)

    def breadcrumbs(self, focus_task_id: Optional[str]) -> list[Task]:
        return focus_path(self._tasks.values(), focus_task_id)

    def stats(self) -> TaskStats:
        tasks = list(self._tasks.values())
        scores = rank_scores(tasks)
        completed = sum(1 for t in tasks if t.completed)
        return TaskStats(
            total=len(tasks),
            completed=completed,
            pending=len(tasks) - completed,
            high_priority=sum(1 for t in tasks if t.priority is Priority.HIGH and not t.completed),
            urgent=sum(1 for t in tasks if urgency_for_task(t, scores) is Urgency.URGENT),
        )

    # -----------------------------------------------------------------
    # Change notification / persistence
    # -----------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a change listener; returns a function that removes it.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def to_snapshot(self) -> dict[str, Any]:
        return snapshot_to_dict(self.zones, self.tasks, self._templates)

    def load_snapshot(self, data: Any) -> ImportResult:
        """
        Replace the whole state with a snapshot mapping.

        Malformed payloads leave the state untouched.
        """
        try:
            snapshot = parse_snapshot(data)
        except ParseError as e:
            logger.warning("Snapshot rejected: %s", e)
            return ImportResult(ok=False, error=str(e))

        result = validate_snapshot(snapshot.zones, snapshot.tasks)
        for issue in result.issues:
            logger.warning("Loaded snapshot: %s: %s", issue.code, issue.message)

        self._commit(
            zones={z.id: z for z in snapshot.zones},
            tasks={t.id: t for t in snapshot.tasks},
            templates=snapshot.templates,
        )
        return ImportResult(ok=True)

    # -----------------------------------------------------------------
    # Zones
    # -----------------------------------------------------------------

    def add_zone(self, name: str, color: str = DEFAULT_ZONE_COLOR) -> Zone:
        zone = Zone(
            id=self.id_factory("zone"),
            name=name,
            color=color,
            order=max((z.order for z in self._zones.values()), default=-1) + 1,
            created_at=self.clock(),
        )
        zone.validate()

        zones = dict(self._zones)
        zones[zone.id] = zone
        self._commit(zones=zones)
        return zone

    def update_zone(self, zone_id: str, *, name: Optional[str] = None, color: Optional[str] = None) -> bool:
        zone = self._zones.get(zone_id)
        if zone is None:
            logger.debug("update_zone: unknown zone %s", zone_id)
            return False

        updated = replace(
            zone,
            name=zone.name if name is None else name,
            color=zone.color if color is None else color,
        )
        updated.validate()

        zones = dict(self._zones)
        zones[zone_id] = updated
        self._commit(zones=zones)
        return True

    def delete_zone(self, zone_id: str) -> bool:
        """Delete a zone and every task currently filed under it."""
        if zone_id not in self._zones:
            logger.debug("delete_zone: unknown zone %s", zone_id)
            return False

        zones = {zid: z for zid, z in self._zones.items() if zid != zone_id}
        tasks = {tid: t for tid, t in self._tasks.items() if t.zone_id != zone_id}
        self._commit(zones=zones, tasks=tasks)
        return True

    def reorder_zones(self, ordered_ids: Iterable[str]) -> None:
        """
        Renumber zones to follow `ordered_ids`.

        Unknown ids are ignored; zones not listed keep their relative
        order after the listed ones.
        """
        zones = {zid: replace(z) for zid, z in self._zones.items()}
        listed = [zones[zid] for zid in dict.fromkeys(ordered_ids) if zid in zones]
        seen = {z.id for z in listed}
        rest = [z for z in sort_zones(zones.values()) if z.id not in seen]

        for i, zone in enumerate(listed + rest):
            zone.order = i
        self._commit(zones=zones)

    # -----------------------------------------------------------------
    # Tasks: create / update / delete
    # -----------------------------------------------------------------

    def add_task(
        self,
        zone_id: str,
        title: str,
        description: str = "",
        *,
        priority: Priority = Priority.MEDIUM,
        deadline: Optional[datetime] = None,
        deadline_type: DeadlineType = DeadlineType.NONE,
        parent_id: Optional[str] = None,
        estimated_time: Optional[int] = None,
    ) -> Optional[Task]:
        """
        Append a new task at the end of its sibling group.

        A subtask always lands in its parent's zone.
        """
        if parent_id is not None:
            parent = self._tasks.get(parent_id)
            if parent is None:
                logger.debug("add_task: unknown parent %s", parent_id)
                return None
            zone_id = parent.zone_id

        if zone_id not in self._zones:
            logger.debug("add_task: unknown zone %s", zone_id)
            return None

        if deadline is not None and deadline_type is DeadlineType.NONE:
            deadline_type = DeadlineType.EXACT

        task = Task(
            id=self.id_factory("task"),
            zone_id=zone_id,
            parent_id=parent_id,
            title=title,
            description=description,
            priority=Priority(priority),
            deadline=deadline,
            deadline_type=DeadlineType(deadline_type),
            order=next_order(self._tasks.values(), zone_id, parent_id),
            created_at=self.clock(),
            estimated_time=estimated_time,
        )
        task.validate()

        tasks = self._copy_tasks()
        tasks[task.id] = task
        reconcile_ancestors(tasks, build_children_index(tasks), parent_id, self.clock())
        self._commit(tasks=tasks)
        return task

    def update_task(self, task_id: str, **changes: Any) -> bool:
        """
        Update plain fields of a task.

        `completed` is routed through completion propagation. Placement
        fields (zone, parent, order) must go through move_task.
        """
        placement = _PLACEMENT.intersection(changes)
        if placement:
            raise ValueError(f"Use move_task to change: {', '.join(sorted(placement))}")

        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown or derived task field(s): {', '.join(sorted(unknown))}")

        if task_id not in self._tasks:
            logger.debug("update_task: unknown task %s", task_id)
            return False

        tasks = self._copy_tasks()
        task = tasks[task_id]
        completed = changes.pop("completed", None)

        if "priority" in changes:
            changes["priority"] = Priority(changes["priority"])
        if "deadline_type" in changes:
            changes["deadline_type"] = DeadlineType(changes["deadline_type"])
        if "deadline" in changes and "deadline_type" not in changes:
            if changes["deadline"] is None:
                changes["deadline_type"] = DeadlineType.NONE
            elif task.deadline_type is DeadlineType.NONE:
                changes["deadline_type"] = DeadlineType.EXACT

        for key, value in changes.items():
            setattr(task, key, value)
        task.validate()

        if completed is not None and bool(completed) != task.completed:
            set_completion(tasks, task_id, bool(completed), now=self.clock())

        self._commit(tasks=tasks)
        return True

    def toggle_completion(self, task_id: str) -> bool:
        if task_id not in self._tasks:
            logger.debug("toggle_completion: unknown task %s", task_id)
            return False

        tasks = self._copy_tasks()
        toggle_completion(tasks, task_id, now=self.clock())
        self._commit(tasks=tasks)
        return True

    def delete_task(self, task_id: str) -> set[str]:
        """
        Delete a task and its entire subtree. Returns the removed ids.
        """
        task = self._tasks.get(task_id)
        if task is None:
            logger.debug("delete_task: unknown task %s", task_id)
            return set()

        removed = subtree_ids(build_children_index(self._tasks), task_id)
        tasks = {tid: replace(t) for tid, t in self._tasks.items() if tid not in removed}
        renumber(sibling_group(tasks.values(), task.zone_id, task.parent_id))
        reconcile_ancestors(tasks, build_children_index(tasks), task.parent_id, self.clock())

        self._commit(tasks=tasks)
        return removed

    def clear_completed(self, zone_id: Optional[str] = None) -> set[str]:
        """Delete completed tasks (with their subtrees), optionally in one zone."""
        index = build_children_index(self._tasks)
        removed: set[str] = set()
        for task in self._tasks.values():
            if task.completed and (zone_id is None or task.zone_id == zone_id):
                removed |= subtree_ids(index, task.id)

        if not removed:
            return removed

        tasks = {tid: replace(t) for tid, t in self._tasks.items() if tid not in removed}
        groups = {(t.zone_id, t.parent_id) for t in tasks.values()}
        for zid, pid in groups:
            renumber(sibling_group(tasks.values(), zid, pid))

        self._commit(tasks=tasks)
        return removed

    # -----------------------------------------------------------------
    # Tasks: view state
    # -----------------------------------------------------------------

    def toggle_collapsed(self, task_id: str) -> bool:
        return self._flip(task_id, "is_collapsed")

    def toggle_expanded(self, task_id: str) -> bool:
        return self._flip(task_id, "expanded")

    def expand_task(self, task_id: str) -> bool:
        """Show the description and children of a task and its whole subtree."""
        if task_id not in self._tasks:
            return False

        tasks = self._copy_tasks()
        index = build_children_index(tasks)
        for task in [tasks[task_id], *iter_descendants(index, task_id)]:
            task.expanded = True
            task.is_collapsed = False

        self._commit(tasks=tasks, reaggregate=False)
        return True

    # -----------------------------------------------------------------
    # Tasks: placement
    # -----------------------------------------------------------------

    def move_task(
        self,
        task_id: str,
        new_parent_id: Optional[str],
        anchor_id: Optional[str] = None,
        zone_id: Optional[str] = None,
    ) -> bool:
        """
        Reparent `task_id` and place it right after `anchor_id`.

        The zone comes from the new parent; for a root it is `zone_id`,
        else the anchor's zone, else the task's current zone. A zone
        change is applied to the whole moved subtree. Both the old and
        the new sibling groups are renumbered 0..n-1.
        """
        task = self._tasks.get(task_id)
        if task is None:
            logger.debug("move_task: unknown task %s", task_id)
            return False

        if new_parent_id is not None:
            parent = self._tasks.get(new_parent_id)
            if parent is None:
                logger.debug("move_task: unknown parent %s", new_parent_id)
                return False
            if new_parent_id == task_id or is_descendant(self._tasks, new_parent_id, task_id):
                logger.warning("move_task: refusing to move %s under its own subtree", task_id)
                return False
            target_zone = parent.zone_id
        else:
            anchor = self._tasks.get(anchor_id) if anchor_id else None
            target_zone = zone_id or (anchor.zone_id if anchor else task.zone_id)

        if target_zone not in self._zones:
            logger.debug("move_task: unknown zone %s", target_zone)
            return False

        tasks = self._copy_tasks()
        moved = tasks[task_id]
        old_zone, old_parent = moved.zone_id, moved.parent_id

        if target_zone != old_zone:
            index = build_children_index(tasks)
            for child in iter_descendants(index, task_id):
                child.zone_id = target_zone

        moved.zone_id = target_zone
        moved.parent_id = new_parent_id

        siblings = sibling_group(tasks.values(), target_zone, new_parent_id, exclude=task_id)
        insert_at = 0
        if anchor_id is not None:
            pos = next((i for i, s in enumerate(siblings) if s.id == anchor_id), None)
            if pos is not None:
                insert_at = pos + 1
        siblings.insert(insert_at, moved)
        renumber(siblings)

        if (old_zone, old_parent) != (target_zone, new_parent_id):
            renumber(sibling_group(tasks.values(), old_zone, old_parent))
            index = build_children_index(tasks)
            now = self.clock()
            reconcile_ancestors(tasks, index, old_parent, now)
            reconcile_ancestors(tasks, index, new_parent_id, now)

        self._commit(tasks=tasks)
        return True

    def drop_task(
        self,
        flat: list[FlatTask],
        active_id: str,
        over_id: str,
        offset_px: float,
        focus_root_id: Optional[str] = None,
        zone_id: Optional[str] = None,
    ) -> Optional[Position]:
        """
        Resolve a drag gesture against `flat` and apply the move.

        Returns the resolved position, or None if the gesture was stale
        or the move was rejected.
        """
        if active_id not in self._tasks or over_id not in self._tasks:
            logger.debug("drop_task: stale gesture %s -> %s", active_id, over_id)
            return None

        pos = resolve_position(
            flat, active_id, over_id, offset_px, focus_root_id, indent_width=self.indent_width
        )
        if pos is None:
            return None

        if not self.move_task(active_id, pos.new_parent_id, pos.anchor_id, zone_id):
            return None
        return pos

    def reorder_siblings(self, zone_id: str, parent_id: Optional[str], ordered_ids: Iterable[str]) -> bool:
        """
        Reorder one sibling group explicitly.

        Ids outside the group are ignored; group members not listed keep
        their relative order after the listed ones.
        """
        current = sibling_group(self._tasks.values(), zone_id, parent_id)
        if not current:
            return False

        tasks = self._copy_tasks()
        group = {t.id: tasks[t.id] for t in current}
        listed = [group[tid] for tid in dict.fromkeys(ordered_ids) if tid in group]
        seen = {t.id for t in listed}
        renumber(listed + [tasks[t.id] for t in current if t.id not in seen])

        self._commit(tasks=tasks, reaggregate=False)
        return True

    # -----------------------------------------------------------------
    # Time tracking
    # -----------------------------------------------------------------

    def accumulate_work_seconds(self, task_id: str, seconds: int) -> bool:
        """
        Timer entry point: add focus seconds to a task's own time.

        Always reads the committed state; an unknown id (e.g. the task
        was deleted mid-session) or a non-positive amount is a no-op.
        """
        if seconds <= 0 or task_id not in self._tasks:
            logger.debug("accumulate_work_seconds: ignored %s (%s s)", task_id, seconds)
            return False

        tasks = dict(self._tasks)
        tasks[task_id] = replace(tasks[task_id], own_time=tasks[task_id].own_time + int(seconds))
        self._commit(tasks=tasks)
        return True

    # -----------------------------------------------------------------
    # Recurring templates
    # -----------------------------------------------------------------

    def add_template(
        self,
        title: str,
        zone_id: str,
        interval_minutes: int,
        *,
        description: str = "",
        priority: Priority = Priority.MEDIUM,
        deadline_offset_hours: float = 0,
        is_active: bool = True,
        scope: TemplateScope = TemplateScope.GLOBAL,
    ) -> Optional[RecurringTemplate]:
        if zone_id not in self._zones:
            logger.debug("add_template: unknown zone %s", zone_id)
            return None

        tpl = RecurringTemplate(
            id=self.id_factory("rec"),
            title=title,
            zone_id=zone_id,
            interval_minutes=int(interval_minutes),
            last_triggered_at=self.clock(),
            description=description,
            priority=Priority(priority),
            deadline_offset_hours=deadline_offset_hours,
            is_active=is_active,
            scope=TemplateScope(scope),
        )
        self._commit(templates=[*self._templates, tpl], reaggregate=False)
        return tpl

    def update_template(self, template_id: str, **changes: Any) -> bool:
        if "id" in changes:
            raise ValueError("Template id cannot be changed")

        templates = list(self._templates)
        for i, tpl in enumerate(templates):
            if tpl.id == template_id:
                templates[i] = replace(tpl, **changes)
                self._commit(templates=templates, reaggregate=False)
                return True

        logger.debug("update_template: unknown template %s", template_id)
        return False

    def delete_template(self, template_id: str) -> bool:
        templates = [t for t in self._templates if t.id != template_id]
        if len(templates) == len(self._templates):
            return False
        self._commit(templates=templates, reaggregate=False)
        return True

    def check_recurring(self, now: Optional[datetime] = None) -> list[Task]:
        """
        Materialize every due template in one pass.

        Each new task goes to the top of its zone's roots. Aggregation
        runs once at the end, not once per template.
        """
        now = now or self.clock()
        due = materialize_due(
            (t for t in self._templates if t.zone_id in self._zones),
            now,
            lambda: self.id_factory("task"),
            suffix=self.auto_generated_suffix,
        )
        for tpl in self._templates:
            if tpl.zone_id not in self._zones and tpl.is_due(now):
                logger.warning("Recurring template %s skipped: zone %s is gone", tpl.id, tpl.zone_id)

        if not due:
            return []

        tasks = self._copy_tasks()
        advanced = {m.template.id: m.template for m in due}
        for m in due:
            roots = sibling_group(tasks.values(), m.task.zone_id, None)
            tasks[m.task.id] = m.task
            renumber([m.task, *roots])

        templates = [advanced.get(t.id, t) for t in self._templates]
        self._commit(tasks=tasks, templates=templates)
        return [m.task for m in due]

    # -----------------------------------------------------------------
    # Copy / paste
    # -----------------------------------------------------------------

    def export_subtree(self, task_id: str) -> Optional[dict[str, Any]]:
        """
        Return {"type": "task", "tasks": [...]} with the root first.
        """
        if task_id not in self._tasks:
            return None

        index = build_children_index(self._tasks)
        nodes = [self._tasks[task_id], *iter_descendants(index, task_id)]
        return {"type": "task", "tasks": [task_to_record(t) for t in nodes]}

    def export_zone(self, zone_id: str) -> Optional[dict[str, Any]]:
        zone = self._zones.get(zone_id)
        if zone is None:
            return None

        return {
            "type": "zone",
            "zone": zone_to_record(zone),
            "tasks": [task_to_record(t) for t in self.tasks_in_zone(zone_id)],
        }

    def paste_subtree(
        self,
        payload: Any,
        zone_id: str,
        parent_id: Optional[str] = None,
        anchor_id: Optional[str] = None,
    ) -> ImportResult:
        """
        Insert a fresh-id'd copy of an exported subtree.

        The copy lands under `parent_id` (or as a root of `zone_id`)
        right after `anchor_id`. Copies start incomplete with no work
        time. A malformed payload is rejected without changes.
        """
        if parent_id is not None:
            parent = self._tasks.get(parent_id)
            if parent is None:
                return ImportResult(ok=False, error=f"Unknown parent: {parent_id}")
            zone_id = parent.zone_id
        if zone_id not in self._zones:
            return ImportResult(ok=False, error=f"Unknown zone: {zone_id}")

        try:
            source = _parse_payload_tasks(payload, "task")
        except ParseError as e:
            logger.warning("Paste rejected: %s", e)
            return ImportResult(ok=False, error=str(e))

        if not source:
            return ImportResult(ok=False, error="Payload contains no tasks")

        root = source[0]
        members = {t.id for t in source}
        problem = _check_connected(source, root.id, members)
        if problem:
            return ImportResult(ok=False, error=problem)

        id_map = {t.id: self.id_factory("task") for t in source}
        copies = [self._fresh_copy(t, id_map, zone_id) for t in source]
        copies[0].parent_id = parent_id

        tasks = self._copy_tasks()
        for copy in copies:
            tasks[copy.id] = copy
        for copy in copies[1:]:
            renumber(sibling_group(tasks.values(), zone_id, copy.parent_id))

        siblings = sibling_group(tasks.values(), zone_id, parent_id, exclude=copies[0].id)
        insert_at = next((i + 1 for i, s in enumerate(siblings) if s.id == anchor_id), len(siblings))
        siblings.insert(insert_at, copies[0])
        renumber(siblings)
        reconcile_ancestors(tasks, build_children_index(tasks), parent_id, self.clock())

        self._commit(tasks=tasks)
        return ImportResult(ok=True, ids=tuple(c.id for c in copies))

    def paste_zone(self, payload: Any) -> ImportResult:
        """
        Create a new zone from an exported zone payload.
        """
        try:
            if not isinstance(payload, dict) or payload.get("type") != "zone":
                raise ParseError("<payload>", "Payload is not a zone export")
            source_zone = parse_zone_record(payload.get("zone"), path="<payload>:zone")
            source = _parse_payload_tasks(payload, "zone")
        except ParseError as e:
            logger.warning("Zone paste rejected: %s", e)
            return ImportResult(ok=False, error=str(e))

        looped = cycle_members({t.id: t for t in source})
        if looped:
            logger.warning("Zone paste rejected: parent cycle through %s", ", ".join(sorted(looped)))
            return ImportResult(ok=False, error="Payload tasks contain a parent cycle")

        zone = Zone(
            id=self.id_factory("zone"),
            name=f"{source_zone.name} {self.copy_suffix}",
            color=source_zone.color,
            order=max((z.order for z in self._zones.values()), default=-1) + 1,
            created_at=self.clock(),
        )

        id_map = {t.id: self.id_factory("task") for t in source}
        copies = [self._fresh_copy(t, id_map, zone.id) for t in source]

        zones = dict(self._zones)
        zones[zone.id] = zone
        tasks = self._copy_tasks()
        for copy in copies:
            tasks[copy.id] = copy
        for pid in {c.parent_id for c in copies}:
            renumber(sibling_group(tasks.values(), zone.id, pid))

        self._commit(zones=zones, tasks=tasks)
        return ImportResult(ok=True, ids=(zone.id, *(c.id for c in copies)))

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _copy_tasks(self) -> dict[str, Task]:
        return {tid: replace(t) for tid, t in self._tasks.items()}

    def _flip(self, task_id: str, attr: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            logger.debug("toggle %s: unknown task %s", attr, task_id)
            return False

        tasks = dict(self._tasks)
        tasks[task_id] = replace(task, **{attr: not getattr(task, attr)})
        self._commit(tasks=tasks, reaggregate=False)
        return True

    def _fresh_copy(self, source: Task, id_map: Mapping[str, str], zone_id: str) -> Task:
        return replace(
            source,
            id=id_map[source.id],
            zone_id=zone_id,
            parent_id=id_map.get(source.parent_id) if source.parent_id else None,
            created_at=self.clock(),
            completed=False,
            completed_at=None,
            own_time=0,
            total_work_time=0,
        )

    def _reaggregate(self) -> None:
        self._aggregates = compute_aggregates(self._tasks.values())
        apply_aggregates(self._tasks.values(), self._aggregates)

    def _commit(
        self,
        *,
        zones: Optional[dict[str, Zone]] = None,
        tasks: Optional[dict[str, Task]] = None,
        templates: Optional[list[RecurringTemplate]] = None,
        reaggregate: bool = True,
    ) -> None:
        if zones is not None:
            self._zones = zones
        if tasks is not None:
            self._tasks = tasks
            if reaggregate:
                self._reaggregate()
        if templates is not None:
            self._templates = templates

        for listener in list(self._listeners):
            listener(self)

        if self.persist is not None:
            try:
                self.persist(self.to_snapshot())
            except Exception:
                logger.exception("Failed to persist snapshot")


# ---------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------

def _parse_payload_tasks(payload: Any, kind: str) -> list[Task]:
    if not isinstance(payload, dict):
        raise ParseError("<payload>", "Payload must be a mapping/dictionary")
    if payload.get("type", kind) != kind:
        raise ParseError("<payload>", f"Payload type must be '{kind}'")

    records = payload.get("tasks")
    if not isinstance(records, list):
        raise ParseError("<payload>", "Key 'tasks' must be a list")

    tasks = [parse_task_record(r, path=f"<payload>:tasks[{i}]") for i, r in enumerate(records)]
    if len({t.id for t in tasks}) != len(tasks):
        raise ParseError("<payload>", "Duplicate task ids in payload")
    return tasks


def _check_connected(source: list[Task], root_id: str, members: set[str]) -> str:
    """
    Return an error message unless every payload task hangs below the root.
    """
    for task in source[1:]:
        if task.parent_id not in members:
            return f"Task {task.id} is not part of the copied subtree"

    index = build_children_index({t.id: replace(t, parent_id=None) if t.id == root_id else t for t in source})
    reached = subtree_ids(index, root_id)
    if reached != members:
        return "Payload subtree is cyclic or disconnected"
    return ""
