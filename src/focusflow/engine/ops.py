# src/focusflow/engine/ops.py

"""
Filesystem-level operations and storage rendering.

This module contains:
- id generation for zones, tasks and templates,
- serialisation of model objects to plain records,
- the YAML snapshot writer used as the store's persistence callback.

No parsing is performed here.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import yaml

from .parse import SNAPSHOT_VERSION

if TYPE_CHECKING:
    from .model import RecurringTemplate, Task, Zone

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Ids
# ---------------------------------------------------------------------

def new_id(prefix: str) -> str:
    """
    Return a fresh opaque id such as `task-3f9c2a71b0de`.
    """
    return f"{prefix}-{secrets.token_hex(6)}"


# ---------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------

def zone_to_record(zone: "Zone") -> dict[str, Any]:
    return {
        "id": zone.id,
        "name": zone.name,
        "color": zone.color,
        "order": zone.order,
        "created_at": _ts(zone.created_at),
    }


def task_to_record(task: "Task") -> dict[str, Any]:
    return {
        "id": task.id,
        "zone_id": task.zone_id,
        "parent_id": task.parent_id,
        "title": task.title,
        "description": task.description,
        "completed": task.completed,
        "completed_at": _ts(task.completed_at),
        "priority": task.priority.value,
        "deadline": _ts(task.deadline),
        "deadline_type": task.deadline_type.value,
        "order": task.order,
        "created_at": _ts(task.created_at),
        "own_time": task.own_time,
        "total_work_time": task.total_work_time,
        "estimated_time": task.estimated_time,
        "is_collapsed": task.is_collapsed,
        "expanded": task.expanded,
        "prevent_auto_complete": task.prevent_auto_complete,
        "is_recurring": task.is_recurring,
    }


def template_to_record(tpl: "RecurringTemplate") -> dict[str, Any]:
    return {
        "id": tpl.id,
        "title": tpl.title,
        "description": tpl.description,
        "zone_id": tpl.zone_id,
        "priority": tpl.priority.value,
        "interval_minutes": tpl.interval_minutes,
        "last_triggered_at": _ts(tpl.last_triggered_at),
        "deadline_offset_hours": tpl.deadline_offset_hours,
        "is_active": tpl.is_active,
        "scope": tpl.scope.value,
    }


def snapshot_to_dict(
    zones: list["Zone"],
    tasks: list["Task"],
    templates: list["RecurringTemplate"],
) -> dict[str, Any]:
    return {
        "version": SNAPSHOT_VERSION,
        "zones": [zone_to_record(z) for z in zones],
        "tasks": [task_to_record(t) for t in tasks],
        "templates": [template_to_record(t) for t in templates],
    }


def dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


# ---------------------------------------------------------------------
# Snapshot files
# ---------------------------------------------------------------------

def ensure_store_dir(store_file: Path) -> Path:
    """
    Ensure the directory holding the snapshot file exists.
    """
    store_file.parent.mkdir(parents=True, exist_ok=True)
    return store_file.parent


def write_snapshot(path: str | Path, snapshot: dict[str, Any]) -> None:
    """
    Persist a snapshot by fully re-rendering the YAML file.

    Written to a sibling temp file first and renamed into place.
    """
    p = Path(path)
    ensure_store_dir(p)

    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text(dump_yaml(snapshot), encoding="utf-8")
    tmp.replace(p)


class SnapshotWriter:
    """
    Persistence callback: `store.persist = SnapshotWriter(path)`.

    The store calls it with the snapshot dict after every commit and
    does not wait on or re-raise its failures.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.writes = 0

    def __call__(self, snapshot: dict[str, Any]) -> None:
        write_snapshot(self.path, snapshot)
        self.writes += 1
        logger.debug("Snapshot written to %s (%d)", self.path, self.writes)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
