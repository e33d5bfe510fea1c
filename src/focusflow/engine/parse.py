# src/focusflow/engine/parse.py

"""
Snapshot parser.

Turns plain records (as produced by ops.snapshot_to_dict, or as loaded
from a YAML snapshot file / pasted payload) back into model objects.

Layout of a snapshot mapping:
- version   (optional) : format version, currently 1
- zones     (required) : list of zone records
- tasks     (required) : list of task records
- templates (optional) : list of recurring template records

This module performs *structural* parsing only: required keys present,
correct types. Record-level invariants are enforced via validate() on
the models; cross-record rules live in validate.py.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Final, Optional

import yaml

from .model import DeadlineType, Priority, RecurringTemplate, Task, TemplateScope, Zone


SNAPSHOT_VERSION: Final[int] = 1


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ParseError(Exception):
    """
    Raised when a snapshot or payload is syntactically or structurally invalid.
    """

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


# ---------------------------------------------------------------------
# Result objects
# ---------------------------------------------------------------------

@dataclass(slots=True)
class Snapshot:
    zones: list[Zone] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    templates: list[RecurringTemplate] = field(default_factory=list)


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def read_snapshot(path: str | Path) -> Snapshot:
    """
    Load a YAML snapshot file.

    A missing file is an empty workspace, not an error.
    """
    p = Path(path)
    if not p.exists():
        return Snapshot()

    return parse_snapshot(load_yaml(p), path=str(p))


def load_yaml(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ParseError(str(path), f"Cannot read file: {e}") from e

    return parse_yaml_text(text, path=str(path))


def parse_yaml_text(text: str, *, path: str = "<payload>") -> Any:
    try:
        return yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ParseError(path, f"Invalid YAML: {e}") from e


def parse_snapshot(data: Any, *, path: str = "<snapshot>") -> Snapshot:
    root = _require_mapping(path, data, "snapshot")

    version = root.get("version", SNAPSHOT_VERSION)
    if not isinstance(version, int) or version > SNAPSHOT_VERSION:
        raise ParseError(path, f"Unsupported snapshot version: {version!r}")

    zones = [
        parse_zone_record(item, path=f"{path}:zones[{i}]")
        for i, item in enumerate(_require_list(path, root, "zones"))
    ]
    tasks = [
        parse_task_record(item, path=f"{path}:tasks[{i}]")
        for i, item in enumerate(_require_list(path, root, "tasks"))
    ]
    templates = [
        parse_template_record(item, path=f"{path}:templates[{i}]")
        for i, item in enumerate(_optional_list(path, root, "templates"))
    ]

    _require_unique_ids(path, "zone", [z.id for z in zones])
    _require_unique_ids(path, "task", [t.id for t in tasks])

    return Snapshot(zones=zones, tasks=tasks, templates=templates)


def parse_zone_record(data: Any, *, path: str) -> Zone:
    d = _require_mapping(path, data, "zone")

    zone = Zone(
        id=_require_str_field(path, d, "id"),
        name=_require_str_field(path, d, "name"),
        color=_optional_str_field(path, d, "color", default="#6b7280"),
        order=_optional_int_field(path, d, "order", default=0),
        created_at=_parse_timestamp(path, d, "created_at", required=True),
    )
    _validate(path, zone)
    return zone


def parse_task_record(data: Any, *, path: str) -> Task:
    d = _require_mapping(path, data, "task")

    completed = _optional_bool_field(path, d, "completed", default=False)
    completed_at = _parse_timestamp(path, d, "completed_at")
    created_at = _parse_timestamp(path, d, "created_at", required=True)
    if completed and completed_at is None:
        completed_at = created_at
    if not completed:
        completed_at = None

    task = Task(
        id=_require_str_field(path, d, "id"),
        zone_id=_require_str_field(path, d, "zone_id"),
        parent_id=_optional_id_field(path, d, "parent_id"),
        title=_require_str_field(path, d, "title", allow_empty=True),
        description=_optional_str_field(path, d, "description", default=""),
        completed=completed,
        completed_at=completed_at,
        priority=_parse_enum(path, d, "priority", Priority, Priority.MEDIUM),
        deadline=_parse_timestamp(path, d, "deadline"),
        deadline_type=_parse_enum(path, d, "deadline_type", DeadlineType, DeadlineType.NONE),
        order=_optional_int_field(path, d, "order", default=0),
        created_at=created_at,
        own_time=_optional_int_field(path, d, "own_time", default=0),
        total_work_time=_optional_int_field(path, d, "total_work_time", default=0),
        estimated_time=_optional_int_field(path, d, "estimated_time", default=None),
        is_collapsed=_optional_bool_field(path, d, "is_collapsed", default=False),
        expanded=_optional_bool_field(path, d, "expanded", default=False),
        prevent_auto_complete=_optional_bool_field(path, d, "prevent_auto_complete", default=False),
        is_recurring=_optional_bool_field(path, d, "is_recurring", default=False),
    )
    _validate(path, task)
    return task


def parse_template_record(data: Any, *, path: str) -> RecurringTemplate:
    d = _require_mapping(path, data, "template")

    offset = d.get("deadline_offset_hours", 0)
    if offset is None:
        offset = 0
    if isinstance(offset, bool) or not isinstance(offset, (int, float)):
        raise ParseError(path, "Key 'deadline_offset_hours' must be a number")

    return RecurringTemplate(
        id=_require_str_field(path, d, "id"),
        title=_require_str_field(path, d, "title"),
        zone_id=_require_str_field(path, d, "zone_id"),
        interval_minutes=_optional_int_field(path, d, "interval_minutes", default=None) or 0,
        last_triggered_at=_parse_timestamp(path, d, "last_triggered_at", required=True),
        description=_optional_str_field(path, d, "description", default=""),
        priority=_parse_enum(path, d, "priority", Priority, Priority.MEDIUM),
        deadline_offset_hours=offset,
        is_active=_optional_bool_field(path, d, "is_active", default=True),
        scope=_parse_enum(path, d, "scope", TemplateScope, TemplateScope.GLOBAL),
    )


# ---------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------

def _require_mapping(path: str, value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ParseError(path, f"{what} must be a mapping/dictionary")
    return value


def _require_list(path: str, data: dict[str, Any], key: str) -> list[Any]:
    if key not in data:
        raise ParseError(path, f"Missing required key: {key}")
    return _optional_list(path, data, key)


def _optional_list(path: str, data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list):
        raise ParseError(path, f"Key '{key}' must be a list")
    return value


def _require_str_field(
    path: str,
    data: dict[str, Any],
    key: str,
    *,
    allow_empty: bool = False,
) -> str:
    if key not in data:
        raise ParseError(path, f"Missing required key: {key}")

    value = data[key]
    if not isinstance(value, str):
        raise ParseError(path, f"Key '{key}' must be a string")

    if not allow_empty and not value.strip():
        raise ParseError(path, f"Key '{key}' must be a non-empty string")

    return value


def _optional_str_field(path: str, data: dict[str, Any], key: str, *, default: str) -> str:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ParseError(path, f"Key '{key}' must be a string")
    return value


def _optional_id_field(path: str, data: dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ParseError(path, f"Key '{key}' must be a string or null")
    return value


def _optional_int_field(path: str, data: dict[str, Any], key: str, *, default: Optional[int]) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return default
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(path, f"Key '{key}' must be a number")
    return int(value)


def _optional_bool_field(path: str, data: dict[str, Any], key: str, *, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ParseError(path, f"Key '{key}' must be a boolean")
    return value


def _parse_enum(path: str, data: dict[str, Any], key: str, enum_cls, default):
    raw = data.get(key)
    if raw is None:
        return default
    if not isinstance(raw, str):
        raise ParseError(path, f"Key '{key}' must be a string")
    try:
        return enum_cls(raw.strip().lower())
    except ValueError as e:
        allowed = ", ".join([m.value for m in enum_cls])
        raise ParseError(path, f"Invalid {key} '{raw}' (allowed: {allowed})") from e


def _parse_timestamp(
    path: str,
    data: dict[str, Any],
    key: str,
    *,
    required: bool = False,
) -> Optional[datetime]:
    if data.get(key) is None:
        if required:
            raise ParseError(path, f"Missing required key: {key}")
        return None

    value = data[key]

    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as e:
            raise ParseError(path, f"Invalid ISO timestamp for '{key}': '{value}'") from e
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    elif not isinstance(value, datetime):
        raise ParseError(path, f"Key '{key}' must be an ISO timestamp string")

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _require_unique_ids(path: str, what: str, ids: list[str]) -> None:
    seen: set[str] = set()
    for record_id in ids:
        if record_id in seen:
            raise ParseError(path, f"Duplicate {what} id: {record_id}")
        seen.add(record_id)


def _validate(path: str, record: Zone | Task) -> None:
    try:
        record.validate()
    except ValueError as e:
        raise ParseError(path, str(e)) from e
