# src/focusflow/cli.py

"""
Command-line interface for focusflow.

This module:
- defines argument parsing and subcommands,
- loads the workspace snapshot and hands it to the engine's TreeStore,
- keeps user-facing output here.

Every mutating command goes through the store, which persists the
snapshot after each commit.
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from focusflow.engine.config import EngineConfig, load_config
from focusflow.engine.model import DeadlineType, Priority, Task
from focusflow.engine.ops import SnapshotWriter, dump_yaml
from focusflow.engine.parse import ParseError, load_yaml, read_snapshot
from focusflow.engine.render import render_task_detail, render_tree, render_zones
from focusflow.engine.store import TreeStore
from focusflow.engine.urgency import resolve_deadline
from focusflow.engine.validate import ValidationError, validate_snapshot

logger = logging.getLogger("focusflow.cli")

_PRIORITIES = [p.value for p in Priority]


# ---------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------

def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "-C",
        "--cd",
        type=str,
        default=".",
        help="Work as if current directory is this path (default: .)",
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="More log output (repeatable)",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="focusflow")
    sub = parser.add_subparsers(dest="command", required=True)

    # ------------------------------------------------------------------
    # Read-only commands
    # ------------------------------------------------------------------

    p_zones = sub.add_parser("zones", help="List zones")
    _add_common(p_zones)
    p_zones.set_defaults(func=cmd_zones)

    p_list = sub.add_parser("list", help="Show the task tree")
    p_list.add_argument("--zone", type=str, default="", help="Zone id or name (default: all zones)")
    p_list.add_argument("--focus", type=str, default="", help="Zoom onto this task's subtasks")
    p_list.add_argument("--no-color", action="store_true", help="Disable coloured output")
    _add_common(p_list)
    p_list.set_defaults(func=cmd_list)

    p_show = sub.add_parser("show", help="Show a single task (structured view)")
    p_show.add_argument("task_id", help="Task id (or unique prefix)")
    p_show.add_argument("--no-color", action="store_true", help="Disable coloured output")
    _add_common(p_show)
    p_show.set_defaults(func=cmd_show)

    p_check = sub.add_parser("check", help="Check the workspace snapshot for inconsistencies")
    _add_common(p_check)
    p_check.set_defaults(func=cmd_check)

    p_export = sub.add_parser("export", help="Print a task subtree as YAML")
    p_export.add_argument("task_id", help="Task id (or unique prefix)")
    _add_common(p_export)
    p_export.set_defaults(func=cmd_export)

    # ------------------------------------------------------------------
    # Zone commands
    # ------------------------------------------------------------------

    p_zone_add = sub.add_parser("zone-add", help="Create a zone")
    p_zone_add.add_argument("name", help="Zone name")
    p_zone_add.add_argument("--color", type=str, default="#3b82f6", help="Zone colour")
    _add_common(p_zone_add)
    p_zone_add.set_defaults(func=cmd_zone_add)

    p_zone_rm = sub.add_parser("zone-rm", help="Delete a zone and all its tasks")
    p_zone_rm.add_argument("zone", help="Zone id or name")
    _add_common(p_zone_rm)
    p_zone_rm.set_defaults(func=cmd_zone_rm)

    # ------------------------------------------------------------------
    # Task commands
    # ------------------------------------------------------------------

    p_add = sub.add_parser("add", help="Add a task")
    p_add.add_argument("title", help="Task title")
    p_add.add_argument("--zone", type=str, default="", help="Zone id or name (required for root tasks)")
    p_add.add_argument("--parent", type=str, default="", help="Parent task id")
    p_add.add_argument("--desc", type=str, default="", help="Description")
    p_add.add_argument("--priority", type=str, default="medium", choices=_PRIORITIES)
    p_add.add_argument(
        "--deadline",
        type=str,
        default="",
        help="today, tomorrow, week or an ISO timestamp",
    )
    p_add.add_argument("--estimate", type=int, default=None, help="Estimated minutes")
    _add_common(p_add)
    p_add.set_defaults(func=cmd_add)

    p_toggle = sub.add_parser("toggle", help="Toggle task completion (cascades)")
    p_toggle.add_argument("task_id", help="Task id (or unique prefix)")
    _add_common(p_toggle)
    p_toggle.set_defaults(func=cmd_toggle)

    p_rm = sub.add_parser("rm", help="Delete a task and its subtasks")
    p_rm.add_argument("task_id", help="Task id (or unique prefix)")
    _add_common(p_rm)
    p_rm.set_defaults(func=cmd_rm)

    p_collapse = sub.add_parser("collapse", help="Collapse/expand a task's subtasks")
    p_collapse.add_argument("task_id", help="Task id (or unique prefix)")
    _add_common(p_collapse)
    p_collapse.set_defaults(func=cmd_collapse)

    p_mv = sub.add_parser("mv", help="Move a task")
    p_mv.add_argument("task_id", help="Task id (or unique prefix)")
    p_mv.add_argument("--parent", type=str, default="", help="New parent (default: make it a root task)")
    p_mv.add_argument("--after", type=str, default="", help="Sibling to place the task after")
    p_mv.add_argument("--zone", type=str, default="", help="Target zone for root tasks")
    _add_common(p_mv)
    p_mv.set_defaults(func=cmd_mv)

    p_log = sub.add_parser("log", help="Log focus seconds against a task")
    p_log.add_argument("task_id", help="Task id (or unique prefix)")
    p_log.add_argument("seconds", type=int, help="Seconds of focus time")
    _add_common(p_log)
    p_log.set_defaults(func=cmd_log)

    p_paste = sub.add_parser("paste", help="Paste a subtree exported with 'export'")
    p_paste.add_argument("file", help="YAML file written by 'export'")
    p_paste.add_argument("--zone", type=str, default="", help="Target zone id or name")
    p_paste.add_argument("--parent", type=str, default="", help="Target parent task id")
    _add_common(p_paste)
    p_paste.set_defaults(func=cmd_paste)

    # ------------------------------------------------------------------
    # Recurring templates
    # ------------------------------------------------------------------

    p_recur = sub.add_parser("recur-add", help="Add a recurring task template")
    p_recur.add_argument("title", help="Title of generated tasks")
    p_recur.add_argument("--zone", type=str, required=True, help="Zone id or name")
    p_recur.add_argument("--every", type=int, required=True, help="Interval in minutes")
    p_recur.add_argument("--deadline-hours", type=float, default=0, help="Deadline offset in hours")
    p_recur.add_argument("--desc", type=str, default="", help="Description")
    p_recur.add_argument("--priority", type=str, default="medium", choices=_PRIORITIES)
    _add_common(p_recur)
    p_recur.set_defaults(func=cmd_recur_add)

    p_recur_run = sub.add_parser("recur-run", help="Materialize due recurring tasks")
    _add_common(p_recur_run)
    p_recur_run.set_defaults(func=cmd_recur_run)

    return parser


# ---------------------------------------------------------------------
# Workspace helpers
# ---------------------------------------------------------------------

def _workspace_dir(args: argparse.Namespace) -> Path:
    return (Path.cwd() / (args.cd or ".")).resolve()


def _configure_logging(config: EngineConfig, verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = getattr(logging, config.log_level, logging.WARNING)

    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _open_store(args: argparse.Namespace) -> TreeStore:
    """
    Load the workspace snapshot and return a store that writes back
    after every mutation.
    """
    cwd = _workspace_dir(args)
    config = load_config(cwd)
    _configure_logging(config, getattr(args, "verbose", 0))

    store_file = config.store_path(cwd)
    snapshot = read_snapshot(store_file)
    logger.debug("Loaded %d zones, %d tasks from %s", len(snapshot.zones), len(snapshot.tasks), store_file)

    return TreeStore.from_snapshot(
        snapshot,
        persist=SnapshotWriter(store_file),
        auto_generated_suffix=config.auto_generated_suffix,
        copy_suffix=config.copy_suffix,
        indent_width=config.indent_width,
    )


def _resolve_task(store: TreeStore, raw: str) -> Task:
    """
    Resolve a task by exact id or unique id prefix.
    """
    raw = (raw or "").strip()
    task = store.get_task(raw)
    if task is not None:
        return task

    matches = [t for t in store.tasks if t.id.startswith(raw)] if raw else []
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise ValidationError(f"Task not found: {raw}")
    raise ValidationError(f"Ambiguous task id: {raw} ({len(matches)} matches)")


def _resolve_zone_id(store: TreeStore, raw: str) -> str:
    raw = (raw or "").strip()
    if store.get_zone(raw) is not None:
        return raw

    matches = [z for z in store.zones if z.name.lower() == raw.lower()]
    if len(matches) == 1:
        return matches[0].id
    if not matches:
        raise ValidationError(f"Zone not found: {raw}")
    raise ValidationError(f"Ambiguous zone name: {raw}")


def _parse_deadline(raw: str) -> tuple[Optional[datetime], DeadlineType]:
    s = (raw or "").strip().lower()
    if not s:
        return None, DeadlineType.NONE

    now = datetime.now().astimezone()
    if s in {"today", "tomorrow", "week"}:
        return resolve_deadline(DeadlineType(s), now)

    try:
        exact = datetime.fromisoformat(raw.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid deadline: {raw}") from e

    if exact.tzinfo is None:
        exact = exact.replace(tzinfo=now.tzinfo)
    return resolve_deadline(DeadlineType.EXACT, now, exact.astimezone(timezone.utc))


# ---------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------

def cmd_zones(args: argparse.Namespace) -> int:
    store = _open_store(args)
    render_zones(store.zones, store.tasks)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    store = _open_store(args)

    zone_id = _resolve_zone_id(store, args.zone) if args.zone else None
    focus_id = _resolve_task(store, args.focus).id if args.focus else None

    rows = store.flatten(zone_id=zone_id, focus_task_id=focus_id)
    render_tree(
        rows,
        store.aggregates,
        breadcrumbs=store.breadcrumbs(focus_id),
        color=not bool(args.no_color),
    )
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    store = _open_store(args)
    task = _resolve_task(store, args.task_id)
    render_task_detail(task, store.metrics(task.id), color=not bool(args.no_color))
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    store = _open_store(args)
    cwd = _workspace_dir(args)
    store_file = load_config(cwd).store_path(cwd)
    res = validate_snapshot(store.zones, store.tasks, path=str(store_file))

    if res.ok:
        print("ok")
        return 0

    print(res.path)
    for issue in res.issues:
        print(f"  - {issue.code}: {issue.message}")
    return 1


def cmd_export(args: argparse.Namespace) -> int:
    store = _open_store(args)
    task = _resolve_task(store, args.task_id)
    sys.stdout.write(dump_yaml(store.export_subtree(task.id)))
    return 0


def cmd_zone_add(args: argparse.Namespace) -> int:
    store = _open_store(args)
    zone = store.add_zone(args.name, args.color)
    print(zone.id)
    return 0


def cmd_zone_rm(args: argparse.Namespace) -> int:
    store = _open_store(args)
    zone_id = _resolve_zone_id(store, args.zone)
    store.delete_zone(zone_id)
    return 0


def cmd_add(args: argparse.Namespace) -> int:
    store = _open_store(args)

    parent_id = _resolve_task(store, args.parent).id if args.parent else None
    if parent_id is None and not args.zone:
        print("Error: --zone is required for root tasks")
        return 1
    zone_id = _resolve_zone_id(store, args.zone) if args.zone else store.get_task(parent_id).zone_id

    deadline, deadline_type = _parse_deadline(args.deadline)

    task = store.add_task(
        zone_id,
        args.title,
        args.desc,
        priority=Priority(args.priority),
        deadline=deadline,
        deadline_type=deadline_type,
        parent_id=parent_id,
        estimated_time=args.estimate,
    )
    if task is None:
        print("Error: task could not be added")
        return 1

    print(task.id)
    return 0


def cmd_toggle(args: argparse.Namespace) -> int:
    store = _open_store(args)
    task = _resolve_task(store, args.task_id)
    store.toggle_completion(task.id)
    print("done" if store.get_task(task.id).completed else "open")
    return 0


def cmd_rm(args: argparse.Namespace) -> int:
    store = _open_store(args)
    task = _resolve_task(store, args.task_id)
    removed = store.delete_task(task.id)
    print(f"removed {len(removed)} task(s)")
    return 0


def cmd_collapse(args: argparse.Namespace) -> int:
    store = _open_store(args)
    task = _resolve_task(store, args.task_id)
    store.toggle_collapsed(task.id)
    return 0


def cmd_mv(args: argparse.Namespace) -> int:
    store = _open_store(args)
    task = _resolve_task(store, args.task_id)

    parent_id = _resolve_task(store, args.parent).id if args.parent else None
    anchor_id = _resolve_task(store, args.after).id if args.after else None
    zone_id = _resolve_zone_id(store, args.zone) if args.zone else None

    if not store.move_task(task.id, parent_id, anchor_id, zone_id):
        print("Error: move rejected")
        return 1
    return 0


def cmd_log(args: argparse.Namespace) -> int:
    store = _open_store(args)
    task = _resolve_task(store, args.task_id)

    if not store.accumulate_work_seconds(task.id, args.seconds):
        print("Error: seconds must be positive")
        return 1
    return 0


def cmd_paste(args: argparse.Namespace) -> int:
    store = _open_store(args)

    parent_id = _resolve_task(store, args.parent).id if args.parent else None
    if parent_id is None and not args.zone:
        print("Error: --zone or --parent is required")
        return 1
    zone_id = _resolve_zone_id(store, args.zone) if args.zone else store.get_task(parent_id).zone_id

    payload = load_yaml(Path(args.file))
    res = store.paste_subtree(payload, zone_id, parent_id)
    if not res.ok:
        print(f"Error: {res.error}")
        return 1

    print(res.ids[0])
    return 0


def cmd_recur_add(args: argparse.Namespace) -> int:
    store = _open_store(args)
    zone_id = _resolve_zone_id(store, args.zone)

    tpl = store.add_template(
        args.title,
        zone_id,
        args.every,
        description=args.desc,
        priority=Priority(args.priority),
        deadline_offset_hours=args.deadline_hours,
    )
    if tpl is None:
        print("Error: template could not be added")
        return 1

    print(tpl.id)
    return 0


def cmd_recur_run(args: argparse.Namespace) -> int:
    store = _open_store(args)
    for task in store.check_recurring():
        print(task.id)
    return 0


# ---------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    func = getattr(args, "func", None)
    if func is None:
        parser.print_help()
        return 2

    try:
        return func(args)
    except (ValidationError, ParseError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
