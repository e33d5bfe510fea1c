from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from focusflow.engine.model import Priority
from focusflow.engine.ops import SnapshotWriter, dump_yaml, new_id, task_to_record
from focusflow.engine.parse import (
    ParseError,
    Snapshot,
    parse_snapshot,
    parse_task_record,
    parse_yaml_text,
    read_snapshot,
)
from focusflow.engine.store import TreeStore
from tests.helpers import T0, counting_ids, make_store, task, zone


class TestSnapshotFiles(unittest.TestCase):
    def test_missing_file_is_empty_workspace(self) -> None:
        with TemporaryDirectory() as tmp:
            snapshot = read_snapshot(Path(tmp) / "nope.yml")
            self.assertEqual(Snapshot(), snapshot)

    def test_store_persists_and_reloads_through_yaml(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / ".focusflow" / "workspace.yml"
            writer = SnapshotWriter(path)
            store = make_store([task("a", own_time=30)], persist=writer)

            child = store.add_task("z1", "child", "notes", parent_id="a", priority=Priority.LOW)
            store.add_template("Weekly review", "z1", 60 * 24 * 7, deadline_offset_hours=1.5)
            store.toggle_completion(child.id)

            self.assertEqual(3, writer.writes)
            self.assertTrue(path.is_file())
            self.assertFalse(path.with_name("workspace.yml.tmp").exists())

            reloaded = TreeStore.from_snapshot(read_snapshot(path), id_factory=counting_ids())
            again = reloaded.get_task(child.id)
            self.assertEqual("notes", again.description)
            self.assertEqual(Priority.LOW, again.priority)
            self.assertTrue(again.completed)
            self.assertEqual(T0, again.completed_at)
            self.assertTrue(reloaded.get_task("a").completed)
            self.assertEqual(30, reloaded.metrics("a").total_work_time)
            self.assertEqual(1.5, reloaded.templates[0].deadline_offset_hours)
            self.assertEqual(store.to_snapshot(), reloaded.to_snapshot())


class TestParse(unittest.TestCase):
    def _snapshot(self) -> dict:
        return {
            "version": 1,
            "zones": [{"id": "z1", "name": "Work", "created_at": "2024-03-04T09:00:00+00:00"}],
            "tasks": [
                {"id": "t1", "zone_id": "z1", "title": "One", "created_at": "2024-03-04T09:00:00"},
            ],
        }

    def test_minimal_records_get_defaults(self) -> None:
        snapshot = parse_snapshot(self._snapshot())
        t1 = snapshot.tasks[0]
        self.assertIsNone(t1.parent_id)
        self.assertEqual(Priority.MEDIUM, t1.priority)
        self.assertEqual(T0, t1.created_at)
        self.assertEqual([], snapshot.templates)

    def test_completed_without_timestamp_uses_created_at(self) -> None:
        data = self._snapshot()
        data["tasks"][0]["completed"] = True
        self.assertEqual(T0, parse_snapshot(data).tasks[0].completed_at)

    def test_missing_required_keys(self) -> None:
        data = self._snapshot()
        del data["tasks"]
        with self.assertRaises(ParseError):
            parse_snapshot(data)

        data = self._snapshot()
        del data["tasks"][0]["zone_id"]
        with self.assertRaises(ParseError) as ctx:
            parse_snapshot(data)
        self.assertIn("tasks[0]", str(ctx.exception))

    def test_type_errors(self) -> None:
        for key, value in [("own_time", True), ("priority", "huge"), ("completed", "yes"), ("deadline", "soon")]:
            data = self._snapshot()
            data["tasks"][0][key] = value
            with self.assertRaises(ParseError, msg=key):
                parse_snapshot(data)

    def test_duplicate_ids_and_future_version(self) -> None:
        data = self._snapshot()
        data["tasks"].append(dict(data["tasks"][0]))
        with self.assertRaises(ParseError):
            parse_snapshot(data)

        data = self._snapshot()
        data["version"] = 99
        with self.assertRaises(ParseError):
            parse_snapshot(data)

    def test_self_parent_is_rejected(self) -> None:
        data = self._snapshot()
        data["tasks"][0]["parent_id"] = "t1"
        with self.assertRaises(ParseError):
            parse_snapshot(data)

    def test_invalid_yaml(self) -> None:
        with self.assertRaises(ParseError):
            parse_yaml_text("zones: [unclosed")
        self.assertEqual({}, parse_yaml_text(""))

    def test_task_record_round_trip(self) -> None:
        original = task("t", "p", own_time=5, estimated_time=3, deadline=T0, prevent_auto_complete=True)
        record = parse_yaml_text(dump_yaml(task_to_record(original)))
        self.assertEqual(original, parse_task_record(record, path="<test>"))


class TestIds(unittest.TestCase):
    def test_new_id_is_prefixed_and_unique(self) -> None:
        ids = {new_id("task") for _ in range(100)}
        self.assertEqual(100, len(ids))
        self.assertTrue(all(i.startswith("task-") for i in ids))

    def test_zone_helper_is_valid(self) -> None:
        zone("z9").validate()


if __name__ == "__main__":
    unittest.main()
