from __future__ import annotations

import unittest
from unittest.mock import patch

from focusflow.engine.aggregate import compute_aggregates
from focusflow.engine.model import DeadlineType, Priority
from focusflow.engine.store import TreeStore
from tests.helpers import T0, FakeClock, make_store, orders, task, zone


def _sample_store(**kwargs) -> TreeStore:
    return make_store(
        [
            task("a"),
            task("a1", "a", own_time=60, estimated_time=10),
            task("a2", "a", order=1, own_time=120),
            task("a2x", "a2", own_time=30, estimated_time=5),
            task("b", order=1),
            task("c", order=2),
        ],
        zones=[zone("z1"), zone("z2", "Home", order=1)],
        **kwargs,
    )


class TestTreeStoreTasks(unittest.TestCase):
    def test_aggregates_are_computed_on_construction(self) -> None:
        store = _sample_store()
        self.assertEqual(210, store.metrics("a").total_work_time)
        self.assertEqual(15, store.metrics("a").estimated_time)
        self.assertEqual(210, store.get_task("a").total_work_time)

    def test_add_task_appends_to_sibling_group(self) -> None:
        store = _sample_store()
        created = store.add_task("z1", "d", priority=Priority.HIGH)
        self.assertIsNotNone(created)
        assert created is not None
        self.assertEqual("task-1", created.id)
        self.assertEqual(3, created.order)
        self.assertEqual(T0, created.created_at)

    def test_add_subtask_uses_parent_zone(self) -> None:
        store = _sample_store()
        created = store.add_task("z2", "sub", parent_id="a2")
        assert created is not None
        self.assertEqual("z1", created.zone_id)
        self.assertEqual(1, created.order)

    def test_add_task_rejects_unknown_zone_or_parent(self) -> None:
        store = _sample_store()
        self.assertIsNone(store.add_task("nope", "x"))
        self.assertIsNone(store.add_task("z1", "x", parent_id="nope"))

    def test_add_task_with_deadline_defaults_to_exact(self) -> None:
        store = _sample_store()
        created = store.add_task("z1", "x", deadline=T0)
        assert created is not None
        self.assertEqual(DeadlineType.EXACT, created.deadline_type)

    def test_delete_removes_whole_subtree_and_renumbers(self) -> None:
        store = _sample_store()
        removed = store.delete_task("a")

        self.assertEqual({"a", "a1", "a2", "a2x"}, removed)
        self.assertEqual({"b", "c"}, {t.id for t in store.tasks})
        self.assertEqual([("b", 0), ("c", 1)], orders(store, "z1", None))
        self.assertNotIn("a", store.aggregates)

    def test_delete_unknown_task_is_noop(self) -> None:
        store = _sample_store()
        self.assertEqual(set(), store.delete_task("nope"))
        self.assertEqual(6, len(store.tasks))

    def test_update_task_plain_fields(self) -> None:
        store = _sample_store()
        self.assertTrue(store.update_task("b", title="Bee", priority="high", estimated_time=40))
        b = store.get_task("b")
        self.assertEqual("Bee", b.title)
        self.assertEqual(Priority.HIGH, b.priority)
        self.assertEqual(40, store.metrics("b").estimated_time)

    def test_update_task_rejects_placement_fields(self) -> None:
        store = _sample_store()
        with self.assertRaises(ValueError):
            store.update_task("b", parent_id="a")
        with self.assertRaises(ValueError):
            store.update_task("b", total_work_time=5)

    def test_update_task_completed_goes_through_propagation(self) -> None:
        store = _sample_store()
        store.update_task("a", completed=True)
        self.assertTrue(all(store.get_task(i).completed for i in ("a", "a1", "a2", "a2x")))

    def test_toggle_completion_cascades(self) -> None:
        store = _sample_store()
        store.toggle_completion("a1")
        store.toggle_completion("a2x")
        self.assertTrue(store.get_task("a2").completed)
        self.assertTrue(store.get_task("a").completed)

        store.toggle_completion("a2x")
        self.assertFalse(store.get_task("a").completed)
        self.assertFalse(store.toggle_completion("nope"))

    def test_clear_completed(self) -> None:
        store = _sample_store()
        store.toggle_completion("a2")
        store.toggle_completion("c")
        removed = store.clear_completed("z1")
        self.assertEqual({"a2", "a2x", "c"}, removed)
        self.assertEqual([("a", 0), ("b", 1)], orders(store, "z1", None))

    def test_view_state_toggles(self) -> None:
        store = _sample_store()
        self.assertTrue(store.toggle_collapsed("a"))
        self.assertTrue(store.get_task("a").is_collapsed)
        self.assertEqual(["a", "b", "c"], [r.id for r in store.flatten("z1")])

        self.assertTrue(store.toggle_expanded("b"))
        self.assertTrue(store.get_task("b").expanded)

        store.expand_task("a")
        self.assertFalse(store.get_task("a").is_collapsed)
        self.assertTrue(store.get_task("a2x").expanded)

    def test_accumulate_work_seconds(self) -> None:
        store = _sample_store()
        self.assertTrue(store.accumulate_work_seconds("a2x", 15))
        self.assertEqual(45, store.get_task("a2x").own_time)
        self.assertEqual(225, store.metrics("a").total_work_time)

    def test_accumulate_on_deleted_task_is_noop(self) -> None:
        store = _sample_store()
        store.delete_task("a")
        self.assertFalse(store.accumulate_work_seconds("a2x", 15))
        self.assertFalse(store.accumulate_work_seconds("b", 0))

    def test_stats(self) -> None:
        store = _sample_store()
        store.update_task("b", priority=Priority.HIGH, deadline=T0)
        store.toggle_completion("c")
        stats = store.stats()
        self.assertEqual(6, stats.total)
        self.assertEqual(1, stats.completed)
        self.assertEqual(1, stats.high_priority)
        self.assertEqual(1, stats.urgent)


    def test_store_works_on_its_own_copies(self) -> None:
        tasks = [task("a"), task("a1", "a", own_time=60)]
        store = make_store(tasks)
        store.toggle_completion("a1")

        self.assertEqual(60, store.get_task("a").total_work_time)
        self.assertEqual(0, tasks[0].total_work_time)
        self.assertFalse(tasks[1].completed)
        self.assertIsNot(tasks[0], store.get_task("a"))

    def test_add_subtask_reopens_completed_parent(self) -> None:
        store = _sample_store()
        store.toggle_completion("a2")
        self.assertTrue(store.get_task("a2").completed)

        store.add_task("z1", "more", parent_id="a2")

        self.assertFalse(store.get_task("a2").completed)
        self.assertIsNone(store.get_task("a2").completed_at)
        self.assertTrue(store.get_task("a2x").completed)

    def test_add_subtask_keeps_parent_that_prevents_auto_complete(self) -> None:
        store = make_store([
            task("p", completed=True, completed_at=T0, prevent_auto_complete=True),
            task("p1", "p", completed=True, completed_at=T0),
        ])
        store.add_task("z1", "more", parent_id="p")
        self.assertTrue(store.get_task("p").completed)

    def test_delete_last_open_child_completes_parent(self) -> None:
        clock = FakeClock()
        store = _sample_store(clock=clock)
        store.toggle_completion("a1")
        self.assertFalse(store.get_task("a").completed)

        now = clock.advance(minutes=5)
        store.delete_task("a2")

        self.assertTrue(store.get_task("a").completed)
        self.assertEqual(now, store.get_task("a").completed_at)

    def test_delete_only_child_leaves_parent_state_alone(self) -> None:
        store = _sample_store()
        store.delete_task("a2x")
        self.assertFalse(store.get_task("a2").completed)
        self.assertFalse(store.get_task("a").completed)

class TestTreeStorePlacement(unittest.TestCase):
    def test_move_after_anchor_renumbers_both_groups(self) -> None:
        store = _sample_store()
        self.assertTrue(store.move_task("b", "a", anchor_id="a1"))

        self.assertEqual([("a1", 0), ("b", 1), ("a2", 2)], orders(store, "z1", "a"))
        self.assertEqual([("a", 0), ("c", 1)], orders(store, "z1", None))

    def test_move_without_anchor_becomes_first(self) -> None:
        store = _sample_store()
        store.move_task("c", None)
        self.assertEqual([("c", 0), ("a", 1), ("b", 2)], orders(store, "z1", None))

    def test_move_into_own_subtree_is_rejected(self) -> None:
        store = _sample_store()
        with self.assertLogs("focusflow.engine.store", level="WARNING"):
            self.assertFalse(store.move_task("a", "a2x"))
        self.assertIsNone(store.get_task("a").parent_id)
        self.assertFalse(store.move_task("a", "a"))

    def test_move_to_other_zone_carries_subtree(self) -> None:
        store = _sample_store()
        self.assertTrue(store.move_task("a2", None, zone_id="z2"))

        self.assertEqual("z2", store.get_task("a2").zone_id)
        self.assertEqual("z2", store.get_task("a2x").zone_id)
        self.assertEqual([("a1", 0)], orders(store, "z1", "a"))
        self.assertEqual(60, store.metrics("a").total_work_time)

    def test_move_updates_aggregates(self) -> None:
        store = _sample_store()
        store.move_task("a2", "b")
        self.assertEqual(60, store.metrics("a").total_work_time)
        self.assertEqual(150, store.metrics("b").total_work_time)

    def test_anchor_survives_concurrent_insert(self) -> None:
        store = _sample_store()
        flat = store.flatten("z1")
        pos = store.drop_task(flat, "c", "b", 0)
        self.assertIsNotNone(pos)

        # c dropped onto b while dragging up lands between a and b
        self.assertEqual([("a", 0), ("c", 1), ("b", 2)], orders(store, "z1", None))

        store.add_task("z1", "new")
        store.move_task("b", None, anchor_id="a")
        self.assertEqual(["a", "b", "c", "task-1"], [t.id for t in store.root_tasks("z1")])

    def test_drop_with_stale_ids_returns_none(self) -> None:
        store = _sample_store()
        flat = store.flatten("z1")
        store.delete_task("b")
        self.assertIsNone(store.drop_task(flat, "c", "b", 0))
        self.assertIsNone(store.drop_task(flat, "b", "c", 0))

    def test_reorder_siblings(self) -> None:
        store = _sample_store()
        self.assertTrue(store.reorder_siblings("z1", None, ["c", "a"]))
        self.assertEqual([("c", 0), ("a", 1), ("b", 2)], orders(store, "z1", None))


    def test_move_last_open_child_away_completes_old_parent(self) -> None:
        store = _sample_store()
        store.toggle_completion("a1")
        self.assertTrue(store.move_task("a2", None, anchor_id="c"))

        self.assertTrue(store.get_task("a").completed)
        self.assertFalse(store.get_task("a2").completed)

    def test_move_open_task_under_completed_parent_reopens_it(self) -> None:
        store = _sample_store()
        store.toggle_completion("a")
        self.assertTrue(store.get_task("a").completed)

        self.assertTrue(store.move_task("b", "a2", anchor_id="a2x"))

        self.assertFalse(store.get_task("a2").completed)
        self.assertFalse(store.get_task("a").completed)
        self.assertTrue(store.get_task("a1").completed)

class TestTreeStoreZones(unittest.TestCase):
    def test_add_and_update_zone(self) -> None:
        store = _sample_store()
        created = store.add_zone("Errands", "#ff0000")
        self.assertEqual(2, created.order)
        self.assertTrue(store.update_zone(created.id, name="Chores"))
        self.assertEqual("Chores", store.get_zone(created.id).name)
        self.assertFalse(store.update_zone("nope", name="x"))

    def test_delete_zone_cascades_to_tasks(self) -> None:
        store = _sample_store()
        self.assertTrue(store.delete_zone("z1"))
        self.assertEqual([], store.tasks)
        self.assertEqual(["z2"], [z.id for z in store.zones])

    def test_reorder_zones(self) -> None:
        store = _sample_store()
        store.reorder_zones(["z2"])
        self.assertEqual(["z2", "z1"], [z.id for z in store.zones])


class TestTreeStoreRecurring(unittest.TestCase):
    def test_due_template_creates_one_task_at_top(self) -> None:
        clock = FakeClock()
        store = _sample_store(clock=clock)
        tpl = store.add_template("Standup", "z1", 60, description="daily", deadline_offset_hours=2)
        assert tpl is not None

        self.assertEqual([], store.check_recurring())

        now = clock.advance(minutes=61)
        created = store.check_recurring()
        self.assertEqual(1, len(created))

        new = created[0]
        self.assertTrue(new.is_recurring)
        self.assertEqual("daily\n(auto-generated)", new.description)
        self.assertEqual(DeadlineType.EXACT, new.deadline_type)
        self.assertEqual(now.replace(hour=now.hour + 2), new.deadline)
        self.assertEqual([new.id, "a", "b", "c"], [t.id for t in store.root_tasks("z1")])
        self.assertEqual(now, store.get_template(tpl.id).last_triggered_at)

        self.assertEqual([], store.check_recurring())

    def test_inactive_and_zero_interval_templates_never_fire(self) -> None:
        clock = FakeClock()
        store = _sample_store(clock=clock)
        store.add_template("Off", "z1", 10, is_active=False)
        store.add_template("Zero", "z1", 0)
        clock.advance(days=1)
        self.assertEqual([], store.check_recurring())

    def test_template_for_deleted_zone_is_skipped(self) -> None:
        clock = FakeClock()
        store = _sample_store(clock=clock)
        store.add_template("Orphan", "z2", 5)
        store.delete_zone("z2")
        clock.advance(minutes=10)
        with self.assertLogs("focusflow.engine.store", level="WARNING"):
            self.assertEqual([], store.check_recurring())

    def test_update_and_delete_template(self) -> None:
        store = _sample_store()
        tpl = store.add_template("T", "z1", 5)
        assert tpl is not None
        self.assertTrue(store.update_template(tpl.id, interval_minutes=15))
        self.assertEqual(15, store.get_template(tpl.id).interval_minutes)
        with self.assertRaises(ValueError):
            store.update_template(tpl.id, id="other")
        self.assertTrue(store.delete_template(tpl.id))
        self.assertFalse(store.delete_template(tpl.id))


    def test_templates_due_together_aggregate_once(self) -> None:
        clock = FakeClock()
        store = _sample_store(clock=clock)
        store.add_template("Standup", "z1", 30)
        store.add_template("Water plants", "z2", 45)
        clock.advance(hours=1)

        with patch("focusflow.engine.store.compute_aggregates", wraps=compute_aggregates) as spy:
            created = store.check_recurring()

        self.assertEqual(2, len(created))
        self.assertEqual(1, spy.call_count)
        self.assertEqual(8, len(store.aggregates))

class TestTreeStoreCopyPaste(unittest.TestCase):
    def test_paste_subtree_assigns_fresh_ids(self) -> None:
        store = _sample_store()
        store.toggle_completion("a2x")
        payload = store.export_subtree("a2")
        assert payload is not None

        res = store.paste_subtree(payload, "z2")
        self.assertTrue(res.ok)
        self.assertEqual(2, len(res.ids))

        root_copy = store.get_task(res.ids[0])
        child_copy = store.get_task(res.ids[1])
        self.assertIsNone(root_copy.parent_id)
        self.assertEqual("z2", root_copy.zone_id)
        self.assertEqual(root_copy.id, child_copy.parent_id)
        self.assertFalse(child_copy.completed)
        self.assertEqual(0, store.metrics(root_copy.id).total_work_time)
        self.assertEqual(5, store.metrics(root_copy.id).estimated_time)

    def test_paste_after_anchor(self) -> None:
        store = _sample_store()
        payload = store.export_subtree("c")
        res = store.paste_subtree(payload, "z1", anchor_id="a")
        self.assertTrue(res.ok)
        self.assertEqual(["a", res.ids[0], "b", "c"], [t.id for t in store.root_tasks("z1")])

    def test_paste_rejects_malformed_payload(self) -> None:
        store = _sample_store()
        before = len(store.tasks)
        self.assertFalse(store.paste_subtree({"type": "task", "tasks": "nope"}, "z1").ok)
        self.assertFalse(store.paste_subtree({"type": "task", "tasks": []}, "z1").ok)
        self.assertFalse(store.paste_subtree([], "z1").ok)
        self.assertFalse(store.paste_subtree(store.export_subtree("a"), "nope").ok)
        self.assertEqual(before, len(store.tasks))

    def test_paste_rejects_disconnected_payload(self) -> None:
        store = _sample_store()
        payload = store.export_subtree("a")
        payload["tasks"][1]["parent_id"] = "elsewhere"
        res = store.paste_subtree(payload, "z1")
        self.assertFalse(res.ok)
        self.assertIn("not part of the copied subtree", res.error)

    def test_paste_zone_rejects_cyclic_payload(self) -> None:
        store = _sample_store()
        payload = store.export_zone("z1")
        record = next(r for r in payload["tasks"] if r["id"] == "a")
        record["parent_id"] = "a2x"

        with self.assertLogs("focusflow.engine.store", level="WARNING"):
            res = store.paste_zone(payload)

        self.assertFalse(res.ok)
        self.assertIn("cycle", res.error)
        self.assertEqual(6, len(store.tasks))
        self.assertEqual(2, len(store.zones))

    def test_paste_under_completed_parent_reopens_it(self) -> None:
        store = _sample_store()
        store.toggle_completion("a")
        res = store.paste_subtree(store.export_subtree("c"), "z1", parent_id="a")
        self.assertTrue(res.ok)
        self.assertFalse(store.get_task("a").completed)

    def test_paste_zone(self) -> None:
        store = _sample_store()
        payload = store.export_zone("z1")
        res = store.paste_zone(payload)
        self.assertTrue(res.ok)

        new_zone = store.get_zone(res.ids[0])
        self.assertEqual("Work (copy)", new_zone.name)
        self.assertEqual(6, len(store.tasks_in_zone(new_zone.id)))
        self.assertEqual(0, max(store.metrics(i).total_work_time for i in res.ids[1:]))


class TestTreeStoreNotification(unittest.TestCase):
    def test_listeners_and_unsubscribe(self) -> None:
        store = _sample_store()
        seen: list[int] = []
        unsubscribe = store.subscribe(lambda s: seen.append(len(s.tasks)))

        store.add_task("z1", "d")
        unsubscribe()
        store.add_task("z1", "e")
        self.assertEqual([7], seen)

    def test_persist_receives_snapshot_after_commit(self) -> None:
        snapshots: list[dict] = []
        store = _sample_store(persist=snapshots.append)
        store.toggle_collapsed("a")

        self.assertEqual(1, len(snapshots))
        self.assertEqual({"version", "zones", "tasks", "templates"}, set(snapshots[0]))

    def test_persist_failure_does_not_roll_back(self) -> None:
        def broken(_snapshot: dict) -> None:
            raise OSError("disk full")

        store = _sample_store(persist=broken)
        with self.assertLogs("focusflow.engine.store", level="ERROR"):
            created = store.add_task("z1", "d")
        self.assertIsNotNone(created)
        self.assertEqual(7, len(store.tasks))

    def test_load_snapshot_replaces_state(self) -> None:
        store = _sample_store()
        data = store.to_snapshot()

        other = make_store([])
        self.assertTrue(other.load_snapshot(data).ok)
        self.assertEqual(6, len(other.tasks))
        self.assertEqual(210, other.metrics("a").total_work_time)

        res = other.load_snapshot({"zones": []})
        self.assertFalse(res.ok)
        self.assertEqual(6, len(other.tasks))


if __name__ == "__main__":
    unittest.main()
