from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any, Optional

from focusflow.engine.model import Task, Zone
from focusflow.engine.store import TreeStore

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def counting_ids():
    seq = count(1)

    def new_id(prefix: str) -> str:
        return f"{prefix}-{next(seq)}"

    return new_id


def zone(zone_id: str = "z1", name: str = "Work", order: int = 0) -> Zone:
    return Zone(id=zone_id, name=name, color="#000000", order=order, created_at=T0)


def task(
    task_id: str,
    parent_id: Optional[str] = None,
    *,
    zone_id: str = "z1",
    order: int = 0,
    **fields: Any,
) -> Task:
    return Task(
        id=task_id,
        zone_id=zone_id,
        parent_id=parent_id,
        title=fields.pop("title", task_id),
        order=order,
        created_at=T0,
        **fields,
    )


def make_store(tasks: list[Task] = (), zones: Optional[list[Zone]] = None, **kwargs: Any) -> TreeStore:
    kwargs.setdefault("clock", FakeClock())
    kwargs.setdefault("id_factory", counting_ids())
    return TreeStore(zones if zones is not None else [zone()], tasks, **kwargs)


def orders(store: TreeStore, zone_id: str, parent_id: Optional[str]) -> list[tuple[str, int]]:
    """(id, order) pairs of one sibling group, in order."""
    group = store.root_tasks(zone_id) if parent_id is None else store.child_tasks(parent_id)
    return [(t.id, t.order) for t in group if t.zone_id == zone_id]
