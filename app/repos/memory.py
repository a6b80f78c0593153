"""In-memory repositories for tasks, resources and the task timeline."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from app.domain.models import (
    Booking,
    Machine,
    Operator,
    ResourceRef,
    Task,
    TaskStatus,
    TimelineEntry,
    TimeSlot,
)


class MachineRepository:
    """Dict-backed store for Machine instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Machine] = {}

    def add(self, machine: Machine) -> None:
        self._store[machine.id] = machine

    def get(self, machine_id: str) -> Machine | None:
        return self._store.get(machine_id)

    def list_all(self) -> list[Machine]:
        return sorted(self._store.values(), key=lambda m: m.name)

    def delete(self, machine_id: str) -> None:
        self._store.pop(machine_id, None)


class OperatorRepository:
    """Dict-backed store for Operator instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Operator] = {}

    def add(self, operator: Operator) -> None:
        self._store[operator.id] = operator

    def get(self, operator_id: str) -> Operator | None:
        return self._store.get(operator_id)

    def list_all(self) -> list[Operator]:
        return sorted(self._store.values(), key=lambda o: o.name)

    def delete(self, operator_id: str) -> None:
        self._store.pop(operator_id, None)


class TaskRepository:
    """Dict-backed store for Task instances, keyed by id.

    Insertion order is kept so listings are stable.
    """

    def __init__(self) -> None:
        self._store: dict[str, Task] = {}

    def add(self, task: Task) -> None:
        self._store[task.id] = task

    def get(self, task_id: str) -> Task | None:
        return self._store.get(task_id)

    def list_all(self) -> list[Task]:
        return list(self._store.values())

    def list_starting_between(
        self, start: datetime | None, end: datetime | None
    ) -> list[Task]:
        """Tasks with at least one slot starting inside ``[start, end]``."""
        if start is None and end is None:
            return self.list_all()

        def _in_range(slot: TimeSlot) -> bool:
            if start is not None and slot.start_date_time < start:
                return False
            if end is not None and slot.start_date_time > end:
                return False
            return True

        return [t for t in self._store.values() if any(_in_range(s) for s in t.time_slots)]

    def delete(self, task_id: str) -> None:
        self._store.pop(task_id, None)

    def unassign_machine(self, machine_id: str) -> None:
        for task in self._store.values():
            if machine_id in task.machine_ids:
                task.machine_ids = [m for m in task.machine_ids if m != machine_id]

    def unassign_operator(self, operator_id: str) -> None:
        for task in self._store.values():
            if operator_id in task.operator_ids:
                task.operator_ids = [o for o in task.operator_ids if o != operator_id]


class TimelineRepository:
    """List-backed store for TimelineEntry instances."""

    def __init__(self) -> None:
        self._entries: list[TimelineEntry] = []

    def add(self, entry: TimelineEntry) -> None:
        self._entries.append(entry)

    def list_for_task(self, task_id: str) -> list[TimelineEntry]:
        return sorted(
            [e for e in self._entries if e.task_id == task_id],
            key=lambda e: e.timestamp,
        )


class TaskBookingSource:
    """Booking source over the task store.

    Expands every scheduled slot of every task into a :class:`Booking` with
    the task's machine and operator names resolved.
    """

    def __init__(
        self,
        task_repo: TaskRepository,
        machine_repo: MachineRepository,
        operator_repo: OperatorRepository,
    ) -> None:
        self.task_repo = task_repo
        self.machine_repo = machine_repo
        self.operator_repo = operator_repo

    def bookings_for_machines(
        self,
        machine_ids: Iterable[str],
        window_start: datetime,
        window_end: datetime,
        exclude_task_id: str | None = None,
        exclude_time_slot_id: str | None = None,
    ) -> list[Booking]:
        wanted = set(machine_ids)
        return self._bookings(
            lambda task: bool(wanted.intersection(task.machine_ids)),
            window_end,
            exclude_task_id,
            exclude_time_slot_id,
        )

    def bookings_for_operators(
        self,
        operator_ids: Iterable[str],
        window_start: datetime,
        window_end: datetime,
        exclude_task_id: str | None = None,
        exclude_time_slot_id: str | None = None,
    ) -> list[Booking]:
        wanted = set(operator_ids)
        return self._bookings(
            lambda task: bool(wanted.intersection(task.operator_ids)),
            window_end,
            exclude_task_id,
            exclude_time_slot_id,
        )

    def _bookings(
        self,
        shares_resource: Callable[[Task], bool],
        window_end: datetime,
        exclude_task_id: str | None,
        exclude_time_slot_id: str | None,
    ) -> list[Booking]:
        bookings: list[Booking] = []
        for task in self.task_repo.list_all():
            if task.id == exclude_task_id or not shares_resource(task):
                continue
            for slot in task.time_slots:
                if slot.id == exclude_time_slot_id:
                    continue
                if slot.duration_min <= 0 or slot.start_date_time >= window_end:
                    continue
                bookings.append(self._to_booking(task, slot))
        bookings.sort(key=lambda b: b.start_date_time)
        return bookings

    def _to_booking(self, task: Task, slot: TimeSlot) -> Booking:
        machines = [self._machine_ref(mid) for mid in task.machine_ids]
        operators = [self._operator_ref(oid) for oid in task.operator_ids]
        return Booking(
            task_id=task.id,
            task_title=task.title,
            start_date_time=slot.start_date_time,
            end_date_time=slot.end_date_time,
            duration_min=slot.duration_min,
            time_slot_id=slot.id,
            machines=machines,
            operators=operators,
        )

    def _machine_ref(self, machine_id: str) -> ResourceRef:
        machine = self.machine_repo.get(machine_id)
        return machine.ref() if machine else ResourceRef(id=machine_id, name=machine_id)

    def _operator_ref(self, operator_id: str) -> ResourceRef:
        operator = self.operator_repo.get(operator_id)
        return operator.ref() if operator else ResourceRef(id=operator_id, name=operator_id)


# ---------------------------------------------------------------------------
# Seed data – a small workshop useful for trying out conflicts
# ---------------------------------------------------------------------------


def seed_workshop(
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
) -> None:
    tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).replace(
        hour=9, minute=0, second=0, microsecond=0
    )

    cnc = Machine(name="CNC-1", type="mill")
    lathe = Machine(name="Lathe-2", type="lathe")
    for machine in (cnc, lathe):
        machine_repo.add(machine)

    alice = Operator(name="Alice", skills=["milling", "turning"])
    bob = Operator(name="Bob", skills=["drilling"])
    for operator in (alice, bob):
        operator_repo.add(operator)

    task_repo.add(
        Task(
            title="Mill Block",
            status=TaskStatus.SCHEDULED,
            machine_ids=[cnc.id],
            operator_ids=[alice.id],
            time_slots=[
                TimeSlot(
                    start_date_time=tomorrow,
                    end_date_time=tomorrow + timedelta(minutes=60),
                    duration_min=60,
                )
            ],
        )
    )
    task_repo.add(
        Task(
            title="Turn Shaft",
            status=TaskStatus.SCHEDULED,
            machine_ids=[lathe.id],
            operator_ids=[bob.id],
            time_slots=[
                TimeSlot(
                    start_date_time=tomorrow + timedelta(hours=1),
                    end_date_time=tomorrow + timedelta(hours=3),
                    duration_min=120,
                )
            ],
        )
    )
