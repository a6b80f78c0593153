"""Service for creating, editing and scheduling workshop tasks.

Every write runs the same gate before it touches the store: the task's own
slots must not overlap each other, then no slot may collide with another task
on a shared machine or operator. Reading the task, the checks and the write
all happen under one lock, so two requests cannot both pass the check and
then double-book a resource or overwrite each other's slot edits.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from app.domain.bus import EventBus
from app.domain.errors import NotFoundError, ResourceConflictError, ValidationFailed
from app.domain.events import (
    SchedulingConflictDetected,
    TaskCreated,
    TaskScheduled,
    TaskUpdated,
)
from app.domain.models import (
    ProposedSlot,
    ScheduleTaskRequest,
    Task,
    TaskPatchRequest,
    TaskRequest,
    TaskStatus,
    TimeSlot,
    TimeSlotUpdateRequest,
)
from app.repos.memory import MachineRepository, OperatorRepository, TaskRepository
from app.services.conflicts import (
    BookingSource,
    check_resource_conflicts,
    validate_no_self_overlap,
)

logger = logging.getLogger(__name__)


def _as_proposed(slot: TimeSlot) -> ProposedSlot:
    return ProposedSlot(
        id=slot.id,
        start_date_time=slot.start_date_time,
        end_date_time=slot.end_date_time,
        duration_min=slot.duration_min,
    )


def _check_quantities(quantity: int, completed_quantity: int) -> None:
    if completed_quantity > quantity:
        raise ValidationFailed(
            "BAD_QUANTITY", "Completed quantity cannot exceed total quantity"
        )


class TaskService:
    """Task use-cases on top of the repositories and a booking source."""

    def __init__(
        self,
        bus: EventBus,
        task_repo: TaskRepository,
        machine_repo: MachineRepository,
        operator_repo: OperatorRepository,
        booking_source: BookingSource,
    ) -> None:
        self.bus = bus
        self.task_repo = task_repo
        self.machine_repo = machine_repo
        self.operator_repo = operator_repo
        self.booking_source = booking_source
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Task:
        task = self.task_repo.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    def list_tasks(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> list[Task]:
        return self.task_repo.list_starting_between(start, end)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_task(self, body: TaskRequest) -> Task:
        if not body.title:
            raise ValidationFailed("MISSING_TITLE", "title is required")
        _check_quantities(body.quantity, body.completed_quantity)

        machine_ids = body.resolved_machine_ids() or []
        operator_ids = body.resolved_operator_ids() or []
        validate_no_self_overlap(body.time_slots)

        with self._write_lock:
            self._require_resources(machine_ids, operator_ids)
            self._check_conflicts(body.time_slots, machine_ids, operator_ids)
            task = Task(
                title=body.title,
                description=body.description,
                status=body.status,
                quantity=body.quantity,
                completed_quantity=body.completed_quantity,
                machine_ids=machine_ids,
                operator_ids=operator_ids,
                time_slots=[slot.to_time_slot() for slot in body.time_slots],
            )
            self.task_repo.add(task)

        logger.info("Created task %s (%s) with %d slot(s)", task.id, task.title, len(task.time_slots))
        self.bus.publish(TaskCreated(task_id=task.id))
        if task.time_slots:
            self.bus.publish(
                TaskScheduled(task_id=task.id, time_slot_ids=[s.id for s in task.time_slots])
            )
        return task

    def update_task(self, task_id: str, body: TaskRequest) -> Task:
        """Replace a task's fields, resources and slots."""
        machine_ids = body.resolved_machine_ids() or []
        operator_ids = body.resolved_operator_ids() or []

        with self._write_lock:
            task = self.get_task(task_id)
            _check_quantities(body.quantity, body.completed_quantity)
            validate_no_self_overlap(body.time_slots)
            self._require_resources(machine_ids, operator_ids)
            self._check_conflicts(
                body.time_slots,
                machine_ids,
                operator_ids,
                exclude_task_id=task_id,
                subject_task_id=task_id,
            )
            if body.title:
                task.title = body.title
            if "description" in body.model_fields_set:
                task.description = body.description
            if "status" in body.model_fields_set:
                task.status = body.status
            task.quantity = body.quantity
            task.completed_quantity = body.completed_quantity
            task.machine_ids = machine_ids
            task.operator_ids = operator_ids
            task.time_slots = [slot.to_time_slot() for slot in body.time_slots]
            task.updated_at = datetime.now(timezone.utc)

        logger.info("Updated task %s", task_id)
        self.bus.publish(
            TaskUpdated(task_id=task_id, changed_fields=sorted(body.model_fields_set))
        )
        if task.time_slots:
            self.bus.publish(
                TaskScheduled(task_id=task_id, time_slot_ids=[s.id for s in task.time_slots])
            )
        return task

    def patch_task(self, task_id: str, body: TaskPatchRequest) -> Task:
        """Apply only the fields present in *body*.

        Changing machines or operators re-checks the task's existing slots
        against the new resource sets.
        """
        new_machine_ids = body.resolved_machine_ids()
        new_operator_ids = body.resolved_operator_ids()
        resources_changed = new_machine_ids is not None or new_operator_ids is not None

        with self._write_lock:
            task = self.get_task(task_id)
            machine_ids = task.machine_ids if new_machine_ids is None else new_machine_ids
            operator_ids = task.operator_ids if new_operator_ids is None else new_operator_ids

            quantity = task.quantity if body.quantity is None else body.quantity
            completed = (
                task.completed_quantity
                if body.completed_quantity is None
                else body.completed_quantity
            )
            _check_quantities(quantity, completed)
            self._require_resources(new_machine_ids or [], new_operator_ids or [])

            if resources_changed and task.time_slots:
                self._check_conflicts(
                    [_as_proposed(s) for s in task.time_slots],
                    machine_ids,
                    operator_ids,
                    exclude_task_id=task_id,
                    subject_task_id=task_id,
                )
            if body.title:
                task.title = body.title
            if "description" in body.model_fields_set:
                task.description = body.description
            if body.status is not None:
                task.status = body.status
            task.quantity = quantity
            task.completed_quantity = completed
            task.machine_ids = list(machine_ids)
            task.operator_ids = list(operator_ids)
            task.updated_at = datetime.now(timezone.utc)

        logger.info("Patched task %s", task_id)
        self.bus.publish(
            TaskUpdated(task_id=task_id, changed_fields=sorted(body.model_fields_set))
        )
        return task

    def delete_task(self, task_id: str) -> None:
        with self._write_lock:
            self.get_task(task_id)
            self.task_repo.delete(task_id)
        logger.info("Deleted task %s", task_id)

    def schedule_task(self, body: ScheduleTaskRequest) -> Task:
        """Place a task on the schedule as a single slot (drag-and-drop).

        Resources omitted from *body* stay as they are.
        """
        if not body.task_id or body.scheduled_at is None or body.duration_min is None:
            raise ValidationFailed(
                "MISSING_FIELDS", "task_id, scheduled_at and duration_min are required"
            )
        new_machine_ids = body.resolved_machine_ids()
        new_operator_ids = body.resolved_operator_ids()
        slot = ProposedSlot(start_date_time=body.scheduled_at, duration_min=body.duration_min)

        with self._write_lock:
            task = self.get_task(body.task_id)
            machine_ids = task.machine_ids if new_machine_ids is None else new_machine_ids
            operator_ids = task.operator_ids if new_operator_ids is None else new_operator_ids
            self._require_resources(new_machine_ids or [], new_operator_ids or [])
            self._check_conflicts(
                [slot],
                machine_ids,
                operator_ids,
                exclude_task_id=task.id,
                subject_task_id=task.id,
            )
            task.machine_ids = list(machine_ids)
            task.operator_ids = list(operator_ids)
            task.time_slots = [slot.to_time_slot()]
            task.status = TaskStatus.SCHEDULED
            task.updated_at = datetime.now(timezone.utc)

        logger.info(
            "Scheduled task %s at %s for %d min",
            task.id,
            body.scheduled_at.isoformat(),
            body.duration_min,
        )
        self.bus.publish(
            TaskScheduled(task_id=task.id, time_slot_ids=[s.id for s in task.time_slots])
        )
        return task

    def update_time_slot(
        self, task_id: str, slot_id: str, body: TimeSlotUpdateRequest
    ) -> Task:
        """Move or resize one slot in place.

        Only the edited slot is excluded from the conflict check; the task's
        other slots still count.
        """
        edited = ProposedSlot(
            id=slot_id,
            start_date_time=body.start_date_time,
            end_date_time=body.end_date_time,
            duration_min=body.duration_min,
        )

        with self._write_lock:
            task = self.get_task(task_id)
            if not any(s.id == slot_id for s in task.time_slots):
                raise NotFoundError("Time slot", slot_id)
            proposed = [
                edited if s.id == slot_id else _as_proposed(s) for s in task.time_slots
            ]
            validate_no_self_overlap(proposed)
            self._check_conflicts(
                [edited],
                task.machine_ids,
                task.operator_ids,
                exclude_time_slot_id=slot_id,
                subject_task_id=task_id,
            )
            task.time_slots = [slot.to_time_slot() for slot in proposed]
            task.updated_at = datetime.now(timezone.utc)

        logger.info("Moved slot %s of task %s", slot_id, task_id)
        self.bus.publish(TaskUpdated(task_id=task_id, changed_fields=["time_slots"]))
        return task

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def delete_machine(self, machine_id: str) -> None:
        """Delete a machine and drop it from every task that used it."""
        with self._write_lock:
            if self.machine_repo.get(machine_id) is None:
                raise NotFoundError("Machine", machine_id)
            self.task_repo.unassign_machine(machine_id)
            self.machine_repo.delete(machine_id)
        logger.info("Deleted machine %s", machine_id)

    def delete_operator(self, operator_id: str) -> None:
        with self._write_lock:
            if self.operator_repo.get(operator_id) is None:
                raise NotFoundError("Operator", operator_id)
            self.task_repo.unassign_operator(operator_id)
            self.operator_repo.delete(operator_id)
        logger.info("Deleted operator %s", operator_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_resources(self, machine_ids: list[str], operator_ids: list[str]) -> None:
        for machine_id in machine_ids:
            if self.machine_repo.get(machine_id) is None:
                raise NotFoundError("Machine", machine_id)
        for operator_id in operator_ids:
            if self.operator_repo.get(operator_id) is None:
                raise NotFoundError("Operator", operator_id)

    def _check_conflicts(
        self,
        slots: list[ProposedSlot],
        machine_ids: list[str],
        operator_ids: list[str],
        exclude_task_id: str | None = None,
        exclude_time_slot_id: str | None = None,
        subject_task_id: str | None = None,
    ) -> None:
        try:
            check_resource_conflicts(
                self.booking_source,
                slots,
                machine_ids,
                operator_ids,
                exclude_task_id=exclude_task_id,
                exclude_time_slot_id=exclude_time_slot_id,
            )
        except ResourceConflictError as exc:
            if subject_task_id is not None:
                conflict = exc.details["conflict"]
                resource = conflict["machine"] or conflict["operator"]
                self.bus.publish(
                    SchedulingConflictDetected(
                        task_id=subject_task_id,
                        conflicting_task_id=conflict["task_id"],
                        conflict_type="machine" if conflict["machine"] else "operator",
                        resource_id=resource["id"],
                    )
                )
            raise
