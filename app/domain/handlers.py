"""Domain event handlers: wired up at application startup."""

from __future__ import annotations

from app.domain.bus import EventBus
from app.domain.events import (
    SchedulingConflictDetected,
    TaskCreated,
    TaskScheduled,
    TaskUpdated,
)
from app.domain.models import TaskStatus, TimelineEntry, TimelineEntryType
from app.repos.memory import TaskRepository, TimelineRepository


class HandlerRegistry:
    """Wires domain-event handlers to the bus with access to the repositories."""

    def __init__(
        self,
        bus: EventBus,
        task_repo: TaskRepository,
        timeline_repo: TimelineRepository,
    ) -> None:
        self.bus = bus
        self.task_repo = task_repo
        self.timeline_repo = timeline_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(TaskCreated, self.on_task_created)
        self.bus.subscribe(TaskUpdated, self.on_task_updated)
        self.bus.subscribe(TaskScheduled, self.on_task_scheduled)
        self.bus.subscribe(SchedulingConflictDetected, self.on_conflict_detected)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_task_created(self, event: TaskCreated) -> None:
        if self.task_repo.get(event.task_id) is None:
            return
        self.timeline_repo.add(
            TimelineEntry(task_id=event.task_id, type=TimelineEntryType.CREATED)
        )

    def on_task_updated(self, event: TaskUpdated) -> None:
        if self.task_repo.get(event.task_id) is None:
            return
        self.timeline_repo.add(
            TimelineEntry(
                task_id=event.task_id,
                type=TimelineEntryType.UPDATED,
                payload={"changed_fields": event.changed_fields},
            )
        )

    def on_task_scheduled(self, event: TaskScheduled) -> None:
        stored = self.task_repo.get(event.task_id)
        if stored is None:
            return

        # Only promote pending work; in-progress or finished tasks keep their status
        if stored.status == TaskStatus.PENDING:
            stored.status = TaskStatus.SCHEDULED

        self.timeline_repo.add(
            TimelineEntry(
                task_id=event.task_id,
                type=TimelineEntryType.SCHEDULED,
                payload={"time_slot_ids": event.time_slot_ids},
            )
        )

    def on_conflict_detected(self, event: SchedulingConflictDetected) -> None:
        if self.task_repo.get(event.task_id) is None:
            return
        self.timeline_repo.add(
            TimelineEntry(
                task_id=event.task_id,
                type=TimelineEntryType.CONFLICT_DETECTED,
                payload={
                    "conflicting_task_id": event.conflicting_task_id,
                    "conflict_type": event.conflict_type,
                    "resource_id": event.resource_id,
                },
            )
        )
