"""Domain events emitted after task writes."""

from __future__ import annotations

from pydantic import BaseModel


class TaskEvent(BaseModel):
    """Base for every event about a single task."""

    task_id: str


class TaskCreated(TaskEvent):
    """Fired when a new Task is persisted."""


class TaskUpdated(TaskEvent):
    """Fired after a full or partial update of a task."""

    changed_fields: list[str]


class TaskScheduled(TaskEvent):
    """Fired when a task holds time slots on at least one machine or operator."""

    time_slot_ids: list[str]


class SchedulingConflictDetected(TaskEvent):
    """Fired when a write on an existing task was refused because of a conflict."""

    conflicting_task_id: str
    conflict_type: str
    resource_id: str
