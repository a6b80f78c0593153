"""Domain models for the workshop scheduler."""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import AwareDatetime, BaseModel, Field, model_validator

try:
    from enum import StrEnum
except ImportError:  # pragma: no cover - fallback for older Python runtimes

    class StrEnum(str, Enum):
        pass


DEFAULT_SLOT_DURATION_MIN = 60


class MachineStatus(StrEnum):
    AVAILABLE = "AVAILABLE"
    IN_USE = "IN_USE"
    MAINTENANCE = "MAINTENANCE"
    BROKEN = "BROKEN"


class TaskStatus(StrEnum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    BLOCKED = "BLOCKED"


class ConflictType(StrEnum):
    MACHINE = "machine"
    OPERATOR = "operator"


class TimelineEntryType(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    SCHEDULED = "scheduled"
    CONFLICT_DETECTED = "conflict_detected"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes covering ``[start, end)``, rounded up."""
    return math.ceil((end - start).total_seconds() / 60)


# ---------------------------------------------------------------------------
# Resources and tasks
# ---------------------------------------------------------------------------


class ResourceRef(BaseModel):
    id: str
    name: str


class Machine(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    type: str = "generic"
    status: MachineStatus = MachineStatus.AVAILABLE
    created_at: datetime = Field(default_factory=_utcnow)

    def ref(self) -> ResourceRef:
        return ResourceRef(id=self.id, name=self.name)


class Operator(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    skills: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    def ref(self) -> ResourceRef:
        return ResourceRef(id=self.id, name=self.name)


class TimeSlot(BaseModel):
    """A stored, schedulable sub-interval of a task. The end is always resolved."""

    id: str = Field(default_factory=_new_id)
    start_date_time: datetime
    end_date_time: datetime
    duration_min: int


class Task(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    quantity: int = 1
    completed_quantity: int = 0
    machine_ids: list[str] = Field(default_factory=list)
    operator_ids: list[str] = Field(default_factory=list)
    time_slots: list[TimeSlot] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class TimelineEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    task_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    type: TimelineEntryType
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Conflict engine value objects
# ---------------------------------------------------------------------------


class Booking(BaseModel):
    """A task's (or one of its slots') occupation of machines and operators.

    Built once by the booking source; the engine never looks at raw task
    records.
    """

    task_id: str
    task_title: str
    start_date_time: datetime
    end_date_time: datetime | None = None
    duration_min: int
    time_slot_id: str | None = None
    machines: list[ResourceRef] = Field(default_factory=list)
    operators: list[ResourceRef] = Field(default_factory=list)

    @property
    def machine_ids(self) -> frozenset[str]:
        return frozenset(m.id for m in self.machines)

    @property
    def operator_ids(self) -> frozenset[str]:
        return frozenset(o.id for o in self.operators)

    @property
    def effective_end(self) -> datetime:
        if self.end_date_time is not None:
            return self.end_date_time
        return self.start_date_time + timedelta(minutes=self.duration_min)


class ProposedSlot(BaseModel):
    id: str | None = None
    start_date_time: AwareDatetime
    end_date_time: AwareDatetime | None = None
    duration_min: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _end_after_start(self) -> ProposedSlot:
        if self.end_date_time is not None and self.end_date_time <= self.start_date_time:
            raise ValueError("end_date_time must be after start_date_time")
        return self

    @property
    def effective_end(self) -> datetime:
        """Explicit end wins; otherwise start plus duration (60 minutes by default)."""
        if self.end_date_time is not None:
            return self.end_date_time
        duration = self.duration_min or DEFAULT_SLOT_DURATION_MIN
        return self.start_date_time + timedelta(minutes=duration)

    @property
    def effective_duration_min(self) -> int:
        if self.end_date_time is not None:
            return minutes_between(self.start_date_time, self.end_date_time)
        return self.duration_min or DEFAULT_SLOT_DURATION_MIN

    def to_time_slot(self) -> TimeSlot:
        fields = dict(
            start_date_time=self.start_date_time,
            end_date_time=self.effective_end,
            duration_min=self.effective_duration_min,
        )
        if self.id:
            fields["id"] = self.id
        return TimeSlot(**fields)


class ConflictCheckRequest(BaseModel):
    start_date_time: AwareDatetime
    end_date_time: AwareDatetime | None = None
    duration_min: int = Field(default=0, ge=0)
    machine_ids: list[str] = Field(default_factory=list)
    operator_ids: list[str] = Field(default_factory=list)
    exclude_task_id: str | None = None
    exclude_time_slot_id: str | None = None

    @model_validator(mode="after")
    def _end_not_before_start(self) -> ConflictCheckRequest:
        if self.end_date_time is not None and self.end_date_time < self.start_date_time:
            raise ValueError("end_date_time must not be before start_date_time")
        return self

    @property
    def effective_end(self) -> datetime:
        """Explicit end wins; otherwise start plus duration."""
        if self.end_date_time is not None:
            return self.end_date_time
        return self.start_date_time + timedelta(minutes=self.duration_min)


class ConflictResult(BaseModel):
    has_conflict: bool
    conflict_type: ConflictType | None = None
    conflicting_booking: Booking | None = None
    conflicting_resource: ResourceRef | None = None

    @model_validator(mode="after")
    def _conflict_is_complete(self) -> ConflictResult:
        if self.has_conflict and (
            self.conflict_type is None
            or self.conflicting_booking is None
            or self.conflicting_resource is None
        ):
            raise ValueError("a conflict must name its type, booking and resource")
        return self


class ConflictTimeSlot(BaseModel):
    id: str | None = None
    start_date_time: datetime
    end_date_time: datetime
    duration_min: int


class ConflictDetail(BaseModel):
    task_id: str
    title: str
    time_slot: ConflictTimeSlot
    machine: ResourceRef | None = None
    operator: ResourceRef | None = None


class ConflictErrorPayload(BaseModel):
    error: str
    conflict: ConflictDetail


# ---------------------------------------------------------------------------
# Request DTOs
# ---------------------------------------------------------------------------


class _ResourceAssignment(BaseModel):
    """Accepts both the legacy single-id fields and the id lists."""

    machine_id: str | None = None
    operator_id: str | None = None
    machine_ids: list[str] | None = None
    operator_ids: list[str] | None = None

    def resolved_machine_ids(self) -> list[str] | None:
        """``None`` when the body says nothing about machines."""
        if self.machine_ids is not None:
            return list(dict.fromkeys(self.machine_ids))
        if "machine_id" in self.model_fields_set:
            return [self.machine_id] if self.machine_id else []
        return None

    def resolved_operator_ids(self) -> list[str] | None:
        if self.operator_ids is not None:
            return list(dict.fromkeys(self.operator_ids))
        if "operator_id" in self.model_fields_set:
            return [self.operator_id] if self.operator_id else []
        return None


class TaskRequest(_ResourceAssignment):
    """Body for task create and full update."""

    title: str | None = None
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    quantity: int = Field(default=1, ge=0)
    completed_quantity: int = Field(default=0, ge=0)
    time_slots: list[ProposedSlot] = Field(default_factory=list)


class TaskPatchRequest(_ResourceAssignment):
    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    quantity: int | None = Field(default=None, ge=0)
    completed_quantity: int | None = Field(default=None, ge=0)


class ScheduleTaskRequest(_ResourceAssignment):
    task_id: str | None = None
    scheduled_at: AwareDatetime | None = None
    duration_min: int | None = Field(default=None, gt=0)


class TimeSlotUpdateRequest(BaseModel):
    start_date_time: AwareDatetime
    end_date_time: AwareDatetime | None = None
    duration_min: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _end_after_start(self) -> TimeSlotUpdateRequest:
        if self.end_date_time is not None and self.end_date_time <= self.start_date_time:
            raise ValueError("end_date_time must be after start_date_time")
        return self


class MachineCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    type: str = "generic"
    status: MachineStatus = MachineStatus.AVAILABLE


class OperatorCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    skills: list[str] = Field(default_factory=list)
