"""FastAPI application: entry point for the workshop scheduling service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import AwareDatetime

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.domain.bus import EventBus
from app.domain.errors import AppError, NotFoundError
from app.domain.handlers import HandlerRegistry
from app.domain.models import (
    Machine,
    MachineCreateRequest,
    Operator,
    OperatorCreateRequest,
    ScheduleTaskRequest,
    Task,
    TaskPatchRequest,
    TaskRequest,
    TimelineEntry,
    TimeSlotUpdateRequest,
)
from app.repos.memory import (
    MachineRepository,
    OperatorRepository,
    TaskBookingSource,
    TaskRepository,
    TimelineRepository,
    seed_workshop,
)
from app.services.tasks import TaskService

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.project_name)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
task_repo = TaskRepository()
machine_repo = MachineRepository()
operator_repo = OperatorRepository()
timeline_repo = TimelineRepository()

handler_registry = HandlerRegistry(
    bus=event_bus,
    task_repo=task_repo,
    timeline_repo=timeline_repo,
)
task_service = TaskService(
    bus=event_bus,
    task_repo=task_repo,
    machine_repo=machine_repo,
    operator_repo=operator_repo,
    booking_source=TaskBookingSource(task_repo, machine_repo, operator_repo),
)

if settings.seed_demo_data:
    seed_workshop(task_repo, machine_repo, operator_repo)
    logger.info("Loaded demo workshop data")

prefix = settings.api_prefix


# ── Machines ──────────────────────────────────────────────────────────


@app.post(f"{prefix}/machines", response_model=Machine, status_code=201)
def create_machine(body: MachineCreateRequest) -> Machine:
    machine = Machine(name=body.name, type=body.type, status=body.status)
    machine_repo.add(machine)
    return machine


@app.get(f"{prefix}/machines", response_model=list[Machine])
def list_machines() -> list[Machine]:
    return machine_repo.list_all()


@app.get(f"{prefix}/machines/{{machine_id}}", response_model=Machine)
def get_machine(machine_id: str) -> Machine:
    machine = machine_repo.get(machine_id)
    if machine is None:
        raise NotFoundError("Machine", machine_id)
    return machine


@app.delete(f"{prefix}/machines/{{machine_id}}", status_code=204)
def delete_machine(machine_id: str) -> None:
    """Delete a machine and drop it from every task that used it."""
    task_service.delete_machine(machine_id)


# ── Operators ─────────────────────────────────────────────────────────


@app.post(f"{prefix}/operators", response_model=Operator, status_code=201)
def create_operator(body: OperatorCreateRequest) -> Operator:
    operator = Operator(name=body.name, skills=body.skills)
    operator_repo.add(operator)
    return operator


@app.get(f"{prefix}/operators", response_model=list[Operator])
def list_operators() -> list[Operator]:
    return operator_repo.list_all()


@app.get(f"{prefix}/operators/{{operator_id}}", response_model=Operator)
def get_operator(operator_id: str) -> Operator:
    operator = operator_repo.get(operator_id)
    if operator is None:
        raise NotFoundError("Operator", operator_id)
    return operator


@app.delete(f"{prefix}/operators/{{operator_id}}", status_code=204)
def delete_operator(operator_id: str) -> None:
    task_service.delete_operator(operator_id)


# ── Tasks ─────────────────────────────────────────────────────────────


@app.get(f"{prefix}/tasks", response_model=list[Task])
def list_tasks(
    start: AwareDatetime | None = None, end: AwareDatetime | None = None
) -> list[Task]:
    """Return tasks, optionally only those with a slot starting in ``[start, end]``."""
    return task_service.list_tasks(start, end)


@app.post(f"{prefix}/tasks", response_model=Task, status_code=201)
def create_task(body: TaskRequest) -> Task:
    return task_service.create_task(body)


@app.get(f"{prefix}/tasks/{{task_id}}", response_model=Task)
def get_task(task_id: str) -> Task:
    return task_service.get_task(task_id)


@app.put(f"{prefix}/tasks/{{task_id}}", response_model=Task)
def update_task(task_id: str, body: TaskRequest) -> Task:
    return task_service.update_task(task_id, body)


@app.patch(f"{prefix}/tasks/{{task_id}}", response_model=Task)
def patch_task(task_id: str, body: TaskPatchRequest) -> Task:
    return task_service.patch_task(task_id, body)


@app.delete(f"{prefix}/tasks/{{task_id}}", status_code=204)
def delete_task(task_id: str) -> None:
    task_service.delete_task(task_id)


@app.patch(f"{prefix}/tasks/{{task_id}}/time-slots/{{slot_id}}", response_model=Task)
def update_time_slot(task_id: str, slot_id: str, body: TimeSlotUpdateRequest) -> Task:
    return task_service.update_time_slot(task_id, slot_id, body)


@app.get(f"{prefix}/tasks/{{task_id}}/timeline", response_model=list[TimelineEntry])
def get_task_timeline(task_id: str) -> list[TimelineEntry]:
    task_service.get_task(task_id)
    return timeline_repo.list_for_task(task_id)


# ── Schedule ──────────────────────────────────────────────────────────


@app.post(f"{prefix}/schedule", response_model=Task)
def schedule_task(body: ScheduleTaskRequest) -> Task:
    """Assign a task to a time (and optionally machines/operators) with conflict check."""
    return task_service.schedule_task(body)
