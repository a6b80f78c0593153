"""Service for detecting scheduling conflicts on machines and operators."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Protocol

from app.domain.errors import InvariantViolation, ResourceConflictError, SelfOverlapError
from app.domain.models import (
    Booking,
    ConflictCheckRequest,
    ConflictDetail,
    ConflictErrorPayload,
    ConflictResult,
    ConflictTimeSlot,
    ConflictType,
    ProposedSlot,
)

logger = logging.getLogger(__name__)

_RESOURCE_LABELS = {
    ConflictType.MACHINE: "Machine",
    ConflictType.OPERATOR: "Operator",
}


class BookingSource(Protocol):
    """Read-only lookup of existing bookings that share a resource.

    Implementations return bookings that use at least one of ``resource_ids``,
    are not excluded, are scheduled with a positive duration and start before
    ``window_end``. The exact overlap test is left to the engine.
    """

    def bookings_for_machines(
        self,
        machine_ids: Iterable[str],
        window_start: datetime,
        window_end: datetime,
        exclude_task_id: str | None = None,
        exclude_time_slot_id: str | None = None,
    ) -> list[Booking]: ...

    def bookings_for_operators(
        self,
        operator_ids: Iterable[str],
        window_start: datetime,
        window_end: datetime,
        exclude_task_id: str | None = None,
        exclude_time_slot_id: str | None = None,
    ) -> list[Booking]: ...


def overlaps(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """Return True if the half-open intervals ``[start_a, end_a)`` and
    ``[start_b, end_b)`` intersect.

    Exact boundary touches (end == start) are NOT overlaps, and a zero-length
    interval never overlaps anything.
    """
    if start_a >= end_a or start_b >= end_b:
        return False
    return start_a < end_b and end_a > start_b


def _is_excluded(booking: Booking, request: ConflictCheckRequest) -> bool:
    if request.exclude_task_id and booking.task_id == request.exclude_task_id:
        return True
    return bool(
        request.exclude_time_slot_id
        and booking.time_slot_id == request.exclude_time_slot_id
    )


def _first_overlap(
    conflict_type: ConflictType,
    candidates: list[Booking],
    requested_ids: list[str],
    request: ConflictCheckRequest,
) -> ConflictResult | None:
    task_start = request.start_date_time
    task_end = request.effective_end
    wanted = set(requested_ids)

    for booking in candidates:
        if booking.duration_min <= 0 or _is_excluded(booking, request):
            continue
        if conflict_type is ConflictType.MACHINE:
            resources = booking.machines
        else:
            resources = booking.operators
        shared = [r for r in resources if r.id in wanted]
        if not shared:
            continue
        if overlaps(task_start, task_end, booking.start_date_time, booking.effective_end):
            return ConflictResult(
                has_conflict=True,
                conflict_type=conflict_type,
                conflicting_booking=booking,
                conflicting_resource=shared[0],
            )
    return None


def find_conflict(request: ConflictCheckRequest, source: BookingSource) -> ConflictResult:
    """Return the first existing booking that collides with *request*.

    Machines are checked before operators and only the first overlapping
    booking is reported. A conflict is a normal return value; errors raised
    by *source* propagate unchanged.
    """
    task_start = request.start_date_time
    task_end = request.effective_end
    exclusions = dict(
        exclude_task_id=request.exclude_task_id,
        exclude_time_slot_id=request.exclude_time_slot_id,
    )

    if request.machine_ids:
        candidates = source.bookings_for_machines(
            request.machine_ids, task_start, task_end, **exclusions
        )
        logger.debug(
            "Checking %d machine booking(s) against %s-%s",
            len(candidates),
            task_start.isoformat(),
            task_end.isoformat(),
        )
        result = _first_overlap(
            ConflictType.MACHINE, candidates, request.machine_ids, request
        )
        if result is not None:
            return result

    if request.operator_ids:
        candidates = source.bookings_for_operators(
            request.operator_ids, task_start, task_end, **exclusions
        )
        logger.debug(
            "Checking %d operator booking(s) against %s-%s",
            len(candidates),
            task_start.isoformat(),
            task_end.isoformat(),
        )
        result = _first_overlap(
            ConflictType.OPERATOR, candidates, request.operator_ids, request
        )
        if result is not None:
            return result

    return ConflictResult(has_conflict=False)


def build_conflict_response(result: ConflictResult) -> ConflictErrorPayload:
    """Render a detected conflict into the payload shown to API clients."""
    if not result.has_conflict:
        raise InvariantViolation("No conflict data provided")

    booking = result.conflicting_booking
    is_machine = result.conflict_type is ConflictType.MACHINE
    detail = ConflictDetail(
        task_id=booking.task_id,
        title=booking.task_title,
        time_slot=ConflictTimeSlot(
            id=booking.time_slot_id,
            start_date_time=booking.start_date_time,
            end_date_time=booking.effective_end,
            duration_min=booking.duration_min,
        ),
        machine=result.conflicting_resource if is_machine else None,
        operator=None if is_machine else result.conflicting_resource,
    )
    label = _RESOURCE_LABELS[result.conflict_type]
    return ConflictErrorPayload(
        error=f"{label} scheduling conflict detected", conflict=detail
    )


def describe_conflict(result: ConflictResult) -> str:
    """One-line summary naming the resource, the competing task and its window."""
    booking = result.conflicting_booking
    return (
        f'{_RESOURCE_LABELS[result.conflict_type]} "{result.conflicting_resource.name}" '
        f'is already assigned to task "{booking.task_title}" '
        f"from {booking.start_date_time.isoformat()} "
        f"to {booking.effective_end.isoformat()}"
    )


def validate_no_self_overlap(slots: list[ProposedSlot]) -> None:
    """Reject a task whose own proposed slots overlap one another.

    Stops at the first overlapping pair and raises :class:`SelfOverlapError`.
    """
    for i, slot_a in enumerate(slots):
        for slot_b in slots[i + 1 :]:
            if overlaps(
                slot_a.start_date_time,
                slot_a.effective_end,
                slot_b.start_date_time,
                slot_b.effective_end,
            ):
                logger.warning(
                    "Rejected overlapping slots %s and %s",
                    slot_a.start_date_time.isoformat(),
                    slot_b.start_date_time.isoformat(),
                )
                raise SelfOverlapError()


def check_resource_conflicts(
    source: BookingSource,
    slots: list[ProposedSlot],
    machine_ids: list[str],
    operator_ids: list[str],
    exclude_task_id: str | None = None,
    exclude_time_slot_id: str | None = None,
) -> None:
    """Run :func:`find_conflict` for every slot and raise on the first conflict.

    This is the seam where a conflict verdict turns into an aborted write:
    :class:`ResourceConflictError` carries the structured payload with a 409.
    """
    if not machine_ids and not operator_ids:
        return

    for slot in slots:
        request = ConflictCheckRequest(
            start_date_time=slot.start_date_time,
            end_date_time=slot.effective_end,
            duration_min=slot.effective_duration_min,
            machine_ids=machine_ids,
            operator_ids=operator_ids,
            exclude_task_id=exclude_task_id,
            exclude_time_slot_id=exclude_time_slot_id,
        )
        result = find_conflict(request, source)
        if result.has_conflict:
            message = describe_conflict(result)
            logger.warning("Scheduling conflict: %s", message)
            code = (
                "MACHINE_CONFLICT"
                if result.conflict_type is ConflictType.MACHINE
                else "OPERATOR_CONFLICT"
            )
            payload = build_conflict_response(result)
            raise ResourceConflictError(code, message, payload.model_dump(mode="json"))
