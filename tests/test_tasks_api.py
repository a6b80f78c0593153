"""End-to-end tests for task, schedule and resource routes."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.main import app, machine_repo, operator_repo, task_repo, timeline_repo


@pytest.fixture(autouse=True)
def _clear_repos():
    """Reset in-memory repos before each test."""
    task_repo._store.clear()
    machine_repo._store.clear()
    operator_repo._store.clear()
    timeline_repo._entries.clear()
    yield
    task_repo._store.clear()
    machine_repo._store.clear()
    operator_repo._store.clear()
    timeline_repo._entries.clear()


@pytest.fixture()
def client():
    return TestClient(app)


def _machine(client: TestClient, name: str = "CNC-1") -> str:
    resp = client.post("/machines", json={"name": name, "type": "mill"})
    assert resp.status_code == 201
    return resp.json()["id"]


def _operator(client: TestClient, name: str = "Alice") -> str:
    resp = client.post("/operators", json={"name": name, "skills": ["milling"]})
    assert resp.status_code == 201
    return resp.json()["id"]


def _create_task(client: TestClient, **body):
    return client.post("/tasks", json=body)


def _mill_block(client: TestClient, machine_id: str) -> dict:
    resp = _create_task(
        client,
        title="Mill Block",
        machine_ids=[machine_id],
        time_slots=[{"start_date_time": "2024-01-10T09:00:00Z", "duration_min": 60}],
    )
    assert resp.status_code == 201
    return resp.json()


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def test_create_task_stores_slots_and_resources(client: TestClient):
    cnc = _machine(client)
    alice = _operator(client)

    resp = _create_task(
        client,
        title="Mill Block",
        machine_ids=[cnc],
        operator_ids=[alice],
        time_slots=[{"start_date_time": "2024-01-10T09:00:00Z"}],
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["machine_ids"] == [cnc]
    assert body["operator_ids"] == [alice]
    assert body["status"] == "SCHEDULED"
    assert len(body["time_slots"]) == 1
    assert body["time_slots"][0]["duration_min"] == 60


def test_create_conflicting_task_returns_409(client: TestClient):
    cnc = _machine(client)
    existing = _mill_block(client, cnc)

    resp = _create_task(
        client,
        title="Drill Hole",
        machine_ids=[cnc],
        time_slots=[{"start_date_time": "2024-01-10T09:30:00Z", "duration_min": 30}],
    )

    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["code"] == "MACHINE_CONFLICT"
    assert 'Machine "CNC-1"' in error["message"]
    assert error["details"]["error"] == "Machine scheduling conflict detected"
    conflict = error["details"]["conflict"]
    assert conflict["task_id"] == existing["id"]
    assert conflict["title"] == "Mill Block"
    assert conflict["machine"] == {"id": cnc, "name": "CNC-1"}
    assert conflict["operator"] is None
    assert conflict["time_slot"]["id"] == existing["time_slots"][0]["id"]
    assert len(task_repo.list_all()) == 1


def test_create_task_at_existing_end_is_allowed(client: TestClient):
    cnc = _machine(client)
    _mill_block(client, cnc)

    resp = _create_task(
        client,
        title="Drill Hole",
        machine_ids=[cnc],
        time_slots=[{"start_date_time": "2024-01-10T10:00:00Z", "duration_min": 30}],
    )

    assert resp.status_code == 201


def test_operator_conflict_is_reported(client: TestClient):
    cnc = _machine(client)
    lathe = _machine(client, "Lathe-2")
    alice = _operator(client)
    _create_task(
        client,
        title="Mill Block",
        machine_ids=[cnc],
        operator_ids=[alice],
        time_slots=[{"start_date_time": "2024-01-10T09:00:00Z", "duration_min": 60}],
    )

    resp = _create_task(
        client,
        title="Turn Shaft",
        machine_ids=[lathe],
        operator_ids=[alice],
        time_slots=[{"start_date_time": "2024-01-10T09:15:00Z", "duration_min": 30}],
    )

    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["code"] == "OPERATOR_CONFLICT"
    assert error["details"]["conflict"]["operator"]["name"] == "Alice"


def test_self_overlap_rejected_without_resources(client: TestClient):
    resp = _create_task(
        client,
        title="Split job",
        time_slots=[
            {"start_date_time": "2024-01-10T09:00:00Z", "end_date_time": "2024-01-10T10:00:00Z"},
            {"start_date_time": "2024-01-10T09:30:00Z", "end_date_time": "2024-01-10T10:30:00Z"},
        ],
    )

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "TIME_SLOT_OVERLAP"
    assert error["message"] == "Time slots within the same task cannot overlap"


def test_self_overlap_reported_before_resource_conflict(client: TestClient):
    cnc = _machine(client)
    _mill_block(client, cnc)

    resp = _create_task(
        client,
        title="Split job",
        machine_ids=[cnc],
        time_slots=[
            {"start_date_time": "2024-01-10T09:00:00Z", "duration_min": 60},
            {"start_date_time": "2024-01-10T09:30:00Z", "duration_min": 60},
        ],
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "TIME_SLOT_OVERLAP"


def test_create_requires_title(client: TestClient):
    resp = _create_task(client, description="no title")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "MISSING_TITLE"


def test_create_with_unknown_machine_is_404(client: TestClient):
    resp = _create_task(client, title="Ghost", machine_ids=["nope"])
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "MACHINE_NOT_FOUND"


def test_legacy_single_machine_id_is_accepted(client: TestClient):
    cnc = _machine(client)
    _mill_block(client, cnc)

    resp = _create_task(
        client,
        title="Drill Hole",
        machine_id=cnc,
        time_slots=[{"start_date_time": "2024-01-10T09:45:00Z", "duration_min": 30}],
    )

    assert resp.status_code == 409


def test_slot_end_before_start_is_422(client: TestClient):
    resp = _create_task(
        client,
        title="Backwards",
        time_slots=[
            {"start_date_time": "2024-01-10T10:00:00Z", "end_date_time": "2024-01-10T09:00:00Z"}
        ],
    )
    assert resp.status_code == 422


def test_slot_without_timezone_is_422(client: TestClient):
    cnc = _machine(client)
    _mill_block(client, cnc)

    resp = _create_task(
        client,
        title="Drill Hole",
        machine_ids=[cnc],
        time_slots=[{"start_date_time": "2024-01-10T09:30:00", "duration_min": 30}],
    )

    assert resp.status_code == 422
    assert len(task_repo.list_all()) == 1


def test_list_filter_without_timezone_is_422(client: TestClient):
    cnc = _machine(client)
    _mill_block(client, cnc)

    resp = client.get("/tasks", params={"start": "2024-01-10T00:00:00"})

    assert resp.status_code == 422


def test_sub_minute_end_touching_other_task_is_allowed(client: TestClient):
    cnc = _machine(client)
    _create_task(
        client,
        title="Mill Block",
        machine_ids=[cnc],
        time_slots=[{"start_date_time": "2024-01-10T10:00:30Z", "duration_min": 30}],
    )

    resp = _create_task(
        client,
        title="Drill Hole",
        machine_ids=[cnc],
        time_slots=[
            {"start_date_time": "2024-01-10T09:00:00Z", "end_date_time": "2024-01-10T10:00:30Z"}
        ],
    )

    assert resp.status_code == 201
    assert resp.json()["time_slots"][0]["end_date_time"].startswith("2024-01-10T10:00:30")


# ---------------------------------------------------------------------------
# Update / patch
# ---------------------------------------------------------------------------


def test_update_task_in_place_does_not_conflict_with_itself(client: TestClient):
    cnc = _machine(client)
    task = _mill_block(client, cnc)

    resp = client.put(
        f"/tasks/{task['id']}",
        json={
            "machine_ids": [cnc],
            "time_slots": [{"start_date_time": "2024-01-10T09:00:00Z", "duration_min": 60}],
        },
    )

    assert resp.status_code == 200
    assert resp.json()["title"] == "Mill Block"


def test_update_task_into_another_task_conflicts(client: TestClient):
    cnc = _machine(client)
    _mill_block(client, cnc)
    other = _create_task(
        client,
        title="Drill Hole",
        machine_ids=[cnc],
        time_slots=[{"start_date_time": "2024-01-10T11:00:00Z", "duration_min": 30}],
    ).json()

    resp = client.put(
        f"/tasks/{other['id']}",
        json={
            "machine_ids": [cnc],
            "time_slots": [{"start_date_time": "2024-01-10T09:30:00Z", "duration_min": 30}],
        },
    )

    assert resp.status_code == 409
    stored = client.get(f"/tasks/{other['id']}").json()
    assert stored["time_slots"][0]["start_date_time"].startswith("2024-01-10T11:00:00")


def test_update_rejects_completed_over_quantity(client: TestClient):
    task = _create_task(client, title="Batch").json()

    resp = client.put(f"/tasks/{task['id']}", json={"quantity": 2, "completed_quantity": 3})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "BAD_QUANTITY"


def test_patch_reassigning_machine_rechecks_existing_slots(client: TestClient):
    cnc = _machine(client)
    lathe = _machine(client, "Lathe-2")
    _mill_block(client, cnc)
    other = _create_task(
        client,
        title="Turn Shaft",
        machine_ids=[lathe],
        time_slots=[{"start_date_time": "2024-01-10T09:30:00Z", "duration_min": 30}],
    ).json()

    resp = client.patch(f"/tasks/{other['id']}", json={"machine_ids": [cnc]})

    assert resp.status_code == 409
    assert task_repo.get(other["id"]).machine_ids == [lathe]


def test_patch_title_only_keeps_resources(client: TestClient):
    cnc = _machine(client)
    task = _mill_block(client, cnc)

    resp = client.patch(f"/tasks/{task['id']}", json={"title": "Mill Block v2"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["title"] == "Mill Block v2"
    assert body["machine_ids"] == [cnc]


def test_get_missing_task_is_404(client: TestClient):
    resp = client.get("/tasks/missing")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "TASK_NOT_FOUND"


def test_delete_task_frees_the_machine(client: TestClient):
    cnc = _machine(client)
    task = _mill_block(client, cnc)

    assert client.delete(f"/tasks/{task['id']}").status_code == 204

    resp = _create_task(
        client,
        title="Drill Hole",
        machine_ids=[cnc],
        time_slots=[{"start_date_time": "2024-01-10T09:30:00Z", "duration_min": 30}],
    )
    assert resp.status_code == 201


def test_list_tasks_filters_by_slot_start(client: TestClient):
    cnc = _machine(client)
    _mill_block(client, cnc)
    _create_task(
        client,
        title="Next week",
        time_slots=[{"start_date_time": "2024-01-17T09:00:00Z"}],
    )

    resp = client.get(
        "/tasks",
        params={"start": "2024-01-10T00:00:00Z", "end": "2024-01-11T00:00:00Z"},
    )

    assert resp.status_code == 200
    assert [t["title"] for t in resp.json()] == ["Mill Block"]


# ---------------------------------------------------------------------------
# Schedule (drag-and-drop) and single-slot edits
# ---------------------------------------------------------------------------


def test_schedule_task_replaces_slots(client: TestClient):
    cnc = _machine(client)
    task = _create_task(client, title="Drill Hole").json()

    resp = client.post(
        "/schedule",
        json={
            "task_id": task["id"],
            "machine_ids": [cnc],
            "scheduled_at": "2024-01-10T13:00:00Z",
            "duration_min": 45,
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "SCHEDULED"
    assert len(body["time_slots"]) == 1
    assert body["time_slots"][0]["duration_min"] == 45


def test_schedule_task_onto_busy_machine_is_409_and_logged(client: TestClient):
    cnc = _machine(client)
    existing = _mill_block(client, cnc)
    task = _create_task(client, title="Drill Hole").json()

    resp = client.post(
        "/schedule",
        json={
            "task_id": task["id"],
            "machine_ids": [cnc],
            "scheduled_at": "2024-01-10T09:30:00Z",
            "duration_min": 30,
        },
    )

    assert resp.status_code == 409
    timeline = client.get(f"/tasks/{task['id']}/timeline").json()
    conflict_entries = [e for e in timeline if e["type"] == "conflict_detected"]
    assert len(conflict_entries) == 1
    assert conflict_entries[0]["payload"]["conflicting_task_id"] == existing["id"]


def test_schedule_task_over_its_own_slot_is_fine(client: TestClient):
    cnc = _machine(client)
    task = _mill_block(client, cnc)

    resp = client.post(
        "/schedule",
        json={"task_id": task["id"], "scheduled_at": "2024-01-10T09:15:00Z", "duration_min": 60},
    )

    assert resp.status_code == 200
    assert resp.json()["machine_ids"] == [cnc]


def test_schedule_requires_fields(client: TestClient):
    resp = client.post("/schedule", json={"task_id": "x"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "MISSING_FIELDS"


def test_move_slot_onto_sibling_slot_is_rejected(client: TestClient):
    cnc = _machine(client)
    task = _create_task(
        client,
        title="Two passes",
        machine_ids=[cnc],
        time_slots=[
            {"start_date_time": "2024-01-10T09:00:00Z", "duration_min": 60},
            {"start_date_time": "2024-01-10T12:00:00Z", "duration_min": 60},
        ],
    ).json()
    first_slot = task["time_slots"][0]["id"]

    resp = client.patch(
        f"/tasks/{task['id']}/time-slots/{first_slot}",
        json={"start_date_time": "2024-01-10T11:30:00Z", "duration_min": 60},
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "TIME_SLOT_OVERLAP"


def test_move_slot_within_its_own_window(client: TestClient):
    cnc = _machine(client)
    task = _mill_block(client, cnc)
    slot_id = task["time_slots"][0]["id"]

    resp = client.patch(
        f"/tasks/{task['id']}/time-slots/{slot_id}",
        json={"start_date_time": "2024-01-10T09:30:00Z", "duration_min": 60},
    )

    assert resp.status_code == 200
    slot = resp.json()["time_slots"][0]
    assert slot["id"] == slot_id
    assert slot["start_date_time"].startswith("2024-01-10T09:30:00")


def test_move_slot_onto_other_task_conflicts(client: TestClient):
    cnc = _machine(client)
    _mill_block(client, cnc)
    task = _create_task(
        client,
        title="Drill Hole",
        machine_ids=[cnc],
        time_slots=[{"start_date_time": "2024-01-10T14:00:00Z", "duration_min": 30}],
    ).json()
    slot_id = task["time_slots"][0]["id"]

    resp = client.patch(
        f"/tasks/{task['id']}/time-slots/{slot_id}",
        json={"start_date_time": "2024-01-10T09:45:00Z", "duration_min": 30},
    )

    assert resp.status_code == 409


def test_move_slot_to_end_at_sibling_start(client: TestClient):
    cnc = _machine(client)
    task = _create_task(
        client,
        title="Two passes",
        machine_ids=[cnc],
        time_slots=[
            {"start_date_time": "2024-01-10T09:00:00Z", "duration_min": 30},
            {"start_date_time": "2024-01-10T10:00:30Z", "duration_min": 30},
        ],
    ).json()
    first_slot = task["time_slots"][0]["id"]

    resp = client.patch(
        f"/tasks/{task['id']}/time-slots/{first_slot}",
        json={
            "start_date_time": "2024-01-10T09:00:00Z",
            "end_date_time": "2024-01-10T10:00:30Z",
        },
    )

    assert resp.status_code == 200


def test_move_unknown_slot_is_404(client: TestClient):
    task = _create_task(client, title="Empty").json()

    resp = client.patch(
        f"/tasks/{task['id']}/time-slots/nope",
        json={"start_date_time": "2024-01-10T09:45:00Z"},
    )

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "TIME_SLOT_NOT_FOUND"


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


def test_deleting_machine_unassigns_it(client: TestClient):
    cnc = _machine(client)
    task = _mill_block(client, cnc)

    assert client.delete(f"/machines/{cnc}").status_code == 204

    assert client.get(f"/machines/{cnc}").status_code == 404
    assert client.get(f"/tasks/{task['id']}").json()["machine_ids"] == []


def test_deleting_operator_unassigns_it(client: TestClient):
    cnc = _machine(client)
    alice = _operator(client)
    task = _create_task(
        client,
        title="Mill Block",
        machine_ids=[cnc],
        operator_ids=[alice],
        time_slots=[{"start_date_time": "2024-01-10T09:00:00Z"}],
    ).json()

    assert client.delete(f"/operators/{alice}").status_code == 204

    assert client.delete(f"/operators/{alice}").status_code == 404
    assert client.get(f"/tasks/{task['id']}").json()["operator_ids"] == []


def test_list_operators_sorted_by_name(client: TestClient):
    _operator(client, "Bob")
    _operator(client, "Alice")

    names = [o["name"] for o in client.get("/operators").json()]

    assert names == ["Alice", "Bob"]
