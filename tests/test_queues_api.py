"""
Tests for the queue HTTP API.

Coverage:
- Check-in and the operator actions end to end
- Error mapping (404 / 409 / 500 / 503 / 400)
- Customer read model and health check
"""

from uuid import uuid4

import pytest

from queuedesk.db.enums import AppointmentStatus, NotificationType
from queuedesk.db.models import Appointment
from queuedesk.services import queue_service
from queuedesk.services.queue_errors import (
    ConcurrentModificationError,
    ProjectionLagError,
    StorageUnavailableError,
)


def _check_in_body(appointment, queue_key) -> dict:
    return {
        "appointment_id": str(appointment.id),
        "organization_id": str(queue_key["org_id"]),
        "service_id": str(queue_key["service_id"]),
        "date": queue_key["queue_date"].isoformat(),
    }


@pytest.fixture
def api_check_in(client, make_appointment, queue_key):
    """Check in N appointments over HTTP; returns (queue_id, [appointments])."""

    async def _check_in(count: int):
        appointments = [make_appointment() for _ in range(count)]
        queue_id = None
        for appointment in appointments:
            response = await client.post("/queues/check-in", json=_check_in_body(appointment, queue_key))
            assert response.status_code == 201, response.text
            queue_id = response.json()["queue_id"]
        return queue_id, appointments

    return _check_in


# =============================================================================
# Happy paths
# =============================================================================

async def test_check_in_returns_queue_and_position(client, make_appointment, queue_key):
    appointment = make_appointment()

    response = await client.post("/queues/check-in", json=_check_in_body(appointment, queue_key))

    assert response.status_code == 201
    data = response.json()
    assert data["position"] == 1
    assert data["queue_id"]


async def test_get_queue_lists_tokens_with_positions(client, api_check_in):
    queue_id, (a, b) = await api_check_in(2)

    response = await client.get(f"/queues/{queue_id}")

    assert response.status_code == 200
    data = response.json()
    assert [t["appointment_id"] for t in data["active_tokens"]] == [str(a.id), str(b.id)]
    assert [t["position"] for t in data["active_tokens"]] == [1, 2]
    assert data["current_token"] is None
    assert data["is_active"] is True


async def test_call_next_complete_flow(client, api_check_in, sink):
    queue_id, (a, b) = await api_check_in(2)

    response = await client.post(f"/queues/{queue_id}/call-next")
    assert response.status_code == 200
    assert response.json()["appointment_id"] == str(a.id)
    assert response.json()["next_in_line"] == str(b.id)
    assert NotificationType.YOUR_TURN in sink.kinds()

    response = await client.post(f"/queues/{queue_id}/complete", json={"appointment_id": str(a.id)})
    assert response.status_code == 200
    data = response.json()
    assert data["total_served"] == 1
    assert data["completed_count"] == 1
    assert data["current_token"] is None


async def test_no_show_and_prioritize(client, api_check_in):
    queue_id, (a, b, c) = await api_check_in(3)
    await client.post(f"/queues/{queue_id}/call-next")

    response = await client.post(f"/queues/{queue_id}/no-show", json={"appointment_id": str(a.id)})
    assert response.status_code == 200
    assert [t["appointment_id"] for t in response.json()["active_tokens"]] == [
        str(b.id), str(c.id), str(a.id)
    ]

    response = await client.post(f"/queues/{queue_id}/prioritize", json={"appointment_id": str(c.id)})
    assert response.status_code == 200
    tokens = response.json()["active_tokens"]
    assert [t["appointment_id"] for t in tokens] == [str(c.id), str(b.id), str(a.id)]
    assert tokens[0]["prioritized"] is True


async def test_skip_records_actor_and_reason(client, api_check_in, reload):
    queue_id, (a, b) = await api_check_in(2)
    actor = uuid4()

    response = await client.post(
        f"/queues/{queue_id}/skip",
        json={"appointment_id": str(a.id), "reason": "Customer left"},
        headers={"X-Actor-Id": str(actor)},
    )

    assert response.status_code == 200
    assert [t["appointment_id"] for t in response.json()["active_tokens"]] == [str(b.id)]
    skipped = reload(Appointment, a.id)
    assert skipped.status == AppointmentStatus.CANCELLED.value
    assert skipped.cancelled_by == actor
    assert skipped.cancellation_reason == "Customer left"


async def test_queue_status(client, api_check_in):
    queue_id, _ = await api_check_in(2)

    response = await client.get(f"/queues/{queue_id}/status")

    assert response.status_code == 200
    data = response.json()
    assert data["active_count"] == 2
    assert data["estimated_wait_minutes"] == 30


async def test_list_queues_by_day(client, api_check_in, queue_key):
    queue_id, _ = await api_check_in(1)
    org_id = str(queue_key["org_id"])

    response = await client.get(
        "/queues", params={"organization_id": org_id, "date": queue_key["queue_date"].isoformat()}
    )
    assert response.status_code == 200
    assert [q["id"] for q in response.json()] == [queue_id]

    response = await client.get("/queues", params={"organization_id": org_id, "date": "2030-01-01"})
    assert response.json() == []


async def test_close_reopen_and_reconcile(client, api_check_in):
    queue_id, _ = await api_check_in(2)

    response = await client.post(f"/queues/{queue_id}/close")
    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert (await client.post(f"/queues/{queue_id}/call-next")).status_code == 404

    response = await client.post(f"/queues/{queue_id}/reopen")
    assert response.json()["is_active"] is True

    response = await client.post(f"/queues/{queue_id}/reconcile")
    assert response.status_code == 200
    assert response.json() == {"queue_id": queue_id, "updated": 2}


async def test_appointment_queue_read_model(client, api_check_in):
    _, (a, b) = await api_check_in(2)

    response = await client.get(f"/appointments/{b.id}/queue")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == AppointmentStatus.CHECKED_IN.value
    assert data["queue_position"] == 2
    assert data["estimated_wait_minutes"] == 20
    assert data["token_number"] == b.token_number


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# =============================================================================
# Error mapping
# =============================================================================

async def test_unknown_queue_is_404(client):
    response = await client.get(f"/queues/{uuid4()}")
    assert response.status_code == 404


async def test_unknown_appointment_is_404(client):
    assert (await client.get(f"/appointments/{uuid4()}/queue")).status_code == 404


async def test_duplicate_check_in_is_409(client, api_check_in, queue_key):
    _, (a,) = await api_check_in(1)

    response = await client.post("/queues/check-in", json=_check_in_body(a, queue_key))

    assert response.status_code == 409


async def test_call_next_on_empty_queue_is_409(client, api_check_in):
    queue_id, (a,) = await api_check_in(1)
    await client.post(f"/queues/{queue_id}/skip", json={"appointment_id": str(a.id)})

    response = await client.post(f"/queues/{queue_id}/call-next")

    assert response.status_code == 409


async def test_complete_wrong_token_is_409(client, api_check_in):
    queue_id, (_, b) = await api_check_in(2)
    await client.post(f"/queues/{queue_id}/call-next")

    response = await client.post(f"/queues/{queue_id}/complete", json={"appointment_id": str(b.id)})

    assert response.status_code == 409


async def test_write_conflict_is_409(client, api_check_in, monkeypatch):
    queue_id, _ = await api_check_in(1)

    def conflicted(*args, **kwargs):
        raise ConcurrentModificationError("Queue was modified concurrently")

    monkeypatch.setattr(queue_service, "call_next", conflicted)
    response = await client.post(f"/queues/{queue_id}/call-next")

    assert response.status_code == 409
    assert response.json()["detail"] == "Queue is busy, please retry"


async def test_storage_outage_is_503(client, api_check_in, monkeypatch):
    queue_id, _ = await api_check_in(1)

    def unavailable(*args, **kwargs):
        raise StorageUnavailableError("Storage unavailable during replace queue")

    monkeypatch.setattr(queue_service, "call_next", unavailable)
    response = await client.post(f"/queues/{queue_id}/call-next")

    assert response.status_code == 503
    assert "replace queue" not in response.json()["detail"]


async def test_projection_lag_is_500_and_not_retryable(client, api_check_in, monkeypatch):
    queue_id, (a,) = await api_check_in(1)

    def lagging(*args, **kwargs):
        raise ProjectionLagError("Queue updated but appointments are behind", queue_id=queue_id)

    monkeypatch.setattr(queue_service, "mark_no_show", lagging)
    response = await client.post(f"/queues/{queue_id}/no-show", json={"appointment_id": str(a.id)})

    assert response.status_code == 500
    assert "reconcile" in response.json()["detail"]


async def test_check_in_for_another_service_is_400(client, make_appointment, queue_key):
    elsewhere = make_appointment(service_id=uuid4())

    response = await client.post("/queues/check-in", json=_check_in_body(elsewhere, queue_key))

    assert response.status_code == 400


async def test_invalid_actor_header_is_400(client, api_check_in):
    queue_id, (a,) = await api_check_in(1)

    response = await client.post(
        f"/queues/{queue_id}/prioritize",
        json={"appointment_id": str(a.id)},
        headers={"X-Actor-Id": "not-a-uuid"},
    )

    assert response.status_code == 400


async def test_skip_reason_too_long_is_422(client, api_check_in):
    queue_id, (a,) = await api_check_in(1)

    response = await client.post(
        f"/queues/{queue_id}/skip",
        json={"appointment_id": str(a.id), "reason": "x" * 501},
    )

    assert response.status_code == 422
