"""
Tests for the HTTP surface: attendee reservations and the door scanner
"""

import asyncio
import json
from decimal import Decimal

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from main import app
from app.api.deps import get_store
from app.core.db import get_db
from app.models import Event
from app.services.checkin_service import CheckInService
from app.services.token_service import TokenIssuer
from app.utils import security

ATTENDEE = {"X-User-Id": "user-1", "X-User-Name": "Ada Lovelace"}
ORGANIZER = {"X-User-Id": "org-1", "X-User-Name": "Host"}

@pytest.fixture
def client(db_session, session_factory, store):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_store] = lambda: store
    security.rate_limiter.clear()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

@pytest.fixture
def events(db_session):
    db_session.add_all([
        Event(id="evt-free", title="Open Meetup", organizer_id="org-1"),
        Event(id="evt-approval", title="Invite Only", organizer_id="org-1", requires_approval=True),
        Event(id="evt-paid", title="Workshop", organizer_id="org-1", price=Decimal("499.00"), currency="INR"),
    ])
    db_session.commit()

def reserve(client, event_id, headers=ATTENDEE, **extra):
    return client.post("/reservations", json={"event_id": event_id, **extra}, headers=headers)

def scan(client, reservation, headers=ORGANIZER, token=None):
    payload = TokenIssuer.encode(
        reservation["event_id"],
        reservation["attendee_id"],
        reservation["ticket_token"] if token is None else token,
    )
    return client.post("/organizer/scan", json={"payload": payload}, headers=headers)

def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}

def test_reserve_and_scan(client, events):
    response = reserve(client, "evt-free")
    assert response.status_code == 201
    reservation = response.json()["data"]
    assert reservation["state"] == "confirmed"
    assert reservation["ticket_token"]

    first = scan(client, reservation)
    assert first.status_code == 200
    assert first.json()["data"]["outcome"] == "admitted"
    assert first.json()["data"]["reservation"]["ticket_token"] is None

    second = scan(client, reservation)
    assert second.json()["data"]["outcome"] == "already_used"
    assert second.json()["data"]["prior_check_in_timestamp"]

def test_duplicate_reservation_conflicts(client, events):
    reserve(client, "evt-free")

    response = reserve(client, "evt-free")

    assert response.status_code == 409
    assert response.json()["error_code"] == "CONFLICT"

def test_unknown_event(client, events):
    response = reserve(client, "evt-missing")

    assert response.status_code == 404
    assert response.json()["error_code"] == "EVENT_NOT_FOUND"

def test_identity_required(client, events):
    response = client.post("/reservations", json={"event_id": "evt-free"})

    assert response.status_code == 401

def test_approval_flow(client, events):
    pending = reserve(client, "evt-approval").json()["data"]
    assert pending["state"] == "pending"
    assert pending["ticket_token"] is None

    assert scan(client, pending, token="").json()["data"]["outcome"] == "approval_pending"

    approved = client.post(f"/organizer/reservations/{pending['id']}/approve", headers=ORGANIZER)
    assert approved.status_code == 200
    assert approved.json()["data"]["state"] == "confirmed"

    mine = client.get(f"/reservations/{pending['id']}", headers=ATTENDEE).json()["data"]
    assert mine["ticket_token"]
    assert scan(client, mine).json()["data"]["outcome"] == "admitted"

def test_reject_twice_is_invalid(client, events):
    pending = reserve(client, "evt-approval").json()["data"]

    assert client.post(f"/organizer/reservations/{pending['id']}/reject", headers=ORGANIZER).status_code == 200
    response = client.post(f"/organizer/reservations/{pending['id']}/reject", headers=ORGANIZER)

    assert response.status_code == 409
    assert response.json()["error_code"] == "INVALID_TRANSITION"

def test_quick_approve_at_the_door(client, events):
    pending = reserve(client, "evt-approval").json()["data"]

    response = client.post(f"/organizer/reservations/{pending['id']}/quick-approve", headers=ORGANIZER)

    assert response.status_code == 200
    assert response.json()["data"]["state"] == "checked_in"

def test_paid_event_and_declined_card(client, events):
    declined = reserve(client, "evt-paid", payment_source="tok_declined")
    assert declined.status_code == 402
    assert declined.json()["error_code"] == "PAYMENT_FAILED"

    paid = reserve(client, "evt-paid", payment_source="tok_visa")
    assert paid.status_code == 201
    assert paid.json()["data"]["state"] == "confirmed"
    assert paid.json()["data"]["payment_reference"]

def test_token_mismatch_and_malformed_scans(client, events):
    reservation = reserve(client, "evt-free").json()["data"]

    mismatch = scan(client, reservation, token=TokenIssuer.issue())
    assert mismatch.json()["data"]["outcome"] == "token_mismatch"

    malformed = client.post("/organizer/scan", json={"payload": "not a ticket"}, headers=ORGANIZER)
    assert malformed.status_code == 200
    assert malformed.json()["data"]["outcome"] == "malformed"
    assert malformed.json()["message"] == "Invalid code, try again."

def test_only_organizer_sees_console(client, events):
    reserve(client, "evt-approval")
    reserve(client, "evt-approval", headers={"X-User-Id": "user-2"})

    forbidden = client.get("/organizer/events/evt-approval/summary", headers=ATTENDEE)
    assert forbidden.status_code == 403

    summary = client.get("/organizer/events/evt-approval/summary", headers=ORGANIZER).json()["data"]
    assert summary["total"] == 2
    assert summary["pending"] == 2

    listing = client.get("/organizer/events/evt-approval/reservations", headers=ORGANIZER).json()["data"]
    assert listing["total"] == 2

def test_cancel_and_ticket_qr(client, events):
    reservation = reserve(client, "evt-free").json()["data"]

    qr = client.get(f"/reservations/{reservation['id']}/qr.png", headers=ATTENDEE)
    assert qr.status_code == 200
    assert qr.headers["content-type"] == "image/png"
    assert client.get(f"/reservations/{reservation['id']}/qr.png", headers=ORGANIZER).status_code == 403

    cancelled = client.delete(f"/reservations/{reservation['id']}", headers=ATTENDEE)
    assert cancelled.status_code == 200
    assert cancelled.json()["data"]["state"] == "cancelled"
    assert scan(client, reservation).json()["data"]["outcome"] == "not_found"

def test_attendee_finds_own_reservations(client, events):
    confirmed = reserve(client, "evt-free").json()["data"]
    pending = reserve(client, "evt-approval").json()["data"]
    reserve(client, "evt-free", headers={"X-User-Id": "user-2"})

    listing = client.get("/reservations", headers=ATTENDEE).json()["data"]
    assert listing["total"] == 2
    assert {r["id"] for r in listing["reservations"]} == {confirmed["id"], pending["id"]}

    for_event = client.get("/reservations/events/evt-free", headers=ATTENDEE)
    assert for_event.status_code == 200
    assert for_event.json()["data"]["id"] == confirmed["id"]
    assert for_event.json()["data"]["ticket_token"] == confirmed["ticket_token"]

    missing = client.get("/reservations/events/evt-paid", headers=ATTENDEE)
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "RESERVATION_NOT_FOUND"

@pytest.mark.parametrize("event_id,headers,code", [
    ("evt-free", {}, 4401),
    ("evt-free", ATTENDEE, 4403),
    ("evt-missing", ORGANIZER, 4004),
])
def test_live_updates_refused(client, events, event_id, headers, code):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/ws/events/{event_id}", headers=headers) as websocket:
            websocket.receive_json()

    assert exc_info.value.code == code

def test_live_updates_for_event_organizer(client, events):
    with client.websocket_connect("/ws/events/evt-free", headers=ORGANIZER) as websocket:
        assert websocket.receive_json()["type"] == "connection"

        websocket.send_json({"type": "ping", "timestamp": 1})
        assert websocket.receive_json() == {"type": "pong", "timestamp": 1}

class RecordingManager:
    def __init__(self):
        self.messages = []

    async def broadcast_to_event(self, event_id, message):
        self.messages.append((event_id, message))

def test_reservation_changes_broadcast_one_update_type(lifecycle, verifier, free_event, attendee):
    manager = RecordingManager()
    service = CheckInService(manager, lifecycle, verifier)
    reservation = lifecycle.request_reservation(free_event, attendee)

    asyncio.run(service.broadcast_reservation_update(reservation, action="created"))

    event_id, message = manager.messages[0]
    assert event_id == free_event.event_id
    assert message["type"] == "reservation_update"
    assert message["action"] == "created"
    assert message["reservation"]["id"] == reservation.id
    assert reservation.ticket_token not in json.dumps(message)
