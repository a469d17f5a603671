"""
Tests for door-side scan verification
"""

import json
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from app.core.errors import NotAuthorizedError
from app.schemas.reservation import Identity, ReservationState
from app.schemas.verification import Admitted, AlreadyUsed, ApprovalPending, Malformed, NotFound, TokenMismatch
from app.services.token_service import TokenIssuer

def payload_for(reservation, token=None):
    return TokenIssuer.encode(
        reservation.event_id,
        reservation.attendee_id,
        reservation.ticket_token if token is None else token,
    )

def test_free_event_admits_once(lifecycle, verifier, free_event, attendee, organizer):
    reservation = lifecycle.request_reservation(free_event, attendee)
    assert reservation.state == ReservationState.CONFIRMED

    first = verifier.verify(payload_for(reservation), organizer)
    second = verifier.verify(payload_for(reservation), organizer)

    assert isinstance(first, Admitted)
    assert first.reservation.state == ReservationState.CHECKED_IN
    assert isinstance(second, AlreadyUsed)
    assert second.prior_check_in_timestamp == first.reservation.check_in_timestamp

def test_approval_flow(lifecycle, verifier, approval_event, attendee, organizer):
    pending = lifecycle.request_reservation(approval_event, attendee)
    assert pending.ticket_token is None

    result = verifier.verify(payload_for(pending), organizer)
    assert isinstance(result, ApprovalPending)
    assert result.reservation.id == pending.id

    approved = lifecycle.approve(pending.id, organizer)
    assert approved.ticket_token

    assert isinstance(verifier.verify(payload_for(approved), organizer), Admitted)

@pytest.mark.parametrize("token", ["", "guessed-token", "00000000-0000-4000-8000-000000000000"])
def test_pending_is_never_admitted(lifecycle, verifier, store, approval_event, attendee, organizer, token):
    pending = lifecycle.request_reservation(approval_event, attendee)

    result = verifier.verify(payload_for(pending, token=token), organizer)

    assert isinstance(result, ApprovalPending)
    assert store.get_by_id(pending.id) == pending

def test_user_id_payload_shape_is_malformed(lifecycle, verifier, store, approval_event, attendee, organizer):
    pending = lifecycle.request_reservation(approval_event, attendee)
    raw = json.dumps({"eventId": pending.event_id, "userId": pending.attendee_id, "token": ""})

    result = verifier.verify(raw, organizer)

    assert isinstance(result, Malformed)
    assert store.get_by_id(pending.id) == pending

def test_token_mismatch_leaves_state_untouched(lifecycle, verifier, store, free_event, attendee, organizer):
    reservation = lifecycle.request_reservation(free_event, attendee)

    result = verifier.verify(payload_for(reservation, token=TokenIssuer.issue()), organizer)

    assert isinstance(result, TokenMismatch)
    assert store.get_by_id(reservation.id) == reservation

def test_empty_token_on_confirmed_is_mismatch(lifecycle, verifier, free_event, attendee, organizer):
    reservation = lifecycle.request_reservation(free_event, attendee)

    assert isinstance(verifier.verify(payload_for(reservation, token=""), organizer), TokenMismatch)

def test_wrong_token_on_checked_in_is_mismatch(lifecycle, verifier, free_event, attendee, organizer):
    reservation = lifecycle.request_reservation(free_event, attendee)
    verifier.verify(payload_for(reservation), organizer)

    assert isinstance(verifier.verify(payload_for(reservation, token="forged"), organizer), TokenMismatch)

def test_paid_event_ticket_admits(lifecycle, verifier, paid_approval_event, attendee, organizer):
    reservation = lifecycle.request_reservation(paid_approval_event, attendee)

    assert isinstance(verifier.verify(payload_for(reservation), organizer), Admitted)

@pytest.mark.parametrize("raw", ["", "hello", "{}", '{"eventId": "evt-free"}', b"\x80\x81"])
def test_malformed_payloads(verifier, organizer, raw):
    assert isinstance(verifier.verify(raw, organizer), Malformed)

def test_unknown_reservation(verifier, organizer):
    raw = TokenIssuer.encode("evt-free", "nobody", TokenIssuer.issue())

    assert isinstance(verifier.verify(raw, organizer), NotFound)

def test_cancelled_reservation_is_not_found(lifecycle, verifier, free_event, attendee, organizer):
    reservation = lifecycle.request_reservation(free_event, attendee)
    lifecycle.cancel(reservation.id, attendee)

    assert isinstance(verifier.verify(payload_for(reservation), organizer), NotFound)

def test_scanner_must_be_event_organizer(lifecycle, verifier, store, free_event, attendee):
    reservation = lifecycle.request_reservation(free_event, attendee)

    with pytest.raises(NotAuthorizedError):
        verifier.verify(payload_for(reservation), Identity(user_id="org-2"))
    assert store.get_by_id(reservation.id).state == ReservationState.CONFIRMED

def test_concurrent_scans_admit_exactly_once(lifecycle, verifier, store, free_event, attendee, organizer):
    reservation = lifecycle.request_reservation(free_event, attendee)
    raw = payload_for(reservation)
    scanners = 8
    barrier = threading.Barrier(scanners)

    def scan():
        barrier.wait()
        return verifier.verify(raw, organizer)

    with ThreadPoolExecutor(max_workers=scanners) as pool:
        results = list(pool.map(lambda _: scan(), range(scanners)))

    admitted = [r for r in results if isinstance(r, Admitted)]
    already_used = [r for r in results if isinstance(r, AlreadyUsed)]
    assert len(admitted) == 1
    assert len(already_used) == scanners - 1

    stored = store.get_by_id(reservation.id)
    assert stored.state == ReservationState.CHECKED_IN
    assert stored.version == 1
    for r in already_used:
        assert r.prior_check_in_timestamp == stored.check_in_timestamp

def test_scan_racing_quick_approve(lifecycle, verifier, approval_event, attendee, organizer):
    pending = lifecycle.request_reservation(approval_event, attendee)
    admitted = lifecycle.quick_approve(pending.id, organizer)

    result = verifier.verify(payload_for(admitted), organizer)

    assert isinstance(result, AlreadyUsed)
    assert result.prior_check_in_timestamp == admitted.check_in_timestamp
