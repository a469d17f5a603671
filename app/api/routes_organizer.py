"""
Organizer console and door scanner API routes
"""

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.api.deps import get_checkin_service, get_lifecycle
from app.core.config import settings
from app.core.db import get_db
from app.core.errors import EventNotFoundError, NotAuthorizedError
from app.schemas.event import EventPolicy
from app.schemas.reservation import Identity, ReservationResponse, ScanRequest
from app.schemas.verification import OPERATOR_MESSAGES, VerificationResult
from app.services.checkin_service import CheckInService
from app.services.repositories import EventRepo
from app.services.reservation_service import ReservationLifecycle
from app.utils.responses import rate_limit_error, success_response
from app.utils.security import get_client_ip, get_current_identity, rate_limit_check

router = APIRouter()

def _require_organizer(event_id: str, identity: Identity, db: Session) -> EventPolicy:
    event = EventRepo.get_policy(event_id, db)
    if not event:
        raise EventNotFoundError(event_id)
    if event.organizer_id != identity.user_id:
        raise NotAuthorizedError("manage reservations of")
    return event

def _verification_data(result: VerificationResult) -> dict:
    reservation = getattr(result, "reservation", None)
    return {
        "outcome": result.outcome,
        "reservation": ReservationResponse.from_reservation(reservation) if reservation else None,
        "prior_check_in_timestamp": getattr(result, "prior_check_in_timestamp", None),
        "reason": getattr(result, "reason", None),
    }

@router.get("/events/{event_id}/reservations")
async def list_reservations(
    event_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
):
    """Open reservations for an event, latest check-ins first"""
    _require_organizer(event_id, identity, db)
    reservations = await run_in_threadpool(lifecycle.list_reservations, event_id)

    return success_response(
        message="Reservations retrieved successfully",
        data={
            "reservations": [ReservationResponse.from_reservation(r) for r in reservations],
            "total": len(reservations),
        }
    )

@router.get("/events/{event_id}/summary")
async def attendance_summary(
    event_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
):
    """Pending / confirmed / checked-in counts for the console header"""
    _require_organizer(event_id, identity, db)
    summary = await run_in_threadpool(lifecycle.attendance_summary, event_id)
    return success_response(message="Attendance summary retrieved", data=summary)

@router.post("/reservations/{reservation_id}/approve")
async def approve_reservation(
    reservation_id: str,
    identity: Identity = Depends(get_current_identity),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
    checkin_service: CheckInService = Depends(get_checkin_service),
):
    """Approve a pending request and mint its ticket"""
    reservation = await run_in_threadpool(lifecycle.approve, reservation_id, identity)
    await checkin_service.broadcast_reservation_update(reservation, action="approved")
    return success_response(message="Reservation approved", data=ReservationResponse.from_reservation(reservation))

@router.post("/reservations/{reservation_id}/reject")
async def reject_reservation(
    reservation_id: str,
    identity: Identity = Depends(get_current_identity),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
    checkin_service: CheckInService = Depends(get_checkin_service),
):
    """Reject a pending request"""
    reservation = await run_in_threadpool(lifecycle.reject, reservation_id, identity)
    await checkin_service.broadcast_reservation_update(reservation, action="rejected")
    return success_response(message="Reservation rejected", data=ReservationResponse.from_reservation(reservation))

@router.post("/reservations/{reservation_id}/quick-approve")
async def quick_approve(
    reservation_id: str,
    identity: Identity = Depends(get_current_identity),
    checkin_service: CheckInService = Depends(get_checkin_service),
):
    """Approve a pending reservation at the door and admit its holder"""
    reservation = await checkin_service.quick_approve(reservation_id, identity)
    return success_response(
        message="Approved & checked in successfully!",
        data=ReservationResponse.from_reservation(reservation)
    )

@router.post("/scan")
async def scan_ticket(
    request: Request,
    scan: ScanRequest,
    identity: Identity = Depends(get_current_identity),
    checkin_service: CheckInService = Depends(get_checkin_service),
):
    """Verify a scanned QR payload; every outcome is a 200 with data.outcome set"""
    if not rate_limit_check(f"scan:{get_client_ip(request)}", settings.SCAN_RATE_LIMIT_PER_MINUTE):
        return rate_limit_error()

    result = await checkin_service.scan(scan.payload, identity)

    return success_response(
        message=OPERATOR_MESSAGES[result.outcome],
        data=_verification_data(result)
    )
