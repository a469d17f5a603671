"""
Attendee-facing API routes
"""

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.api.deps import get_checkin_service, get_lifecycle
from app.core.db import get_db
from app.core.errors import EventNotFoundError, NotAuthorizedError
from app.schemas.reservation import Identity, ReservationCreate, ReservationResponse, ReservationState
from app.services.checkin_service import CheckInService
from app.services.qr_service import QRService
from app.services.repositories import EventRepo
from app.services.reservation_service import ReservationLifecycle
from app.utils.responses import rate_limit_error, success_response
from app.utils.security import get_current_identity, rate_limit_check

router = APIRouter()

@router.post("")
async def request_reservation(
    request: Request,
    reservation_data: ReservationCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
    checkin_service: CheckInService = Depends(get_checkin_service),
):
    """Reserve a spot, paying first for priced events"""
    if not rate_limit_check(f"reserve:{identity.user_id}"):
        return rate_limit_error()

    event = EventRepo.get_policy(reservation_data.event_id, db)
    if not event:
        raise EventNotFoundError(reservation_data.event_id)

    reservation = await run_in_threadpool(
        lifecycle.request_reservation, event, identity, reservation_data.payment_source
    )
    await checkin_service.broadcast_reservation_update(reservation, action="created")

    if reservation.state == ReservationState.PENDING:
        message = f"Your request to join {event.title or 'the event'} has been sent to the host."
    else:
        message = f"You're in! Your spot at {event.title or 'the event'} is confirmed."

    return success_response(
        message=message,
        data=ReservationResponse.from_reservation(reservation, include_token=True),
        status_code=201
    )

@router.get("")
async def list_my_reservations(
    identity: Identity = Depends(get_current_identity),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
):
    """The caller's reservations, most recent first"""
    reservations = await run_in_threadpool(lifecycle.list_for_attendee, identity)

    return success_response(
        message="Reservations retrieved successfully",
        data={
            "reservations": [ReservationResponse.from_reservation(r, include_token=True) for r in reservations],
            "total": len(reservations),
        }
    )

@router.get("/events/{event_id}")
async def get_my_reservation_for_event(
    event_id: str,
    identity: Identity = Depends(get_current_identity),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
):
    """The caller's reservation for one event"""
    reservation = await run_in_threadpool(lifecycle.get_for_event, event_id, identity)
    return success_response(
        message="Reservation retrieved",
        data=ReservationResponse.from_reservation(reservation, include_token=True)
    )

@router.get("/{reservation_id}")
async def get_reservation(
    reservation_id: str,
    identity: Identity = Depends(get_current_identity),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
):
    """Reservation details; the ticket token is only returned to its holder"""
    reservation = await run_in_threadpool(lifecycle.get_reservation, reservation_id, identity)
    return success_response(
        message="Reservation retrieved",
        data=ReservationResponse.from_reservation(
            reservation, include_token=reservation.attendee_id == identity.user_id
        )
    )

@router.get("/{reservation_id}/qr.png")
async def get_ticket_qr(
    reservation_id: str,
    identity: Identity = Depends(get_current_identity),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
):
    """QR image the holder presents at the door"""
    reservation = await run_in_threadpool(lifecycle.get_reservation, reservation_id, identity)
    if reservation.attendee_id != identity.user_id:
        raise NotAuthorizedError("view the ticket of")

    qr_bytes = QRService.generate_ticket_qr(reservation)

    return Response(
        content=qr_bytes,
        media_type="image/png",
        headers={"Content-Disposition": f"inline; filename=ticket_{reservation.id}.png"}
    )

@router.delete("/{reservation_id}")
async def cancel_reservation(
    reservation_id: str,
    identity: Identity = Depends(get_current_identity),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
    checkin_service: CheckInService = Depends(get_checkin_service),
):
    """Give up a confirmed spot (refunds are handled by the payment provider)"""
    reservation = await run_in_threadpool(lifecycle.cancel, reservation_id, identity)
    await checkin_service.broadcast_reservation_update(reservation, action="cancelled")

    return success_response(
        message="Reservation cancelled",
        data=ReservationResponse.from_reservation(reservation)
    )
