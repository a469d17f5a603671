"""
Service wiring for the API layer
"""

from fastapi import Depends

from app.api.ws import websocket_manager
from app.services.checkin_service import CheckInService
from app.services.payment_service import PaymentGateway, get_payment_gateway
from app.services.repositories import ReservationStore, get_reservation_store
from app.services.reservation_service import ReservationLifecycle
from app.services.verification_service import EntryVerifier

def get_store() -> ReservationStore:
    return get_reservation_store()

def get_lifecycle(
    store: ReservationStore = Depends(get_store),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
) -> ReservationLifecycle:
    return ReservationLifecycle(store, payment_gateway)

def get_checkin_service(
    store: ReservationStore = Depends(get_store),
    lifecycle: ReservationLifecycle = Depends(get_lifecycle),
) -> CheckInService:
    return CheckInService(websocket_manager, lifecycle, EntryVerifier(store, lifecycle))
