"""
Door check-in service with real-time broadcasting
"""

from datetime import datetime
from typing import Dict, Optional, Union

from fastapi.concurrency import run_in_threadpool

from app.api.ws import WebSocketManager
from app.schemas.reservation import Identity, Reservation
from app.schemas.verification import VerificationResult
from app.services.reservation_service import ReservationLifecycle
from app.services.verification_service import EntryVerifier

class CheckInService:
    """Runs door-side operations and broadcasts their results to the event room"""

    def __init__(
        self,
        websocket_manager: WebSocketManager,
        lifecycle: ReservationLifecycle,
        verifier: EntryVerifier,
    ):
        self.websocket_manager = websocket_manager
        self.lifecycle = lifecycle
        self.verifier = verifier

    async def scan(self, raw_payload: Union[str, bytes], operator: Identity) -> VerificationResult:
        """Verify a scanned payload and broadcast the outcome"""
        # the core is synchronous; keep the event loop free while the store works
        result = await run_in_threadpool(self.verifier.verify, raw_payload, operator)

        reservation: Optional[Reservation] = getattr(result, "reservation", None)
        if reservation is not None:
            await self.websocket_manager.broadcast_to_event(reservation.event_id, {
                "type": "checkin",
                "outcome": result.outcome,
                "reservation": self._reservation_message(reservation),
                "timestamp": datetime.utcnow().isoformat(),
            })

        return result

    async def quick_approve(self, reservation_id: str, operator: Identity) -> Reservation:
        """Approve a pending reservation and admit its holder in one step"""
        reservation = await run_in_threadpool(self.lifecycle.quick_approve, reservation_id, operator)

        await self.websocket_manager.broadcast_to_event(reservation.event_id, {
            "type": "checkin",
            "outcome": "admitted",
            "reservation": self._reservation_message(reservation),
            "timestamp": datetime.utcnow().isoformat(),
        })

        return reservation

    async def broadcast_reservation_update(
        self,
        reservation: Reservation,
        action: str,
    ):
        """Broadcast a reservation state change to organizer consoles"""

        message = {
            "type": "reservation_update",
            "action": action,
            "reservation": self._reservation_message(reservation),
            "timestamp": datetime.utcnow().isoformat(),
        }

        await self.websocket_manager.broadcast_to_event(reservation.event_id, message)

    @staticmethod
    def _reservation_message(reservation: Reservation) -> Dict:
        # tokens never leave through the broadcast channel
        return {
            "id": reservation.id,
            "attendee_id": reservation.attendee_id,
            "attendee_name": reservation.attendee_name,
            "state": reservation.state.value,
            "check_in_timestamp": reservation.check_in_timestamp.isoformat() if reservation.check_in_timestamp else None,
        }
