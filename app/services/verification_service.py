"""
Door-side verification of scanned ticket payloads
"""

import hmac
import logging
from typing import Union

from app.core.errors import (
    AlreadyCheckedInError,
    InvalidTransitionError,
    NotAuthorizedError,
    PayloadDecodeError,
    ReservationNotFoundError,
)
from app.schemas.reservation import Identity, Reservation, ReservationState
from app.schemas.verification import (
    Admitted,
    AlreadyUsed,
    ApprovalPending,
    Malformed,
    NotFound,
    TokenMismatch,
    VerificationResult,
)
from app.services.repositories import ReservationStore
from app.services.reservation_service import ReservationLifecycle
from app.services.token_service import TokenIssuer

logger = logging.getLogger(__name__)


def _tokens_match(presented: str, stored: str) -> bool:
    return hmac.compare_digest(presented.encode("utf-8"), stored.encode("utf-8"))


class EntryVerifier:
    """Turns a scanned payload into exactly one admit-or-reject decision.

    Scans are untrusted and replayable. The only state change a scan can
    cause is the Confirmed -> CheckedIn transition, and that goes through
    the lifecycle's compare-and-update, so concurrent scanners of one code
    produce a single ``Admitted``.
    """

    def __init__(self, store: ReservationStore, lifecycle: ReservationLifecycle, token_issuer: TokenIssuer = TokenIssuer()):
        self.store = store
        self.lifecycle = lifecycle
        self.token_issuer = token_issuer

    def verify(self, raw_payload: Union[str, bytes], operator: Identity) -> VerificationResult:
        try:
            payload = self.token_issuer.decode(raw_payload)
        except PayloadDecodeError as exc:
            logger.warning(f"Rejected malformed scan: {exc.reason}")
            return Malformed(reason=exc.reason)

        try:
            reservation = self.store.get_by_event_attendee(payload.event_id, payload.attendee_id)
        except ReservationNotFoundError:
            reservation = None
        if reservation is None or reservation.state.is_closed:
            logger.info(f"No open reservation for event {payload.event_id} attendee {payload.attendee_id}")
            return NotFound()

        if reservation.organizer_id != operator.user_id:
            raise NotAuthorizedError("check in")

        # pending reservations hold no token, so there is nothing to compare
        if reservation.state == ReservationState.PENDING:
            logger.info(f"Reservation {reservation.id} scanned while pending approval")
            return ApprovalPending(reservation=reservation)

        if reservation.ticket_token is None or not _tokens_match(payload.token, reservation.ticket_token):
            logger.warning(f"Token mismatch for reservation {reservation.id}")
            return TokenMismatch()

        if reservation.state == ReservationState.CHECKED_IN:
            return self._already_used(reservation)

        try:
            admitted = self.lifecycle.check_in(reservation.id, operator)
        except AlreadyCheckedInError:
            # another scanner won the race
            return self._already_used(self.store.get_by_id(reservation.id))
        except (InvalidTransitionError, ReservationNotFoundError):
            logger.info(f"Reservation {reservation.id} closed while being scanned")
            return NotFound()

        logger.info(f"Admitted reservation {admitted.id} for event {admitted.event_id}")
        return Admitted(reservation=admitted)

    @staticmethod
    def _already_used(reservation: Reservation) -> AlreadyUsed:
        logger.info(f"Reservation {reservation.id} already checked in at {reservation.check_in_timestamp}")
        return AlreadyUsed(
            reservation=reservation,
            prior_check_in_timestamp=reservation.check_in_timestamp,
        )
