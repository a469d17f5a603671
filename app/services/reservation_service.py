"""
Reservation lifecycle: creation, approval, rejection, cancellation and check-in
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from app.core.config import settings
from app.core.errors import (
    AlreadyCheckedInError,
    ApprovalRequiredError,
    ConflictError,
    DomainError,
    InvalidTransitionError,
    NotAuthorizedError,
    ReservationNotFoundError,
    StateMismatchError,
)
from app.schemas.event import EventPolicy
from app.schemas.reservation import AttendanceSummary, Identity, Reservation, ReservationState
from app.services.payment_service import PaymentGateway, Receipt
from app.services.repositories import ReservationStore
from app.services.token_service import TokenIssuer

logger = logging.getLogger(__name__)


def initial_state_for(event: EventPolicy, paid: bool) -> ReservationState:
    """State of a new reservation.

    A successful payment satisfies the approval gate as well; free events
    apply the approval gate as configured.
    """
    if paid:
        return ReservationState.CONFIRMED
    if event.requires_approval:
        return ReservationState.PENDING
    return ReservationState.CONFIRMED


def _check_in_error(current: Reservation) -> DomainError:
    """Error describing why a check-in cannot happen from the current state"""
    if current.state == ReservationState.CHECKED_IN:
        return AlreadyCheckedInError(current)
    if current.state == ReservationState.PENDING:
        return ApprovalRequiredError(current)
    return InvalidTransitionError(current, "check in")


class ReservationLifecycle:
    """State machine for a single attendee's reservation.

    Every transition is one ``compare_and_update`` against the store keyed on
    the state the transition starts from. A transition that loses a race is
    never retried; the caller gets the error implied by the state that won.
    """

    def __init__(
        self,
        store: ReservationStore,
        payment_gateway: PaymentGateway,
        token_issuer: TokenIssuer = TokenIssuer(),
    ):
        self.store = store
        self.payment_gateway = payment_gateway
        self.token_issuer = token_issuer

    # -------- creation --------

    def request_reservation(
        self,
        event: EventPolicy,
        attendee: Identity,
        payment_source: Optional[str] = None,
    ) -> Reservation:
        """Reserve a spot for ``attendee``, charging first when the event is priced.

        If the charge fails nothing is created and the attendee may retry.
        """
        try:
            existing = self.store.get_by_event_attendee(event.event_id, attendee.user_id)
        except ReservationNotFoundError:
            existing = None
        if existing is not None and not existing.state.is_closed:
            raise ConflictError(event.event_id, attendee.user_id)

        receipt: Optional[Receipt] = None
        if event.is_paid:
            currency = event.currency or settings.DEFAULT_CURRENCY
            receipt = self.payment_gateway.charge(event.price, currency, source=payment_source)

        state = initial_state_for(event, paid=receipt is not None)
        reservation = Reservation(
            id=str(uuid.uuid4()),
            event_id=event.event_id,
            attendee_id=attendee.user_id,
            attendee_name=attendee.display_name,
            organizer_id=event.organizer_id,
            state=state,
            requires_approval=event.requires_approval,
            ticket_token=self.token_issuer.issue() if state == ReservationState.CONFIRMED else None,
            payment_reference=receipt.reference if receipt else None,
            amount_paid=receipt.amount if receipt else None,
            currency=receipt.currency if receipt else None,
            created_at=datetime.utcnow(),
        )

        try:
            self.store.create(reservation)
        except ConflictError:
            if receipt is not None:
                logger.warning(
                    f"Payment {receipt.reference} captured but attendee {attendee.user_id} "
                    f"already holds a reservation for event {event.event_id}"
                )
            raise

        logger.info(f"Reservation {reservation.id} created for event {event.event_id} as {state.value}")
        return reservation

    # -------- organizer commands --------

    def approve(self, reservation_id: str, operator: Identity) -> Reservation:
        """Pending -> Confirmed, minting the ticket token."""
        reservation = self._get_as_organizer(reservation_id, operator, "approve")
        token = self.token_issuer.issue()
        return self._transition(
            reservation,
            "approve",
            ReservationState.PENDING,
            lambda r: r.model_copy(update={"state": ReservationState.CONFIRMED, "ticket_token": token}),
        )

    def reject(self, reservation_id: str, operator: Identity) -> Reservation:
        """Pending -> Rejected."""
        reservation = self._get_as_organizer(reservation_id, operator, "reject")
        return self._transition(
            reservation,
            "reject",
            ReservationState.PENDING,
            lambda r: r.model_copy(update={"state": ReservationState.REJECTED}),
        )

    def check_in(self, reservation_id: str, operator: Identity) -> Reservation:
        """Confirmed -> CheckedIn, stamping the admission time."""
        reservation = self._get_as_organizer(reservation_id, operator, "check in")
        if reservation.state != ReservationState.CONFIRMED:
            raise _check_in_error(reservation)

        def admit(r: Reservation) -> Reservation:
            return r.model_copy(update={
                "state": ReservationState.CHECKED_IN,
                "check_in_timestamp": datetime.utcnow(),
                "checked_in_by": operator.user_id,
            })

        try:
            updated = self.store.compare_and_update(reservation.id, ReservationState.CONFIRMED, admit)
        except StateMismatchError as exc:
            raise _check_in_error(exc.current)

        logger.info(f"Reservation {updated.id} checked in by {operator.user_id}")
        return updated

    def quick_approve(self, reservation_id: str, operator: Identity) -> Reservation:
        """Door-side "approve and admit": Pending -> CheckedIn in one atomic step."""
        reservation = self._get_as_organizer(reservation_id, operator, "approve")
        token = self.token_issuer.issue()

        def approve_and_admit(r: Reservation) -> Reservation:
            return r.model_copy(update={
                "state": ReservationState.CHECKED_IN,
                "ticket_token": token,
                "check_in_timestamp": datetime.utcnow(),
                "checked_in_by": operator.user_id,
            })

        if reservation.state == ReservationState.CHECKED_IN:
            raise AlreadyCheckedInError(reservation)
        try:
            return self._transition(reservation, "approve", ReservationState.PENDING, approve_and_admit)
        except InvalidTransitionError as exc:
            if exc.reservation.state == ReservationState.CHECKED_IN:
                raise AlreadyCheckedInError(exc.reservation)
            raise

    # -------- attendee commands --------

    def cancel(self, reservation_id: str, attendee: Identity) -> Reservation:
        """Confirmed -> Cancelled, discarding the ticket token."""
        reservation = self.store.get_by_id(reservation_id)
        if reservation.attendee_id != attendee.user_id:
            raise NotAuthorizedError("cancel")
        return self._transition(
            reservation,
            "cancel",
            ReservationState.CONFIRMED,
            lambda r: r.model_copy(update={"state": ReservationState.CANCELLED, "ticket_token": None}),
        )

    # -------- reads --------

    def get_reservation(self, reservation_id: str, identity: Identity) -> Reservation:
        """Return a reservation to its holder or to the event's organizer."""
        reservation = self.store.get_by_id(reservation_id)
        if identity.user_id not in (reservation.attendee_id, reservation.organizer_id):
            raise NotAuthorizedError("view")
        return reservation

    def list_reservations(self, event_id: str) -> List[Reservation]:
        return self.store.list_by_event(event_id)

    def list_for_attendee(self, attendee: Identity) -> List[Reservation]:
        """The attendee's own reservations, including rejected and cancelled ones."""
        return self.store.list_by_attendee(attendee.user_id)

    def get_for_event(self, event_id: str, attendee: Identity) -> Reservation:
        """The attendee's reservation for one event, whatever its state."""
        return self.store.get_by_event_attendee(event_id, attendee.user_id)

    def attendance_summary(self, event_id: str) -> AttendanceSummary:
        counts: Dict[ReservationState, int] = {state: 0 for state in ReservationState}
        reservations = self.store.list_by_event(event_id)
        for reservation in reservations:
            counts[reservation.state] += 1
        return AttendanceSummary(
            event_id=event_id,
            total=len(reservations),
            pending=counts[ReservationState.PENDING],
            confirmed=counts[ReservationState.CONFIRMED],
            checked_in=counts[ReservationState.CHECKED_IN],
        )

    # -------- helpers --------

    def _get_as_organizer(self, reservation_id: str, operator: Identity, action: str) -> Reservation:
        reservation = self.store.get_by_id(reservation_id)
        if reservation.organizer_id != operator.user_id:
            raise NotAuthorizedError(action)
        return reservation

    def _transition(
        self,
        reservation: Reservation,
        action: str,
        expected: ReservationState,
        mutator: Callable[[Reservation], Reservation],
    ) -> Reservation:
        if reservation.state != expected:
            raise InvalidTransitionError(reservation, action)
        try:
            updated = self.store.compare_and_update(reservation.id, expected, mutator)
        except StateMismatchError as exc:
            raise InvalidTransitionError(exc.current, action)
        logger.info(f"Reservation {updated.id} {expected.value} -> {updated.state.value} ({action})")
        return updated
