"""Domain errors for the reservation and entry verification core."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from app.schemas.reservation import Reservation


class ErrorCode(Enum):
    """Domain error codes."""

    RESERVATION_NOT_FOUND = "RESERVATION_NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    CONFLICT = "CONFLICT"
    STATE_MISMATCH = "STATE_MISMATCH"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"


class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode = ErrorCode.CONFLICT

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ReservationNotFoundError(DomainError):
    """Raised when no reservation matches the lookup."""

    code = ErrorCode.RESERVATION_NOT_FOUND

    def __init__(self, key: str) -> None:
        super().__init__("Reservation not found")
        self.key = key


class EventNotFoundError(DomainError):
    """Raised when the referenced event does not exist."""

    code = ErrorCode.EVENT_NOT_FOUND

    def __init__(self, event_id: str) -> None:
        super().__init__("Event not found")
        self.event_id = event_id


class ConflictError(DomainError):
    """Raised when the attendee already holds an open reservation for the event."""

    code = ErrorCode.CONFLICT

    def __init__(self, event_id: str, attendee_id: str) -> None:
        super().__init__("A reservation already exists for this event")
        self.event_id = event_id
        self.attendee_id = attendee_id


class StateMismatchError(DomainError):
    """Raised by the store when the stored state differs from the expected one.

    Carries the reservation as it was observed so callers can re-evaluate
    without a second read.
    """

    code = ErrorCode.STATE_MISMATCH

    def __init__(self, current: "Reservation") -> None:
        super().__init__(
            f"Reservation is {current.state.value}",
            details={"state": current.state.value},
        )
        self.current = current


class InvalidTransitionError(DomainError):
    """Raised when an operation is not legal from the reservation's state."""

    code = ErrorCode.INVALID_TRANSITION

    def __init__(self, reservation: "Reservation", action: str) -> None:
        super().__init__(
            f"Cannot {action} a {reservation.state.value} reservation",
            details={"state": reservation.state.value, "action": action},
        )
        self.reservation = reservation
        self.action = action


class AlreadyCheckedInError(DomainError):
    """Raised when checking in a reservation that was already admitted."""

    code = ErrorCode.ALREADY_CHECKED_IN

    def __init__(self, reservation: "Reservation") -> None:
        checked_in_at = reservation.check_in_timestamp
        super().__init__(
            "Reservation already checked in",
            details={"check_in_timestamp": checked_in_at.isoformat() if checked_in_at else None},
        )
        self.reservation = reservation


class ApprovalRequiredError(DomainError):
    """Raised when checking in a reservation that still awaits approval."""

    code = ErrorCode.APPROVAL_REQUIRED

    def __init__(self, reservation: "Reservation") -> None:
        super().__init__("Reservation is pending approval")
        self.reservation = reservation


class PaymentFailedError(DomainError):
    """Raised when the payment collaborator declines a charge."""

    code = ErrorCode.PAYMENT_FAILED

    def __init__(self, reason: str) -> None:
        super().__init__(f"Payment failed: {reason}")
        self.reason = reason


class NotAuthorizedError(DomainError):
    """Raised when the acting identity may not perform the operation."""

    code = ErrorCode.NOT_AUTHORIZED

    def __init__(self, action: str) -> None:
        super().__init__(f"Not allowed to {action} this reservation")
        self.action = action


class PayloadDecodeError(DomainError):
    """Raised when a scanned payload cannot be decoded."""

    code = ErrorCode.MALFORMED_PAYLOAD

    def __init__(self, reason: str) -> None:
        super().__init__("Invalid ticket code", details={"reason": reason})
        self.reason = reason
