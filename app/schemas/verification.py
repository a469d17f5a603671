"""
Door scan verification outcomes
"""

from datetime import datetime
from typing import Literal, Optional, Union
from pydantic import BaseModel

from app.schemas.reservation import Reservation

class Admitted(BaseModel):
    """The check-in transition succeeded"""
    outcome: Literal["admitted"] = "admitted"
    reservation: Reservation

class AlreadyUsed(BaseModel):
    """The reservation was already checked in"""
    outcome: Literal["already_used"] = "already_used"
    reservation: Reservation
    prior_check_in_timestamp: Optional[datetime] = None

class ApprovalPending(BaseModel):
    """The reservation awaits organizer approval"""
    outcome: Literal["approval_pending"] = "approval_pending"
    reservation: Reservation

class TokenMismatch(BaseModel):
    """The presented token does not match the stored one"""
    outcome: Literal["token_mismatch"] = "token_mismatch"

class NotFound(BaseModel):
    """No open reservation exists for the decoded event and attendee"""
    outcome: Literal["not_found"] = "not_found"

class Malformed(BaseModel):
    """The payload could not be decoded"""
    outcome: Literal["malformed"] = "malformed"
    reason: Optional[str] = None

VerificationResult = Union[Admitted, AlreadyUsed, ApprovalPending, TokenMismatch, NotFound, Malformed]

OPERATOR_MESSAGES = {
    "admitted": "Access granted! Welcome.",
    "already_used": "Ticket already used.",
    "approval_pending": "This attendee is pending approval.",
    "token_mismatch": "Invalid ticket: token mismatch.",
    "not_found": "Invalid ticket: no matching reservation.",
    "malformed": "Invalid code, try again.",
}
