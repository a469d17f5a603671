"""
Reservation-related Pydantic schemas
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel

class ReservationState(str, Enum):
    """States of a reservation"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_closed(self) -> bool:
        return self in (ReservationState.REJECTED, ReservationState.CANCELLED)

CLOSED_STATES = (ReservationState.REJECTED, ReservationState.CANCELLED)
TOKEN_STATES = (ReservationState.CONFIRMED, ReservationState.CHECKED_IN)

class Identity(BaseModel):
    """Caller identity supplied by the authentication provider"""
    user_id: str
    display_name: Optional[str] = None

class Reservation(BaseModel):
    """One attendee's claim on one event"""
    id: str
    event_id: str
    attendee_id: str
    organizer_id: str
    state: ReservationState
    requires_approval: bool
    ticket_token: Optional[str] = None
    payment_reference: Optional[str] = None
    amount_paid: Optional[Decimal] = None
    currency: Optional[str] = None
    check_in_timestamp: Optional[datetime] = None
    checked_in_by: Optional[str] = None
    attendee_name: Optional[str] = None
    created_at: datetime
    version: int = 0

    class Config:
        from_attributes = True
        frozen = True

class ReservationCreate(BaseModel):
    """Attendee request to reserve a spot"""
    event_id: str
    payment_source: Optional[str] = None

class ReservationResponse(BaseModel):
    """Reservation as returned to callers; the token is only shown to its holder"""
    id: str
    event_id: str
    attendee_id: str
    attendee_name: Optional[str] = None
    state: ReservationState
    requires_approval: bool
    ticket_token: Optional[str] = None
    payment_reference: Optional[str] = None
    check_in_timestamp: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_reservation(cls, reservation: Reservation, include_token: bool = False) -> "ReservationResponse":
        data = reservation.model_dump(include=set(cls.model_fields))
        if not include_token:
            data["ticket_token"] = None
        return cls(**data)

class AttendanceSummary(BaseModel):
    """Counts shown on the organizer console"""
    event_id: str
    total: int
    pending: int
    confirmed: int
    checked_in: int

class ScanRequest(BaseModel):
    """Raw payload read by a door scanner"""
    payload: str
