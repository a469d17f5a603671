"""
Reservation model
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, Index

from app.core.db import Base

class ReservationRecord(Base):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True)
    event_id = Column(String(64), nullable=False, index=True)
    attendee_id = Column(String(128), nullable=False)
    organizer_id = Column(String(128), nullable=False)
    state = Column(String(16), nullable=False)
    requires_approval = Column(Boolean, nullable=False, default=False)
    ticket_token = Column(String(36), nullable=True)
    payment_reference = Column(String(128), nullable=True)
    amount_paid = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(8), nullable=True)
    check_in_timestamp = Column(DateTime, nullable=True)
    checked_in_by = Column(String(128), nullable=True)
    attendee_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    # bumped on every committed update; compare-and-update matches on it
    version = Column(Integer, nullable=False, default=0)

    # one row per (event, attendee); closed rows are deleted before a new request
    __table_args__ = (
        Index("uq_reservation_event_attendee", "event_id", "attendee_id", unique=True),
    )
