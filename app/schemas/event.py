"""
Event-related Pydantic schemas
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel

class EventPolicy(BaseModel):
    """Reservation policy of an event, read once when a reservation is created"""
    event_id: str
    title: Optional[str] = None
    organizer_id: str
    price: Decimal = Decimal("0")
    currency: Optional[str] = None
    requires_approval: bool = False

    class Config:
        from_attributes = True

    @property
    def is_paid(self) -> bool:
        return self.price > 0
