"""
Database models package
"""

from .event import Event
from .reservation import ReservationRecord

__all__ = ["Event", "ReservationRecord"]
