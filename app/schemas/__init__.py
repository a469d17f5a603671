"""
Pydantic schemas package
"""

from .common import *
from .event import *
from .reservation import *
from .verification import *

__all__ = [
    "StandardResponse",
    "ErrorResponse",
    "EventPolicy",
    "Identity",
    "Reservation",
    "ReservationState",
    "ReservationCreate",
    "ReservationResponse",
    "AttendanceSummary",
    "ScanRequest",
    "Admitted",
    "AlreadyUsed",
    "ApprovalPending",
    "TokenMismatch",
    "NotFound",
    "Malformed",
    "VerificationResult",
]
