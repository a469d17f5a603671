"""
Payment collaborator used before minting a confirmed reservation for a priced event
"""

import logging
import secrets
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel

from app.core.config import settings
from app.core.errors import PaymentFailedError

logger = logging.getLogger(__name__)

class Receipt(BaseModel):
    """Opaque proof that a charge succeeded"""
    reference: str
    amount: Decimal
    currency: str

class PaymentGateway(ABC):
    """Charges an attendee; raises PaymentFailedError when the charge does not go through."""

    @abstractmethod
    def charge(self, amount: Decimal, currency: str, source: Optional[str] = None) -> Receipt:
        ...

class SandboxPaymentGateway(PaymentGateway):
    """Development gateway that approves every charge except declined test sources"""

    def __init__(self, declined_sources: Iterable[str] = ()):
        self.declined_sources = set(declined_sources)

    def charge(self, amount: Decimal, currency: str, source: Optional[str] = None) -> Receipt:
        if amount <= 0:
            raise PaymentFailedError("amount must be positive")
        if source in self.declined_sources:
            logger.info(f"Sandbox declined charge of {amount} {currency}")
            raise PaymentFailedError("card declined")

        reference = f"pay_{secrets.token_hex(8)}"
        logger.info(f"Sandbox charge {reference} succeeded for {amount} {currency}")
        return Receipt(reference=reference, amount=amount, currency=currency)

def get_payment_gateway() -> PaymentGateway:
    """Return the configured payment gateway"""
    if settings.PAYMENT_PROVIDER == "sandbox":
        return SandboxPaymentGateway(settings.SANDBOX_DECLINED_SOURCES)
    raise RuntimeError(f"Unsupported payment provider: {settings.PAYMENT_PROVIDER}")
