"""
QR code generation service
"""

import io
import qrcode

from app.core.config import settings
from app.schemas.reservation import Reservation
from app.services.token_service import TokenIssuer

class QRService:
    """Service for rendering ticket QR codes"""

    @staticmethod
    def generate_payload_qr(payload: str, format: str = 'PNG') -> bytes:
        """Render an encoded ticket payload as a QR image"""
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=settings.QR_BOX_SIZE,
            border=settings.QR_BORDER,
        )
        qr.add_data(payload)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        img.save(buffer, format=format)

        return buffer.getvalue()

    @staticmethod
    def generate_ticket_qr(reservation: Reservation) -> bytes:
        """Render the QR shown by the holder at the door.

        Pending reservations get a code with an empty token, which the door
        scanner resolves to the approval prompt.
        """
        payload = TokenIssuer.encode(
            reservation.event_id,
            reservation.attendee_id,
            reservation.ticket_token,
        )
        return QRService.generate_payload_qr(payload)
