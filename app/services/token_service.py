"""
Ticket token issuing and scannable payload codec
"""

from __future__ import annotations

import json
import uuid
from typing import Any, NamedTuple, Union

from app.core.errors import PayloadDecodeError

MAX_PAYLOAD_BYTES = 4096

EVENT_KEY = "eventId"
ATTENDEE_KEY = "attendeeId"
TOKEN_KEY = "token"


class TicketPayload(NamedTuple):
    event_id: str
    attendee_id: str
    token: str


class TokenIssuer:
    """Issues ticket tokens and encodes/decodes the QR payload.

    The payload is a JSON object with exactly three required string fields,
    ``eventId``, ``attendeeId`` and ``token``, serialized with sorted keys and
    no whitespace so that independently written encoders produce identical
    bytes. Pending reservations carry an empty ``token``.
    """

    @staticmethod
    def issue() -> str:
        """Return a new random ticket token (UUID4, 122 random bits)."""
        return str(uuid.uuid4())

    @staticmethod
    def encode(event_id: str, attendee_id: str, token: str | None) -> str:
        return json.dumps(
            {EVENT_KEY: event_id, ATTENDEE_KEY: attendee_id, TOKEN_KEY: token or ""},
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )

    @staticmethod
    def decode(payload: Union[str, bytes]) -> TicketPayload:
        """Decode a scanned payload, raising PayloadDecodeError on anything unexpected."""
        if isinstance(payload, (bytes, bytearray)):
            if len(payload) > MAX_PAYLOAD_BYTES:
                raise PayloadDecodeError("payload too large")
            try:
                payload = bytes(payload).decode("utf-8")
            except UnicodeDecodeError:
                raise PayloadDecodeError("payload is not valid UTF-8")
        elif not isinstance(payload, str):
            raise PayloadDecodeError("payload must be text")
        elif len(payload.encode("utf-8")) > MAX_PAYLOAD_BYTES:
            raise PayloadDecodeError("payload too large")

        try:
            data: Any = json.loads(payload)
        except ValueError:
            raise PayloadDecodeError("payload is not valid JSON")

        if not isinstance(data, dict):
            raise PayloadDecodeError("payload must be a JSON object")

        event_id = data.get(EVENT_KEY)
        attendee_id = data.get(ATTENDEE_KEY)
        if TOKEN_KEY not in data:
            raise PayloadDecodeError(f"missing field: {TOKEN_KEY}")
        token = data[TOKEN_KEY]

        for name, value in ((EVENT_KEY, event_id), (ATTENDEE_KEY, attendee_id)):
            if value is None:
                raise PayloadDecodeError(f"missing field: {name}")
            if not isinstance(value, str) or not value:
                raise PayloadDecodeError(f"invalid field: {name}")
        if not isinstance(token, str):
            raise PayloadDecodeError(f"invalid field: {TOKEN_KEY}")

        return TicketPayload(event_id=event_id, attendee_id=attendee_id, token=token)
