"""
Repository layer abstracting storage (SQLAlchemy vs Firebase Firestore).

The reservation store is the only shared mutable state of the system.
``compare_and_update`` is its central primitive: the read, the state check and
the write happen as one indivisible unit per reservation id, so two scanners
(or a scan racing an approval) can never both win.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from firebase_admin import firestore
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.db import SessionLocal
from app.core.errors import ConflictError, ReservationNotFoundError, StateMismatchError
from app.models import Event, ReservationRecord
from app.schemas.event import EventPolicy
from app.schemas.reservation import CLOSED_STATES, TOKEN_STATES, Reservation, ReservationState
from app.services.firebase_client import get_firestore_client

logger = logging.getLogger(__name__)

Mutator = Callable[[Reservation], Reservation]

# fields a transition may change; everything else is fixed at creation
MUTABLE_FIELDS = ("state", "ticket_token", "check_in_timestamp", "checked_in_by")


def use_firestore() -> bool:
    return settings.USE_FIREBASE is True


def check_invariants(reservation: Reservation) -> None:
    """Raise ValueError if the reservation violates the state/field invariants."""
    has_token = reservation.ticket_token is not None
    if has_token != (reservation.state in TOKEN_STATES):
        raise ValueError(f"ticket_token must be set only in {[s.value for s in TOKEN_STATES]}")
    checked_in = reservation.state == ReservationState.CHECKED_IN
    if (reservation.check_in_timestamp is not None) != checked_in:
        raise ValueError("check_in_timestamp must be set iff the reservation is checked in")


def check_mutation(current: Reservation, updated: Reservation) -> None:
    """Reject mutator results that touch immutable fields or re-key the token."""
    for field in Reservation.model_fields:
        if field in MUTABLE_FIELDS or field == "version":
            continue
        if getattr(current, field) != getattr(updated, field):
            raise ValueError(f"{field} is immutable")
    if current.ticket_token is not None and updated.ticket_token not in (None, current.ticket_token):
        raise ValueError("ticket_token cannot be replaced once issued")
    if current.check_in_timestamp is not None and updated.check_in_timestamp != current.check_in_timestamp:
        raise ValueError("check_in_timestamp is set exactly once")
    check_invariants(updated)


def sort_for_console(reservations: List[Reservation]) -> List[Reservation]:
    """Most recent check-ins first, then most recent requests."""
    return sorted(
        reservations,
        key=lambda r: (r.check_in_timestamp is not None, r.check_in_timestamp or r.created_at, r.created_at),
        reverse=True,
    )


# -------- Reservation store --------

class ReservationStore(ABC):
    """Interface for reservation persistence."""

    @abstractmethod
    def create(self, reservation: Reservation) -> Reservation:
        """Persist a new reservation.

        Raises ConflictError if an open reservation exists for the same
        (event, attendee). A closed one is deleted first.
        """
        ...

    @abstractmethod
    def get_by_id(self, reservation_id: str) -> Reservation:
        """Return the reservation or raise ReservationNotFoundError."""
        ...

    @abstractmethod
    def get_by_event_attendee(self, event_id: str, attendee_id: str) -> Reservation:
        """Return the reservation for the pair or raise ReservationNotFoundError."""
        ...

    @abstractmethod
    def compare_and_update(
        self, reservation_id: str, expected_state: ReservationState, mutator: Mutator
    ) -> Reservation:
        """Atomically apply ``mutator`` if the stored state equals ``expected_state``.

        Raises StateMismatchError carrying the current reservation when the
        state differs, ReservationNotFoundError when the row is gone.
        """
        ...

    @abstractmethod
    def list_by_event(self, event_id: str, include_closed: bool = False) -> List[Reservation]:
        """Return the event's reservations in console order."""
        ...

    @abstractmethod
    def list_by_attendee(self, attendee_id: str, include_closed: bool = True) -> List[Reservation]:
        """Return the attendee's reservations, most recent request first."""
        ...


class SqlReservationStore(ReservationStore):
    """SQLAlchemy store using an optimistic version column.

    Each operation opens its own session, so one store instance can be shared
    between threads.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    @staticmethod
    def _to_domain(record: ReservationRecord) -> Reservation:
        return Reservation.model_validate(record)

    @staticmethod
    def _to_record(reservation: Reservation) -> ReservationRecord:
        data = reservation.model_dump()
        data["state"] = reservation.state.value
        return ReservationRecord(**data)

    def create(self, reservation: Reservation) -> Reservation:
        check_invariants(reservation)
        with self.session_factory() as db:
            existing = db.query(ReservationRecord).filter(
                ReservationRecord.event_id == reservation.event_id,
                ReservationRecord.attendee_id == reservation.attendee_id,
            ).first()
            if existing is not None:
                if ReservationState(existing.state) not in CLOSED_STATES:
                    raise ConflictError(reservation.event_id, reservation.attendee_id)
                logger.info(f"Removing closed reservation {existing.id} before new request")
            try:
                if existing is not None:
                    db.delete(existing)
                    db.flush()
                db.add(self._to_record(reservation))
                db.commit()
            except (IntegrityError, StaleDataError):
                db.rollback()
                raise ConflictError(reservation.event_id, reservation.attendee_id)
        return reservation

    def get_by_id(self, reservation_id: str) -> Reservation:
        with self.session_factory() as db:
            record = db.get(ReservationRecord, reservation_id)
            if record is None:
                raise ReservationNotFoundError(reservation_id)
            return self._to_domain(record)

    def get_by_event_attendee(self, event_id: str, attendee_id: str) -> Reservation:
        with self.session_factory() as db:
            record = db.query(ReservationRecord).filter(
                ReservationRecord.event_id == event_id,
                ReservationRecord.attendee_id == attendee_id,
            ).first()
            if record is None:
                raise ReservationNotFoundError(f"{event_id}/{attendee_id}")
            return self._to_domain(record)

    def compare_and_update(
        self, reservation_id: str, expected_state: ReservationState, mutator: Mutator
    ) -> Reservation:
        with self.session_factory() as db:
            record = db.get(ReservationRecord, reservation_id)
            if record is None:
                raise ReservationNotFoundError(reservation_id)
            current = self._to_domain(record)
            if current.state != expected_state:
                raise StateMismatchError(current)

            updated = mutator(current)
            check_mutation(current, updated)

            result = db.execute(
                update(ReservationRecord)
                .where(
                    ReservationRecord.id == reservation_id,
                    ReservationRecord.state == expected_state.value,
                    ReservationRecord.version == current.version,
                )
                .values(
                    state=updated.state.value,
                    ticket_token=updated.ticket_token,
                    check_in_timestamp=updated.check_in_timestamp,
                    checked_in_by=updated.checked_in_by,
                    version=current.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()

            if result.rowcount != 1:
                # another writer committed between our read and our write
                db.expire_all()
                record = db.get(ReservationRecord, reservation_id)
                if record is None:
                    raise ReservationNotFoundError(reservation_id)
                raise StateMismatchError(self._to_domain(record))

        return updated.model_copy(update={"version": current.version + 1})

    def list_by_event(self, event_id: str, include_closed: bool = False) -> List[Reservation]:
        with self.session_factory() as db:
            query = db.query(ReservationRecord).filter(ReservationRecord.event_id == event_id)
            if not include_closed:
                query = query.filter(ReservationRecord.state.notin_([s.value for s in CLOSED_STATES]))
            return sort_for_console([self._to_domain(r) for r in query.all()])

    def list_by_attendee(self, attendee_id: str, include_closed: bool = True) -> List[Reservation]:
        with self.session_factory() as db:
            query = db.query(ReservationRecord).filter(ReservationRecord.attendee_id == attendee_id)
            if not include_closed:
                query = query.filter(ReservationRecord.state.notin_([s.value for s in CLOSED_STATES]))
            query = query.order_by(ReservationRecord.created_at.desc())
            return [self._to_domain(r) for r in query.all()]


class FirestoreReservationStore(ReservationStore):
    """Firestore store.

    Reservations live in ``reservations/{id}``. A second collection,
    ``reservation_keys/{sha256(event, attendee)}``, maps each pair to its
    reservation id so that creation can be checked and claimed inside a single
    transaction.
    """

    COLLECTION = "reservations"
    KEY_COLLECTION = "reservation_keys"

    def __init__(self, client=None):
        self.client = client or get_firestore_client()

    @staticmethod
    def pair_key(event_id: str, attendee_id: str) -> str:
        return hashlib.sha256(f"{event_id}\x1f{attendee_id}".encode("utf-8")).hexdigest()

    @staticmethod
    def _to_domain(doc) -> Reservation:
        data = doc.to_dict()
        data["id"] = doc.id
        return Reservation.model_validate(data)

    @staticmethod
    def _to_document(reservation: Reservation) -> Dict[str, Any]:
        data = reservation.model_dump(exclude={"id"})
        data["state"] = reservation.state.value
        if reservation.amount_paid is not None:
            data["amount_paid"] = str(reservation.amount_paid)
        return data

    def _reservations(self):
        return self.client.collection(self.COLLECTION)

    def create(self, reservation: Reservation) -> Reservation:
        check_invariants(reservation)
        key_ref = self.client.collection(self.KEY_COLLECTION).document(
            self.pair_key(reservation.event_id, reservation.attendee_id)
        )
        new_ref = self._reservations().document(reservation.id)

        @firestore.transactional
        def _create(transaction):
            key_doc = key_ref.get(transaction=transaction)
            if key_doc.exists:
                old_ref = self._reservations().document(key_doc.get("reservation_id"))
                old_doc = old_ref.get(transaction=transaction)
                if old_doc.exists:
                    if ReservationState(old_doc.get("state")) not in CLOSED_STATES:
                        raise ConflictError(reservation.event_id, reservation.attendee_id)
                    transaction.delete(old_ref)
            transaction.set(key_ref, {"reservation_id": reservation.id})
            transaction.create(new_ref, self._to_document(reservation))

        _create(self.client.transaction())
        return reservation

    def get_by_id(self, reservation_id: str) -> Reservation:
        doc = self._reservations().document(reservation_id).get()
        if not doc.exists:
            raise ReservationNotFoundError(reservation_id)
        return self._to_domain(doc)

    def get_by_event_attendee(self, event_id: str, attendee_id: str) -> Reservation:
        key_doc = self.client.collection(self.KEY_COLLECTION).document(
            self.pair_key(event_id, attendee_id)
        ).get()
        if not key_doc.exists:
            raise ReservationNotFoundError(f"{event_id}/{attendee_id}")
        return self.get_by_id(key_doc.get("reservation_id"))

    def compare_and_update(
        self, reservation_id: str, expected_state: ReservationState, mutator: Mutator
    ) -> Reservation:
        ref = self._reservations().document(reservation_id)

        # the body may run more than once on contention; mutators are pure
        @firestore.transactional
        def _update(transaction) -> Reservation:
            doc = ref.get(transaction=transaction)
            if not doc.exists:
                raise ReservationNotFoundError(reservation_id)
            current = self._to_domain(doc)
            if current.state != expected_state:
                raise StateMismatchError(current)
            updated = mutator(current)
            check_mutation(current, updated)
            updated = updated.model_copy(update={"version": current.version + 1})
            transaction.update(ref, {
                "state": updated.state.value,
                "ticket_token": updated.ticket_token,
                "check_in_timestamp": updated.check_in_timestamp,
                "checked_in_by": updated.checked_in_by,
                "version": updated.version,
            })
            return updated

        return _update(self.client.transaction())

    def list_by_event(self, event_id: str, include_closed: bool = False) -> List[Reservation]:
        docs = self._reservations().where("event_id", "==", event_id).get()
        results = [self._to_domain(d) for d in docs]
        if not include_closed:
            results = [r for r in results if r.state not in CLOSED_STATES]
        return sort_for_console(results)

    def list_by_attendee(self, attendee_id: str, include_closed: bool = True) -> List[Reservation]:
        docs = self._reservations().where("attendee_id", "==", attendee_id).get()
        results = [self._to_domain(d) for d in docs]
        if not include_closed:
            results = [r for r in results if r.state not in CLOSED_STATES]
        return sorted(results, key=lambda r: r.created_at, reverse=True)


@lru_cache(maxsize=1)
def get_reservation_store() -> ReservationStore:
    """Return the configured reservation store."""
    if use_firestore():
        return FirestoreReservationStore()
    return SqlReservationStore(SessionLocal)


# -------- Event repository --------

def _parse_price(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid event price: {value!r}")


class EventRepo:
    """Read-only access to the event records owned by the events module."""

    @staticmethod
    def get_policy_sql(db: Session, event_id: str) -> Optional[EventPolicy]:
        event = db.query(Event).filter(Event.id == event_id).first()
        if not event:
            return None
        return EventPolicy(
            event_id=event.id,
            title=event.title,
            organizer_id=event.organizer_id,
            price=_parse_price(event.price),
            currency=event.currency,
            requires_approval=bool(event.requires_approval),
        )

    # Firestore shape: collection "events/{event_id}" as written by the web client
    @staticmethod
    def get_policy_fs(event_id: str) -> Optional[EventPolicy]:
        fs = get_firestore_client()
        if not fs:
            return None
        doc = fs.collection("events").document(event_id).get()
        if not doc.exists:
            return None
        data = doc.to_dict()
        return EventPolicy(
            event_id=doc.id,
            title=data.get("title"),
            organizer_id=data.get("organizer_id") or data.get("creatorId"),
            price=_parse_price(data.get("price")),
            currency=data.get("currency"),
            requires_approval=bool(data.get("requires_approval", data.get("requiresApproval", False))),
        )

    @staticmethod
    def get_policy(event_id: str, db: Optional[Session] = None) -> Optional[EventPolicy]:
        if use_firestore():
            return EventRepo.get_policy_fs(event_id)
        if db is None:
            with SessionLocal() as session:
                return EventRepo.get_policy_sql(session, event_id)
        return EventRepo.get_policy_sql(db, event_id)
