"""
Shared fixtures: a throwaway SQLite database and the reservation core wired to it
"""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.db import Base
from app.schemas.event import EventPolicy
from app.schemas.reservation import Identity
from app.services.payment_service import SandboxPaymentGateway
from app.services.repositories import SqlReservationStore
from app.services.reservation_service import ReservationLifecycle
from app.services.verification_service import EntryVerifier

# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_entry_pass.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def db_session():
    """Create test database session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)

@pytest.fixture
def session_factory(db_session):
    return TestingSessionLocal

@pytest.fixture
def store(session_factory):
    return SqlReservationStore(session_factory)

@pytest.fixture
def gateway():
    return SandboxPaymentGateway(["tok_declined"])

@pytest.fixture
def lifecycle(store, gateway):
    return ReservationLifecycle(store, gateway)

@pytest.fixture
def verifier(store, lifecycle):
    return EntryVerifier(store, lifecycle)

@pytest.fixture
def organizer():
    return Identity(user_id="org-1", display_name="Host")

@pytest.fixture
def attendee():
    return Identity(user_id="user-1", display_name="Ada Lovelace")

@pytest.fixture
def free_event(organizer):
    return EventPolicy(event_id="evt-free", title="Open Meetup", organizer_id=organizer.user_id)

@pytest.fixture
def approval_event(organizer):
    return EventPolicy(
        event_id="evt-approval",
        title="Invite Only Dinner",
        organizer_id=organizer.user_id,
        requires_approval=True,
    )

@pytest.fixture
def paid_approval_event(organizer):
    return EventPolicy(
        event_id="evt-paid",
        title="Paid Workshop",
        organizer_id=organizer.user_id,
        price=Decimal("499.00"),
        currency="INR",
        requires_approval=True,
    )
