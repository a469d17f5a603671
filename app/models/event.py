"""
Event model
"""

from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Numeric

from app.core.db import Base

class Event(Base):
    __tablename__ = "events"

    id = Column(String(64), primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    organizer_id = Column(String(128), nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(8), nullable=True)
    requires_approval = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
