"""
User-related models.

Models:
- User: Dashboard user. Authentication lives outside this service;
  the row exists so credentials, sync state and activities can hang off it.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime
import uuid

from app.models.base import Base


class User(Base):
    """Dashboard user whose activities are mirrored from Strava."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=True)

    # Profile
    name = Column(String(100), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<User {self.id} ({self.name})>"
