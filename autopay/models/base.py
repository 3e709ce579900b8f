"""Base model with common fields and utilities."""
from datetime import datetime
import uuid

from sqlalchemy import Column, DateTime


def new_id() -> str:
    """Surrogate primary key as a 32 char hex string (portable across sqlite/postgres)."""
    return uuid.uuid4().hex


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
