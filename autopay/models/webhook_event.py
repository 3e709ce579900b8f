"""Webhook event model; one row per applied provider delivery."""
from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON, Boolean

from autopay.db.base import Base
from .base import TimestampMixin, new_id


class WebhookEvent(Base, TimestampMixin):
    """Webhook Event model to log incoming webhook events."""
    __tablename__ = 'webhook_events'

    id = Column(String(32), primary_key=True, default=new_id)
    provider = Column(String(100), nullable=False, index=True)
    event_id = Column(String(255), nullable=False, unique=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)

    resource_id = Column(String(128), nullable=True, index=True)
    resource_type = Column(String(100), nullable=True)

    payload = Column(JSON, nullable=False)
    event_created_at = Column(DateTime, nullable=True)

    processed = Column(Boolean, default=False, nullable=False, index=True)
    processed_at = Column(DateTime, nullable=True)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f'<WebhookEvent(event_id={self.event_id}, event_type={self.event_type}, processed={self.processed})>'
