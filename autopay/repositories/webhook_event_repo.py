"""Webhook event repository (idempotency keys)."""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from autopay.models.webhook_event import WebhookEvent
from .base import BaseRepository


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for recorded provider webhook deliveries."""

    def __init__(self, db: Session):
        super().__init__(WebhookEvent, db)

    def get_by_event_id(self, event_id: str) -> Optional[WebhookEvent]:
        return self.get_by_field("event_id", event_id)

    def is_recorded(self, event_id: str) -> bool:
        return self.db.query(WebhookEvent.id).filter(WebhookEvent.event_id == event_id).first() is not None

    def add_processed(
        self,
        event_id: str,
        event_type: str,
        payload: Dict[str, Any],
        now: datetime,
        resource_id: Optional[str] = None,
        event_created_at: Optional[datetime] = None,
        provider: str = "razorpay",
    ) -> WebhookEvent:
        """Stage the event row in the current transaction; the caller commits."""
        event = WebhookEvent(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            resource_id=resource_id,
            resource_type="mandate" if resource_id else None,
            payload=payload,
            event_created_at=event_created_at,
            processed=True,
            processed_at=now,
            received_at=now,
        )
        self.db.add(event)
        return event
