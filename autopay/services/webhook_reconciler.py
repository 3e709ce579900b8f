"""
Webhook Reconciler
==================

Authenticates Razorpay webhooks, deduplicates deliveries and hands each
event to the mandate engine.

``route_event`` is a pure function from the parsed event to the engine
calls it implies; ``WebhookReconciler.handle`` applies them and stages the
idempotency record in the same transaction.
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from autopay.app.exceptions import AuthFailureError, ConflictError, TransientError, ValidationError
from autopay.repositories.webhook_event_repo import WebhookEventRepository
from autopay.services.mandate_engine import EngineCall, MandateEngine, WebhookOp
from autopay.services.provider.base import BasePaymentProvider
from autopay.utils.validators import Clock, from_epoch_seconds, utcnow

logger = logging.getLogger(__name__)

HANDLED_EVENTS = {
    "subscription.activated": WebhookOp.ACTIVATE,
    "subscription.charged": WebhookOp.CHARGED,
    "subscription.halted": WebhookOp.HALT,
    "subscription.cancelled": WebhookOp.CANCEL,
    "subscription.completed": WebhookOp.COMPLETE,
    "payment.failed": WebhookOp.PAYMENT_FAILED,
}


def _entity(event: Dict[str, Any], name: str) -> Dict[str, Any]:
    return ((event.get("payload") or {}).get(name) or {}).get("entity") or {}


def _event_time(event: Dict[str, Any]) -> Optional[datetime]:
    created_at = event.get("created_at")
    if created_at in (None, ""):
        return None
    try:
        return from_epoch_seconds(created_at)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def idempotency_key(event: Dict[str, Any], header_event_id: Optional[str] = None) -> str:
    """Provider event id when present, otherwise a digest of event name, entity id and creation time."""
    if header_event_id:
        return header_event_id
    if event.get("id"):
        return str(event["id"])
    entity_id = _entity(event, "payment").get("id") or _entity(event, "subscription").get("id") or ""
    material = f"{event.get('event', '')}|{entity_id}|{event.get('created_at', '')}"
    return "evt_" + hashlib.sha256(material.encode("utf-8")).hexdigest()


def route_event(event: Dict[str, Any]) -> List[EngineCall]:
    """Map a provider event to engine calls. Unknown events map to nothing."""
    name = event.get("event")
    op = HANDLED_EVENTS.get(name)
    if op is None:
        return []

    event_at = _event_time(event)
    subscription = _entity(event, "subscription")
    payment = _entity(event, "payment")

    if op == WebhookOp.PAYMENT_FAILED:
        notes = payment.get("notes") or {}
        return [EngineCall(
            op=op,
            subscription_id=payment.get("subscription_id"),
            mandate_id=notes.get("mandate_id") if isinstance(notes, dict) else None,
            payment_id=payment.get("id"),
            amount=payment.get("amount"),
            failure_reason=payment.get("error_description") or "Payment failed",
            event_at=event_at,
        )]

    notes = subscription.get("notes") or {}
    mandate_hint = notes.get("mandate_id") if isinstance(notes, dict) else None
    if op == WebhookOp.CHARGED:
        return [EngineCall(
            op=op,
            subscription_id=subscription.get("id") or payment.get("subscription_id"),
            mandate_id=mandate_hint,
            payment_id=payment.get("id"),
            amount=payment.get("amount"),
            event_at=event_at,
        )]

    return [EngineCall(op=op, subscription_id=subscription.get("id"), mandate_id=mandate_hint, event_at=event_at)]


class WebhookReconciler:
    """Verifies, deduplicates and applies provider webhook deliveries."""

    def __init__(
        self,
        db: Session,
        engine: MandateEngine,
        provider: BasePaymentProvider,
        secret: str,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.engine = engine
        self.provider = provider
        self.secret = secret
        self.clock = clock
        self.events = WebhookEventRepository(db)

    def handle(self, raw_body: bytes, signature: Optional[str], header_event_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Process one delivery.

        Returns:
            ``{"status": applied|ignored|stale|duplicate, "event": name}``

        Raises:
            AuthFailureError: bad or missing signature (401)
            ValidationError: body is not a JSON event (400)
            TransientError: store unavailable; the provider should redeliver (503)
        """
        if not self.provider.verify_webhook_signature(raw_body, signature or "", self.secret):
            logger.warning("Rejected webhook with invalid signature")
            raise AuthFailureError()

        try:
            event = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ValidationError("Invalid webhook payload")
        if not isinstance(event, dict):
            raise ValidationError("Invalid webhook payload")

        name = str(event.get("event") or "")
        key = idempotency_key(event, header_event_id)
        calls = route_event(event)
        event_at = _event_time(event)

        def record(resource_id: Optional[str]):
            self.events.add_processed(
                event_id=key,
                event_type=name or "unknown",
                payload=event,
                now=self.clock(),
                resource_id=resource_id,
                event_created_at=event_at,
                provider=self.provider.name,
            )

        try:
            if self.events.is_recorded(key):
                logger.info("Duplicate webhook %s (%s) acknowledged", key, name)
                return {"status": "duplicate", "event": name}

            if not calls:
                logger.info("Unhandled webhook event %s acknowledged", name)
                record(None)
                self.events.commit()
                return {"status": "ignored", "event": name}

            status = "ignored"
            for index, call in enumerate(calls):
                last = index == len(calls) - 1
                outcome = self.engine.apply(call, before_commit=record if last else None)
                status = outcome.status
        except ConflictError:
            # a concurrent delivery of the same event committed first
            self.db.rollback()
            logger.info("Webhook %s (%s) raced a concurrent delivery", key, name)
            return {"status": "duplicate", "event": name}
        except OperationalError as exc:
            self.db.rollback()
            raise TransientError() from exc

        logger.info("Webhook %s (%s) %s", key, name, status)
        return {"status": status, "event": name}
