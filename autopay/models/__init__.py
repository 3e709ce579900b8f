"""Import all models for Alembic."""
from .base import TimestampMixin
from .enums import (
    SubscriptionStatus,
    SecurityRiskLevel,
    MandateStatus,
    MandateFrequency,
    ChargeStatus,
    PaymentStatus,
    PaymentType,
    AuditAction,
    ReconciliationStatus,
)
from .user import User
from .mandate import UpiMandate, MandateChargeAttempt
from .payment import Payment
from .webhook_event import WebhookEvent
from .audit_log import AuditLog
from .reconciliation_task import ReconciliationTask

__all__ = [
    "TimestampMixin",
    "SubscriptionStatus",
    "SecurityRiskLevel",
    "MandateStatus",
    "MandateFrequency",
    "ChargeStatus",
    "PaymentStatus",
    "PaymentType",
    "AuditAction",
    "ReconciliationStatus",
    "User",
    "UpiMandate",
    "MandateChargeAttempt",
    "Payment",
    "WebhookEvent",
    "AuditLog",
    "ReconciliationTask",
]
