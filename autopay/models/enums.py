"""Enums for database models."""
import enum


class SubscriptionStatus(str, enum.Enum):
    """User-facing entitlement status."""
    trial = "trial"
    active = "active"
    blocked = "blocked"
    expired = "expired"
    cancelled = "cancelled"


class SecurityRiskLevel(str, enum.Enum):
    """Trial-abuse risk level assigned to a user."""
    low = "low"
    medium = "medium"
    high = "high"


class MandateStatus(str, enum.Enum):
    """UPI autopay mandate lifecycle."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


OPEN_MANDATE_STATUSES = (MandateStatus.PENDING, MandateStatus.ACTIVE)
TERMINAL_MANDATE_STATUSES = (MandateStatus.CANCELLED, MandateStatus.EXPIRED)


class MandateFrequency(str, enum.Enum):
    """Billing frequency of a mandate."""
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class ChargeStatus(str, enum.Enum):
    """Outcome of a single charge attempt."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PaymentStatus(str, enum.Enum):
    """Payment status."""
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class PaymentType(str, enum.Enum):
    """Tag of the payment metadata variant."""
    mandate_setup = "mandate_setup"
    recurring_charge = "recurring_charge"
    manual_verification = "manual_verification"
    admin_action = "admin_action"


class AuditAction(str, enum.Enum):
    """Audit log action types."""
    create = "create"
    update = "update"
    cancel = "cancel"
    block = "block"
    unblock = "unblock"
    provider_failure = "provider_failure"
    invariant_violation = "invariant_violation"


class ReconciliationStatus(str, enum.Enum):
    """Status of a deferred provider-side repair."""
    pending = "pending"
    done = "done"
    failed = "failed"
