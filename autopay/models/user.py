"""User model."""
from sqlalchemy import Column, String, Boolean, Integer, DateTime, Enum as SQLEnum

from autopay.db.base import Base
from .base import TimestampMixin
from .enums import SubscriptionStatus, SecurityRiskLevel


class User(Base, TimestampMixin):
    """Extension user and the entitlement state projected from mandates and payments."""

    __tablename__ = 'users'

    user_id = Column(String(128), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    name = Column(String(255), nullable=True)

    # Entitlement
    subscription_status = Column(
        SQLEnum(SubscriptionStatus, name="subscriptionstatus"),
        default=SubscriptionStatus.trial,
        nullable=False,
        index=True,
    )
    subscription_expiry = Column(DateTime, nullable=True)
    has_auto_renewal = Column(Boolean, default=False, nullable=False)
    last_payment_date = Column(DateTime, nullable=True)
    upi_mandate_id = Column(String(128), nullable=True)

    # Trial
    trial_start_date = Column(DateTime, nullable=True)
    trial_end_date = Column(DateTime, nullable=True)
    trial_days_remaining = Column(Integer, default=0, nullable=False)

    # Trial-abuse signals
    security_risk_level = Column(
        SQLEnum(SecurityRiskLevel, name="securityrisklevel"),
        default=SecurityRiskLevel.low,
        nullable=False,
        index=True,
    )
    device_fingerprint = Column(String(255), nullable=True, index=True)
    block_reason = Column(String(512), nullable=True)
    blocked_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f'<User(user_id={self.user_id}, status={self.subscription_status}, auto_renewal={self.has_auto_renewal})>'
