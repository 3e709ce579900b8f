"""Admin schemas."""
from datetime import datetime
from typing import Optional

from autopay.models.enums import SecurityRiskLevel, SubscriptionStatus
from .common import CamelModel


class BlockUserRequest(CamelModel):
    reason: Optional[str] = None


class BlockDeviceRequest(CamelModel):
    device_fingerprint: Optional[str] = None
    reason: Optional[str] = None


class AdminCancelMandateRequest(CamelModel):
    user_id: Optional[str] = None
    mandate_id: Optional[str] = None


class AdminUserOut(CamelModel):
    user_id: str
    email: Optional[str] = None
    subscription_status: SubscriptionStatus
    subscription_expiry: Optional[datetime] = None
    has_auto_renewal: bool
    upi_mandate_id: Optional[str] = None
    trial_days_remaining: int
    security_risk_level: SecurityRiskLevel
    device_fingerprint: Optional[str] = None
    block_reason: Optional[str] = None
    blocked_at: Optional[datetime] = None
