"""UPI mandate schemas."""
from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_serializer

from autopay.models.enums import ChargeStatus, MandateFrequency, MandateStatus
from .common import CamelModel, to_major_units


class CreateMandateRequest(CamelModel):
    """Body of POST /create-mandate; presence and format are checked by the engine."""
    user_id: Optional[str] = None
    user_upi_id: Optional[str] = None
    amount: Optional[float] = Field(None, description="Amount in INR (defaults to SUBSCRIPTION_PRICE)")


class CancelMandateRequest(CamelModel):
    user_id: Optional[str] = None
    mandate_id: Optional[str] = None


class ChargeAttemptOut(CamelModel):
    date: datetime = Field(validation_alias="attempted_at")
    amount: int
    status: ChargeStatus
    reference: Optional[str] = None
    provider_payment_id: Optional[str] = None
    failure_reason: Optional[str] = None

    @field_serializer("amount")
    def _amount(self, value: int):
        return to_major_units(value)


class MandateOut(CamelModel):
    """Mandate without the QR payload (history views)."""
    mandate_id: str
    user_id: str
    upi_id: str
    merchant_vpa: str
    amount: int
    currency: str
    frequency: MandateFrequency
    status: MandateStatus
    start_date: datetime
    end_date: datetime
    next_charge_date: Optional[datetime] = None
    last_charged_date: Optional[datetime] = None
    provider_payment_link_id: Optional[str] = None
    provider_subscription_id: Optional[str] = None
    approval_reference: Optional[str] = None
    charge_attempts: List[ChargeAttemptOut] = []
    created_at: datetime

    @field_serializer("amount")
    def _amount(self, value: int):
        return to_major_units(value)


class MandateSummaryOut(CamelModel):
    mandate_id: str
    user_id: str
    status: MandateStatus
    amount: int
    created_at: datetime

    @field_serializer("amount")
    def _amount(self, value: int):
        return to_major_units(value)


class MandateStatusOut(CamelModel):
    has_mandate: bool = True
    mandate_id: str
    status: MandateStatus
    amount: int
    frequency: MandateFrequency
    next_charge_date: Optional[datetime] = None
    end_date: datetime
    last_charged_date: Optional[datetime] = None
    qr_code_image: Optional[str] = None

    @field_serializer("amount")
    def _amount(self, value: int):
        return to_major_units(value)


class MandateCreatedOut(CamelModel):
    mandate_id: str
    razorpay_mandate_id: str
    payment_link_id: str
    qr_code_image: Optional[str] = None
    qr_code_data: Optional[str] = None
    payment_url: Optional[str] = None
    upi_mandate_uri: str
    amount: int
    frequency: MandateFrequency
    start_date: datetime
    end_date: datetime
    next_charge_date: datetime
    instructions: List[str]

    @field_serializer("amount")
    def _amount(self, value: int):
        return to_major_units(value)


MANDATE_INSTRUCTIONS = [
    "1. Scan the QR code or click the payment link",
    "2. Complete the payment to setup autopay",
    "3. Your subscription will be automatically renewed monthly",
    "4. You can cancel anytime from the extension settings",
]
