"""Payment schemas."""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from autopay.models.enums import PaymentStatus, PaymentType
from .common import CamelModel, to_major_units


class VerifyPaymentRequest(BaseModel):
    """Checkout fields keep Razorpay's snake_case names; ours are camelCase."""
    model_config = ConfigDict(populate_by_name=True)

    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    user_id: Optional[str] = Field(None, alias="userId")
    transaction_id: Optional[str] = Field(None, alias="transactionId")


class PaymentOut(CamelModel):
    transaction_id: str
    user_id: str
    provider_payment_id: Optional[str] = None
    provider_order_id: Optional[str] = None
    amount: int
    currency: str
    status: PaymentStatus
    payment_type: PaymentType
    mandate_id: Optional[str] = None
    validated_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    extra: Optional[Dict[str, Any]] = None
    created_at: datetime

    @field_serializer("amount")
    def _amount(self, value: int):
        return to_major_units(value)
