"""Payment model."""
from sqlalchemy import Column, String, Integer, DateTime, JSON, Enum as SQLEnum

from autopay.db.base import Base
from .base import TimestampMixin, new_id
from .enums import PaymentStatus, PaymentType


class Payment(Base, TimestampMixin):
    """Append-only payment log entry."""

    __tablename__ = 'payments'

    id = Column(String(32), primary_key=True, default=new_id)
    transaction_id = Column(String(255), unique=True, nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)

    # Razorpay details
    provider_payment_id = Column(String(255), unique=True, nullable=True, index=True)
    provider_order_id = Column(String(255), nullable=True, index=True)

    amount = Column(Integer, nullable=False)  # minor units
    currency = Column(String(3), default='INR', nullable=False)
    status = Column(SQLEnum(PaymentStatus, name="paymentstatus"), default=PaymentStatus.pending, nullable=False, index=True)
    validated_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    # Tagged metadata
    payment_type = Column(SQLEnum(PaymentType, name="paymenttype"), nullable=False, index=True)
    mandate_id = Column(String(128), nullable=True, index=True)
    extra = Column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f'<Payment(transaction_id={self.transaction_id}, type={self.payment_type}, status={self.status})>'
