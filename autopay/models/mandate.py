"""UPI autopay mandate and its charge attempts."""
from sqlalchemy import (
    Column, String, Integer, DateTime, Text, ForeignKey, Index, UniqueConstraint, text,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from autopay.db.base import Base
from .base import TimestampMixin, new_id
from .enums import MandateStatus, MandateFrequency, ChargeStatus

_OPEN_STATUS_CLAUSE = "status IN ('PENDING', 'ACTIVE')"


class UpiMandate(Base, TimestampMixin):
    """Standing authorization from a payer to be charged a fixed amount every period."""

    __tablename__ = 'upi_mandates'

    mandate_id = Column(String(128), primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)

    upi_id = Column(String(320), nullable=False)
    merchant_vpa = Column(String(320), nullable=False)
    amount = Column(Integer, nullable=False)  # minor units (paise)
    currency = Column(String(3), default='INR', nullable=False)
    frequency = Column(SQLEnum(MandateFrequency, name="mandatefrequency"), default=MandateFrequency.MONTHLY, nullable=False)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    status = Column(SQLEnum(MandateStatus, name="mandatestatus"), default=MandateStatus.PENDING, nullable=False, index=True)

    # Provider references
    provider_payment_link_id = Column(String(255), unique=True, nullable=True, index=True)
    provider_subscription_id = Column(String(255), unique=True, nullable=True, index=True)
    approval_reference = Column(String(255), nullable=True)

    last_charged_date = Column(DateTime, nullable=True)
    next_charge_date = Column(DateTime, nullable=True)
    last_provider_event_at = Column(DateTime, nullable=True)

    # QR
    qr_payload = Column(Text, nullable=True)
    qr_code_image = Column(Text, nullable=True)

    # Client metadata
    user_agent = Column(String(512), nullable=True)
    ip_address = Column(String(45), nullable=True)
    platform = Column(String(50), default='extension', nullable=True)

    charge_attempts = relationship(
        'MandateChargeAttempt',
        back_populates='mandate',
        order_by='MandateChargeAttempt.sequence',
        cascade='all, delete-orphan',
    )

    __table_args__ = (
        # scheduler scan
        Index('ix_upi_mandates_status_next_charge', 'status', 'next_charge_date'),
        # at most one open mandate per user
        Index(
            'uq_upi_mandates_open_user',
            'user_id',
            unique=True,
            sqlite_where=text(_OPEN_STATUS_CLAUSE),
            postgresql_where=text(_OPEN_STATUS_CLAUSE),
        ),
    )

    def __repr__(self) -> str:
        return f'<UpiMandate(mandate_id={self.mandate_id}, user_id={self.user_id}, status={self.status})>'


class MandateChargeAttempt(Base):
    """One append-only entry of a mandate's charge history."""

    __tablename__ = 'mandate_charge_attempts'

    id = Column(String(32), primary_key=True, default=new_id)
    mandate_id = Column(String(128), ForeignKey('upi_mandates.mandate_id', ondelete='CASCADE'), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)

    attempted_at = Column(DateTime, nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(SQLEnum(ChargeStatus, name="chargestatus"), nullable=False)
    reference = Column(String(255), nullable=True, index=True)
    provider_payment_id = Column(String(255), nullable=True, index=True)
    failure_reason = Column(String(512), nullable=True)

    mandate = relationship('UpiMandate', back_populates='charge_attempts')

    __table_args__ = (
        UniqueConstraint('mandate_id', 'sequence', name='uq_charge_attempt_sequence'),
    )

    def __repr__(self) -> str:
        return f'<MandateChargeAttempt(mandate_id={self.mandate_id}, seq={self.sequence}, status={self.status})>'
