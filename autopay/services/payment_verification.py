"""Verification of one-off payments (checkout signature or manual transaction id)."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from autopay.app.config import Settings, settings as default_settings
from autopay.app.exceptions import AuthFailureError, ConflictError, ValidationError
from autopay.models.enums import PaymentStatus, PaymentType
from autopay.models.payment import Payment
from autopay.repositories.payment_repo import PaymentRepository
from autopay.repositories.user_repo import UserRepository
from autopay.services import entitlements
from autopay.services.provider.base import BasePaymentProvider
from autopay.utils.validators import Clock, to_minor_units, utcnow

logger = logging.getLogger(__name__)


class PaymentVerificationService:

    def __init__(
        self,
        db: Session,
        provider: BasePaymentProvider,
        clock: Clock = utcnow,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.provider = provider
        self.clock = clock
        self.config = config or default_settings
        self.payments = PaymentRepository(db)
        self.users = UserRepository(db)

    def verify(
        self,
        user_id: Optional[str],
        order_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        signature: Optional[str] = None,
        transaction_id: Optional[str] = None,
        client: Optional[dict] = None,
    ) -> Payment:
        """
        Verify a payment and grant one period of access.

        The checkout path needs ``order_id``, ``payment_id`` and
        ``signature``; it completes the matching pending payment. The
        manual path needs ``transaction_id`` and ``user_id``.
        """
        if payment_id and signature:
            if not self.provider.verify_checkout_signature(
                order_id or "", payment_id, signature, self.config.RAZORPAY_KEY_SECRET
            ):
                logger.warning("Invalid checkout signature for payment %s", payment_id)
                raise AuthFailureError("Invalid payment signature", status_code=400)
            payment = self.payments.get_pending_by_order(user_id, order_id) if user_id and order_id else None
            if payment is not None:
                return self._complete(payment, payment_id)

        if transaction_id and user_id:
            return self._record_manual(user_id, transaction_id, client or {})

        raise ValidationError("Invalid payment verification data")

    def _complete(self, payment: Payment, payment_id: str) -> Payment:
        now = self.clock()
        if self.payments.get_by_provider_payment_id(payment_id):
            raise ConflictError("Payment already verified", data={"paymentId": payment_id})
        self.payments.update(payment, {
            "status": PaymentStatus.completed,
            "provider_payment_id": payment_id,
            "validated_at": now,
            "updated_at": now,
        })
        self._grant_period(payment.user_id, now)
        self.payments.commit()
        logger.info("Checkout payment %s verified for user %s", payment_id, payment.user_id)
        return payment

    def _record_manual(self, user_id: str, transaction_id: str, client: dict) -> Payment:
        now = self.clock()
        existing = self.payments.get_by_transaction_id(transaction_id)
        if existing:
            raise ConflictError(
                "Transaction already recorded",
                data={"transactionId": existing.transaction_id, "status": existing.status.value},
            )
        payment = self.payments.create({
            "transaction_id": transaction_id,
            "user_id": user_id,
            "amount": to_minor_units(self.config.SUBSCRIPTION_PRICE),
            "currency": "INR",
            "status": PaymentStatus.completed,
            "validated_at": now,
            "payment_type": PaymentType.manual_verification,
            "extra": {
                "platform": "manual_verification",
                "user_agent": client.get("user_agent"),
                "ip_address": client.get("ip_address"),
            },
            "created_at": now,
            "updated_at": now,
        })
        self._grant_period(user_id, now)
        self.payments.commit()
        logger.info("Manual payment %s recorded for user %s", transaction_id, user_id)
        return payment

    def _grant_period(self, user_id: str, now):
        user = self.users.get_or_create(user_id, now, self.config.TRIAL_DAYS)
        entitlements.apply_projection(user, entitlements.project_one_off_payment(user, now))
        self.users.flush()

    def history(self, user_id: str, limit: int = 10):
        return self.payments.history(user_id, limit)
