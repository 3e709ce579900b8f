"""Payment repository."""
from typing import List, Optional

from sqlalchemy.orm import Session

from autopay.models.enums import PaymentStatus
from autopay.models.payment import Payment
from .base import BaseRepository


class PaymentRepository(BaseRepository[Payment]):
    """Repository for the append-only payment log."""

    def __init__(self, db: Session):
        super().__init__(Payment, db)

    def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        return self.get_by_field("transaction_id", transaction_id)

    def get_by_provider_payment_id(self, provider_payment_id: str) -> Optional[Payment]:
        return self.get_by_field("provider_payment_id", provider_payment_id)

    def get_pending_by_order(self, user_id: str, order_id: str) -> Optional[Payment]:
        return (
            self.db.query(Payment)
            .filter(
                Payment.user_id == user_id,
                Payment.provider_order_id == order_id,
                Payment.status == PaymentStatus.pending,
            )
            .first()
        )

    def history(self, user_id: str, limit: int = 10) -> List[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .all()
        )

    def completed_for_reference(self, reference: str) -> List[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.transaction_id == reference, Payment.status == PaymentStatus.completed)
            .all()
        )
