"""Mandate repository: by-key lookups, compare-and-set and the due scan."""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from autopay.models.enums import ChargeStatus, MandateStatus, OPEN_MANDATE_STATUSES
from autopay.models.mandate import MandateChargeAttempt, UpiMandate
from .base import BaseRepository


class MandateRepository(BaseRepository[UpiMandate]):
    """Repository for UPI mandates and their charge attempts."""

    def __init__(self, db: Session):
        super().__init__(UpiMandate, db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_for_user(self, user_id: str, mandate_id: str) -> Optional[UpiMandate]:
        return (
            self.db.query(UpiMandate)
            .filter(UpiMandate.user_id == user_id, UpiMandate.mandate_id == mandate_id)
            .first()
        )

    def get_open_for_user(self, user_id: str) -> Optional[UpiMandate]:
        """The user's PENDING or ACTIVE mandate, if any."""
        return (
            self.db.query(UpiMandate)
            .filter(UpiMandate.user_id == user_id, UpiMandate.status.in_(OPEN_MANDATE_STATUSES))
            .order_by(UpiMandate.created_at.desc())
            .first()
        )

    def count_open_for_user(self, user_id: str) -> int:
        return (
            self.db.query(func.count())
            .select_from(UpiMandate)
            .filter(UpiMandate.user_id == user_id, UpiMandate.status.in_(OPEN_MANDATE_STATUSES))
            .scalar()
        )

    def get_by_payment_link(self, link_id: str) -> Optional[UpiMandate]:
        return self.get_by_field("provider_payment_link_id", link_id)

    def get_by_subscription(self, subscription_id: str) -> Optional[UpiMandate]:
        return self.get_by_field("provider_subscription_id", subscription_id)

    def get_by_provider_payment(self, provider_payment_id: str) -> Optional[UpiMandate]:
        """Mandate that already has an attempt carrying this provider payment id."""
        return (
            self.db.query(UpiMandate)
            .join(MandateChargeAttempt, MandateChargeAttempt.mandate_id == UpiMandate.mandate_id)
            .filter(MandateChargeAttempt.provider_payment_id == provider_payment_id)
            .first()
        )

    def history(self, user_id: str, limit: int = 10) -> List[UpiMandate]:
        return (
            self.db.query(UpiMandate)
            .filter(UpiMandate.user_id == user_id)
            .order_by(UpiMandate.created_at.desc(), UpiMandate.start_date.desc())
            .limit(limit)
            .all()
        )

    def recent(self, limit: int = 5) -> List[UpiMandate]:
        return self.db.query(UpiMandate).order_by(UpiMandate.created_at.desc()).limit(limit).all()

    def list_due(self, now: datetime, limit: int) -> List[UpiMandate]:
        """ACTIVE mandates whose next charge date has been reached, oldest first."""
        return (
            self.db.query(UpiMandate)
            .filter(UpiMandate.status == MandateStatus.ACTIVE, UpiMandate.next_charge_date <= now)
            .order_by(UpiMandate.next_charge_date.asc())
            .limit(limit)
            .all()
        )

    def list_past_end_date(self, now: datetime) -> List[UpiMandate]:
        return (
            self.db.query(UpiMandate)
            .filter(
                UpiMandate.status.in_((MandateStatus.PENDING, MandateStatus.ACTIVE, MandateStatus.PAUSED)),
                UpiMandate.end_date <= now,
            )
            .all()
        )

    # ------------------------------------------------------------------
    # Atomic writes
    # ------------------------------------------------------------------

    def compare_and_set(
        self,
        mandate_id: str,
        expected: Iterable[MandateStatus],
        values: Dict[str, Any],
    ) -> Optional[UpiMandate]:
        """
        Update the mandate only if its status is still one of ``expected``.

        Returns:
            The refreshed mandate, or None when the status had moved on.
        """
        updated = (
            self.db.query(UpiMandate)
            .filter(UpiMandate.mandate_id == mandate_id, UpiMandate.status.in_(tuple(expected)))
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            return None
        self.flush()
        return self.get(mandate_id, fresh=True)

    def append_charge_attempt(
        self,
        mandate: UpiMandate,
        attempted_at: datetime,
        amount: int,
        status: ChargeStatus,
        reference: Optional[str] = None,
        provider_payment_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> MandateChargeAttempt:
        """Append an attempt with the next sequence number.

        Two concurrent appenders collide on (mandate_id, sequence) and the
        loser gets a ConflictError.
        """
        last = (
            self.db.query(func.max(MandateChargeAttempt.sequence))
            .filter(MandateChargeAttempt.mandate_id == mandate.mandate_id)
            .scalar()
        )
        attempt = MandateChargeAttempt(
            mandate_id=mandate.mandate_id,
            sequence=(last or 0) + 1,
            attempted_at=attempted_at,
            amount=amount,
            status=status,
            reference=reference,
            provider_payment_id=provider_payment_id,
            failure_reason=failure_reason,
        )
        self.db.add(attempt)
        self.flush()
        self.db.expire(mandate, ["charge_attempts"])
        return attempt

    def has_attempt(self, mandate_id: str, provider_payment_id: str, status: ChargeStatus) -> bool:
        return (
            self.db.query(MandateChargeAttempt.id)
            .filter(
                MandateChargeAttempt.mandate_id == mandate_id,
                MandateChargeAttempt.provider_payment_id == provider_payment_id,
                MandateChargeAttempt.status == status,
            )
            .first()
            is not None
        )

    def consecutive_failures(self, mandate_id: str) -> int:
        """Number of FAILED attempts since the most recent SUCCESS."""
        statuses = (
            self.db.query(MandateChargeAttempt.status)
            .filter(MandateChargeAttempt.mandate_id == mandate_id)
            .order_by(MandateChargeAttempt.sequence.desc())
            .all()
        )
        count = 0
        for (status,) in statuses:
            if status != ChargeStatus.FAILED:
                break
            count += 1
        return count

    def status_counts(self) -> Dict[MandateStatus, int]:
        rows = self.db.query(UpiMandate.status, func.count()).group_by(UpiMandate.status).all()
        return {status: total for status, total in rows}
