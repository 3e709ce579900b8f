"""User repository."""
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from autopay.models.enums import SubscriptionStatus, SecurityRiskLevel
from autopay.models.user import User
from .base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for extension users."""

    def __init__(self, db: Session):
        super().__init__(User, db)

    def get_or_create(self, user_id: str, now: datetime, trial_days: int) -> User:
        """Return the user, creating a fresh trial record on first sight."""
        user = self.get(user_id)
        if user:
            return user
        return self.create({
            "user_id": user_id,
            "subscription_status": SubscriptionStatus.trial,
            "trial_start_date": now,
            "trial_end_date": now + timedelta(days=trial_days),
            "trial_days_remaining": trial_days,
        })

    def list_admin_view(
        self,
        risk: Optional[SecurityRiskLevel] = None,
        status: Optional[SubscriptionStatus] = None,
        limit: int = 100,
    ) -> List[User]:
        """Users filtered by risk level and/or subscription status, newest first."""
        query = self.db.query(User)
        if risk is not None:
            query = query.filter(User.security_risk_level == risk)
        if status is not None:
            query = query.filter(User.subscription_status == status)
        return query.order_by(User.created_at.desc()).limit(limit).all()

    def list_by_device(self, device_fingerprint: str) -> List[User]:
        return self.db.query(User).filter(User.device_fingerprint == device_fingerprint).all()

    def list_trial_users(self) -> List[User]:
        return self.db.query(User).filter(User.subscription_status == SubscriptionStatus.trial).all()

    def list_lapsed(self, now: datetime) -> List[User]:
        """Non-blocked users whose paid runway has run out."""
        return (
            self.db.query(User)
            .filter(
                User.subscription_status.in_((SubscriptionStatus.active, SubscriptionStatus.cancelled)),
                User.subscription_expiry.isnot(None),
                User.subscription_expiry <= now,
            )
            .all()
        )
