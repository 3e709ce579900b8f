"""Admin actions: block/unblock users and devices, cancel mandates."""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from autopay.app.exceptions import NotFoundError, ValidationError
from autopay.core.audit_log import AuditLogService
from autopay.models.enums import AuditAction, MandateStatus, SecurityRiskLevel, SubscriptionStatus
from autopay.models.user import User
from autopay.repositories.mandate_repo import MandateRepository
from autopay.repositories.user_repo import UserRepository
from autopay.services import entitlements
from autopay.services.mandate_engine import MandateEngine
from autopay.utils.validators import Clock, utcnow

logger = logging.getLogger(__name__)

ADMIN_ACTOR = "admin"


class AdminActions:
    """Each action returns the number of records it changed."""

    def __init__(self, db: Session, engine: MandateEngine, clock: Clock = utcnow, audit: Optional[AuditLogService] = None):
        self.db = db
        self.engine = engine
        self.clock = clock
        self.audit = audit or AuditLogService(db)
        self.users = UserRepository(db)
        self.mandates = MandateRepository(db)

    def _has_active_mandate(self, user_id: str) -> bool:
        mandate = self.mandates.get_open_for_user(user_id)
        return mandate is not None and mandate.status == MandateStatus.ACTIVE

    def block_user(self, user_id: str, reason: Optional[str] = None) -> int:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        changed = entitlements.apply_projection(user, entitlements.project_block(user, reason, self.clock()))
        if changed:
            self.audit.record(ADMIN_ACTOR, AuditAction.block, "user", user_id, {"reason": reason})
            logger.info("User %s blocked: %s", user_id, reason)
        self.users.commit()
        return 1 if changed else 0

    def unblock_user(self, user_id: str) -> int:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        update = entitlements.project_unblock(user, self.clock(), self._has_active_mandate(user_id))
        changed = entitlements.apply_projection(user, update)
        if changed:
            self.audit.record(ADMIN_ACTOR, AuditAction.unblock, "user", user_id, None)
            logger.info("User %s unblocked -> %s", user_id, user.subscription_status.value)
        self.users.commit()
        return 1 if changed else 0

    def block_device(self, device_fingerprint: str, reason: Optional[str] = None) -> int:
        """Block every user seen with this device fingerprint."""
        if not device_fingerprint:
            raise ValidationError("Device fingerprint is required")
        now = self.clock()
        count = 0
        for user in self.users.list_by_device(device_fingerprint):
            update = entitlements.project_block(user, reason, now)
            update["security_risk_level"] = SecurityRiskLevel.high
            if entitlements.apply_projection(user, update):
                count += 1
        self.audit.record(
            ADMIN_ACTOR, AuditAction.block, "device", device_fingerprint, {"reason": reason, "users": count},
        )
        self.users.commit()
        logger.info("Device %s blocked; %s users affected", device_fingerprint, count)
        return count

    def cancel_mandate(self, user_id: str, mandate_id: str) -> int:
        return self.engine.cancel_mandate(user_id, mandate_id, actor=ADMIN_ACTOR)

    def list_users(
        self,
        risk: Optional[SecurityRiskLevel] = None,
        status: Optional[SubscriptionStatus] = None,
        limit: int = 100,
    ) -> List[User]:
        return self.users.list_admin_view(risk=risk, status=status, limit=limit)
