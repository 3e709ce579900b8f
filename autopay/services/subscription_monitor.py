"""
Daily subscription sweeps: mandate expiry, lapsed entitlements, trial
countdown and provider reconciliation retries.
"""

import logging
from typing import Dict

from sqlalchemy.orm import Session

from autopay.app.exceptions import AutopayError, ProviderError
from autopay.models.enums import MandateStatus, ReconciliationStatus
from autopay.repositories.mandate_repo import MandateRepository
from autopay.repositories.reconciliation_repo import ReconciliationTaskRepository
from autopay.repositories.user_repo import UserRepository
from autopay.services import entitlements
from autopay.services.mandate_engine import MandateEngine
from autopay.services.provider.base import BasePaymentProvider
from autopay.utils.validators import Clock, utcnow

logger = logging.getLogger(__name__)

MAX_RECONCILIATION_ATTEMPTS = 10


def expire_mandates(engine: MandateEngine) -> int:
    """EXPIRE every non-terminal mandate whose end date has passed."""
    now = engine.clock()
    candidates = [m.mandate_id for m in engine.mandates.list_past_end_date(now)]
    engine.db.commit()
    expired = 0
    for mandate_id in candidates:
        try:
            if engine.expire_mandate(mandate_id):
                expired += 1
        except AutopayError as exc:
            logger.warning("Could not expire mandate %s: %s", mandate_id, exc.message)
    logger.info("Expired %s mandates", expired)
    return expired


def sweep_lapsed_users(db: Session, clock: Clock = utcnow) -> int:
    """Mark users expired once their paid runway ends without an ACTIVE mandate."""
    now = clock()
    users = UserRepository(db)
    mandates = MandateRepository(db)
    changed = 0
    for user in users.list_lapsed(now):
        open_mandate = mandates.get_open_for_user(user.user_id)
        has_active = open_mandate is not None and open_mandate.status == MandateStatus.ACTIVE
        if entitlements.apply_projection(user, entitlements.project_expiry_crossing(user, now, has_active)):
            changed += 1
    users.commit()
    logger.info("Expired %s lapsed subscriptions", changed)
    return changed


def refresh_trials(db: Session, clock: Clock = utcnow) -> int:
    """Recompute trial days remaining; exhausted trials become expired."""
    now = clock()
    users = UserRepository(db)
    changed = 0
    for user in users.list_trial_users():
        if entitlements.apply_projection(user, entitlements.project_trial_tick(user, now)):
            changed += 1
    users.commit()
    logger.info("Refreshed %s trial users", changed)
    return changed


def retry_reconciliation_tasks(db: Session, provider: BasePaymentProvider) -> Dict[str, int]:
    """Replay provider cancellations that failed after the local cancel."""
    tasks = ReconciliationTaskRepository(db)
    stats = {"done": 0, "failed": 0, "pending": 0}
    for task in tasks.list_pending():
        task.attempts += 1
        try:
            if task.kind == "cancel_subscription":
                provider.cancel_subscription(task.provider_reference, immediate=True)
            task.status = ReconciliationStatus.done
            task.last_error = None
            stats["done"] += 1
        except ProviderError as exc:
            task.last_error = exc.message
            if task.attempts >= MAX_RECONCILIATION_ATTEMPTS or not exc.retryable:
                task.status = ReconciliationStatus.failed
                stats["failed"] += 1
                logger.error("Reconciliation %s for mandate %s gave up: %s", task.kind, task.mandate_id, exc.message)
            else:
                stats["pending"] += 1
        tasks.flush()
    tasks.commit()
    logger.info("Reconciliation retry: %s", stats)
    return stats
