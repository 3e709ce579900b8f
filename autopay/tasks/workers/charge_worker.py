"""
Subscription Celery Workers
===========================

Scheduled tasks that drive the autopay lifecycle outside of requests.

Tasks:
- Daily charge tick over due mandates
- Daily sweeps: mandate expiry, lapsed subscriptions, trial countdown
- Hourly retry of failed provider cancellations
"""

from typing import Any, Dict
import logging
import traceback

from celery import Task
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from autopay.tasks.celery_app import celery_app
from autopay.db.base import SessionLocal
from autopay.core.locks import get_lock_manager
from autopay.services.charge_scheduler import ChargeScheduler
from autopay.services.mandate_engine import MandateEngine
from autopay.services.provider.base import BasePaymentProvider
from autopay.services.provider.razorpay import build_provider
from autopay.services.subscription_monitor import (
    expire_mandates,
    refresh_trials,
    retry_reconciliation_tasks,
    sweep_lapsed_users,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Base Task Class
# =============================================================================

class SubscriptionTask(Task):
    """Base task for scheduled subscription work."""

    autoretry_for = (SQLAlchemyError,)
    retry_kwargs = {'max_retries': 3}
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True

    _provider = None

    @property
    def provider(self) -> BasePaymentProvider:
        """Lazy-load the payment provider client."""
        if self._provider is None:
            self._provider = build_provider()
        return self._provider

    def get_db(self) -> Session:
        """Get database session."""
        return SessionLocal()

    def build_engine(self, db: Session) -> MandateEngine:
        return MandateEngine(db, self.provider, get_lock_manager())

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        logger.error(
            f"Task {task_id} failed: {str(exc)}",
            extra={
                "task_id": task_id,
                "traceback": traceback.format_exc()
            }
        )

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"Task {task_id} completed successfully", extra={"task_id": task_id, "result": retval})


# =============================================================================
# Tasks
# =============================================================================

@celery_app.task(bind=True, base=SubscriptionTask, name='tasks.run_charge_tick', track_started=True)
def run_charge_tick(self) -> Dict[str, Any]:
    """Charge every due ACTIVE mandate once."""
    db = self.get_db()
    try:
        scheduler = ChargeScheduler(db, self.build_engine(db))
        return scheduler.run_tick().as_dict()
    finally:
        db.close()


@celery_app.task(bind=True, base=SubscriptionTask, name='tasks.run_daily_sweeps')
def run_daily_sweeps(self) -> Dict[str, int]:
    db = self.get_db()
    try:
        return {
            "expiredMandates": expire_mandates(self.build_engine(db)),
            "lapsedUsers": sweep_lapsed_users(db),
            "trialUsers": refresh_trials(db),
        }
    finally:
        db.close()


@celery_app.task(bind=True, base=SubscriptionTask, name='tasks.retry_reconciliations')
def retry_reconciliations(self) -> Dict[str, int]:
    """Replay provider cancellations that failed after the local cancel."""
    db = self.get_db()
    try:
        return retry_reconciliation_tasks(db, self.provider)
    finally:
        db.close()
