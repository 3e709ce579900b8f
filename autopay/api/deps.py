"""Dependencies for API endpoints."""
import hmac
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from autopay.app.config import Settings, get_settings
from autopay.app.exceptions import AuthFailureError
from autopay.core.locks import LockManager, get_lock_manager
from autopay.db.base import get_db
from autopay.services.admin_actions import AdminActions
from autopay.services.charge_scheduler import ChargeScheduler
from autopay.services.mandate_engine import MandateEngine
from autopay.services.payment_verification import PaymentVerificationService
from autopay.services.provider.base import BasePaymentProvider
from autopay.services.provider.razorpay import build_provider
from autopay.services.webhook_reconciler import WebhookReconciler
from autopay.utils.validators import Clock, utcnow

__all__ = ["get_db"]


def get_config() -> Settings:
    return get_settings()


@lru_cache
def _provider() -> BasePaymentProvider:
    return build_provider()


def get_provider() -> BasePaymentProvider:
    return _provider()


def get_clock() -> Clock:
    return utcnow


def get_locks() -> LockManager:
    return get_lock_manager()


def get_engine(
    db: Session = Depends(get_db),
    provider: BasePaymentProvider = Depends(get_provider),
    locks: LockManager = Depends(get_locks),
    clock: Clock = Depends(get_clock),
    config: Settings = Depends(get_config),
) -> MandateEngine:
    return MandateEngine(db, provider, locks, clock=clock, config=config)


def get_reconciler(
    db: Session = Depends(get_db),
    engine: MandateEngine = Depends(get_engine),
    provider: BasePaymentProvider = Depends(get_provider),
    clock: Clock = Depends(get_clock),
    config: Settings = Depends(get_config),
) -> WebhookReconciler:
    return WebhookReconciler(db, engine, provider, secret=config.WEBHOOK_SECRET, clock=clock)


def get_scheduler(
    db: Session = Depends(get_db),
    engine: MandateEngine = Depends(get_engine),
    clock: Clock = Depends(get_clock),
    config: Settings = Depends(get_config),
) -> ChargeScheduler:
    return ChargeScheduler(db, engine, clock=clock, config=config)


def get_admin_actions(
    db: Session = Depends(get_db),
    engine: MandateEngine = Depends(get_engine),
    clock: Clock = Depends(get_clock),
) -> AdminActions:
    return AdminActions(db, engine, clock=clock)


def get_payment_service(
    db: Session = Depends(get_db),
    provider: BasePaymentProvider = Depends(get_provider),
    clock: Clock = Depends(get_clock),
    config: Settings = Depends(get_config),
) -> PaymentVerificationService:
    return PaymentVerificationService(db, provider, clock=clock, config=config)


def require_internal_token(
    x_internal_token: Optional[str] = Header(None),
    config: Settings = Depends(get_config),
) -> None:
    """Guard for internal/admin routes; open when INTERNAL_API_TOKEN is unset."""
    if not config.INTERNAL_API_TOKEN:
        return
    if not x_internal_token or not hmac.compare_digest(
        x_internal_token.encode("utf-8"), config.INTERNAL_API_TOKEN.encode("utf-8")
    ):
        raise AuthFailureError("Invalid internal token")
