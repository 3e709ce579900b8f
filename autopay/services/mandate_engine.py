"""
Mandate Engine
==============

State machine for UPI autopay mandates:

    PENDING --callback paid / subscription.activated--> ACTIVE
    ACTIVE  --subscription.charged / scheduler success--> ACTIVE (+30d)
    ACTIVE  --payment.failed / scheduler failure--> ACTIVE (FAILED attempt)
    ACTIVE  --subscription.halted / failure cap--> PAUSED
    non-terminal --cancel--> CANCELLED
    PENDING / ACTIVE / PAUSED --end date reached--> EXPIRED

Every transition reads the mandate fresh under its advisory lock, writes
through compare-and-set on the status column and commits the mandate,
charge attempt, payment and user projection together.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from autopay.app.config import Settings, settings as default_settings
from autopay.app.exceptions import (
    ConflictError,
    FatalInvariantError,
    NotFoundError,
    ProviderError,
    TransientError,
    ValidationError,
)
from autopay.core.audit_log import AuditLogService
from autopay.core.locks import LockManager
from autopay.models.enums import (
    AuditAction,
    ChargeStatus,
    MandateStatus,
    PaymentStatus,
    PaymentType,
    SubscriptionStatus,
    TERMINAL_MANDATE_STATUSES,
)
from autopay.models.mandate import UpiMandate
from autopay.models.user import User
from autopay.repositories.mandate_repo import MandateRepository
from autopay.repositories.payment_repo import PaymentRepository
from autopay.repositories.reconciliation_repo import ReconciliationTaskRepository
from autopay.repositories.user_repo import UserRepository
from autopay.schemas.common import to_major_units
from autopay.services import entitlements
from autopay.services.provider.base import BasePaymentProvider
from autopay.services.qr import build_mandate_uri, render_qr_data_url
from autopay.utils.validators import Clock, epoch_ms, epoch_seconds, is_valid_upi_id, to_minor_units, utcnow

logger = logging.getLogger(__name__)

PERIOD = entitlements.PERIOD
MANDATE_VALIDITY = timedelta(days=5 * 365)
NON_TERMINAL = (MandateStatus.PENDING, MandateStatus.ACTIVE, MandateStatus.PAUSED)


# =============================================================================
# Engine inputs and outputs
# =============================================================================

class WebhookOp:
    """Kinds of engine calls a provider event can map to."""
    ACTIVATE = "activate"
    CHARGED = "charged"
    PAYMENT_FAILED = "payment_failed"
    HALT = "halt"
    CANCEL = "cancel"
    COMPLETE = "complete"

    LIFECYCLE = (ACTIVATE, HALT, CANCEL, COMPLETE)


@dataclass(frozen=True)
class EngineCall:
    """One store operation derived from a provider event."""
    op: str
    subscription_id: Optional[str] = None
    mandate_id: Optional[str] = None
    payment_id: Optional[str] = None
    amount: Optional[int] = None  # minor units
    failure_reason: Optional[str] = None
    event_at: Optional[datetime] = None


@dataclass
class ChargeResult:
    mandate_id: str
    user_id: str
    success: bool
    amount: Optional[int] = None
    reference: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False
    paused: bool = False

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "mandateId": self.mandate_id,
            "userId": self.user_id,
            "success": self.success,
            "amount": to_major_units(self.amount),
        }
        if self.reference:
            data["reference"] = self.reference
        if self.error:
            data["error"] = self.error
        if self.skipped:
            data["skipped"] = True
        if self.paused:
            data["paused"] = True
        return data


@dataclass
class ApplyOutcome:
    status: str  # applied | ignored | stale | duplicate
    mandate_id: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Engine
# =============================================================================

class MandateEngine:
    """Creates mandates and applies every event that can move one."""

    def __init__(
        self,
        db: Session,
        provider: BasePaymentProvider,
        locks: LockManager,
        clock: Clock = utcnow,
        config: Optional[Settings] = None,
        audit: Optional[AuditLogService] = None,
    ):
        self.db = db
        self.provider = provider
        self.locks = locks
        self.clock = clock
        self.config = config or default_settings
        self.audit = audit or AuditLogService(db)

        self.mandates = MandateRepository(db)
        self.users = UserRepository(db)
        self.payments = PaymentRepository(db)
        self.reconciliations = ReconciliationTaskRepository(db)

    # ------------------------------------------------------------------
    # Transaction / lock scaffolding
    # ------------------------------------------------------------------

    @contextmanager
    def _transition(self, lock_key: str, target_type: str, target_id: str):
        with self.locks.hold(lock_key):
            try:
                yield
                self.mandates.commit()
            except FatalInvariantError as exc:
                self.db.rollback()
                self.audit.alert(exc.message, target_type, target_id, exc.data)
                self.db.commit()
                raise
            except ProviderError as exc:
                self.db.rollback()
                self.audit.record(
                    "system",
                    AuditAction.provider_failure,
                    target_type,
                    target_id,
                    {"error": exc.message, "code": exc.code, "retryable": exc.retryable},
                )
                self.db.commit()
                raise
            except OperationalError as exc:
                self.db.rollback()
                raise TransientError() from exc
            except Exception:
                self.db.rollback()
                raise

    def _log_transition(self, mandate: UpiMandate, old: MandateStatus, new: MandateStatus, why: str):
        logger.info(
            "Mandate %s (user %s): %s -> %s [%s]",
            mandate.mandate_id, mandate.user_id, old.value, new.value, why,
        )

    def _assert_single_open(self, user_id: str):
        open_count = self.mandates.count_open_for_user(user_id)
        if open_count > 1:
            raise FatalInvariantError(
                f"User {user_id} has {open_count} open mandates",
                data={"userId": user_id, "openMandates": open_count},
            )

    def _project(self, user_id: str, build: Callable[[User], Dict[str, Any]]) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            logger.warning("No user %s to project entitlement onto", user_id)
            return None
        if entitlements.apply_projection(user, build(user)):
            self.users.flush()
        return user

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_mandate(
        self,
        user_id: str,
        upi_id: str,
        amount: Optional[float] = None,
        client: Optional[Dict[str, Optional[str]]] = None,
    ) -> UpiMandate:
        """Create a PENDING mandate and its hosted payment link.

        Raises:
            ValidationError: missing user, malformed VPA or bad amount
            ConflictError: the user already has a PENDING/ACTIVE mandate
            ProviderError: the payment link could not be created
        """
        if not user_id or not upi_id:
            raise ValidationError("User ID and UPI ID are required")
        if not is_valid_upi_id(upi_id):
            raise ValidationError("Invalid UPI ID format")
        amount_minor = to_minor_units(self.config.SUBSCRIPTION_PRICE if amount is None else amount)
        if amount_minor <= 0:
            raise ValidationError("Amount must be positive")

        client = client or {}
        with self._transition(f"user:{user_id}", "user", user_id):
            now = self.clock()
            user = self.users.get_or_create(user_id, now, self.config.TRIAL_DAYS)
            if user.subscription_status == SubscriptionStatus.blocked:
                raise ValidationError("User is blocked")
            existing = self.mandates.get_open_for_user(user_id)
            if existing:
                raise ConflictError("User already has an active mandate", data=_conflict_data(existing))

            mandate_id = f"MANDATE_{user_id}_{epoch_ms(now)}"
            link = self.provider.create_payment_link(
                amount=amount_minor,
                currency="INR",
                notes={
                    "mandate_id": mandate_id,
                    "user_id": user_id,
                    "user_upi_id": upi_id,
                    "purpose": self.config.SUBSCRIPTION_DESCRIPTION,
                },
                callback_url=f"{self.config.API_BASE_URL.rstrip('/')}/api/upi-mandates/callback",
                description=self.config.SUBSCRIPTION_DESCRIPTION,
            )

            try:
                mandate = self.mandates.create({
                    "mandate_id": mandate_id,
                    "user_id": user_id,
                    "upi_id": upi_id,
                    "merchant_vpa": self.config.MERCHANT_UPI_ID,
                    "amount": amount_minor,
                    "currency": "INR",
                    "start_date": now,
                    "end_date": now + MANDATE_VALIDITY,
                    "status": MandateStatus.PENDING,
                    "provider_payment_link_id": link.link_id,
                    "qr_payload": link.short_url,
                    "qr_code_image": render_qr_data_url(link.short_url),
                    "user_agent": client.get("user_agent"),
                    "ip_address": client.get("ip_address"),
                    "platform": client.get("platform") or "extension",
                    "created_at": now,
                    "updated_at": now,
                })
            except ConflictError:
                # lost a race against a concurrent create for the same user
                existing = self.mandates.get_open_for_user(user_id)
                raise ConflictError(
                    "User already has an active mandate",
                    data=_conflict_data(existing) if existing else None,
                )

        logger.info("Mandate %s (user %s): created PENDING, link %s", mandate_id, user_id, link.link_id)
        return mandate

    def mandate_uri(self, mandate: UpiMandate) -> str:
        """``upi://mandate`` URI for apps that scan the mandate directly."""
        return build_mandate_uri(
            mandate_id=mandate.mandate_id,
            payee_vpa=mandate.merchant_vpa,
            merchant_name=self.config.MERCHANT_NAME,
            merchant_code=self.config.MERCHANT_CODE,
            amount_minor=mandate.amount,
            start_date=mandate.start_date,
            end_date=mandate.end_date,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_status(self, user_id: str) -> Optional[UpiMandate]:
        return self.mandates.get_open_for_user(user_id)

    def history(self, user_id: str, limit: int = 10) -> List[UpiMandate]:
        return self.mandates.history(user_id, limit)

    def overview(self) -> Dict[str, Any]:
        counts = self.mandates.status_counts()
        return {
            "totalMandates": sum(counts.values()),
            "activeMandates": counts.get(MandateStatus.ACTIVE, 0),
            "pendingMandates": counts.get(MandateStatus.PENDING, 0),
            "cancelledMandates": counts.get(MandateStatus.CANCELLED, 0),
            "recentMandates": self.mandates.recent(5),
        }

    # ------------------------------------------------------------------
    # Checkout callback
    # ------------------------------------------------------------------

    def handle_checkout_callback(self, link_id: Optional[str], link_status: Optional[str], payment_id: Optional[str]) -> str:
        """PENDING -> ACTIVE on a paid payment link.

        Returns:
            'success', 'failed' (link not paid) or 'error' (unknown link / not PENDING)
        """
        if link_status != "paid":
            return "failed"
        if not link_id or not payment_id:
            return "error"
        mandate = self.mandates.get_by_payment_link(link_id)
        if mandate is None:
            logger.warning("Callback for unknown payment link %s", link_id)
            return "error"

        with self._transition(f"mandate:{mandate.mandate_id}", "mandate", mandate.mandate_id):
            mandate = self.mandates.get(mandate.mandate_id, fresh=True)
            if mandate.status == MandateStatus.ACTIVE and mandate.approval_reference == payment_id:
                return "success"
            if mandate.status != MandateStatus.PENDING:
                logger.warning("Callback for mandate %s in state %s", mandate.mandate_id, mandate.status.value)
                return "error"

            now = self.clock()
            subscription = self.provider.create_subscription(
                plan_id=self.config.RAZORPAY_PLAN_ID,
                total_count=self.config.SUBSCRIPTION_TOTAL_COUNT,
                start_at=epoch_seconds(now + PERIOD),
                notes={"mandate_id": mandate.mandate_id, "user_id": mandate.user_id},
            )
            updated = self.mandates.compare_and_set(
                mandate.mandate_id,
                [MandateStatus.PENDING],
                {
                    "status": MandateStatus.ACTIVE,
                    "provider_subscription_id": subscription.subscription_id,
                    "approval_reference": payment_id,
                    "last_charged_date": now,
                    "next_charge_date": now + PERIOD,
                    "updated_at": now,
                },
            )
            if updated is None:
                return "error"

            self._append_success(updated, now, updated.amount, payment_id, payment_id)
            self.payments.create({
                "transaction_id": payment_id,
                "user_id": updated.user_id,
                "provider_payment_id": payment_id,
                "amount": updated.amount,
                "currency": updated.currency,
                "status": PaymentStatus.completed,
                "validated_at": now,
                "payment_type": PaymentType.mandate_setup,
                "mandate_id": updated.mandate_id,
                "extra": {"platform": "razorpay_mandate", "subscription_id": subscription.subscription_id},
                "created_at": now,
                "updated_at": now,
            })
            self.users.get_or_create(updated.user_id, now, self.config.TRIAL_DAYS)
            self._project(updated.user_id, lambda u: entitlements.project_activation(u, updated.mandate_id, now))
            self._assert_single_open(updated.user_id)
            self._log_transition(updated, MandateStatus.PENDING, MandateStatus.ACTIVE, "checkout paid")
        return "success"

    # ------------------------------------------------------------------
    # Provider events
    # ------------------------------------------------------------------

    def resolve(self, call: EngineCall) -> Optional[UpiMandate]:
        """Find the mandate an event refers to."""
        mandate = None
        if call.subscription_id:
            mandate = self.mandates.get_by_subscription(call.subscription_id)
        if mandate is None and call.mandate_id:
            mandate = self.mandates.get(call.mandate_id)
        if mandate is None and call.payment_id and call.op == WebhookOp.PAYMENT_FAILED:
            mandate = self.mandates.get_by_provider_payment(call.payment_id)
        return mandate

    def apply(self, call: EngineCall, before_commit: Optional[Callable[[Optional[str]], None]] = None) -> ApplyOutcome:
        """
        Apply one provider-derived call.

        ``before_commit`` runs inside the same transaction right before the
        commit (the reconciler stages its idempotency record there), so the
        effect and the dedup key become visible together.
        """
        mandate = self.resolve(call)
        if mandate is None:
            logger.info("No mandate for %s (subscription=%s, mandate=%s)", call.op, call.subscription_id, call.mandate_id)
            if before_commit:
                try:
                    before_commit(None)
                    self.mandates.commit()
                except OperationalError as exc:
                    self.db.rollback()
                    raise TransientError() from exc
            return ApplyOutcome("ignored")

        handlers = {
            WebhookOp.ACTIVATE: self._apply_activated,
            WebhookOp.CHARGED: self._apply_charged,
            WebhookOp.PAYMENT_FAILED: self._apply_payment_failed,
            WebhookOp.HALT: self._apply_halted,
            WebhookOp.CANCEL: self._apply_cancelled,
            WebhookOp.COMPLETE: self._apply_completed,
        }
        handler = handlers[call.op]
        with self._transition(f"mandate:{mandate.mandate_id}", "mandate", mandate.mandate_id):
            mandate = self.mandates.get(mandate.mandate_id, fresh=True)
            now = self.clock()
            if call.op in WebhookOp.LIFECYCLE and _is_stale(mandate, call.event_at):
                logger.info("Stale %s for mandate %s ignored", call.op, mandate.mandate_id)
                outcome = ApplyOutcome("stale", mandate.mandate_id)
            else:
                outcome = handler(mandate, call, now)
            if before_commit:
                before_commit(mandate.mandate_id)
        return outcome

    def _lifecycle_values(self, mandate: UpiMandate, call: EngineCall, now: datetime) -> Dict[str, Any]:
        values: Dict[str, Any] = {"updated_at": now}
        if call.event_at and (mandate.last_provider_event_at is None or call.event_at > mandate.last_provider_event_at):
            values["last_provider_event_at"] = call.event_at
        return values

    def _apply_activated(self, mandate: UpiMandate, call: EngineCall, now: datetime) -> ApplyOutcome:
        if mandate.status not in (MandateStatus.PENDING, MandateStatus.ACTIVE):
            logger.info("subscription.activated ignored for mandate %s in %s", mandate.mandate_id, mandate.status.value)
            return ApplyOutcome("ignored", mandate.mandate_id)

        old = mandate.status
        values = self._lifecycle_values(mandate, call, now)
        if not mandate.provider_subscription_id and call.subscription_id:
            values["provider_subscription_id"] = call.subscription_id
        if old == MandateStatus.PENDING:
            values.update({"status": MandateStatus.ACTIVE, "next_charge_date": now + PERIOD})
        if set(values) == {"updated_at"}:
            return ApplyOutcome("applied", mandate.mandate_id)

        updated = self.mandates.compare_and_set(mandate.mandate_id, [old], values)
        if updated is None:
            return ApplyOutcome("ignored", mandate.mandate_id)
        if old == MandateStatus.PENDING:
            self._project(updated.user_id, lambda u: _renewal_on(u, updated.mandate_id))
            self._assert_single_open(updated.user_id)
            self._log_transition(updated, old, MandateStatus.ACTIVE, "subscription.activated")
        return ApplyOutcome("applied", mandate.mandate_id)

    def _apply_charged(self, mandate: UpiMandate, call: EngineCall, now: datetime) -> ApplyOutcome:
        if mandate.status not in (MandateStatus.ACTIVE, MandateStatus.PAUSED):
            logger.warning(
                "subscription.charged %s ignored for mandate %s in %s",
                call.payment_id, mandate.mandate_id, mandate.status.value,
            )
            return ApplyOutcome("ignored", mandate.mandate_id)
        if not call.payment_id:
            return ApplyOutcome("ignored", mandate.mandate_id)
        if self.payments.get_by_provider_payment_id(call.payment_id):
            return ApplyOutcome("duplicate", mandate.mandate_id)

        # the provider collected on a mandate paused locally; resume it unless the user moved on
        resume = mandate.status == MandateStatus.PAUSED and self.mandates.get_open_for_user(mandate.user_id) is None
        self._record_success(
            mandate,
            now,
            amount=call.amount or mandate.amount,
            reference=call.payment_id,
            provider_payment_id=call.payment_id,
            extra={"platform": "razorpay_mandate", "subscription_id": call.subscription_id, "source": "webhook"},
            resume=resume,
        )
        return ApplyOutcome("applied", mandate.mandate_id)

    def _apply_payment_failed(self, mandate: UpiMandate, call: EngineCall, now: datetime) -> ApplyOutcome:
        if mandate.status != MandateStatus.ACTIVE:
            return ApplyOutcome("ignored", mandate.mandate_id)
        if call.payment_id and self.mandates.has_attempt(mandate.mandate_id, call.payment_id, ChargeStatus.FAILED):
            return ApplyOutcome("duplicate", mandate.mandate_id)

        self.mandates.append_charge_attempt(
            mandate,
            attempted_at=now,
            amount=call.amount or mandate.amount,
            status=ChargeStatus.FAILED,
            reference=call.payment_id,
            provider_payment_id=call.payment_id,
            failure_reason=call.failure_reason or "Payment failed",
        )
        logger.info("Mandate %s (user %s): charge %s failed", mandate.mandate_id, mandate.user_id, call.payment_id)
        return ApplyOutcome("applied", mandate.mandate_id)

    def _apply_halted(self, mandate: UpiMandate, call: EngineCall, now: datetime) -> ApplyOutcome:
        if mandate.status != MandateStatus.ACTIVE:
            return ApplyOutcome("ignored", mandate.mandate_id)
        self._pause(mandate, now, "subscription.halted", self._lifecycle_values(mandate, call, now))
        return ApplyOutcome("applied", mandate.mandate_id)

    def _apply_cancelled(self, mandate: UpiMandate, call: EngineCall, now: datetime) -> ApplyOutcome:
        if mandate.status in TERMINAL_MANDATE_STATUSES:
            return ApplyOutcome("ignored", mandate.mandate_id)
        old = mandate.status
        values = self._lifecycle_values(mandate, call, now)
        values.update({"status": MandateStatus.CANCELLED, "next_charge_date": None})
        updated = self.mandates.compare_and_set(mandate.mandate_id, NON_TERMINAL, values)
        if updated is None:
            return ApplyOutcome("ignored", mandate.mandate_id)
        self._project(updated.user_id, entitlements.project_cancel)
        self._log_transition(updated, old, MandateStatus.CANCELLED, "subscription.cancelled")
        return ApplyOutcome("applied", mandate.mandate_id)

    def _apply_completed(self, mandate: UpiMandate, call: EngineCall, now: datetime) -> ApplyOutcome:
        """The provider subscription used up its billing cycles."""
        if mandate.status in TERMINAL_MANDATE_STATUSES:
            return ApplyOutcome("ignored", mandate.mandate_id)
        old = mandate.status
        values = self._lifecycle_values(mandate, call, now)
        values.update({"status": MandateStatus.EXPIRED, "next_charge_date": None})
        updated = self.mandates.compare_and_set(mandate.mandate_id, NON_TERMINAL, values)
        if updated is None:
            return ApplyOutcome("ignored", mandate.mandate_id)
        self._project(updated.user_id, lambda u: _project_mandate_end(u, now))
        self._log_transition(updated, old, MandateStatus.EXPIRED, "subscription.completed")
        return ApplyOutcome("applied", mandate.mandate_id)

    # ------------------------------------------------------------------
    # Shared effects
    # ------------------------------------------------------------------

    def _append_success(self, mandate: UpiMandate, now: datetime, amount: int, reference: str, provider_payment_id: Optional[str]):
        return self.mandates.append_charge_attempt(
            mandate,
            attempted_at=now,
            amount=amount,
            status=ChargeStatus.SUCCESS,
            reference=reference,
            provider_payment_id=provider_payment_id,
        )

    def _record_success(
        self,
        mandate: UpiMandate,
        now: datetime,
        amount: int,
        reference: str,
        provider_payment_id: Optional[str],
        extra: Dict[str, Any],
        resume: bool = False,
    ) -> UpiMandate:
        """A recurring charge succeeded: attempt, payment, schedule and projection.

        A PAUSED mandate keeps an empty schedule unless ``resume`` moves it
        back to ACTIVE.
        """
        old = mandate.status
        values: Dict[str, Any] = {"last_charged_date": now, "updated_at": now}
        if old == MandateStatus.ACTIVE or resume:
            values["next_charge_date"] = (mandate.next_charge_date or now) + PERIOD
        if resume:
            values["status"] = MandateStatus.ACTIVE
        updated = self.mandates.compare_and_set(mandate.mandate_id, [old], values)
        if updated is None:
            raise TransientError("Mandate changed during charge, please retry")

        self._append_success(updated, now, amount, reference, provider_payment_id)
        self.payments.create({
            "transaction_id": reference,
            "user_id": updated.user_id,
            "provider_payment_id": provider_payment_id,
            "amount": amount,
            "currency": updated.currency,
            "status": PaymentStatus.completed,
            "validated_at": now,
            "payment_type": PaymentType.recurring_charge,
            "mandate_id": updated.mandate_id,
            "extra": extra,
            "created_at": now,
            "updated_at": now,
        })
        self._project(updated.user_id, lambda u: entitlements.project_recurring_success(u, now))
        if resume:
            self._project(updated.user_id, lambda u: _renewal_on(u, updated.mandate_id))
            self._assert_single_open(updated.user_id)
            self._log_transition(updated, old, MandateStatus.ACTIVE, "charged while paused")
        logger.info(
            "Mandate %s (user %s): charged %s, next charge %s",
            updated.mandate_id, updated.user_id, reference, updated.next_charge_date,
        )
        return updated

    def _pause(self, mandate: UpiMandate, now: datetime, why: str, values: Optional[Dict[str, Any]] = None) -> Optional[UpiMandate]:
        values = dict(values or {"updated_at": now})
        values.update({"status": MandateStatus.PAUSED, "next_charge_date": None})
        updated = self.mandates.compare_and_set(mandate.mandate_id, [MandateStatus.ACTIVE], values)
        if updated is None:
            return None
        self._project(updated.user_id, entitlements.project_halt)
        self._log_transition(updated, MandateStatus.ACTIVE, MandateStatus.PAUSED, why)
        return updated

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel_mandate(self, user_id: str, mandate_id: str, actor: Optional[str] = None) -> int:
        """
        Cancel a non-terminal mandate.

        The provider subscription is cancelled best-effort: a provider
        failure is logged and queued as a reconciliation task while the
        local cancellation still goes through.

        Returns:
            1 if the mandate moved to CANCELLED, 0 if it was already terminal
        """
        if not user_id or not mandate_id:
            raise ValidationError("User ID and Mandate ID are required")
        mandate = self.mandates.get_for_user(user_id, mandate_id)
        if mandate is None:
            raise NotFoundError("Mandate not found")

        with self._transition(f"mandate:{mandate_id}", "mandate", mandate_id):
            mandate = self.mandates.get(mandate_id, fresh=True)
            if mandate.status in TERMINAL_MANDATE_STATUSES:
                return 0
            now = self.clock()
            old = mandate.status
            updated = self.mandates.compare_and_set(
                mandate_id,
                NON_TERMINAL,
                {"status": MandateStatus.CANCELLED, "next_charge_date": None, "updated_at": now},
            )
            if updated is None:
                return 0

            if updated.provider_subscription_id:
                self._cancel_upstream(updated)

            self._project(user_id, entitlements.project_cancel)
            self.audit.record(actor or user_id, AuditAction.cancel, "mandate", mandate_id, {"from": old.value})
            self._log_transition(updated, old, MandateStatus.CANCELLED, f"cancelled by {actor or 'user'}")
        return 1

    def _cancel_upstream(self, mandate: UpiMandate):
        try:
            self.provider.cancel_subscription(mandate.provider_subscription_id, immediate=True)
            logger.info("Provider subscription %s cancelled", mandate.provider_subscription_id)
        except ProviderError as exc:
            logger.warning(
                "Provider cancel of %s failed, queued for reconciliation: %s",
                mandate.provider_subscription_id, exc.message,
            )
            self.reconciliations.create({
                "kind": "cancel_subscription",
                "mandate_id": mandate.mandate_id,
                "provider_reference": mandate.provider_subscription_id,
                "attempts": 1,
                "last_error": exc.message,
            })
            self.audit.record(
                "system",
                AuditAction.provider_failure,
                "mandate",
                mandate.mandate_id,
                {"operation": "cancel_subscription", "error": exc.message},
            )

    # ------------------------------------------------------------------
    # Scheduler tick
    # ------------------------------------------------------------------

    def charge_due_mandate(self, mandate_id: str, tick_start: datetime) -> ChargeResult:
        """Drive one charge attempt for a due ACTIVE mandate."""
        with self._transition(f"mandate:{mandate_id}", "mandate", mandate_id):
            mandate = self.mandates.get(mandate_id, fresh=True)
            if mandate is None:
                raise NotFoundError("Mandate not found")
            now = self.clock()
            result = ChargeResult(mandate.mandate_id, mandate.user_id, success=False, amount=mandate.amount)

            if (
                mandate.status != MandateStatus.ACTIVE
                or mandate.next_charge_date is None
                or mandate.next_charge_date > now
            ):
                result.skipped = True
                result.error = "not_due"
                return result
            if mandate.last_charged_date and mandate.last_charged_date > tick_start:
                # a webhook charge landed after this tick selected the mandate
                result.skipped = True
                result.error = "already_charged"
                return result

            if self.config.CHARGE_MODE == "simulated":
                reference = f"REC_{mandate.mandate_id}_{epoch_ms(now)}"
                self._record_success(mandate, now, mandate.amount, reference, None, {"mode": "simulated"})
                result.success, result.reference = True, reference
                return result

            reference, amount, failure = self._collect_provider_charge(mandate)
            if reference:
                self._record_success(
                    mandate,
                    now,
                    amount or mandate.amount,
                    reference,
                    reference,
                    {"platform": "razorpay_mandate", "subscription_id": mandate.provider_subscription_id, "source": "scheduler"},
                )
                result.success, result.reference = True, reference
                return result

            self.mandates.append_charge_attempt(
                mandate,
                attempted_at=now,
                amount=mandate.amount,
                status=ChargeStatus.FAILED,
                failure_reason=failure,
            )
            result.error = failure
            failures = self.mandates.consecutive_failures(mandate.mandate_id)
            logger.info(
                "Mandate %s (user %s): charge failed (%s), %s consecutive",
                mandate.mandate_id, mandate.user_id, failure, failures,
            )
            if failures >= self.config.CHARGE_MAX_FAILED_ATTEMPTS:
                result.paused = self._pause(mandate, now, f"{failures} consecutive failed charges") is not None
        return result

    def _collect_provider_charge(self, mandate: UpiMandate):
        """Look for a captured invoice the provider collected on its own schedule.

        Returns:
            (payment_id, amount, None) on success, (None, None, reason) otherwise
        """
        if not mandate.provider_subscription_id:
            return None, None, "no_subscription"
        invoices = self.provider.list_subscription_invoices(mandate.provider_subscription_id)
        for invoice in invoices:
            if invoice.status == "paid" and invoice.payment_id:
                if self.payments.get_by_provider_payment_id(invoice.payment_id) is None:
                    return invoice.payment_id, invoice.amount, None
        for invoice in invoices:
            if invoice.status == "issued":
                try:
                    self.provider.issue_invoice(invoice.invoice_id)
                except ProviderError as exc:
                    logger.warning("Re-issue of invoice %s failed: %s", invoice.invoice_id, exc.message)
        return None, None, "no_captured_invoice"

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def expire_mandate(self, mandate_id: str) -> bool:
        """Move a mandate past its end date to EXPIRED."""
        with self._transition(f"mandate:{mandate_id}", "mandate", mandate_id):
            mandate = self.mandates.get(mandate_id, fresh=True)
            now = self.clock()
            if mandate is None or mandate.status not in NON_TERMINAL or mandate.end_date > now:
                return False
            old = mandate.status
            updated = self.mandates.compare_and_set(
                mandate_id,
                NON_TERMINAL,
                {"status": MandateStatus.EXPIRED, "next_charge_date": None, "updated_at": now},
            )
            if updated is None:
                return False

            self._project(updated.user_id, lambda u: _project_mandate_end(u, now))
            self._log_transition(updated, old, MandateStatus.EXPIRED, "end date reached")
        return True


def _renewal_on(user: User, mandate_id: str) -> Dict[str, Any]:
    """A provider-confirmed subscription turns renewal on without extending expiry."""
    if user.subscription_status == SubscriptionStatus.blocked:
        return {}
    return {"has_auto_renewal": True, "upi_mandate_id": mandate_id}


def _project_mandate_end(user: User, now: datetime) -> Dict[str, Any]:
    update = entitlements.project_cancel(user)
    update.update(entitlements.project_expiry_crossing(user, now, has_active_mandate=False))
    return update


def _is_stale(mandate: UpiMandate, event_at: Optional[datetime]) -> bool:
    return bool(event_at and mandate.last_provider_event_at and event_at < mandate.last_provider_event_at)


def _conflict_data(mandate: UpiMandate) -> Dict[str, Any]:
    return {
        "mandateId": mandate.mandate_id,
        "status": mandate.status.value,
        "razorpayMandateId": mandate.provider_payment_link_id,
    }
