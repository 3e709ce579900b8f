from datetime import timedelta

import pytest

from autopay.app.exceptions import AuthFailureError, ConflictError, NotFoundError, ValidationError
from autopay.core.security import checkout_payload, compute_signature
from autopay.models.audit_log import AuditLog
from autopay.models.enums import (
    AuditAction,
    MandateStatus,
    PaymentStatus,
    PaymentType,
    ReconciliationStatus,
    SecurityRiskLevel,
    SubscriptionStatus,
)
from autopay.models.payment import Payment
from autopay.models.reconciliation_task import ReconciliationTask
from autopay.models.user import User
from autopay.services.admin_actions import AdminActions
from autopay.services.mandate_engine import EngineCall, WebhookOp
from autopay.services.payment_verification import PaymentVerificationService
from autopay.services.subscription_monitor import (
    expire_mandates,
    refresh_trials,
    retry_reconciliation_tasks,
    sweep_lapsed_users,
)
from tests.conftest import KEY_SECRET


@pytest.fixture
def admin(db_session, engine, clock):
    return AdminActions(db_session, engine, clock=clock)


# =============================================================================
# Admin actions
# =============================================================================

def test_block_and_unblock_user(admin, active_mandate, db_session):
    active_mandate()

    assert admin.block_user("user_1", "chargeback") == 1
    assert admin.block_user("user_1", "chargeback") == 0
    user = db_session.get(User, "user_1")
    assert user.subscription_status == SubscriptionStatus.blocked
    assert user.block_reason == "chargeback"

    assert admin.unblock_user("user_1") == 1
    assert user.subscription_status == SubscriptionStatus.active
    assert user.has_auto_renewal is True
    assert user.block_reason is None

    actions = {row.action for row in db_session.query(AuditLog).all()}
    assert actions == {AuditAction.block, AuditAction.unblock}


def test_charge_for_blocked_user_keeps_block(admin, engine, active_mandate, clock, db_session):
    active_mandate()
    admin.block_user("user_1", "fraud")
    clock.advance(days=30)

    outcome = engine.apply(EngineCall(op=WebhookOp.CHARGED, subscription_id="sub_1", payment_id="pay_2"))

    assert outcome.status == "applied"
    assert db_session.get(User, "user_1").subscription_status == SubscriptionStatus.blocked


def test_block_unknown_user(admin):
    with pytest.raises(NotFoundError):
        admin.block_user("ghost")


def test_block_device_blocks_every_user_on_it(admin, db_session):
    db_session.add_all([
        User(user_id="a", device_fingerprint="fp_1"),
        User(user_id="b", device_fingerprint="fp_1"),
        User(user_id="c", device_fingerprint="fp_2"),
    ])
    db_session.commit()

    assert admin.block_device("fp_1", "trial abuse") == 2

    blocked = admin.list_users(status=SubscriptionStatus.blocked)
    assert sorted(u.user_id for u in blocked) == ["a", "b"]
    assert all(u.security_risk_level == SecurityRiskLevel.high for u in blocked)
    assert db_session.get(User, "c").subscription_status == SubscriptionStatus.trial

    with pytest.raises(ValidationError):
        admin.block_device("")


def test_admin_cancel_is_audited_as_admin(admin, active_mandate, db_session):
    mandate = active_mandate()

    assert admin.cancel_mandate("user_1", mandate.mandate_id) == 1

    [entry] = admin.audit.get_logs(target_id=mandate.mandate_id, action=AuditAction.cancel)
    assert entry.actor == "admin"
    assert entry.target_id == mandate.mandate_id


# =============================================================================
# Daily sweeps
# =============================================================================

def test_expire_mandates_sweep(engine, active_mandate, clock):
    mandate = active_mandate()
    clock.advance(days=5 * 365 + 1)

    assert expire_mandates(engine) == 1
    assert engine.mandates.get(mandate.mandate_id, fresh=True).status == MandateStatus.EXPIRED


def test_lapsed_users_expire_without_active_mandate(engine, active_mandate, clock, db_session):
    mandate = active_mandate()
    engine.cancel_mandate("user_1", mandate.mandate_id)

    clock.advance(days=29)
    assert sweep_lapsed_users(db_session, clock) == 0

    clock.advance(days=2)
    assert sweep_lapsed_users(db_session, clock) == 1
    assert db_session.get(User, "user_1").subscription_status == SubscriptionStatus.expired


def test_refresh_trials(db_session, clock):
    db_session.add(User(
        user_id="trialist",
        trial_start_date=clock.now - timedelta(days=9),
        trial_end_date=clock.now + timedelta(days=1, hours=2),
        trial_days_remaining=10,
    ))
    db_session.commit()

    assert refresh_trials(db_session, clock) == 1
    assert db_session.get(User, "trialist").trial_days_remaining == 1

    clock.advance(days=2)
    refresh_trials(db_session, clock)
    assert db_session.get(User, "trialist").subscription_status == SubscriptionStatus.expired


def test_reconciliation_retry_cancels_upstream(engine, active_mandate, provider, db_session):
    mandate = active_mandate()
    provider.fail_cancel = True
    engine.cancel_mandate("user_1", mandate.mandate_id)

    assert retry_reconciliation_tasks(db_session, provider) == {"done": 0, "failed": 0, "pending": 1}

    provider.fail_cancel = False
    assert retry_reconciliation_tasks(db_session, provider) == {"done": 1, "failed": 0, "pending": 0}
    assert provider.cancelled == ["sub_1"]
    assert db_session.query(ReconciliationTask).one().status == ReconciliationStatus.done


# =============================================================================
# One-off payment verification
# =============================================================================

@pytest.fixture
def payments(db_session, provider, clock, config):
    return PaymentVerificationService(db_session, provider, clock=clock, config=config)


def test_manual_verification_grants_period_without_renewal(payments, clock, db_session):
    payment = payments.verify("user_9", transaction_id="UPI123456")

    assert payment.payment_type == PaymentType.manual_verification
    assert payment.amount == 900
    user = db_session.get(User, "user_9")
    assert user.subscription_status == SubscriptionStatus.active
    assert user.subscription_expiry == clock.now + timedelta(days=30)
    assert user.has_auto_renewal is False

    with pytest.raises(ConflictError):
        payments.verify("user_9", transaction_id="UPI123456")


def test_checkout_verification_completes_pending_order(payments, clock, db_session):
    db_session.add(Payment(
        transaction_id="order_1",
        user_id="user_9",
        provider_order_id="order_1",
        amount=900,
        status=PaymentStatus.pending,
        payment_type=PaymentType.admin_action,
    ))
    db_session.commit()
    signature = compute_signature(checkout_payload("order_1", "pay_c1"), KEY_SECRET)

    payment = payments.verify("user_9", order_id="order_1", payment_id="pay_c1", signature=signature)

    assert payment.status == PaymentStatus.completed
    assert payment.provider_payment_id == "pay_c1"
    assert db_session.get(User, "user_9").subscription_status == SubscriptionStatus.active


def test_checkout_verification_rejects_bad_signature(payments):
    with pytest.raises(AuthFailureError) as excinfo:
        payments.verify("user_9", order_id="order_1", payment_id="pay_c1", signature="bad")
    assert excinfo.value.status_code == 400


def test_verification_without_data_fails(payments):
    with pytest.raises(ValidationError):
        payments.verify("user_9")
