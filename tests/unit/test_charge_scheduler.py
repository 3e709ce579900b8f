import itertools
from datetime import timedelta

from autopay.models.enums import ChargeStatus, MandateStatus
from autopay.models.payment import Payment
from autopay.services.charge_scheduler import ChargeScheduler
from autopay.services.mandate_engine import EngineCall, MandateEngine, WebhookOp
from autopay.services.provider.base import ProviderInvoice
from tests.conftest import make_settings


def test_tick_charges_due_mandate_once(engine, active_mandate, clock, db_session, config):
    mandate = active_mandate()
    scheduler = ChargeScheduler(db_session, engine, clock=clock, config=config)

    assert scheduler.run_tick().processed == 0

    clock.advance(days=30)
    summary = scheduler.run_tick()
    assert (summary.processed, summary.succeeded, summary.failed) == (1, 1, 0)
    assert summary.results[0].reference.startswith(f"REC_{mandate.mandate_id}_")
    assert len(engine.payments.completed_for_reference(summary.results[0].reference)) == 1

    # the next due date moved a full period, so a second tick finds nothing
    assert scheduler.run_tick().processed == 0
    mandate = engine.mandates.get(mandate.mandate_id, fresh=True)
    assert mandate.next_charge_date == clock.now + timedelta(days=30)


def test_not_due_mandate_is_skipped(engine, active_mandate, clock):
    mandate = active_mandate()

    result = engine.charge_due_mandate(mandate.mandate_id, clock.now)

    assert result.skipped is True
    assert result.error == "not_due"


def test_provider_mode_collects_paid_invoice(db_session, provider, locks, clock, active_mandate):
    mandate = active_mandate()
    engine = MandateEngine(db_session, provider, locks, clock=clock, config=make_settings(CHARGE_MODE="provider"))
    provider.invoices["sub_1"] = [ProviderInvoice(invoice_id="inv_1", status="paid", payment_id="pay_inv_1", amount=900)]
    clock.advance(days=30)

    result = engine.charge_due_mandate(mandate.mandate_id, clock.now)

    assert result.success is True
    assert result.reference == "pay_inv_1"
    assert engine.payments.get_by_provider_payment_id("pay_inv_1") is not None


def test_consecutive_failures_pause_mandate(db_session, provider, locks, clock, active_mandate):
    mandate = active_mandate()
    engine = MandateEngine(db_session, provider, locks, clock=clock, config=make_settings(CHARGE_MODE="provider"))
    provider.invoices["sub_1"] = [ProviderInvoice(invoice_id="inv_2", status="issued", amount=900)]
    clock.advance(days=30)

    results = [engine.charge_due_mandate(mandate.mandate_id, clock.now) for _ in range(3)]

    assert [r.error for r in results] == ["no_captured_invoice"] * 3
    assert [r.paused for r in results] == [False, False, True]
    assert provider.issued == ["inv_2"] * 3

    mandate = engine.mandates.get(mandate.mandate_id, fresh=True)
    assert mandate.status == MandateStatus.PAUSED
    assert mandate.next_charge_date is None
    assert [a.status for a in mandate.charge_attempts] == [ChargeStatus.SUCCESS] + [ChargeStatus.FAILED] * 3


def test_provider_charge_resumes_paused_mandate(db_session, provider, locks, clock, active_mandate):
    mandate = active_mandate()
    engine = MandateEngine(db_session, provider, locks, clock=clock, config=make_settings(CHARGE_MODE="provider"))
    provider.invoices["sub_1"] = [ProviderInvoice(invoice_id="inv_2", status="issued", amount=900)]
    clock.advance(days=30)
    for _ in range(3):
        engine.charge_due_mandate(mandate.mandate_id, clock.now)
    assert engine.mandates.get(mandate.mandate_id, fresh=True).status == MandateStatus.PAUSED
    expiry = engine.users.get("user_1").subscription_expiry

    clock.advance(days=1)
    outcome = engine.apply(EngineCall(op=WebhookOp.CHARGED, subscription_id="sub_1", payment_id="pay_late", amount=900))

    assert outcome.status == "applied"
    mandate = engine.mandates.get(mandate.mandate_id, fresh=True)
    assert mandate.status == MandateStatus.ACTIVE
    assert mandate.next_charge_date == clock.now + timedelta(days=30)
    assert mandate.charge_attempts[-1].status == ChargeStatus.SUCCESS
    assert engine.mandates.consecutive_failures(mandate.mandate_id) == 0
    assert engine.payments.get_by_provider_payment_id("pay_late") is not None
    user = engine.users.get("user_1")
    assert user.has_auto_renewal is True
    assert user.subscription_expiry == expiry + timedelta(days=30)


def test_provider_charge_on_superseded_paused_mandate(engine, active_mandate, clock):
    mandate = active_mandate()
    engine.apply(EngineCall(op=WebhookOp.HALT, subscription_id="sub_1"))
    clock.advance(minutes=1)
    newer = engine.create_mandate("user_1", "alice@okaxis")

    outcome = engine.apply(EngineCall(op=WebhookOp.CHARGED, subscription_id="sub_1", payment_id="pay_late", amount=900))

    assert outcome.status == "applied"
    paused = engine.mandates.get(mandate.mandate_id, fresh=True)
    assert paused.status == MandateStatus.PAUSED
    assert paused.next_charge_date is None
    assert engine.payments.get_by_provider_payment_id("pay_late") is not None
    assert engine.get_status("user_1").mandate_id == newer.mandate_id


def test_tick_stops_at_time_budget(engine, active_mandate, clock, db_session, config):
    active_mandate("user_1")
    active_mandate("user_2", "bob@okhdfc")
    clock.advance(days=30)
    ticks = itertools.chain([0.0, 0.0], itertools.repeat(config.CHARGE_TICK_MAX_SECONDS + 1.0))
    scheduler = ChargeScheduler(db_session, engine, clock=clock, config=config, monotonic=lambda: next(ticks))

    summary = scheduler.run_tick()

    assert summary.succeeded == 1
    assert summary.timed_out == 1
    # the deferred mandate is still due for the next tick
    assert len(engine.mandates.list_due(clock.now, 10)) == 1


def test_failed_charge_leaves_schedule_and_entitlement(db_session, provider, locks, clock, active_mandate):
    mandate = active_mandate()
    engine = MandateEngine(db_session, provider, locks, clock=clock, config=make_settings(CHARGE_MODE="provider"))
    clock.advance(days=30)
    due_at = engine.mandates.get(mandate.mandate_id, fresh=True).next_charge_date
    expiry = engine.users.get("user_1").subscription_expiry
    payments_before = db_session.query(Payment).count()

    result = engine.charge_due_mandate(mandate.mandate_id, clock.now)

    assert result.success is False
    mandate = engine.mandates.get(mandate.mandate_id, fresh=True)
    assert mandate.status == MandateStatus.ACTIVE
    assert mandate.next_charge_date == due_at
    assert mandate.charge_attempts[-1].status == ChargeStatus.FAILED
    assert db_session.query(Payment).count() == payments_before
    assert engine.users.get("user_1").subscription_expiry == expiry
