"""
Shared test fixtures: in-memory database, fake provider, fixed clock.
"""
from datetime import datetime, timedelta
from typing import Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import autopay.models  # noqa: F401  (registers every table on Base.metadata)
from autopay.app.config import Settings
from autopay.app.exceptions import ProviderError
from autopay.core.locks import InMemoryLockManager
from autopay.core.security import checkout_payload, verify_signature
from autopay.db.base import Base
from autopay.services.mandate_engine import MandateEngine
from autopay.services.provider.base import (
    BasePaymentProvider,
    PaymentLink,
    ProviderInvoice,
    ProviderSubscription,
)

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "whsec_test"
INTERNAL_TOKEN = "internal-token"
START = datetime(2026, 1, 1, 10, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeProvider(BasePaymentProvider):
    """In-memory payment provider that records every call."""

    name = "razorpay"

    def __init__(self):
        self.links: List[dict] = []
        self.subscriptions: List[dict] = []
        self.cancelled: List[str] = []
        self.issued: List[str] = []
        self.invoices: Dict[str, List[ProviderInvoice]] = {}
        self.fail_link = False
        self.fail_cancel = False
        self.fail_subscription = False

    def create_payment_link(self, amount, currency, notes, callback_url, description=None):
        if self.fail_link:
            raise ProviderError("Payment provider error: link", retryable=False, code="BAD_REQUEST_ERROR")
        self.links.append({"amount": amount, "currency": currency, "notes": notes, "callback_url": callback_url})
        n = len(self.links)
        return PaymentLink(link_id=f"plink_{n}", short_url=f"https://rzp.io/i/link{n}")

    def create_subscription(self, plan_id, total_count, start_at, notes):
        if self.fail_subscription:
            raise ProviderError("Payment provider error: subscription", code="SERVER_ERROR")
        self.subscriptions.append({"plan_id": plan_id, "total_count": total_count, "start_at": start_at, "notes": notes})
        return ProviderSubscription(subscription_id=f"sub_{len(self.subscriptions)}", status="created")

    def cancel_subscription(self, subscription_id, immediate=True):
        if self.fail_cancel:
            raise ProviderError("Payment provider error: cancel")
        self.cancelled.append(subscription_id)

    def list_subscription_invoices(self, subscription_id):
        return list(self.invoices.get(subscription_id, []))

    def issue_invoice(self, invoice_id):
        self.issued.append(invoice_id)
        return ProviderInvoice(invoice_id=invoice_id, status="issued")

    def verify_webhook_signature(self, raw_body, signature, secret):
        return verify_signature(raw_body, signature, secret)

    def verify_checkout_signature(self, order_id, payment_id, signature, secret):
        return verify_signature(checkout_payload(order_id, payment_id), signature, secret)


def make_settings(**overrides) -> Settings:
    values = dict(
        RAZORPAY_KEY_ID="rzp_test_key",
        RAZORPAY_KEY_SECRET=KEY_SECRET,
        RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET,
        RAZORPAY_PLAN_ID="plan_monthly",
        INTERNAL_API_TOKEN=INTERNAL_TOKEN,
        FRONTEND_URL="chrome-extension://ext",
        API_BASE_URL="https://api.example.test",
        CHARGE_MODE="simulated",
        CHARGE_MAX_FAILED_ATTEMPTS=3,
        CHARGE_TICK_MAX_SECONDS=300,
        REDIS_URL="",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    """Create test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def config():
    return make_settings()


@pytest.fixture
def locks():
    return InMemoryLockManager(ttl=30, wait=1.0)


@pytest.fixture
def engine(db_session, provider, locks, clock, config):
    return MandateEngine(db_session, provider, locks, clock=clock, config=config)


@pytest.fixture
def active_mandate(engine):
    """Create and approve a mandate; returns a factory keyed by user id."""

    def _activate(user_id: str = "user_1", upi_id: str = "alice@okaxis"):
        mandate = engine.create_mandate(user_id, upi_id)
        outcome = engine.handle_checkout_callback(mandate.provider_payment_link_id, "paid", f"pay_setup_{user_id}")
        assert outcome == "success"
        return engine.mandates.get(mandate.mandate_id, fresh=True)

    return _activate
