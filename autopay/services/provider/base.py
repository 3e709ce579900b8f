"""Payment provider port."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class PaymentLink(BaseModel):
    link_id: str
    short_url: str


class ProviderSubscription(BaseModel):
    subscription_id: str
    status: Optional[str] = None


class ProviderInvoice(BaseModel):
    invoice_id: str
    status: str  # issued | paid | cancelled | expired
    payment_id: Optional[str] = None
    amount: Optional[int] = None  # minor units


class BasePaymentProvider(ABC):
    """
    Abstract interface to the external payment processor.

    Every network operation raises ``ProviderError`` (or
    ``ProviderTimeoutError``) on failure. Signature checks never raise.
    """

    name = "base"

    @abstractmethod
    def create_payment_link(
        self,
        amount: int,
        currency: str,
        notes: Dict[str, Any],
        callback_url: str,
        description: Optional[str] = None,
    ) -> PaymentLink:
        """Create a hosted payment link for ``amount`` minor units."""

    @abstractmethod
    def create_subscription(
        self,
        plan_id: str,
        total_count: int,
        start_at: int,
        notes: Dict[str, Any],
    ) -> ProviderSubscription:
        """Create a recurring subscription starting at epoch second ``start_at``."""

    @abstractmethod
    def cancel_subscription(self, subscription_id: str, immediate: bool = True) -> None:
        """Cancel a subscription now or at the end of the current cycle."""

    @abstractmethod
    def list_subscription_invoices(self, subscription_id: str) -> List[ProviderInvoice]:
        """Invoices the provider generated for a subscription."""

    @abstractmethod
    def issue_invoice(self, invoice_id: str) -> ProviderInvoice:
        """Ask the provider to (re)attempt collection of an issued invoice."""

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, signature: str, secret: str) -> bool:
        """HMAC-SHA256 of the raw body, constant-time compare."""

    @abstractmethod
    def verify_checkout_signature(self, order_id: str, payment_id: str, signature: str, secret: str) -> bool:
        """HMAC-SHA256 over ``order_id|payment_id``."""
