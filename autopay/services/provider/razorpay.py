"""Razorpay adapter for the payment provider port."""
import logging
from typing import Any, Dict, List, Optional

import requests

from autopay.app.config import settings
from autopay.app.exceptions import ProviderError, ProviderTimeoutError
from autopay.core.security import checkout_payload, verify_signature
from .base import BasePaymentProvider, PaymentLink, ProviderInvoice, ProviderSubscription

logger = logging.getLogger(__name__)


class RazorpayProvider(BasePaymentProvider):
    """Talks to the Razorpay REST API with HTTP basic auth."""

    name = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_base: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        json_payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.api_base}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method=method.upper(),
                url=url,
                auth=(self.key_id, self.key_secret),
                json=json_payload,
                params=params,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            logger.warning("Razorpay %s %s timed out after %ss", method, path, self.timeout)
            raise ProviderTimeoutError() from exc
        except requests.RequestException as exc:
            logger.warning("Razorpay %s %s failed: %s", method, path, exc)
            raise ProviderError("Failed to contact payment provider") from exc

        if response.status_code >= 400:
            code, description = None, None
            try:
                error = (response.json() or {}).get("error") or {}
                code, description = error.get("code"), error.get("description")
            except ValueError:
                pass
            logger.warning("Razorpay %s %s returned %s: %s %s", method, path, response.status_code, code, description)
            raise ProviderError(
                f"Payment provider error: {description}" if description else None,
                retryable=response.status_code >= 500 or response.status_code == 429,
                code=code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("Invalid response received from payment provider") from exc
        if not isinstance(payload, dict):
            raise ProviderError("Unexpected response format from payment provider")
        return payload

    def create_payment_link(self, amount, currency, notes, callback_url, description=None) -> PaymentLink:
        payload = {
            "amount": amount,
            "currency": currency,
            "accept_partial": False,
            "description": description or settings.SUBSCRIPTION_DESCRIPTION,
            "notify": {"sms": False, "email": False},
            "reminder_enable": False,
            "notes": notes,
            "callback_url": callback_url,
            "callback_method": "get",
            "options": {"checkout": {"method": {"upi": 1}}},
        }
        data = self._request("POST", "payment_links", json_payload=payload)
        return PaymentLink(link_id=data["id"], short_url=data["short_url"])

    def create_subscription(self, plan_id, total_count, start_at, notes) -> ProviderSubscription:
        payload = {
            "plan_id": plan_id,
            "customer_notify": 1,
            "quantity": 1,
            "total_count": total_count,
            "start_at": start_at,
            "notes": notes,
        }
        data = self._request("POST", "subscriptions", json_payload=payload)
        return ProviderSubscription(subscription_id=data["id"], status=data.get("status"))

    def cancel_subscription(self, subscription_id, immediate=True) -> None:
        self._request(
            "POST",
            f"subscriptions/{subscription_id}/cancel",
            json_payload={"cancel_at_cycle_end": 0 if immediate else 1},
        )

    def list_subscription_invoices(self, subscription_id) -> List[ProviderInvoice]:
        data = self._request("GET", "invoices", params={"subscription_id": subscription_id})
        return [
            ProviderInvoice(
                invoice_id=item["id"],
                status=item.get("status", ""),
                payment_id=item.get("payment_id"),
                amount=item.get("amount"),
            )
            for item in data.get("items", [])
        ]

    def issue_invoice(self, invoice_id) -> ProviderInvoice:
        data = self._request("POST", f"invoices/{invoice_id}/issue")
        return ProviderInvoice(
            invoice_id=data.get("id", invoice_id),
            status=data.get("status", ""),
            payment_id=data.get("payment_id"),
            amount=data.get("amount"),
        )

    def verify_webhook_signature(self, raw_body, signature, secret) -> bool:
        return verify_signature(raw_body, signature, secret)

    def verify_checkout_signature(self, order_id, payment_id, signature, secret) -> bool:
        return verify_signature(checkout_payload(order_id, payment_id), signature, secret)


def build_provider() -> RazorpayProvider:
    """Provider configured from settings."""
    return RazorpayProvider(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        api_base=settings.RAZORPAY_API_BASE,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
