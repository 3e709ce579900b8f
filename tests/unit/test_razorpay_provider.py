import pytest
import requests

from autopay.app.exceptions import ProviderError, ProviderTimeoutError
from autopay.core.security import checkout_payload, compute_signature
from autopay.services.provider.razorpay import RazorpayProvider


@pytest.fixture
def razorpay():
    return RazorpayProvider("rzp_test_key", "secret", api_base="https://api.razorpay.test/v1/", timeout=5)


def respond(mocker, status_code=200, payload=None):
    response = mocker.Mock(status_code=status_code)
    response.json.return_value = payload if payload is not None else {}
    return response


def test_create_payment_link(mocker, razorpay):
    request = mocker.patch.object(
        razorpay.session, "request",
        return_value=respond(mocker, payload={"id": "plink_1", "short_url": "https://rzp.io/i/abc"}),
    )

    link = razorpay.create_payment_link(900, "INR", {"mandate_id": "M1"}, "https://cb.test/callback", "Monthly")

    assert link.link_id == "plink_1"
    assert link.short_url == "https://rzp.io/i/abc"
    kwargs = request.call_args.kwargs
    assert kwargs["method"] == "POST"
    assert kwargs["url"] == "https://api.razorpay.test/v1/payment_links"
    assert kwargs["auth"] == ("rzp_test_key", "secret")
    assert kwargs["timeout"] == 5
    assert kwargs["json"]["amount"] == 900
    assert kwargs["json"]["callback_method"] == "get"


def test_cancel_subscription_immediately(mocker, razorpay):
    request = mocker.patch.object(razorpay.session, "request", return_value=respond(mocker, payload={"id": "sub_1"}))

    razorpay.cancel_subscription("sub_1", immediate=True)

    assert request.call_args.kwargs["url"].endswith("/subscriptions/sub_1/cancel")
    assert request.call_args.kwargs["json"] == {"cancel_at_cycle_end": 0}


def test_list_subscription_invoices(mocker, razorpay):
    mocker.patch.object(razorpay.session, "request", return_value=respond(mocker, payload={"items": [
        {"id": "inv_1", "status": "paid", "payment_id": "pay_1", "amount": 900},
        {"id": "inv_2", "status": "issued", "amount": 900},
    ]}))

    invoices = razorpay.list_subscription_invoices("sub_1")

    assert [(i.invoice_id, i.status, i.payment_id) for i in invoices] == [
        ("inv_1", "paid", "pay_1"),
        ("inv_2", "issued", None),
    ]


def test_timeout_raises_provider_timeout(mocker, razorpay):
    mocker.patch.object(razorpay.session, "request", side_effect=requests.Timeout("slow"))

    with pytest.raises(ProviderTimeoutError):
        razorpay.create_subscription("plan_1", 60, 1767261600, {})


def test_connection_error_raises_provider_error(mocker, razorpay):
    mocker.patch.object(razorpay.session, "request", side_effect=requests.ConnectionError("down"))

    with pytest.raises(ProviderError):
        razorpay.issue_invoice("inv_1")


def test_client_error_is_not_retryable(mocker, razorpay):
    mocker.patch.object(razorpay.session, "request", return_value=respond(mocker, 400, {
        "error": {"code": "BAD_REQUEST_ERROR", "description": "The amount must be at least INR 1.00"},
    }))

    with pytest.raises(ProviderError) as excinfo:
        razorpay.create_payment_link(0, "INR", {}, "https://cb.test")

    assert excinfo.value.retryable is False
    assert excinfo.value.code == "BAD_REQUEST_ERROR"
    assert "at least INR 1.00" in excinfo.value.message


def test_server_error_is_retryable(mocker, razorpay):
    mocker.patch.object(razorpay.session, "request", return_value=respond(mocker, 503, {}))

    with pytest.raises(ProviderError) as excinfo:
        razorpay.cancel_subscription("sub_1")

    assert excinfo.value.retryable is True


def test_signature_checks(razorpay):
    body = b'{"event":"subscription.charged"}'
    assert razorpay.verify_webhook_signature(body, compute_signature(body, "whsec"), "whsec") is True
    assert razorpay.verify_webhook_signature(body, compute_signature(body, "other"), "whsec") is False

    signature = compute_signature(checkout_payload("order_1", "pay_1"), "secret")
    assert razorpay.verify_checkout_signature("order_1", "pay_1", signature, "secret") is True
    assert razorpay.verify_checkout_signature("order_1", "pay_2", signature, "secret") is False
