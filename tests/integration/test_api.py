import json
from urllib.parse import urlencode

import pytest

from autopay.core.security import compute_signature, payment_link_payload
from autopay.models.audit_log import AuditLog
from autopay.models.enums import AuditAction, MandateStatus, SubscriptionStatus
from autopay.models.mandate import UpiMandate
from autopay.models.user import User
from autopay.utils.validators import epoch_seconds
from tests.conftest import KEY_SECRET, WEBHOOK_SECRET

pytestmark = pytest.mark.integration


def create_mandate(client, user_id="user_1", upi_id="alice@okaxis"):
    response = client.post("/api/upi-mandates/create-mandate", json={"userId": user_id, "userUpiId": upi_id})
    assert response.status_code == 200, response.text
    return response.json()["data"]


def paid_callback(client, link_id, payment_id, signature=None):
    payload = payment_link_payload(link_id, "", "paid", payment_id)
    params = {
        "razorpay_payment_id": payment_id,
        "razorpay_payment_link_id": link_id,
        "razorpay_payment_link_reference_id": "",
        "razorpay_payment_link_status": "paid",
        "razorpay_signature": signature or compute_signature(payload, KEY_SECRET),
    }
    return client.get(f"/api/upi-mandates/callback?{urlencode(params)}", follow_redirects=False)


def post_webhook(client, event, signature=None, event_id=None):
    body = json.dumps(event).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Razorpay-Signature": signature or compute_signature(body, WEBHOOK_SECRET),
    }
    if event_id:
        headers["X-Razorpay-Event-Id"] = event_id
    return client.post("/api/upi-mandates/webhook", content=body, headers=headers)


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_create_mandate_endpoint(client):
    data = create_mandate(client)

    assert data["mandateId"].startswith("MANDATE_user_1_")
    assert data["razorpayMandateId"] == "plink_1"
    assert data["amount"] == 9
    assert data["frequency"] == "MONTHLY"
    assert data["qrCodeImage"].startswith("data:image/png;base64,")
    assert data["upiMandateUri"].startswith("upi://mandate?")
    assert len(data["instructions"]) == 4

    status = client.get("/api/upi-mandates/status/user_1").json()["data"]
    assert status["hasMandate"] is True
    assert status["status"] == "PENDING"
    assert status["nextChargeDate"] is None
    assert status["qrCodeImage"] is not None


def test_duplicate_mandate_is_rejected(client):
    first = create_mandate(client)

    response = client.post("/api/upi-mandates/create-mandate", json={"userId": "user_1", "userUpiId": "alice@okaxis"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "User already has an active mandate"
    assert body["data"]["mandateId"] == first["mandateId"]


def test_create_mandate_validation(client):
    response = client.post("/api/upi-mandates/create-mandate", json={"userId": "user_1", "userUpiId": "bad"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Invalid UPI ID format"}


def test_full_lifecycle(client, clock, session_factory, internal_headers):
    created = create_mandate(client)

    # checkout approval
    response = paid_callback(client, "plink_1", "pay_setup")
    assert response.status_code == 302
    assert response.headers["location"] == "chrome-extension://ext/popup.html?mandate=success"

    status = client.get("/api/upi-mandates/status/user_1").json()["data"]
    assert status["status"] == "ACTIVE"
    assert status["qrCodeImage"] is None

    # recurring charge through the provider webhook
    clock.advance(days=30)
    event = {
        "event": "subscription.charged",
        "created_at": epoch_seconds(clock.now),
        "payload": {
            "subscription": {"entity": {"id": "sub_1"}},
            "payment": {"entity": {"id": "pay_rec_1", "amount": 900}},
        },
    }
    response = post_webhook(client, event, event_id="evt_1")
    assert response.status_code == 200
    assert response.json()["data"] == {"status": "applied", "event": "subscription.charged"}
    assert post_webhook(client, event, event_id="evt_1").json()["data"]["status"] == "duplicate"

    # the scheduler finds nothing due because the webhook already charged
    response = client.post("/api/upi-mandates/process-charges", headers=internal_headers)
    assert response.json()["data"]["processed"] == 0

    history = client.get("/api/upi-mandates/history/user_1").json()["data"]
    assert [a["status"] for a in history[0]["chargeAttempts"]] == ["SUCCESS", "SUCCESS"]
    assert "qrCodeImage" not in history[0]

    payments = client.get("/api/payments/history/user_1").json()["data"]
    assert {p["transactionId"] for p in payments} == {"pay_setup", "pay_rec_1"}

    # cancel
    response = client.post(
        "/api/upi-mandates/cancel-mandate",
        json={"userId": "user_1", "mandateId": created["mandateId"]},
    )
    assert response.json()["message"] == "Mandate cancelled successfully"
    assert client.get("/api/upi-mandates/status/user_1").json()["data"] == {
        "hasMandate": False,
        "message": "No active mandate found",
    }

    with session_factory() as db:
        user = db.get(User, "user_1")
        assert user.subscription_status == SubscriptionStatus.active
        assert user.has_auto_renewal is False
        assert db.get(UpiMandate, created["mandateId"]).status == MandateStatus.CANCELLED


def test_callback_with_bad_signature_redirects_to_error(client):
    create_mandate(client)

    response = paid_callback(client, "plink_1", "pay_setup", signature="0" * 64)

    assert response.headers["location"].endswith("mandate=error")
    assert client.get("/api/upi-mandates/status/user_1").json()["data"]["status"] == "PENDING"


def test_webhook_with_bad_signature(client):
    response = post_webhook(client, {"event": "subscription.charged"}, signature="bad")

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Invalid signature"}


def test_non_ascii_signatures_are_rejected(client):
    create_mandate(client)

    response = client.post(
        "/api/upi-mandates/webhook",
        content=b'{"event": "subscription.charged"}',
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": "\u00e9".encode("utf-8")},
    )
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Invalid signature"}

    response = paid_callback(client, "plink_1", "pay_setup", signature="\u00e9")
    assert response.status_code == 302
    assert response.headers["location"].endswith("mandate=error")
    assert client.get("/api/upi-mandates/status/user_1").json()["data"]["status"] == "PENDING"

    response = client.post("/api/upi-mandates/process-charges", headers={"X-Internal-Token": "\u00e9".encode("utf-8")})
    assert response.status_code == 401


def test_callback_provider_failure_redirects_to_error(client, provider, session_factory):
    create_mandate(client)
    provider.fail_subscription = True

    response = paid_callback(client, "plink_1", "pay_setup")

    assert response.status_code == 302
    assert response.headers["location"].endswith("mandate=error")
    assert client.get("/api/upi-mandates/status/user_1").json()["data"]["status"] == "PENDING"
    with session_factory() as db:
        failure = db.query(AuditLog).filter(AuditLog.action == AuditAction.provider_failure).one()
        assert failure.target_type == "mandate"


def test_process_charges_requires_internal_token(client, internal_headers, clock):
    assert client.post("/api/upi-mandates/process-charges").status_code == 401

    create_mandate(client)
    paid_callback(client, "plink_1", "pay_setup")
    clock.advance(days=30)

    data = client.post("/api/upi-mandates/process-charges", headers=internal_headers).json()["data"]
    assert data["succeeded"] == 1
    assert data["results"][0]["amount"] == 9


def test_manual_payment_verification(client):
    response = client.post("/api/payments/verify-payment", json={"userId": "user_7", "transactionId": "UPI0001"})
    assert response.status_code == 200
    assert response.json()["message"] == "Payment verified successfully"
    assert response.json()["data"]["amount"] == 9

    again = client.post("/api/payments/verify-payment", json={"userId": "user_7", "transactionId": "UPI0001"})
    assert again.status_code == 400
    assert again.json()["message"] == "Transaction already recorded"


def test_admin_block_flow(client, internal_headers):
    create_mandate(client)
    paid_callback(client, "plink_1", "pay_setup")

    assert client.post("/api/admin/users/user_1/block", json={"reason": "fraud"}).status_code == 401

    response = client.post("/api/admin/users/user_1/block", json={"reason": "fraud"}, headers=internal_headers)
    assert response.json()["data"] == {"affected": 1}

    users = client.get("/api/admin/users?status=blocked", headers=internal_headers).json()["data"]
    assert [u["userId"] for u in users] == ["user_1"]
    assert users[0]["blockReason"] == "fraud"

    response = client.post("/api/admin/users/user_1/unblock", headers=internal_headers)
    assert response.json()["data"] == {"affected": 1}

    mandate_id = client.get("/api/upi-mandates/status/user_1").json()["data"]["mandateId"]
    response = client.post(
        "/api/admin/mandates/cancel",
        json={"userId": "user_1", "mandateId": mandate_id},
        headers=internal_headers,
    )
    assert response.json()["data"] == {"affected": 1}


def test_cancel_unknown_mandate_is_404(client):
    response = client.post("/api/upi-mandates/cancel-mandate", json={"userId": "user_1", "mandateId": "nope"})

    assert response.status_code == 404
    assert response.json()["message"] == "Mandate not found"


def test_overview(client):
    create_mandate(client)

    data = client.get("/api/upi-mandates/").json()["data"]

    assert data["totalMandates"] == 1
    assert data["pendingMandates"] == 1
    assert data["recentMandates"][0]["userId"] == "user_1"
