"""Payment endpoints."""
from fastapi import APIRouter, Depends, Request

from autopay.api.deps import get_payment_service
from autopay.schemas.common import ok
from autopay.schemas.payment import PaymentOut, VerifyPaymentRequest
from autopay.services.payment_verification import PaymentVerificationService

router = APIRouter()


@router.post('/verify-payment')
def verify_payment(
    body: VerifyPaymentRequest,
    request: Request,
    service: PaymentVerificationService = Depends(get_payment_service),
):
    """Checkout signature verification, or manual verification by transaction id."""
    payment = service.verify(
        user_id=body.user_id,
        order_id=body.razorpay_order_id,
        payment_id=body.razorpay_payment_id,
        signature=body.razorpay_signature,
        transaction_id=body.transaction_id,
        client={
            "user_agent": request.headers.get("user-agent"),
            "ip_address": request.client.host if request.client else None,
        },
    )
    data = PaymentOut.model_validate(payment).model_dump(by_alias=True, mode="json")
    return ok(data, message="Payment verified successfully")


@router.get('/history/{user_id}')
def payment_history(user_id: str, service: PaymentVerificationService = Depends(get_payment_service)):
    payments = service.history(user_id)
    return ok([PaymentOut.model_validate(p).model_dump(by_alias=True, mode="json") for p in payments])


@router.get('/user/{user_id}')
def user_payments(user_id: str, service: PaymentVerificationService = Depends(get_payment_service)):
    return payment_history(user_id, service)
