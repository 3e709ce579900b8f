"""UPI autopay mandate endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from autopay.api.deps import (
    get_config,
    get_engine,
    get_reconciler,
    get_scheduler,
    require_internal_token,
)
from autopay.app.config import Settings
from autopay.core.security import payment_link_payload, verify_signature
from autopay.schemas.common import ok
from autopay.schemas.mandate import (
    MANDATE_INSTRUCTIONS,
    CancelMandateRequest,
    CreateMandateRequest,
    MandateCreatedOut,
    MandateOut,
    MandateStatusOut,
    MandateSummaryOut,
)
from autopay.services.charge_scheduler import ChargeScheduler
from autopay.services.mandate_engine import PERIOD, MandateEngine
from autopay.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


def _dump(schema, obj) -> dict:
    return schema.model_validate(obj).model_dump(by_alias=True, mode="json")


@router.get('/')
def mandates_overview(engine: MandateEngine = Depends(get_engine)):
    """Counts by status and the five most recent mandates."""
    overview = engine.overview()
    overview["recentMandates"] = [_dump(MandateSummaryOut, m) for m in overview["recentMandates"]]
    overview["timestamp"] = engine.clock().isoformat()
    return ok(overview)


@router.post('/create-mandate')
def create_mandate(
    body: CreateMandateRequest,
    request: Request,
    engine: MandateEngine = Depends(get_engine),
):
    """Create a PENDING mandate and return its payment link and QR code."""
    mandate = engine.create_mandate(
        body.user_id,
        body.user_upi_id,
        body.amount,
        client={
            "user_agent": request.headers.get("user-agent"),
            "ip_address": request.client.host if request.client else None,
            "platform": "extension",
        },
    )
    created = MandateCreatedOut(
        mandate_id=mandate.mandate_id,
        razorpay_mandate_id=mandate.provider_payment_link_id,
        payment_link_id=mandate.provider_payment_link_id,
        qr_code_image=mandate.qr_code_image,
        qr_code_data=mandate.qr_payload,
        payment_url=mandate.qr_payload,
        upi_mandate_uri=engine.mandate_uri(mandate),
        amount=mandate.amount,
        frequency=mandate.frequency,
        start_date=mandate.start_date,
        end_date=mandate.end_date,
        # first recurring charge is scheduled once the mandate is approved
        next_charge_date=mandate.start_date + PERIOD,
        instructions=MANDATE_INSTRUCTIONS,
    )
    return ok(
        created.model_dump(by_alias=True, mode="json"),
        message="UPI Autopay mandate created successfully using Razorpay",
    )


@router.get('/status/{user_id}')
def mandate_status(user_id: str, engine: MandateEngine = Depends(get_engine)):
    mandate = engine.get_status(user_id)
    if mandate is None:
        return ok({"hasMandate": False, "message": "No active mandate found"})
    data = _dump(MandateStatusOut, mandate)
    if mandate.status.value != "PENDING":
        data["qrCodeImage"] = None
    return ok(data)


@router.post('/cancel-mandate')
def cancel_mandate(body: CancelMandateRequest, engine: MandateEngine = Depends(get_engine)):
    cancelled = engine.cancel_mandate(body.user_id, body.mandate_id)
    message = "Mandate cancelled successfully" if cancelled else "Mandate already cancelled or expired"
    return ok({"cancelled": cancelled}, message=message)


@router.get('/history/{user_id}')
def mandate_history(user_id: str, engine: MandateEngine = Depends(get_engine)):
    """Last ten mandates, newest first, without QR payloads."""
    return ok([_dump(MandateOut, m) for m in engine.history(user_id)])


@router.get('/user/{user_id}')
def user_mandates(user_id: str, engine: MandateEngine = Depends(get_engine)):
    return mandate_history(user_id, engine)


@router.get('/callback')
def payment_link_callback(
    razorpay_payment_id: Optional[str] = None,
    razorpay_payment_link_id: Optional[str] = None,
    razorpay_payment_link_reference_id: Optional[str] = None,
    razorpay_payment_link_status: Optional[str] = None,
    razorpay_signature: Optional[str] = None,
    engine: MandateEngine = Depends(get_engine),
    config: Settings = Depends(get_config),
):
    """Provider redirect after the payment link checkout; always redirects to the extension popup."""
    target = f"{config.FRONTEND_URL.rstrip('/')}/popup.html?mandate="
    if config.RAZORPAY_KEY_SECRET and razorpay_payment_link_status == "paid":
        payload = payment_link_payload(
            razorpay_payment_link_id or "",
            razorpay_payment_link_reference_id or "",
            razorpay_payment_link_status or "",
            razorpay_payment_id or "",
        )
        if not verify_signature(payload, razorpay_signature or "", config.RAZORPAY_KEY_SECRET):
            logger.warning("Callback for link %s has an invalid signature", razorpay_payment_link_id)
            return RedirectResponse(target + "error", status_code=302)
    try:
        outcome = engine.handle_checkout_callback(
            razorpay_payment_link_id, razorpay_payment_link_status, razorpay_payment_id
        )
    except Exception as exc:
        logger.error("Callback for link %s failed: %s", razorpay_payment_link_id, exc, exc_info=True)
        outcome = "error"
    return RedirectResponse(target + outcome, status_code=302)


@router.post('/webhook')
async def provider_webhook(request: Request, reconciler: WebhookReconciler = Depends(get_reconciler)):
    """Signed Razorpay webhook; 2xx once applied (or already applied), 5xx asks for redelivery."""
    raw_body = await request.body()
    result = await run_in_threadpool(
        reconciler.handle,
        raw_body,
        request.headers.get("x-razorpay-signature"),
        request.headers.get("x-razorpay-event-id"),
    )
    return ok(result)


@router.post('/process-charges', dependencies=[Depends(require_internal_token)])
def process_charges(scheduler: ChargeScheduler = Depends(get_scheduler)):
    """Run one charge tick now."""
    summary = scheduler.run_tick()
    return ok(summary.as_dict(), message=f"Processed {summary.processed} mandates")
