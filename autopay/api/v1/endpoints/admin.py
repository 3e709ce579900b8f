"""Admin endpoints (internal token protected)."""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from autopay.api.deps import get_admin_actions, require_internal_token
from autopay.models.enums import SecurityRiskLevel, SubscriptionStatus
from autopay.schemas.admin import (
    AdminCancelMandateRequest,
    AdminUserOut,
    BlockDeviceRequest,
    BlockUserRequest,
)
from autopay.schemas.common import ok
from autopay.services.admin_actions import AdminActions

router = APIRouter(dependencies=[Depends(require_internal_token)])


@router.get('/users')
def list_users(
    risk: Optional[SecurityRiskLevel] = Query(None),
    status: Optional[SubscriptionStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    actions: AdminActions = Depends(get_admin_actions),
):
    """High-risk or blocked users for review."""
    users = actions.list_users(risk=risk, status=status, limit=limit)
    return ok([AdminUserOut.model_validate(u).model_dump(by_alias=True, mode="json") for u in users])


@router.post('/users/{user_id}/block')
def block_user(
    user_id: str,
    body: Optional[BlockUserRequest] = None,
    actions: AdminActions = Depends(get_admin_actions),
):
    count = actions.block_user(user_id, body.reason if body else None)
    return ok({"affected": count}, message="User blocked")


@router.post('/users/{user_id}/unblock')
def unblock_user(user_id: str, actions: AdminActions = Depends(get_admin_actions)):
    count = actions.unblock_user(user_id)
    return ok({"affected": count}, message="User unblocked")


@router.post('/devices/block')
def block_device(body: BlockDeviceRequest, actions: AdminActions = Depends(get_admin_actions)):
    count = actions.block_device(body.device_fingerprint, body.reason)
    return ok({"affected": count}, message=f"Blocked {count} users")


@router.post('/mandates/cancel')
def admin_cancel_mandate(body: AdminCancelMandateRequest, actions: AdminActions = Depends(get_admin_actions)):
    count = actions.cancel_mandate(body.user_id, body.mandate_id)
    return ok({"affected": count}, message="Mandate cancelled" if count else "Mandate already cancelled or expired")
