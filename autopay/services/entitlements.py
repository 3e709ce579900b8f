"""
Entitlement projection
======================

Pure functions from (user state, mandate event) to a dict of User column
updates. Nothing here touches the session; callers apply the result with
``apply_projection``.

A blocked user is frozen: activation and recurring success produce no
update, so a charge that lands after a block never re-activates access.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from autopay.models.enums import SubscriptionStatus

# Fixed 30-day billing period.
PERIOD = timedelta(days=30)

Projection = Dict[str, Any]


def _is_blocked(user) -> bool:
    return user.subscription_status == SubscriptionStatus.blocked


def project_activation(user, mandate_id: str, now: datetime) -> Projection:
    """First-period activation of a mandate that was PENDING."""
    if _is_blocked(user):
        return {}
    base = user.subscription_expiry if user.subscription_expiry and user.subscription_expiry > now else now
    return {
        "subscription_status": SubscriptionStatus.active,
        "subscription_expiry": base + PERIOD,
        "has_auto_renewal": True,
        "upi_mandate_id": mandate_id,
        "last_payment_date": now,
    }


def project_recurring_success(user, now: datetime) -> Projection:
    """Extend from the current expiry, never from ``now``."""
    if _is_blocked(user):
        return {}
    current = user.subscription_expiry or now
    return {
        "subscription_status": SubscriptionStatus.active,
        "subscription_expiry": current + PERIOD,
        "last_payment_date": now,
    }


def project_halt(user) -> Projection:
    """Renewal stops; the remaining paid runway is kept."""
    return {"has_auto_renewal": False}


def project_cancel(user) -> Projection:
    return {"has_auto_renewal": False}


def project_expiry_crossing(user, now: datetime, has_active_mandate: bool) -> Projection:
    if _is_blocked(user) or has_active_mandate:
        return {}
    if user.subscription_status == SubscriptionStatus.expired:
        return {}
    if user.subscription_expiry is None or now < user.subscription_expiry:
        return {}
    return {"subscription_status": SubscriptionStatus.expired, "has_auto_renewal": False}


def project_trial_tick(user, now: datetime) -> Projection:
    """Recompute the remaining trial days; an exhausted trial expires."""
    if user.subscription_status != SubscriptionStatus.trial or user.trial_end_date is None:
        return {}
    remaining = max(0, (user.trial_end_date - now).days)
    if now >= user.trial_end_date:
        remaining = 0
    update: Projection = {}
    if remaining != user.trial_days_remaining:
        update["trial_days_remaining"] = remaining
    if remaining == 0:
        update["subscription_status"] = SubscriptionStatus.expired
    return update


def project_block(user, reason: Optional[str], now: datetime) -> Projection:
    if _is_blocked(user):
        return {}
    return {
        "subscription_status": SubscriptionStatus.blocked,
        "block_reason": reason,
        "blocked_at": now,
    }


def project_unblock(user, now: datetime, has_active_mandate: bool) -> Projection:
    """Restore the status the user would have had without the block."""
    if not _is_blocked(user):
        return {}
    update: Projection = {"block_reason": None, "blocked_at": None}
    if has_active_mandate:
        update["has_auto_renewal"] = True
    if (user.subscription_expiry and user.subscription_expiry >= now) or has_active_mandate:
        update["subscription_status"] = SubscriptionStatus.active
    elif user.trial_end_date and user.trial_end_date > now:
        update["subscription_status"] = SubscriptionStatus.trial
    else:
        update["subscription_status"] = SubscriptionStatus.expired
    return update


def apply_projection(user, update: Projection) -> bool:
    """Set changed fields on ``user``; returns True if anything changed."""
    changed = False
    for field, value in update.items():
        if getattr(user, field) != value:
            setattr(user, field, value)
            changed = True
    return changed


def project_one_off_payment(user, now: datetime) -> Projection:
    """A single verified payment buys one period without turning on renewal."""
    if _is_blocked(user):
        return {}
    base = user.subscription_expiry if user.subscription_expiry and user.subscription_expiry > now else now
    return {
        "subscription_status": SubscriptionStatus.active,
        "subscription_expiry": base + PERIOD,
        "last_payment_date": now,
    }
