"""
Subscription State Machine

Pure status transitions for Subscription. Each function validates the
current status, then returns an updated copy.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from .models import FreezeType, Subscription, SubscriptionStatus
from .protocols import InvalidStateError, ValidationFailureError

CANCELLABLE_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.PAUSED,
})

TERMINAL_STATUSES = frozenset({
    SubscriptionStatus.CANCELLED,
    SubscriptionStatus.EXPIRED,
})

PLAN_CHANGEABLE_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
})

IMMEDIATELY_CANCELLABLE_STATUSES = CANCELLABLE_STATUSES | {
    SubscriptionStatus.PENDING_SIGNATURE,
    SubscriptionStatus.PENDING_PAYMENT,
}


def _require(subscription: Subscription, allowed: Iterable[SubscriptionStatus], operation: str) -> None:
    if subscription.status not in allowed:
        raise InvalidStateError("Subscription", subscription.status, operation)


def _touch(subscription: Subscription, now: datetime, **changes) -> Subscription:
    changes["updated_at"] = now
    return subscription.model_copy(update=changes)


def can_cancel(subscription: Subscription) -> bool:
    return subscription.status in CANCELLABLE_STATUSES


def is_terminal(subscription: Subscription) -> bool:
    return subscription.status in TERMINAL_STATUSES


# ====================
# Cancellation
# ====================

def request_cancellation(
    subscription: Subscription,
    notice_period_end_date: date,
    effective_date: date,
    request_id: str,
    now: datetime,
) -> Subscription:
    """Enter the notice period; access continues until the effective date"""
    _require(subscription, CANCELLABLE_STATUSES, "request cancellation")
    return _touch(
        subscription,
        now,
        status=SubscriptionStatus.PENDING_CANCELLATION,
        pending_cancellation_at=now,
        notice_period_end_date=notice_period_end_date,
        cancellation_effective_date=effective_date,
        cancellation_request_id=request_id,
    )


def withdraw_cancellation(subscription: Subscription, now: datetime) -> Subscription:
    _require(subscription, [SubscriptionStatus.PENDING_CANCELLATION], "withdraw cancellation")
    return _touch(
        subscription,
        now,
        status=SubscriptionStatus.ACTIVE,
        pending_cancellation_at=None,
        notice_period_end_date=None,
        cancellation_effective_date=None,
        cancellation_request_id=None,
    )


def cancel_immediately(
    subscription: Subscription, request_id: Optional[str], today: date, now: datetime
) -> Subscription:
    _require(subscription, IMMEDIATELY_CANCELLABLE_STATUSES, "cancel subscription")
    return _touch(
        subscription,
        now,
        status=SubscriptionStatus.CANCELLED,
        end_date=today,
        cancelled_at=now,
        cancellation_effective_date=today,
        cancellation_request_id=request_id,
    )


def complete_cancellation(subscription: Subscription, today: date, now: datetime) -> Subscription:
    _require(subscription, [SubscriptionStatus.PENDING_CANCELLATION], "complete cancellation")
    return _touch(
        subscription,
        now,
        status=SubscriptionStatus.CANCELLED,
        end_date=subscription.cancellation_effective_date or today,
        cancelled_at=now,
    )


def open_reactivation_window(
    subscription: Subscription, today: date, now: datetime, days: int
) -> Subscription:
    _require(subscription, [SubscriptionStatus.CANCELLED], "open reactivation window")
    return _touch(subscription, now, reactivation_eligible_until=today + timedelta(days=days))


# ====================
# Freeze
# ====================

def freeze(
    subscription: Subscription,
    freeze_days: int,
    freeze_type: FreezeType,
    reason: Optional[str],
    document_path: Optional[str],
    today: date,
    now: datetime,
) -> Subscription:
    """Freeze and extend the end date by the full requested days"""
    _require(subscription, [SubscriptionStatus.ACTIVE], "freeze subscription")
    if freeze_days <= 0:
        raise ValidationFailureError("Freeze days must be positive")
    return _touch(
        subscription,
        now,
        status=SubscriptionStatus.FROZEN,
        frozen_at=now,
        freeze_type=freeze_type,
        freeze_reason=reason,
        freeze_document_path=document_path,
        freeze_end_date=today + timedelta(days=freeze_days),
        end_date=subscription.end_date + timedelta(days=freeze_days),
        total_freeze_days_used=subscription.total_freeze_days_used + freeze_days,
    )


def unfreeze(subscription: Subscription, now: datetime) -> Subscription:
    """Back to ACTIVE; the end date extension stays"""
    _require(subscription, [SubscriptionStatus.FROZEN], "unfreeze subscription")
    return _touch(
        subscription,
        now,
        status=SubscriptionStatus.ACTIVE,
        frozen_at=None,
        freeze_type=None,
        freeze_reason=None,
        freeze_document_path=None,
        freeze_end_date=None,
    )


# ====================
# Plan Change
# ====================

def schedule_plan_change(subscription: Subscription, scheduled_change_id: str, now: datetime) -> Subscription:
    _require(subscription, PLAN_CHANGEABLE_STATUSES, "schedule plan change")
    return _touch(subscription, now, scheduled_plan_change_id=scheduled_change_id)


def clear_scheduled_plan_change(subscription: Subscription, now: datetime) -> Subscription:
    return _touch(subscription, now, scheduled_plan_change_id=None)


def change_plan(subscription: Subscription, new_plan_id: str, now: datetime) -> Subscription:
    if is_terminal(subscription):
        raise InvalidStateError("Subscription", subscription.status, "change plan")
    return _touch(subscription, now, plan_id=new_plan_id)


def update_billing_period(
    subscription: Subscription, period_start: date, period_end: date, now: datetime
) -> Subscription:
    if period_end <= period_start:
        raise ValidationFailureError("Billing period end must be after its start")
    return _touch(
        subscription,
        now,
        current_billing_period_start=period_start,
        current_billing_period_end=period_end,
    )


# ====================
# Billing State
# ====================

def activate(subscription: Subscription, now: datetime) -> Subscription:
    """Activate once the signature or first payment is in"""
    _require(
        subscription,
        [SubscriptionStatus.PENDING_SIGNATURE, SubscriptionStatus.PENDING_PAYMENT],
        "activate subscription",
    )
    return _touch(subscription, now, status=SubscriptionStatus.ACTIVE)


def mark_past_due(subscription: Subscription, now: datetime) -> Subscription:
    _require(subscription, [SubscriptionStatus.ACTIVE], "mark subscription past due")
    return _touch(subscription, now, status=SubscriptionStatus.PAST_DUE, past_due_at=now)


def suspend(subscription: Subscription, now: datetime) -> Subscription:
    _require(subscription, [SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE], "suspend subscription")
    return _touch(subscription, now, status=SubscriptionStatus.SUSPENDED, suspended_at=now)


def reactivate(subscription: Subscription, now: datetime) -> Subscription:
    _require(
        subscription,
        [SubscriptionStatus.SUSPENDED, SubscriptionStatus.PAST_DUE, SubscriptionStatus.PAUSED],
        "reactivate subscription",
    )
    return _touch(
        subscription,
        now,
        status=SubscriptionStatus.ACTIVE,
        past_due_at=None,
        suspended_at=None,
    )


def renew(subscription: Subscription, new_end_date: date, now: datetime) -> Subscription:
    _require(
        subscription,
        [SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE, SubscriptionStatus.EXPIRED],
        "renew subscription",
    )
    if new_end_date <= subscription.end_date:
        raise ValidationFailureError("Renewal must move the end date forward")
    return _touch(
        subscription,
        now,
        status=SubscriptionStatus.ACTIVE,
        end_date=new_end_date,
        past_due_at=None,
    )
