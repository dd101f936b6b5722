"""
Proration Engine

Pure functions computing credit, charge and net amounts for a plan change.
No state and no side effects; safe to call repeatedly and concurrently.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .models import (
    MembershipPlan,
    PlanChangeType,
    ProrationMode,
    ProrationResult,
    to_money,
)

DAILY_RATE_QUANTUM = Decimal("0.0001")

# Modes that take effect on the change date rather than at period end
IMMEDIATE_MODES = frozenset({
    ProrationMode.PRORATE_IMMEDIATELY,
    ProrationMode.FULL_PERIOD_CREDIT,
    ProrationMode.NO_PRORATION,
})


def daily_rate(monthly_price: Decimal, total_days: int) -> Decimal:
    """Price per day over the billing period, 4 decimals half-up"""
    return (Decimal(monthly_price) / Decimal(total_days)).quantize(
        DAILY_RATE_QUANTUM, rounding=ROUND_HALF_UP
    )


def zero_result(
    mode: ProrationMode,
    effective_date: date,
    days_remaining: int = 0,
    total_days: int = 0,
) -> ProrationResult:
    return ProrationResult(
        mode=mode,
        effective_date=effective_date,
        days_remaining=days_remaining,
        total_days=total_days,
    )


def calculate_proration(
    current_price: Decimal,
    new_price: Decimal,
    billing_period_start: date,
    billing_period_end: date,
    change_date: date,
    mode: ProrationMode,
) -> ProrationResult:
    """
    Compute the proration for switching plans inside [start, end).

    Args:
        current_price: Monthly recurring total of the current plan
        new_price: Monthly recurring total of the new plan
        billing_period_start: First day of the billing period
        billing_period_end: Day the billing period ends (exclusive)
        change_date: Day the change is requested
        mode: Proration mode

    Returns:
        ProrationResult with net = charge - credit
    """
    total_days = (billing_period_end - billing_period_start).days
    days_remaining = min((billing_period_end - change_date).days, max(total_days, 0))

    if mode == ProrationMode.END_OF_PERIOD:
        return zero_result(mode, billing_period_end, max(days_remaining, 0), total_days)

    if mode == ProrationMode.NO_PRORATION:
        return zero_result(mode, change_date, max(days_remaining, 0), total_days)

    if mode == ProrationMode.FULL_PERIOD_CREDIT:
        credit = to_money(current_price)
        charge = to_money(new_price)
        return ProrationResult(
            mode=mode,
            credit=credit,
            charge=charge,
            net_amount=charge - credit,
            effective_date=change_date,
            days_remaining=max(days_remaining, 0),
            total_days=total_days,
        )

    # PRORATE_IMMEDIATELY
    if days_remaining <= 0 or total_days <= 0:
        return zero_result(mode, change_date, 0, max(total_days, 0))

    credit = to_money(daily_rate(current_price, total_days) * days_remaining)
    charge = to_money(daily_rate(new_price, total_days) * days_remaining)
    return ProrationResult(
        mode=mode,
        credit=credit,
        charge=charge,
        net_amount=charge - credit,
        effective_date=change_date,
        days_remaining=days_remaining,
        total_days=total_days,
    )


def is_upgrade(current_plan: MembershipPlan, new_plan: MembershipPlan) -> bool:
    """A change is an upgrade when the new recurring total is strictly higher"""
    return new_plan.recurring_total > current_plan.recurring_total


def change_type_for(current_plan: MembershipPlan, new_plan: MembershipPlan) -> PlanChangeType:
    return PlanChangeType.UPGRADE if is_upgrade(current_plan, new_plan) else PlanChangeType.DOWNGRADE


def determine_proration_mode(
    upgrade: bool, preference: Optional[ProrationMode] = None
) -> ProrationMode:
    """
    Resolve the proration mode for a change direction.

    Upgrades default to PRORATE_IMMEDIATELY and honor any explicit preference.
    Downgrades always resolve to END_OF_PERIOD so the member keeps current
    benefits until the period ends, whatever the caller asked for.
    """
    if not upgrade:
        return ProrationMode.END_OF_PERIOD
    return preference or ProrationMode.PRORATE_IMMEDIATELY


_SUMMARY_TEMPLATES = {
    "en": {
        "end_of_period": "Your plan changes to {new_plan} on {date}. Nothing is charged today.",
        "no_charge": "Your plan changes to {new_plan} today. No proration applies.",
        "charge": (
            "Your plan changes to {new_plan} today. Credit {currency} {credit}, "
            "charge {currency} {charge}: you pay {currency} {net}."
        ),
        "refund": (
            "Your plan changes to {new_plan} today. Credit {currency} {credit}, "
            "charge {currency} {charge}: {currency} {net} is credited to you."
        ),
    },
    "ar": {
        "end_of_period": "ستتغير خطتك إلى {new_plan} في {date}. لن يتم تحصيل أي مبلغ اليوم.",
        "no_charge": "تتغير خطتك إلى {new_plan} اليوم دون أي احتساب نسبي.",
        "charge": (
            "تتغير خطتك إلى {new_plan} اليوم. رصيد {credit} {currency}، "
            "رسوم {charge} {currency}: المبلغ المستحق {net} {currency}."
        ),
        "refund": (
            "تتغير خطتك إلى {new_plan} اليوم. رصيد {credit} {currency}، "
            "رسوم {charge} {currency}: سيتم إضافة {net} {currency} إلى رصيدك."
        ),
    },
}


def format_proration_summary(
    result: ProrationResult,
    new_plan_name: str,
    currency: str = "SAR",
    locale: str = "en",
) -> str:
    """Human-readable summary of a proration result"""
    templates = _SUMMARY_TEMPLATES.get(locale, _SUMMARY_TEMPLATES["en"])

    if result.mode == ProrationMode.END_OF_PERIOD:
        key = "end_of_period"
    elif result.credit == 0 and result.charge == 0:
        key = "no_charge"
    elif result.net_amount >= 0:
        key = "charge"
    else:
        key = "refund"

    return templates[key].format(
        new_plan=new_plan_name,
        date=result.effective_date.isoformat(),
        currency=currency,
        credit=result.credit,
        charge=result.charge,
        net=abs(result.net_amount),
    )


__all__ = [
    "IMMEDIATE_MODES",
    "daily_rate",
    "zero_result",
    "calculate_proration",
    "is_upgrade",
    "change_type_for",
    "determine_proration_mode",
    "format_proration_summary",
]
