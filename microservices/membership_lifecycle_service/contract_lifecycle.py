"""
Contract Lifecycle

Pure transitions and derived values for MembershipContract. Every transition
takes the current contract and returns a new one; nothing here touches
storage.

State machine:
    PENDING_SIGNATURE --sign--> PENDING_SIGNATURE --approve--> ACTIVE
    ACTIVE --request_cancellation--> IN_NOTICE_PERIOD --complete--> CANCELLED
    IN_NOTICE_PERIOD --withdraw--> ACTIVE
    PENDING_SIGNATURE | ACTIVE --cancel_within_cooling_off--> CANCELLED
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from .models import (
    CancellationType,
    ContractStatus,
    ContractType,
    CreateContractCommand,
    MembershipContract,
    TerminationFeeType,
    to_money,
)
from .protocols import InvalidStateError, ValidationFailureError

COOLING_OFF_DAYS = 7

ZERO = Decimal("0.00")


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length"""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start to end (0 when end is not after start)"""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)


def format_contract_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:06d}"


def _require(contract: MembershipContract, allowed: Iterable[ContractStatus], operation: str) -> None:
    if contract.status not in allowed:
        raise InvalidStateError("Contract", contract.status, operation)


def _touch(contract: MembershipContract, now: datetime, **changes) -> MembershipContract:
    changes["updated_at"] = now
    return contract.model_copy(update=changes)


# ====================
# Construction
# ====================

def new_contract(
    contract_id: str,
    contract_number: str,
    tenant_id: str,
    command: CreateContractCommand,
    now: datetime,
    cooling_off_days: int = COOLING_OFF_DAYS,
) -> MembershipContract:
    """Build a PENDING_SIGNATURE contract from a create command"""
    if command.contract_type == ContractType.MONTH_TO_MONTH:
        commitment_months = 0
    else:
        commitment_months = command.contract_term.months

    commitment_end = add_months(command.start_date, commitment_months) if commitment_months > 0 else None

    if command.termination_fee_type in (TerminationFeeType.FLAT_FEE, TerminationFeeType.PERCENTAGE):
        if command.termination_fee_value is None or command.termination_fee_value < 0:
            raise ValidationFailureError(
                f"Termination fee policy {command.termination_fee_type.value} requires a non-negative value"
            )

    return MembershipContract(
        contract_id=contract_id,
        contract_number=contract_number,
        tenant_id=tenant_id,
        member_id=command.member_id,
        plan_id=command.plan_id,
        category_id=command.category_id,
        subscription_id=command.subscription_id,
        contract_type=command.contract_type,
        contract_term=command.contract_term,
        commitment_months=commitment_months,
        notice_period_days=command.notice_period_days,
        start_date=command.start_date,
        commitment_end_date=commitment_end,
        cooling_off_end_date=command.start_date + timedelta(days=cooling_off_days),
        locked_membership_fee=command.membership_fee,
        locked_admin_fee=command.admin_fee,
        locked_join_fee=command.join_fee,
        termination_fee_type=command.termination_fee_type,
        termination_fee_value=command.termination_fee_value,
        status=ContractStatus.PENDING_SIGNATURE,
        created_at=now,
        updated_at=now,
    )


# ====================
# Derived Values
# ====================

def is_within_cooling_off(contract: MembershipContract, today: date) -> bool:
    return today <= contract.cooling_off_end_date


def cooling_off_days_remaining(contract: MembershipContract, today: date) -> int:
    return max(0, (contract.cooling_off_end_date - today).days)


def is_within_commitment(contract: MembershipContract, today: date) -> bool:
    return contract.commitment_end_date is not None and today < contract.commitment_end_date


def commitment_months_remaining(contract: MembershipContract, today: date) -> int:
    if not is_within_commitment(contract, today):
        return 0
    return months_between(today, contract.commitment_end_date)


def locked_monthly_total(contract: MembershipContract) -> Decimal:
    return contract.locked_membership_fee.gross_amount + contract.locked_admin_fee.gross_amount


def cooling_off_refund(contract: MembershipContract) -> Decimal:
    return contract.locked_join_fee.gross_amount + contract.locked_membership_fee.gross_amount


def calculate_early_termination_fee(contract: MembershipContract, today: date) -> Decimal:
    """
    Fee owed for leaving before the commitment ends.

    Zero inside cooling-off and outside the commitment window. Otherwise:
    NONE is zero, FLAT_FEE is the configured value, REMAINING_MONTHS is the
    locked membership fee times the committed months left, and PERCENTAGE is
    the configured percent of the locked membership fee over the committed
    months left.
    """
    if is_within_cooling_off(contract, today) or not is_within_commitment(contract, today):
        return ZERO

    fee_type = contract.termination_fee_type
    months_left = commitment_months_remaining(contract, today)

    if fee_type == TerminationFeeType.FLAT_FEE:
        return to_money(contract.termination_fee_value or ZERO)
    if fee_type == TerminationFeeType.REMAINING_MONTHS:
        return to_money(contract.locked_membership_fee.gross_amount * months_left)
    if fee_type == TerminationFeeType.PERCENTAGE:
        remaining_value = contract.locked_membership_fee.gross_amount * months_left
        return to_money(remaining_value * (contract.termination_fee_value or ZERO) / Decimal(100))
    return ZERO


# ====================
# Transitions
# ====================

def sign(contract: MembershipContract, signature_data: Optional[str], now: datetime) -> MembershipContract:
    """Record the member signature; the contract waits for staff approval"""
    _require(contract, [ContractStatus.PENDING_SIGNATURE], "sign contract")
    if contract.member_signed_at is not None:
        raise InvalidStateError("Contract", "signed", "sign contract again")
    return _touch(contract, now, member_signed_at=now, signature_data=signature_data)


def approve(contract: MembershipContract, staff_id: str, now: datetime) -> MembershipContract:
    _require(contract, [ContractStatus.PENDING_SIGNATURE], "approve contract")
    if contract.member_signed_at is None:
        raise InvalidStateError("Contract", "unsigned", "approve contract")
    return _touch(
        contract,
        now,
        status=ContractStatus.ACTIVE,
        staff_approved_by=staff_id,
        staff_approved_at=now,
    )


def link_subscription(contract: MembershipContract, subscription_id: str, now: datetime) -> MembershipContract:
    if contract.subscription_id and contract.subscription_id != subscription_id:
        raise ValidationFailureError(
            f"Contract {contract.contract_id} is already linked to subscription {contract.subscription_id}"
        )
    return _touch(contract, now, subscription_id=subscription_id)


def cancel_within_cooling_off(
    contract: MembershipContract, reason: Optional[str], today: date, now: datetime
) -> MembershipContract:
    """Immediate cancellation inside the regulatory window"""
    _require(
        contract,
        [ContractStatus.PENDING_SIGNATURE, ContractStatus.ACTIVE],
        "cancel contract within cooling-off",
    )
    if not is_within_cooling_off(contract, today):
        raise InvalidStateError("Contract", "cooling_off_expired", "cancel contract within cooling-off")
    return _touch(
        contract,
        now,
        status=ContractStatus.CANCELLED,
        cancellation_type=CancellationType.COOLING_OFF,
        cancellation_reason=reason,
        cancellation_requested_at=now,
        cancellation_effective_date=today,
        effective_end_date=today,
    )


def request_cancellation(
    contract: MembershipContract,
    cancellation_type: CancellationType,
    reason: Optional[str],
    effective_date: date,
    now: datetime,
) -> MembershipContract:
    _require(contract, [ContractStatus.ACTIVE], "request contract cancellation")
    return _touch(
        contract,
        now,
        status=ContractStatus.IN_NOTICE_PERIOD,
        cancellation_type=cancellation_type,
        cancellation_reason=reason,
        cancellation_requested_at=now,
        cancellation_effective_date=effective_date,
    )


def withdraw_cancellation_request(contract: MembershipContract, now: datetime) -> MembershipContract:
    _require(contract, [ContractStatus.IN_NOTICE_PERIOD], "withdraw contract cancellation")
    return _touch(
        contract,
        now,
        status=ContractStatus.ACTIVE,
        cancellation_type=None,
        cancellation_reason=None,
        cancellation_requested_at=None,
        cancellation_effective_date=None,
    )


def complete_cancellation(contract: MembershipContract, today: date, now: datetime) -> MembershipContract:
    _require(contract, [ContractStatus.IN_NOTICE_PERIOD], "complete contract cancellation")
    return _touch(
        contract,
        now,
        status=ContractStatus.CANCELLED,
        effective_end_date=contract.cancellation_effective_date or today,
    )


def suspend(contract: MembershipContract, now: datetime) -> MembershipContract:
    _require(contract, [ContractStatus.ACTIVE], "suspend contract")
    return _touch(contract, now, status=ContractStatus.SUSPENDED)


def reactivate(contract: MembershipContract, now: datetime) -> MembershipContract:
    _require(contract, [ContractStatus.SUSPENDED], "reactivate contract")
    return _touch(contract, now, status=ContractStatus.ACTIVE)


def expire(contract: MembershipContract, today: date, now: datetime) -> MembershipContract:
    _require(contract, [ContractStatus.ACTIVE, ContractStatus.SUSPENDED], "expire contract")
    return _touch(contract, now, status=ContractStatus.EXPIRED, effective_end_date=today)
