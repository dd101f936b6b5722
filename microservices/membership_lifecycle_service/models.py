"""
Membership Lifecycle Service Data Models

Defines data models for membership contracts, subscriptions, cancellation
episodes, retention offers, plan changes and freeze balances.
"""

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


MONEY_QUANTUM = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    """Round a monetary value to 2 decimals, half-up"""
    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


# ====================
# Enum Types
# ====================

class ContractStatus(str, Enum):
    """Membership contract status"""
    PENDING_SIGNATURE = "pending_signature"   # Awaiting member signature / staff approval
    ACTIVE = "active"
    IN_NOTICE_PERIOD = "in_notice_period"     # Cancellation requested, notice running
    CANCELLED = "cancelled"                   # Terminal
    SUSPENDED = "suspended"
    EXPIRED = "expired"
    VOIDED = "voided"


class ContractType(str, Enum):
    """Contract type"""
    MONTH_TO_MONTH = "month_to_month"
    FIXED_TERM = "fixed_term"


class ContractTerm(str, Enum):
    """Contract term length"""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    ANNUAL = "annual"

    @property
    def months(self) -> int:
        return _TERM_MONTHS[self]


_TERM_MONTHS = {
    ContractTerm.MONTHLY: 1,
    ContractTerm.QUARTERLY: 3,
    ContractTerm.SEMI_ANNUAL: 6,
    ContractTerm.ANNUAL: 12,
}


class TerminationFeeType(str, Enum):
    """Early termination fee policy"""
    NONE = "none"
    FLAT_FEE = "flat_fee"                     # Configured fixed value
    REMAINING_MONTHS = "remaining_months"     # Remaining committed months x locked monthly fee
    PERCENTAGE = "percentage"                 # Percentage of remaining committed value


class CancellationType(str, Enum):
    """How a contract was cancelled"""
    COOLING_OFF = "cooling_off"
    NOTICE_PERIOD = "notice_period"
    IMMEDIATE = "immediate"


class SubscriptionStatus(str, Enum):
    """Subscription status"""
    PENDING_PAYMENT = "pending_payment"
    PENDING_SIGNATURE = "pending_signature"
    ACTIVE = "active"
    FROZEN = "frozen"
    PAST_DUE = "past_due"
    PENDING_CANCELLATION = "pending_cancellation"  # Notice period running
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"
    PAUSED = "paused"
    EXPIRED = "expired"


class FreezeType(str, Enum):
    """Reason class for a freeze"""
    MEDICAL = "medical"
    TRAVEL = "travel"
    PERSONAL = "personal"
    MILITARY = "military"
    OTHER = "other"


class FreezeSource(str, Enum):
    """Where freeze days in a balance came from"""
    PURCHASED = "purchased"
    PROMOTIONAL = "promotional"
    COMPENSATION = "compensation"
    RETENTION_OFFER = "retention_offer"
    MANUAL = "manual"


class CancellationRequestStatus(str, Enum):
    """Cancellation request status"""
    PENDING = "pending"
    IN_NOTICE_PERIOD = "in_notice_period"
    SAVED = "saved"              # Member accepted a retention offer
    WITHDRAWN = "withdrawn"
    COMPLETED = "completed"


NON_TERMINAL_CANCELLATION_STATUSES = (
    CancellationRequestStatus.PENDING,
    CancellationRequestStatus.IN_NOTICE_PERIOD,
)


class CancellationReasonCategory(str, Enum):
    """Why the member is leaving"""
    FINANCIAL = "financial"
    RELOCATION = "relocation"
    HEALTH = "health"
    DISSATISFACTION = "dissatisfaction"
    USAGE = "usage"
    COMPETITION = "competition"
    PERSONAL = "personal"
    OTHER = "other"


class RetentionOfferType(str, Enum):
    """Retention offer type"""
    FREE_FREEZE = "free_freeze"
    DISCOUNT = "discount"
    DOWNGRADE = "downgrade"


class RetentionOfferStatus(str, Enum):
    """Retention offer status"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class ScheduledChangeStatus(str, Enum):
    """Scheduled plan change status"""
    PENDING = "pending"
    PROCESSED = "processed"
    CANCELLED = "cancelled"


class PlanChangeType(str, Enum):
    """Direction of a plan change"""
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"


class ProrationMode(str, Enum):
    """How a plan change is billed"""
    PRORATE_IMMEDIATELY = "prorate_immediately"
    END_OF_PERIOD = "end_of_period"
    FULL_PERIOD_CREDIT = "full_period_credit"
    NO_PRORATION = "no_proration"


class PlanChangeStatus(str, Enum):
    """Plan change history status"""
    COMPLETED = "completed"


# ====================
# Value Types
# ====================

class LocalizedText(BaseModel):
    """Bilingual display text"""
    en: str
    ar: Optional[str] = None

    def get(self, locale: str = "en") -> str:
        if locale == "ar" and self.ar:
            return self.ar
        return self.en


class TaxableFee(BaseModel):
    """A fee with its tax rate (rate is a fraction, e.g. 0.15)"""
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "SAR"

    @property
    def tax_amount(self) -> Decimal:
        return to_money(self.amount * self.tax_rate)

    @property
    def gross_amount(self) -> Decimal:
        return to_money(self.amount) + self.tax_amount


class MembershipPlan(BaseModel):
    """Plan as returned by the plan collaborator"""
    plan_id: str
    name: LocalizedText
    recurring_total: Decimal = Field(..., ge=0, description="Monthly recurring total incl. tax")
    currency: str = "SAR"
    is_active: bool = True


# ====================
# Core Data Models
# ====================

class MembershipContract(BaseModel):
    """Membership contract"""
    contract_id: str = Field(..., description="Unique contract identifier")
    contract_number: str = Field(..., description="Human-readable number, PREFIX-YEAR-NNNNNN")
    tenant_id: str

    # References
    member_id: str
    plan_id: str
    category_id: Optional[str] = None
    subscription_id: Optional[str] = None

    # Terms
    contract_type: ContractType = ContractType.MONTH_TO_MONTH
    contract_term: ContractTerm = ContractTerm.MONTHLY
    commitment_months: int = Field(default=0, ge=0)
    notice_period_days: int = Field(default=30, ge=0)

    # Dates
    start_date: date
    commitment_end_date: Optional[date] = None
    cooling_off_end_date: date
    effective_end_date: Optional[date] = None

    # Locked pricing snapshot
    locked_membership_fee: TaxableFee = Field(default_factory=TaxableFee)
    locked_admin_fee: TaxableFee = Field(default_factory=TaxableFee)
    locked_join_fee: TaxableFee = Field(default_factory=TaxableFee)

    # Early termination policy
    termination_fee_type: TerminationFeeType = TerminationFeeType.NONE
    termination_fee_value: Optional[Decimal] = None

    status: ContractStatus = ContractStatus.PENDING_SIGNATURE

    # Signatures
    member_signed_at: Optional[datetime] = None
    signature_data: Optional[str] = None
    staff_approved_by: Optional[str] = None
    staff_approved_at: Optional[datetime] = None

    # Cancellation
    cancellation_requested_at: Optional[datetime] = None
    cancellation_effective_date: Optional[date] = None
    cancellation_type: Optional[CancellationType] = None
    cancellation_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Subscription(BaseModel):
    """Member subscription to a plan"""
    subscription_id: str = Field(..., description="Unique subscription identifier")
    member_id: str
    plan_id: str
    contract_id: Optional[str] = None

    status: SubscriptionStatus = SubscriptionStatus.ACTIVE

    # Period
    start_date: date
    end_date: date
    current_billing_period_start: Optional[date] = None
    current_billing_period_end: Optional[date] = None

    # Counters
    classes_remaining: Optional[int] = None
    guest_passes_remaining: int = Field(default=0, ge=0)
    total_freeze_days_used: int = Field(default=0, ge=0)

    # Freeze
    frozen_at: Optional[datetime] = None
    freeze_type: Optional[FreezeType] = None
    freeze_reason: Optional[str] = None
    freeze_end_date: Optional[date] = None
    freeze_document_path: Optional[str] = None

    # Billing state
    past_due_at: Optional[datetime] = None
    suspended_at: Optional[datetime] = None

    # Cancellation
    pending_cancellation_at: Optional[datetime] = None
    notice_period_end_date: Optional[date] = None
    cancellation_request_id: Optional[str] = None
    cancellation_effective_date: Optional[date] = None
    cancelled_at: Optional[datetime] = None
    reactivation_eligible_until: Optional[date] = None

    # Plan change
    scheduled_plan_change_id: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CancellationRequest(BaseModel):
    """One cancellation episode for a subscription"""
    request_id: str
    subscription_id: str
    member_id: str
    contract_id: Optional[str] = None

    reason_category: CancellationReasonCategory
    reason_detail: Optional[str] = None
    status: CancellationRequestStatus = CancellationRequestStatus.PENDING

    # Terms
    requested_at: datetime
    notice_period_days: int = Field(default=0, ge=0)
    notice_period_end_date: date
    effective_date: date
    is_within_cooling_off: bool = False
    is_within_commitment: bool = False
    early_termination_fee: Optional[Decimal] = None

    # Outcome
    saved_by_offer_id: Optional[str] = None
    exit_survey_id: Optional[str] = None
    withdrawal_reason: Optional[str] = None
    withdrawn_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Fee waiver
    fee_waived: bool = False
    fee_waived_by: Optional[str] = None
    fee_waived_reason: Optional[str] = None
    fee_waived_at: Optional[datetime] = None


class RetentionOffer(BaseModel):
    """Time-limited incentive presented during a cancellation episode"""
    offer_id: str
    subscription_id: str
    member_id: str
    cancellation_request_id: Optional[str] = None
    contract_id: Optional[str] = None

    offer_type: RetentionOfferType
    title: LocalizedText
    description: LocalizedText
    priority: int = 0

    # Type-specific values
    freeze_days: Optional[int] = None
    discount_percentage: Optional[Decimal] = None
    discount_months: Optional[int] = None
    alternative_plan_id: Optional[str] = None
    alternative_plan_name: Optional[LocalizedText] = None
    alternative_plan_price: Optional[Decimal] = None

    status: RetentionOfferStatus = RetentionOfferStatus.PENDING
    expires_at: datetime
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ExitSurvey(BaseModel):
    """Exit survey, at most one per subscription"""
    survey_id: str
    subscription_id: str
    member_id: str
    contract_id: Optional[str] = None
    cancellation_request_id: Optional[str] = None

    reason_category: CancellationReasonCategory
    reason_detail: Optional[str] = None
    feedback: Optional[str] = None
    nps_score: Optional[int] = Field(default=None, ge=0, le=10)
    would_recommend: Optional[bool] = None
    overall_satisfaction: Optional[int] = Field(default=None, ge=1, le=5)
    dissatisfaction_areas: List[str] = Field(default_factory=list)
    what_would_bring_back: Optional[str] = None
    open_to_future_offers: bool = True
    competitor_name: Optional[str] = None
    competitor_reason: Optional[str] = None
    submitted_at: datetime


class ScheduledPlanChange(BaseModel):
    """Plan change deferred to the end of the billing period"""
    scheduled_change_id: str
    subscription_id: str
    member_id: str
    current_plan_id: str
    new_plan_id: str
    change_type: PlanChangeType
    scheduled_date: date
    status: ScheduledChangeStatus = ScheduledChangeStatus.PENDING

    initiated_by_user_id: Optional[str] = None
    initiated_by_member: bool = False
    notes: Optional[str] = None

    processed_at: Optional[datetime] = None
    plan_change_history_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class PlanChangeHistory(BaseModel):
    """Immutable record of an executed plan change"""
    history_id: str
    subscription_id: str
    member_id: str
    contract_id: Optional[str] = None
    old_plan_id: str
    new_plan_id: str
    change_type: PlanChangeType
    proration_mode: ProrationMode
    effective_date: date

    # Proration
    billing_period_start: Optional[date] = None
    billing_period_end: Optional[date] = None
    days_remaining: int = 0
    total_days: int = 0
    credit_amount: Decimal = Decimal("0.00")
    charge_amount: Decimal = Decimal("0.00")
    net_amount: Decimal = Decimal("0.00")

    initiated_by_user_id: Optional[str] = None
    initiated_by_member: bool = False
    scheduled_change_id: Optional[str] = None
    notes: Optional[str] = None
    status: PlanChangeStatus = PlanChangeStatus.COMPLETED
    created_at: datetime


class FreezePackage(BaseModel):
    """Purchasable bundle of freeze days"""
    package_id: str
    name: LocalizedText
    freeze_days: int = Field(..., gt=0)
    price: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True


class MemberFreezeBalance(BaseModel):
    """Available freeze days for a member's subscription"""
    balance_id: str
    member_id: str
    subscription_id: str
    total_days_granted: int = Field(default=0, ge=0)
    used_days: int = Field(default=0, ge=0)
    available_days: int = Field(default=0, ge=0)
    updated_at: Optional[datetime] = None


class FreezeBalanceGrant(BaseModel):
    """Source-tagged credit to a freeze balance"""
    grant_id: str
    balance_id: str
    subscription_id: str
    source: FreezeSource
    days: int = Field(..., gt=0)
    reference_id: Optional[str] = None
    granted_by: Optional[str] = None
    created_at: datetime


class FreezeHistory(BaseModel):
    """Immutable per-freeze ledger row; only closing fields change"""
    freeze_history_id: str
    subscription_id: str
    member_id: str
    freeze_type: FreezeType
    freeze_reason: Optional[str] = None
    document_path: Optional[str] = None

    freeze_start_date: date
    requested_days: int = Field(..., gt=0)
    days_from_balance: int = Field(default=0, ge=0)
    free_days: int = Field(default=0, ge=0)
    contract_extended: bool = True
    original_end_date: date
    new_end_date: date

    is_active: bool = True
    unfrozen_at: Optional[datetime] = None
    closed_reason: Optional[str] = None
    created_at: datetime


# ====================
# Commands
# ====================

class CreateContractCommand(BaseModel):
    """Input for CreateContract"""
    member_id: str
    plan_id: str
    category_id: Optional[str] = None
    subscription_id: Optional[str] = None
    contract_type: ContractType = ContractType.MONTH_TO_MONTH
    contract_term: ContractTerm = ContractTerm.MONTHLY
    notice_period_days: int = Field(default=30, ge=0)
    start_date: date
    membership_fee: TaxableFee
    admin_fee: TaxableFee = Field(default_factory=TaxableFee)
    join_fee: TaxableFee = Field(default_factory=TaxableFee)
    termination_fee_type: TerminationFeeType = TerminationFeeType.NONE
    termination_fee_value: Optional[Decimal] = None


class RequestCancellationCommand(BaseModel):
    """Input for RequestCancellation"""
    subscription_id: str
    reason_category: CancellationReasonCategory
    reason_detail: Optional[str] = None


class ExitSurveyCommand(BaseModel):
    """Input for SubmitExitSurvey"""
    subscription_id: str
    reason_category: CancellationReasonCategory
    reason_detail: Optional[str] = None
    feedback: Optional[str] = None
    nps_score: Optional[int] = Field(default=None, ge=0, le=10)
    would_recommend: Optional[bool] = None
    overall_satisfaction: Optional[int] = Field(default=None, ge=1, le=5)
    dissatisfaction_areas: List[str] = Field(default_factory=list)
    what_would_bring_back: Optional[str] = None
    open_to_future_offers: bool = True
    competitor_name: Optional[str] = None
    competitor_reason: Optional[str] = None


class ChangePlanCommand(BaseModel):
    """Input for ChangePlan"""
    subscription_id: str
    new_plan_id: str
    preferred_mode: Optional[ProrationMode] = None
    initiated_by_user_id: Optional[str] = None
    initiated_by_member: bool = False
    notes: Optional[str] = None


class FreezeSubscriptionCommand(BaseModel):
    """Input for FreezeSubscription"""
    subscription_id: str
    freeze_days: int = Field(..., gt=0)
    freeze_type: FreezeType = FreezeType.OTHER
    reason: Optional[str] = None
    document_path: Optional[str] = None


# ====================
# Results
# ====================

class ProrationResult(BaseModel):
    """Output of the proration engine"""
    mode: ProrationMode
    credit: Decimal = Decimal("0.00")
    charge: Decimal = Decimal("0.00")
    net_amount: Decimal = Decimal("0.00")
    effective_date: date
    days_remaining: int = 0
    total_days: int = 0


class RetentionOfferPreview(BaseModel):
    """Retention offer shown in a cancellation preview (not persisted)"""
    offer_type: RetentionOfferType
    title: LocalizedText
    description: LocalizedText
    priority: int = 0
    freeze_days: Optional[int] = None
    discount_percentage: Optional[Decimal] = None
    discount_months: Optional[int] = None
    alternative_plan_id: Optional[str] = None
    alternative_plan_name: Optional[LocalizedText] = None
    alternative_plan_price: Optional[Decimal] = None


class ContractTermsSummary(BaseModel):
    """Cancellation-relevant terms of a contract as of a given day"""
    contract_id: str
    contract_number: str
    status: ContractStatus
    is_within_cooling_off: bool
    cooling_off_days_remaining: int
    is_within_commitment: bool
    commitment_months_remaining: int
    notice_period_days: int
    locked_monthly_total: Decimal
    early_termination_fee: Decimal
    refund_amount: Optional[Decimal] = None


class CancellationPreview(BaseModel):
    """Read-only view of what cancelling today would mean"""
    subscription_id: str
    is_within_cooling_off: bool
    cooling_off_days_remaining: int
    is_within_commitment: bool
    commitment_months_remaining: int
    notice_period_days: int
    notice_period_end_date: date
    effective_date: date
    early_termination_fee: Decimal
    refund_amount: Optional[Decimal] = None
    retention_offers: List[RetentionOfferPreview] = Field(default_factory=list)


class CancellationResult(BaseModel):
    """Outcome of RequestCancellation"""
    cancellation_request: CancellationRequest
    subscription: Subscription
    retention_offers: List[RetentionOffer] = Field(default_factory=list)
    was_immediate: bool = False


class RetentionOfferAcceptance(BaseModel):
    """Outcome of AcceptRetentionOffer"""
    offer: RetentionOffer
    cancellation_request: CancellationRequest
    subscription: Subscription
    declined_offer_ids: List[str] = Field(default_factory=list)


class PlanChangePreview(BaseModel):
    """Read-only view of a plan change"""
    subscription_id: str
    current_plan_id: str
    current_plan_name: str
    new_plan_id: str
    new_plan_name: str
    change_type: PlanChangeType
    proration_mode: ProrationMode
    effective_date: date
    credit: Decimal
    charge: Decimal
    net_amount: Decimal
    days_remaining: int
    summary: str


class PlanChangeResult(BaseModel):
    """Outcome of ChangePlan"""
    subscription: Subscription
    change_type: PlanChangeType
    proration_mode: ProrationMode
    proration: Optional[ProrationResult] = None
    history: Optional[PlanChangeHistory] = None
    scheduled_change: Optional[ScheduledPlanChange] = None

    @property
    def is_immediate(self) -> bool:
        return self.history is not None


class FreezeResult(BaseModel):
    """Outcome of FreezeSubscription"""
    subscription: Subscription
    freeze_history: FreezeHistory
    days_from_balance: int
    free_days: int
    recovered_history_id: Optional[str] = None


class FreezeBalanceSummary(BaseModel):
    """Balance view for a subscription"""
    subscription_id: str
    member_id: str
    available_days: int = 0
    used_days: int = 0
    total_days_granted: int = 0


class BatchRunSummary(BaseModel):
    """Summary returned by a scheduled batch trigger"""
    job: str
    processed: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)

    @property
    def processed_count(self) -> int:
        return len(self.processed)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def attempted_count(self) -> int:
        return self.processed_count + self.failed_count


class ExitSurveyAnalytics(BaseModel):
    """Aggregates over submitted exit surveys"""
    reason_stats: Dict[str, int] = Field(default_factory=dict)
    average_nps: float = 0.0
    nps_distribution: Dict[int, int] = Field(default_factory=dict)
    total_surveys: int = 0


__all__ = [
    "to_money",
    "ContractStatus",
    "ContractType",
    "ContractTerm",
    "TerminationFeeType",
    "CancellationType",
    "SubscriptionStatus",
    "FreezeType",
    "FreezeSource",
    "CancellationRequestStatus",
    "NON_TERMINAL_CANCELLATION_STATUSES",
    "CancellationReasonCategory",
    "RetentionOfferType",
    "RetentionOfferStatus",
    "ScheduledChangeStatus",
    "PlanChangeType",
    "ProrationMode",
    "PlanChangeStatus",
    "LocalizedText",
    "TaxableFee",
    "MembershipPlan",
    "MembershipContract",
    "Subscription",
    "CancellationRequest",
    "RetentionOffer",
    "ExitSurvey",
    "ScheduledPlanChange",
    "PlanChangeHistory",
    "FreezePackage",
    "MemberFreezeBalance",
    "FreezeBalanceGrant",
    "FreezeHistory",
    "CreateContractCommand",
    "RequestCancellationCommand",
    "ExitSurveyCommand",
    "ChangePlanCommand",
    "FreezeSubscriptionCommand",
    "ProrationResult",
    "RetentionOfferPreview",
    "ContractTermsSummary",
    "CancellationPreview",
    "CancellationResult",
    "RetentionOfferAcceptance",
    "PlanChangePreview",
    "PlanChangeResult",
    "FreezeResult",
    "FreezeBalanceSummary",
    "BatchRunSummary",
    "ExitSurveyAnalytics",
]
