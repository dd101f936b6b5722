"""
Membership Lifecycle Event Models

Defines event types and structures for membership lifecycle events.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class MembershipLifecycleEventType(str, Enum):
    """Membership lifecycle event types"""
    # Contract
    CONTRACT_CREATED = "membership.contract.created"
    CONTRACT_SIGNED = "membership.contract.signed"
    CONTRACT_APPROVED = "membership.contract.approved"
    CONTRACT_CANCELLED = "membership.contract.cancelled"

    # Cancellation
    CANCELLATION_REQUESTED = "membership.cancellation.requested"
    CANCELLATION_COMPLETED = "membership.cancellation.completed"
    CANCELLATION_WITHDRAWN = "membership.cancellation.withdrawn"
    TERMINATION_FEE_WAIVED = "membership.cancellation.fee_waived"
    EXIT_SURVEY_SUBMITTED = "membership.cancellation.exit_survey_submitted"

    # Retention
    RETENTION_OFFER_ACCEPTED = "membership.retention_offer.accepted"
    RETENTION_OFFER_DECLINED = "membership.retention_offer.declined"
    RETENTION_OFFERS_EXPIRED = "membership.retention_offer.expired"

    # Plan Change
    PLAN_CHANGED = "membership.plan.changed"
    PLAN_CHANGE_SCHEDULED = "membership.plan.change_scheduled"
    PLAN_CHANGE_CANCELLED = "membership.plan.change_cancelled"

    # Freeze
    SUBSCRIPTION_FROZEN = "membership.subscription.frozen"
    SUBSCRIPTION_UNFROZEN = "membership.subscription.unfrozen"
    FREEZE_DAYS_CREDITED = "membership.freeze.days_credited"

    # Subscription
    SUBSCRIPTION_STATUS_CHANGED = "membership.subscription.status_changed"


class MembershipLifecycleEvent(BaseModel):
    """Envelope published on the event bus"""
    event_id: str = Field(..., description="Unique event identifier")
    event_type: MembershipLifecycleEventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    subscription_id: Optional[str] = None
    member_id: Optional[str] = None

    data: Dict[str, Any] = Field(default_factory=dict)
