"""
Membership Lifecycle Event Publishers

Publishes lifecycle events to the event bus. Called only after a unit of
work has committed.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from ..models import (
    CancellationRequest,
    ExitSurvey,
    FreezeBalanceGrant,
    FreezeHistory,
    MembershipContract,
    PlanChangeHistory,
    RetentionOffer,
    ScheduledPlanChange,
    Subscription,
    SubscriptionStatus,
)
from .models import MembershipLifecycleEvent, MembershipLifecycleEventType

logger = logging.getLogger(__name__)


class MembershipLifecycleEventPublisher:
    """Publisher for membership lifecycle events"""

    def __init__(self, event_bus):
        self.event_bus = event_bus

    # Contract

    async def publish_contract_created(self, contract: MembershipContract) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.CONTRACT_CREATED,
            subscription_id=contract.subscription_id,
            member_id=contract.member_id,
            data={
                "contract_id": contract.contract_id,
                "contract_number": contract.contract_number,
                "tenant_id": contract.tenant_id,
                "plan_id": contract.plan_id,
                "contract_type": contract.contract_type.value,
            },
        )

    async def publish_contract_signed(self, contract: MembershipContract) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.CONTRACT_SIGNED,
            subscription_id=contract.subscription_id,
            member_id=contract.member_id,
            data={"contract_id": contract.contract_id},
        )

    async def publish_contract_approved(self, contract: MembershipContract) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.CONTRACT_APPROVED,
            subscription_id=contract.subscription_id,
            member_id=contract.member_id,
            data={
                "contract_id": contract.contract_id,
                "approved_by": contract.staff_approved_by,
            },
        )

    async def publish_contract_cancelled(self, contract: MembershipContract, refund_amount: Optional[Any] = None) -> bool:
        """Billing refunds refund_amount for cooling-off cancellations"""
        return await self._publish_event(
            MembershipLifecycleEventType.CONTRACT_CANCELLED,
            subscription_id=contract.subscription_id,
            member_id=contract.member_id,
            data={
                "contract_id": contract.contract_id,
                "contract_number": contract.contract_number,
                "cancellation_type": contract.cancellation_type.value if contract.cancellation_type else None,
                "reason": contract.cancellation_reason,
                "effective_date": contract.cancellation_effective_date.isoformat()
                if contract.cancellation_effective_date else None,
                "refund_amount": refund_amount,
            },
        )

    # Cancellation

    async def publish_cancellation_requested(
        self, request: CancellationRequest, immediate: bool, refund_amount: Optional[Any] = None
    ) -> bool:
        """Billing acts on refund_amount for cooling-off cancellations"""
        return await self._publish_event(
            MembershipLifecycleEventType.CANCELLATION_REQUESTED,
            subscription_id=request.subscription_id,
            member_id=request.member_id,
            data={
                "cancellation_request_id": request.request_id,
                "immediate": immediate,
                "effective_date": request.effective_date.isoformat(),
                "reason_category": request.reason_category.value,
                "early_termination_fee": request.early_termination_fee,
                "refund_amount": refund_amount,
            },
        )

    async def publish_cancellation_completed(self, request: CancellationRequest) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.CANCELLATION_COMPLETED,
            subscription_id=request.subscription_id,
            member_id=request.member_id,
            data={
                "cancellation_request_id": request.request_id,
                "contract_id": request.contract_id,
                "effective_date": request.effective_date.isoformat(),
                "early_termination_fee": None if request.fee_waived else request.early_termination_fee,
            },
        )

    async def publish_cancellation_withdrawn(self, request: CancellationRequest) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.CANCELLATION_WITHDRAWN,
            subscription_id=request.subscription_id,
            member_id=request.member_id,
            data={
                "cancellation_request_id": request.request_id,
                "reason": request.withdrawal_reason,
            },
        )

    async def publish_termination_fee_waived(self, request: CancellationRequest) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.TERMINATION_FEE_WAIVED,
            subscription_id=request.subscription_id,
            member_id=request.member_id,
            data={
                "cancellation_request_id": request.request_id,
                "waived_amount": request.early_termination_fee,
                "waived_by": request.fee_waived_by,
                "reason": request.fee_waived_reason,
            },
        )

    async def publish_exit_survey_submitted(self, survey: ExitSurvey) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.EXIT_SURVEY_SUBMITTED,
            subscription_id=survey.subscription_id,
            member_id=survey.member_id,
            data={
                "survey_id": survey.survey_id,
                "reason_category": survey.reason_category.value,
                "nps_score": survey.nps_score,
            },
        )

    # Retention

    async def publish_retention_offer_accepted(
        self, offer: RetentionOffer, declined_offer_ids: List[str]
    ) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.RETENTION_OFFER_ACCEPTED,
            subscription_id=offer.subscription_id,
            member_id=offer.member_id,
            data={
                "offer_id": offer.offer_id,
                "offer_type": offer.offer_type.value,
                "cancellation_request_id": offer.cancellation_request_id,
                "discount_percentage": offer.discount_percentage,
                "discount_months": offer.discount_months,
                "alternative_plan_id": offer.alternative_plan_id,
                "declined_offer_ids": declined_offer_ids,
            },
        )

    async def publish_retention_offer_declined(self, offer: RetentionOffer) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.RETENTION_OFFER_DECLINED,
            subscription_id=offer.subscription_id,
            member_id=offer.member_id,
            data={"offer_id": offer.offer_id, "offer_type": offer.offer_type.value},
        )

    async def publish_retention_offers_expired(self, offer_ids: List[str]) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.RETENTION_OFFERS_EXPIRED,
            data={"offer_ids": offer_ids, "count": len(offer_ids)},
        )

    # Plan Change

    async def publish_plan_changed(self, history: PlanChangeHistory) -> bool:
        """Billing posts net_amount for the member"""
        return await self._publish_event(
            MembershipLifecycleEventType.PLAN_CHANGED,
            subscription_id=history.subscription_id,
            member_id=history.member_id,
            data={
                "history_id": history.history_id,
                "old_plan_id": history.old_plan_id,
                "new_plan_id": history.new_plan_id,
                "change_type": history.change_type.value,
                "proration_mode": history.proration_mode.value,
                "effective_date": history.effective_date.isoformat(),
                "credit_amount": history.credit_amount,
                "charge_amount": history.charge_amount,
                "net_amount": history.net_amount,
            },
        )

    async def publish_plan_change_scheduled(self, change: ScheduledPlanChange) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.PLAN_CHANGE_SCHEDULED,
            subscription_id=change.subscription_id,
            member_id=change.member_id,
            data={
                "scheduled_change_id": change.scheduled_change_id,
                "new_plan_id": change.new_plan_id,
                "scheduled_date": change.scheduled_date.isoformat(),
            },
        )

    async def publish_plan_change_cancelled(self, change: ScheduledPlanChange) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.PLAN_CHANGE_CANCELLED,
            subscription_id=change.subscription_id,
            member_id=change.member_id,
            data={
                "scheduled_change_id": change.scheduled_change_id,
                "reason": change.cancellation_reason,
                "cancelled_by": change.cancelled_by,
            },
        )

    # Freeze

    async def publish_subscription_frozen(self, history: FreezeHistory) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.SUBSCRIPTION_FROZEN,
            subscription_id=history.subscription_id,
            member_id=history.member_id,
            data={
                "freeze_history_id": history.freeze_history_id,
                "freeze_type": history.freeze_type.value,
                "requested_days": history.requested_days,
                "days_from_balance": history.days_from_balance,
                "new_end_date": history.new_end_date.isoformat(),
            },
        )

    async def publish_subscription_unfrozen(self, history: FreezeHistory) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.SUBSCRIPTION_UNFROZEN,
            subscription_id=history.subscription_id,
            member_id=history.member_id,
            data={"freeze_history_id": history.freeze_history_id},
        )

    async def publish_freeze_days_credited(self, grant: FreezeBalanceGrant, member_id: str) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.FREEZE_DAYS_CREDITED,
            subscription_id=grant.subscription_id,
            member_id=member_id,
            data={
                "grant_id": grant.grant_id,
                "source": grant.source.value,
                "days": grant.days,
            },
        )

    # Subscription

    async def publish_subscription_status_changed(
        self, subscription: Subscription, previous_status: SubscriptionStatus, operation: str
    ) -> bool:
        return await self._publish_event(
            MembershipLifecycleEventType.SUBSCRIPTION_STATUS_CHANGED,
            subscription_id=subscription.subscription_id,
            member_id=subscription.member_id,
            data={
                "operation": operation,
                "previous_status": previous_status.value,
                "status": subscription.status.value,
                "end_date": subscription.end_date.isoformat(),
            },
        )

    async def _publish_event(
        self,
        event_type: MembershipLifecycleEventType,
        subscription_id: Optional[str] = None,
        member_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Internal method to publish events"""
        if not self.event_bus:
            logger.warning("Event bus not available, event not published")
            return False

        try:
            event = MembershipLifecycleEvent(
                event_id=f"evt_{uuid.uuid4().hex[:16]}",
                event_type=event_type,
                subscription_id=subscription_id,
                member_id=member_id,
                data=data or {},
            )
            await self.event_bus.publish(event_type.value, event.model_dump(mode="json"))
            logger.debug(f"Published event: {event_type.value}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish event {event_type.value}: {e}")
            return False


__all__ = ["MembershipLifecycleEventPublisher"]
