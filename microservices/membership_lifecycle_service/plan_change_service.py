"""
Plan Change Service - Business Logic Layer

Previews, executes and schedules plan changes. Upgrades apply at once with
proration; downgrades are deferred to the end of the billing period and
applied by the daily scheduled-change job.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from core.config import LifecycleConfig

from . import proration
from . import subscription_state as subscriptions
from .events.publishers import MembershipLifecycleEventPublisher
from .models import (
    BatchRunSummary,
    ChangePlanCommand,
    MembershipPlan,
    PlanChangeHistory,
    PlanChangePreview,
    PlanChangeResult,
    ProrationMode,
    ProrationResult,
    ScheduledChangeStatus,
    ScheduledPlanChange,
    Subscription,
)
from .protocols import (
    DuplicateEpisodeError,
    EventBusProtocol,
    InvalidStateError,
    LifecycleRepositoryProtocol,
    PlanClientProtocol,
    PlanNotFoundError,
    ScheduledPlanChangeNotFoundError,
    SubscriptionNotFoundError,
    ValidationFailureError,
)
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

SUPERSEDED_BY_CANCELLATION = "superseded_by_cancellation_request"


async def supersede_scheduled_change(
    repository: LifecycleRepositoryProtocol, subscription: Subscription, now: datetime, uow: UnitOfWork
) -> Tuple[Subscription, Optional[ScheduledPlanChange]]:
    """
    Cancel the subscription's PENDING scheduled change inside uow.

    Returns the subscription with the change unlinked together with the
    cancelled change, or the subscription untouched and None when nothing
    is pending.
    """
    change = await repository.get_pending_scheduled_change(subscription.subscription_id)
    if change is None:
        return subscription, None

    cancelled = change.model_copy(update={
        "status": ScheduledChangeStatus.CANCELLED,
        "cancelled_at": now,
        "cancellation_reason": SUPERSEDED_BY_CANCELLATION,
    })
    uow.save_scheduled_change(cancelled)
    logger.info(
        f"Scheduled plan change {change.scheduled_change_id} superseded by cancellation of "
        f"subscription {subscription.subscription_id}"
    )
    return subscriptions.clear_scheduled_plan_change(subscription, now), cancelled


class PlanChangeService:
    """
    Plan Change Service - upgrade/downgrade orchestration

    At most one PENDING scheduled change exists per subscription.
    """

    def __init__(
        self,
        repository: LifecycleRepositoryProtocol,
        plan_client: PlanClientProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        config: Optional[LifecycleConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.plan_client = plan_client
        self.config = config or LifecycleConfig()
        self.publisher = MembershipLifecycleEventPublisher(event_bus)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        logger.info("Plan change service initialized")

    def _now(self) -> datetime:
        return self._clock()

    def _today(self) -> date:
        return self._clock().date()

    async def _get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.repository.get_subscription(subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    async def _get_plan(self, tenant_id: str, plan_id: str) -> MembershipPlan:
        plan = await self.plan_client.get_plan(tenant_id, plan_id)
        if not plan:
            raise PlanNotFoundError(plan_id)
        return plan

    @staticmethod
    def _billing_period(subscription: Subscription) -> Tuple[date, date]:
        start = subscription.current_billing_period_start or subscription.start_date
        end = subscription.current_billing_period_end or subscription.end_date
        return start, end

    async def _evaluate(
        self,
        tenant_id: str,
        subscription: Subscription,
        new_plan_id: str,
        preferred_mode: Optional[ProrationMode],
    ) -> Tuple[MembershipPlan, MembershipPlan, ProrationResult]:
        if new_plan_id == subscription.plan_id:
            raise ValidationFailureError(f"Subscription {subscription.subscription_id} is already on plan {new_plan_id}")

        current_plan = await self._get_plan(tenant_id, subscription.plan_id)
        new_plan = await self._get_plan(tenant_id, new_plan_id)
        if not new_plan.is_active:
            raise ValidationFailureError(f"Plan {new_plan_id} is not available")

        mode = proration.determine_proration_mode(
            proration.is_upgrade(current_plan, new_plan), preferred_mode
        )
        period_start, period_end = self._billing_period(subscription)
        result = proration.calculate_proration(
            current_plan.recurring_total,
            new_plan.recurring_total,
            period_start,
            period_end,
            self._today(),
            mode,
        )
        return current_plan, new_plan, result

    # ====================
    # Preview and Change
    # ====================

    async def preview_plan_change(
        self,
        tenant_id: str,
        subscription_id: str,
        new_plan_id: str,
        preferred_mode: Optional[ProrationMode] = None,
        locale: str = "en",
    ) -> PlanChangePreview:
        """Read-only: direction, mode and amounts of switching to new_plan_id today"""
        subscription = await self._get_subscription(subscription_id)
        current_plan, new_plan, result = await self._evaluate(
            tenant_id, subscription, new_plan_id, preferred_mode
        )
        return PlanChangePreview(
            subscription_id=subscription_id,
            current_plan_id=current_plan.plan_id,
            current_plan_name=current_plan.name.get(locale),
            new_plan_id=new_plan.plan_id,
            new_plan_name=new_plan.name.get(locale),
            change_type=proration.change_type_for(current_plan, new_plan),
            proration_mode=result.mode,
            effective_date=result.effective_date,
            credit=result.credit,
            charge=result.charge,
            net_amount=result.net_amount,
            days_remaining=result.days_remaining,
            summary=proration.format_proration_summary(
                result, new_plan.name.get(locale), new_plan.currency, locale
            ),
        )

    async def change_plan(self, tenant_id: str, command: ChangePlanCommand) -> PlanChangeResult:
        """
        Change a subscription's plan.

        Immediate modes write a PlanChangeHistory and swap the plan now.
        END_OF_PERIOD creates a ScheduledPlanChange dated at the billing
        period end and links it to the subscription.

        Raises:
            SubscriptionNotFoundError: unknown subscription
            PlanNotFoundError: current or new plan unknown to the plan catalog
            InvalidStateError: subscription is not ACTIVE or PAST_DUE
            DuplicateEpisodeError: a scheduled change is already pending
            ValidationFailureError: same plan, or new plan inactive
        """
        now = self._now()
        subscription = await self._get_subscription(command.subscription_id)
        if subscription.status not in subscriptions.PLAN_CHANGEABLE_STATUSES:
            raise InvalidStateError("Subscription", subscription.status, "change plan")
        if await self.repository.get_pending_scheduled_change(subscription.subscription_id):
            raise DuplicateEpisodeError(subscription.subscription_id, "scheduled plan change")

        current_plan, new_plan, result = await self._evaluate(
            tenant_id, subscription, command.new_plan_id, command.preferred_mode
        )
        change_type = proration.change_type_for(current_plan, new_plan)
        period_start, period_end = self._billing_period(subscription)
        uow = UnitOfWork("change_plan")

        if result.mode in proration.IMMEDIATE_MODES:
            history = PlanChangeHistory(
                history_id=f"pch_{uuid.uuid4().hex[:16]}",
                subscription_id=subscription.subscription_id,
                member_id=subscription.member_id,
                contract_id=subscription.contract_id,
                old_plan_id=current_plan.plan_id,
                new_plan_id=new_plan.plan_id,
                change_type=change_type,
                proration_mode=result.mode,
                effective_date=result.effective_date,
                billing_period_start=period_start,
                billing_period_end=period_end,
                days_remaining=result.days_remaining,
                total_days=result.total_days,
                credit_amount=result.credit,
                charge_amount=result.charge,
                net_amount=result.net_amount,
                initiated_by_user_id=command.initiated_by_user_id,
                initiated_by_member=command.initiated_by_member,
                notes=command.notes,
                created_at=now,
            )
            subscription = subscriptions.change_plan(subscription, new_plan.plan_id, now)
            uow.append_plan_change_history(history)
            uow.save_subscription(subscription)
            await self.repository.commit(uow)

            logger.info(
                f"Plan changed on {subscription.subscription_id}: {current_plan.plan_id} -> "
                f"{new_plan.plan_id} ({result.mode.value}, net {result.net_amount})"
            )
            await self.publisher.publish_plan_changed(history)
            return PlanChangeResult(
                subscription=subscription,
                change_type=change_type,
                proration_mode=result.mode,
                proration=result,
                history=history,
            )

        scheduled = ScheduledPlanChange(
            scheduled_change_id=f"spc_{uuid.uuid4().hex[:16]}",
            subscription_id=subscription.subscription_id,
            member_id=subscription.member_id,
            current_plan_id=current_plan.plan_id,
            new_plan_id=new_plan.plan_id,
            change_type=change_type,
            scheduled_date=result.effective_date,
            initiated_by_user_id=command.initiated_by_user_id,
            initiated_by_member=command.initiated_by_member,
            notes=command.notes,
            created_at=now,
        )
        subscription = subscriptions.schedule_plan_change(subscription, scheduled.scheduled_change_id, now)
        uow.save_scheduled_change(scheduled)
        uow.save_subscription(subscription)
        await self.repository.commit(uow)

        logger.info(
            f"Plan change scheduled on {subscription.subscription_id}: {current_plan.plan_id} -> "
            f"{new_plan.plan_id} on {scheduled.scheduled_date}"
        )
        await self.publisher.publish_plan_change_scheduled(scheduled)
        return PlanChangeResult(
            subscription=subscription,
            change_type=change_type,
            proration_mode=result.mode,
            proration=result,
            scheduled_change=scheduled,
        )

    # ====================
    # Scheduled Changes
    # ====================

    async def _apply_scheduled_change(self, change: ScheduledPlanChange) -> PlanChangeHistory:
        now = self._now()
        subscription = await self._get_subscription(change.subscription_id)

        history = PlanChangeHistory(
            history_id=f"pch_{uuid.uuid4().hex[:16]}",
            subscription_id=subscription.subscription_id,
            member_id=subscription.member_id,
            contract_id=subscription.contract_id,
            old_plan_id=change.current_plan_id,
            new_plan_id=change.new_plan_id,
            change_type=change.change_type,
            proration_mode=ProrationMode.END_OF_PERIOD,
            effective_date=change.scheduled_date,
            initiated_by_user_id=change.initiated_by_user_id,
            initiated_by_member=change.initiated_by_member,
            scheduled_change_id=change.scheduled_change_id,
            notes=change.notes,
            created_at=now,
        )
        subscription = subscriptions.change_plan(subscription, change.new_plan_id, now)
        subscription = subscriptions.clear_scheduled_plan_change(subscription, now)
        processed = change.model_copy(update={
            "status": ScheduledChangeStatus.PROCESSED,
            "processed_at": now,
            "plan_change_history_id": history.history_id,
        })

        uow = UnitOfWork("process_scheduled_change")
        uow.append_plan_change_history(history)
        uow.save_subscription(subscription)
        uow.save_scheduled_change(processed)
        await self.repository.commit(uow)

        await self.publisher.publish_plan_changed(history)
        return history

    async def process_scheduled_changes(self, exclude_ids: Sequence[str] = ()) -> BatchRunSummary:
        """
        Apply PENDING scheduled changes dated today or earlier (daily job).

        A failing change is logged and stays PENDING for the next run.
        """
        due = await self.repository.get_scheduled_changes_due(
            self._today(), limit=self.config.batch_page_size, exclude_ids=exclude_ids
        )
        summary = BatchRunSummary(job="process_scheduled_plan_changes")

        for change in due:
            try:
                await self._apply_scheduled_change(change)
                summary.processed.append(change.scheduled_change_id)
            except Exception as e:
                logger.error(
                    f"Failed to process scheduled plan change {change.scheduled_change_id}: {e}",
                    exc_info=True,
                )
                summary.failed[change.scheduled_change_id] = str(e)

        logger.info(
            f"Scheduled plan changes: {summary.processed_count} processed, {summary.failed_count} failed"
        )
        return summary

    async def cancel_scheduled_change(
        self, scheduled_change_id: str, reason: Optional[str] = None, cancelled_by: Optional[str] = None
    ) -> ScheduledPlanChange:
        """
        Cancel a PENDING scheduled change and unlink it from the subscription.

        Raises:
            ScheduledPlanChangeNotFoundError: unknown id
            InvalidStateError: change already processed or cancelled
        """
        now = self._now()
        change = await self.repository.get_scheduled_change(scheduled_change_id)
        if not change:
            raise ScheduledPlanChangeNotFoundError(scheduled_change_id)
        if change.status != ScheduledChangeStatus.PENDING:
            raise InvalidStateError("Scheduled plan change", change.status, "cancel scheduled change")

        cancelled = change.model_copy(update={
            "status": ScheduledChangeStatus.CANCELLED,
            "cancelled_at": now,
            "cancelled_by": cancelled_by,
            "cancellation_reason": reason,
        })
        uow = UnitOfWork("cancel_scheduled_change")
        uow.save_scheduled_change(cancelled)
        subscription = await self._get_subscription(change.subscription_id)
        if subscription.scheduled_plan_change_id == scheduled_change_id:
            uow.save_subscription(subscriptions.clear_scheduled_plan_change(subscription, now))
        await self.repository.commit(uow)

        logger.info(f"Scheduled plan change {scheduled_change_id} cancelled")
        await self.publisher.publish_plan_change_cancelled(cancelled)
        return cancelled

    # ====================
    # Queries
    # ====================

    async def get_plan_change_history(self, subscription_id: str) -> List[PlanChangeHistory]:
        return await self.repository.list_plan_change_history(subscription_id)

    async def get_pending_scheduled_change(self, subscription_id: str) -> Optional[ScheduledPlanChange]:
        return await self.repository.get_pending_scheduled_change(subscription_id)

    async def get_all_pending_changes(self) -> List[ScheduledPlanChange]:
        return await self.repository.list_pending_scheduled_changes()
