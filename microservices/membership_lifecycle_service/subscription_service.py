"""
Subscription Service - Business Logic Layer

Billing-driven status changes on a subscription: past due, suspension,
reactivation, renewal and billing period rollover. The billing side
decides when these happen; this service validates and persists them.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from . import subscription_state as subscriptions
from .events.publishers import MembershipLifecycleEventPublisher
from .models import Subscription
from .protocols import (
    EventBusProtocol,
    LifecycleRepositoryProtocol,
    SubscriptionNotFoundError,
)
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Administrative status transitions on a subscription"""

    def __init__(
        self,
        repository: LifecycleRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.publisher = MembershipLifecycleEventPublisher(event_bus)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        logger.info("Subscription service initialized")

    def _now(self) -> datetime:
        return self._clock()

    async def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.repository.get_subscription(subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    async def _apply(
        self, label: str, subscription: Subscription, updated: Subscription, notify: bool = False
    ) -> Subscription:
        uow = UnitOfWork(label)
        uow.save_subscription(updated)
        await self.repository.commit(uow)

        logger.info(
            f"Subscription {updated.subscription_id}: {label} "
            f"({subscription.status.value} -> {updated.status.value})"
        )
        if notify or updated.status != subscription.status:
            await self.publisher.publish_subscription_status_changed(
                updated, previous_status=subscription.status, operation=label
            )
        return updated

    # ====================
    # Billing State
    # ====================

    async def mark_past_due(self, subscription_id: str) -> Subscription:
        """
        Flag an ACTIVE subscription whose payment failed.

        Raises:
            SubscriptionNotFoundError: unknown subscription
            InvalidStateError: subscription is not ACTIVE
        """
        subscription = await self.get_subscription(subscription_id)
        updated = subscriptions.mark_past_due(subscription, self._now())
        return await self._apply("mark_past_due", subscription, updated)

    async def suspend_subscription(self, subscription_id: str) -> Subscription:
        """Suspend an ACTIVE or PAST_DUE subscription"""
        subscription = await self.get_subscription(subscription_id)
        updated = subscriptions.suspend(subscription, self._now())
        return await self._apply("suspend", subscription, updated)

    async def reactivate_subscription(self, subscription_id: str) -> Subscription:
        """Return a SUSPENDED, PAST_DUE or PAUSED subscription to ACTIVE, clearing the billing flags"""
        subscription = await self.get_subscription(subscription_id)
        updated = subscriptions.reactivate(subscription, self._now())
        return await self._apply("reactivate", subscription, updated)

    async def renew_subscription(self, subscription_id: str, new_end_date: date) -> Subscription:
        """
        Extend the subscription term.

        Args:
            subscription_id: Subscription to renew
            new_end_date: Must be later than the current end date

        Raises:
            SubscriptionNotFoundError: unknown subscription
            InvalidStateError: subscription is not ACTIVE, PAST_DUE or EXPIRED
            ValidationFailureError: end date does not move forward
        """
        subscription = await self.get_subscription(subscription_id)
        updated = subscriptions.renew(subscription, new_end_date, self._now())
        return await self._apply("renew", subscription, updated, notify=True)

    async def update_billing_period(
        self, subscription_id: str, period_start: date, period_end: date
    ) -> Subscription:
        subscription = await self.get_subscription(subscription_id)
        updated = subscriptions.update_billing_period(subscription, period_start, period_end, self._now())
        return await self._apply("update_billing_period", subscription, updated)


__all__ = ["SubscriptionService"]
