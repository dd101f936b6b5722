"""
Freeze Service - Business Logic Layer

Owns MemberFreezeBalance and FreezeHistory. Credits freeze days from
purchases and grants, freezes and unfreezes subscriptions.

Freeze policy:
- Only ACTIVE subscriptions can be frozen
- Balance consumption is min(requested, available); days beyond the
  balance are free
- The end date always extends by the full requested days and is not
  rolled back on unfreeze
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Tuple

from core.config import LifecycleConfig

from . import subscription_state as subscriptions
from .events.publishers import MembershipLifecycleEventPublisher
from .models import (
    FreezeBalanceGrant,
    FreezeBalanceSummary,
    FreezeHistory,
    FreezeResult,
    FreezeSource,
    FreezeSubscriptionCommand,
    MemberFreezeBalance,
    Subscription,
)
from .protocols import (
    EventBusProtocol,
    FreezeHistoryNotFoundError,
    FreezePackageNotFoundError,
    InvalidStateError,
    LifecycleRepositoryProtocol,
    SubscriptionNotFoundError,
    ValidationFailureError,
)
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def credit_freeze_balance(
    balance: Optional[MemberFreezeBalance],
    subscription: Subscription,
    days: int,
    source: FreezeSource,
    now: datetime,
    reference_id: Optional[str] = None,
    granted_by: Optional[str] = None,
) -> Tuple[MemberFreezeBalance, FreezeBalanceGrant]:
    """Add days to a balance (creating it on first credit) and tag the grant with its source"""
    if days <= 0:
        raise ValidationFailureError("Freeze days must be positive")

    if balance is None:
        balance = MemberFreezeBalance(
            balance_id=f"fzb_{uuid.uuid4().hex[:16]}",
            member_id=subscription.member_id,
            subscription_id=subscription.subscription_id,
        )

    updated = balance.model_copy(update={
        "total_days_granted": balance.total_days_granted + days,
        "available_days": balance.available_days + days,
        "updated_at": now,
    })
    grant = FreezeBalanceGrant(
        grant_id=f"fzg_{uuid.uuid4().hex[:16]}",
        balance_id=updated.balance_id,
        subscription_id=subscription.subscription_id,
        source=source,
        days=days,
        reference_id=reference_id,
        granted_by=granted_by,
        created_at=now,
    )
    return updated, grant


def consume_freeze_balance(
    balance: Optional[MemberFreezeBalance], requested_days: int, now: datetime
) -> Tuple[Optional[MemberFreezeBalance], int]:
    """Take min(requested, available) days; returns the new balance and the days taken"""
    if balance is None or balance.available_days <= 0:
        return balance, 0
    taken = min(requested_days, balance.available_days)
    updated = balance.model_copy(update={
        "used_days": balance.used_days + taken,
        "available_days": balance.available_days - taken,
        "updated_at": now,
    })
    return updated, taken


class FreezeService:
    """Freeze balance and freeze/unfreeze orchestration"""

    def __init__(
        self,
        repository: LifecycleRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        config: Optional[LifecycleConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.config = config or LifecycleConfig()
        self.publisher = MembershipLifecycleEventPublisher(event_bus)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        logger.info("Freeze service initialized")

    def _now(self) -> datetime:
        return self._clock()

    def _today(self) -> date:
        return self._clock().date()

    async def _get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.repository.get_subscription(subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    # ====================
    # Balance
    # ====================

    async def get_freeze_balance(self, subscription_id: str) -> FreezeBalanceSummary:
        subscription = await self._get_subscription(subscription_id)
        balance = await self.repository.get_freeze_balance(subscription_id)
        if balance is None:
            return FreezeBalanceSummary(
                subscription_id=subscription_id,
                member_id=subscription.member_id,
            )
        return FreezeBalanceSummary(
            subscription_id=subscription_id,
            member_id=balance.member_id,
            available_days=balance.available_days,
            used_days=balance.used_days,
            total_days_granted=balance.total_days_granted,
        )

    async def purchase_freeze_days(
        self, subscription_id: str, package_id: str, purchased_by: Optional[str] = None
    ) -> MemberFreezeBalance:
        """
        Credit the days of a freeze package to the subscription's balance.

        Raises:
            FreezePackageNotFoundError: unknown package
            ValidationFailureError: package is not active
        """
        package = await self.repository.get_freeze_package(package_id)
        if not package:
            raise FreezePackageNotFoundError(package_id)
        if not package.is_active:
            raise ValidationFailureError(f"Freeze package {package_id} is not active")

        return await self._credit(
            subscription_id,
            package.freeze_days,
            FreezeSource.PURCHASED,
            reference_id=package_id,
            granted_by=purchased_by,
        )

    async def grant_freeze_days(
        self,
        subscription_id: str,
        days: int,
        source: FreezeSource,
        granted_by: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> MemberFreezeBalance:
        """Credit free days (promotional, compensation, ...) to the balance"""
        if days <= 0:
            raise ValidationFailureError("Freeze days must be positive")
        return await self._credit(subscription_id, days, source, reference_id, granted_by)

    async def _credit(
        self,
        subscription_id: str,
        days: int,
        source: FreezeSource,
        reference_id: Optional[str],
        granted_by: Optional[str],
    ) -> MemberFreezeBalance:
        subscription = await self._get_subscription(subscription_id)
        balance = await self.repository.get_freeze_balance(subscription_id)
        balance, grant = credit_freeze_balance(
            balance, subscription, days, source, self._now(), reference_id, granted_by
        )

        uow = UnitOfWork("credit_freeze_days")
        uow.save_freeze_balance(balance)
        uow.append_freeze_grant(grant)
        await self.repository.commit(uow)

        logger.info(
            f"Credited {days} freeze days ({source.value}) to subscription {subscription_id}, "
            f"available={balance.available_days}"
        )
        await self.publisher.publish_freeze_days_credited(grant, subscription.member_id)
        return balance

    # ====================
    # Freeze / Unfreeze
    # ====================

    async def freeze_subscription(self, command: FreezeSubscriptionCommand) -> FreezeResult:
        """
        Freeze an ACTIVE subscription.

        Args:
            command: Subscription, requested days, type, reason and document

        Returns:
            FreezeResult with the frozen subscription and its history row

        Raises:
            SubscriptionNotFoundError: unknown subscription
            InvalidStateError: subscription is not ACTIVE or has a plan change scheduled
        """
        now = self._now()
        today = self._today()
        subscription = await self._get_subscription(command.subscription_id)

        if subscription.scheduled_plan_change_id:
            raise InvalidStateError("Subscription", "plan_change_scheduled", "freeze subscription")

        frozen = subscriptions.freeze(
            subscription,
            command.freeze_days,
            command.freeze_type,
            command.reason,
            command.document_path,
            today,
            now,
        )

        uow = UnitOfWork("freeze_subscription")

        # An open history row on an ACTIVE subscription is left over from a manual status change
        recovered_id = None
        stale = await self.repository.get_active_freeze_history(subscription.subscription_id)
        if stale is not None:
            logger.warning(
                f"Recovered orphaned freeze record {stale.freeze_history_id} on active "
                f"subscription {subscription.subscription_id}; closing it"
            )
            uow.save_freeze_history(stale.model_copy(update={
                "is_active": False,
                "unfrozen_at": now,
                "closed_reason": "auto_closed_orphan",
            }))
            recovered_id = stale.freeze_history_id

        balance = await self.repository.get_freeze_balance(subscription.subscription_id)
        balance, from_balance = consume_freeze_balance(balance, command.freeze_days, now)
        free_days = command.freeze_days - from_balance

        history = FreezeHistory(
            freeze_history_id=f"fzh_{uuid.uuid4().hex[:16]}",
            subscription_id=subscription.subscription_id,
            member_id=subscription.member_id,
            freeze_type=command.freeze_type,
            freeze_reason=command.reason,
            document_path=command.document_path,
            freeze_start_date=today,
            requested_days=command.freeze_days,
            days_from_balance=from_balance,
            free_days=free_days,
            contract_extended=True,
            original_end_date=subscription.end_date,
            new_end_date=frozen.end_date,
            created_at=now,
        )

        uow.save_subscription(frozen)
        if from_balance:
            uow.save_freeze_balance(balance)
        uow.save_freeze_history(history)
        await self.repository.commit(uow)

        logger.info(
            f"Froze subscription {subscription.subscription_id} for {command.freeze_days} days "
            f"({from_balance} from balance, {free_days} free); end date {frozen.end_date}"
        )
        await self.publisher.publish_subscription_frozen(history)
        return FreezeResult(
            subscription=frozen,
            freeze_history=history,
            days_from_balance=from_balance,
            free_days=free_days,
            recovered_history_id=recovered_id,
        )

    async def unfreeze_subscription(self, subscription_id: str) -> Subscription:
        """
        Return a FROZEN subscription to ACTIVE and close its freeze record.

        Raises:
            InvalidStateError: subscription is not FROZEN
            FreezeHistoryNotFoundError: no open freeze record exists
        """
        now = self._now()
        subscription = subscriptions.unfreeze(await self._get_subscription(subscription_id), now)

        history = await self.repository.get_active_freeze_history(subscription_id)
        if history is None:
            raise FreezeHistoryNotFoundError(subscription_id)
        closed = history.model_copy(update={
            "is_active": False,
            "unfrozen_at": now,
            "closed_reason": "unfrozen",
        })

        uow = UnitOfWork("unfreeze_subscription")
        uow.save_subscription(subscription)
        uow.save_freeze_history(closed)
        await self.repository.commit(uow)

        logger.info(f"Unfroze subscription {subscription_id}")
        await self.publisher.publish_subscription_unfrozen(closed)
        return subscription

    async def get_freeze_history(self, subscription_id: str) -> List[FreezeHistory]:
        return await self.repository.list_freeze_history(subscription_id)
