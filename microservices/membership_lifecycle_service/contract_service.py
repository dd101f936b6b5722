"""
Contract Service - Business Logic Layer

Owns MembershipContract: creation with locked pricing, signature and staff
approval, cooling-off cancellation and contract-level queries.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Callable, Optional

from core.config import LifecycleConfig

from . import contract_lifecycle as contracts
from . import subscription_state as subscriptions
from .events.publishers import MembershipLifecycleEventPublisher
from .models import (
    ContractTermsSummary,
    CreateContractCommand,
    MembershipContract,
    Subscription,
    SubscriptionStatus,
)
from .plan_change_service import supersede_scheduled_change
from .protocols import (
    ContractNotFoundError,
    EventBusProtocol,
    LifecycleRepositoryProtocol,
    SubscriptionNotFoundError,
    ValidationFailureError,
)
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class ContractService:
    """
    Contract Service - contract lifecycle orchestration

    Every write goes through a UnitOfWork; a contract and its linked
    subscription are always committed together.
    """

    def __init__(
        self,
        repository: LifecycleRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        config: Optional[LifecycleConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize contract service with dependencies.

        Args:
            repository: Lifecycle repository for data access
            event_bus: Event bus for publishing events (optional)
            config: Lifecycle settings (optional)
            clock: Returns the current UTC time (optional, for tests)
        """
        self.repository = repository
        self.config = config or LifecycleConfig()
        self.publisher = MembershipLifecycleEventPublisher(event_bus)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        logger.info("Contract service initialized")

    def _now(self) -> datetime:
        return self._clock()

    def _today(self) -> date:
        return self._clock().date()

    async def _get_contract(self, contract_id: str) -> MembershipContract:
        contract = await self.repository.get_contract(contract_id)
        if not contract:
            raise ContractNotFoundError(contract_id)
        return contract

    async def _get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.repository.get_subscription(subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    # ====================
    # Creation and Signature
    # ====================

    async def create_contract(self, tenant_id: str, command: CreateContractCommand) -> MembershipContract:
        """
        Create a contract in PENDING_SIGNATURE with a locked fee snapshot.

        Args:
            tenant_id: Tenant the contract number sequence belongs to
            command: Contract terms and fees

        Returns:
            The created contract

        Raises:
            SubscriptionNotFoundError: command names a subscription that does not exist
            ValidationFailureError: fee policy is missing its value, or the subscription
                already belongs to another contract
        """
        now = self._now()
        subscription = None
        if command.subscription_id:
            subscription = await self._get_subscription(command.subscription_id)

        sequence = await self.repository.next_contract_sequence(tenant_id, now.year)
        contract_number = contracts.format_contract_number(
            self.config.contract_number_prefix, now.year, sequence
        )
        contract = contracts.new_contract(
            contract_id=f"ctr_{uuid.uuid4().hex[:16]}",
            contract_number=contract_number,
            tenant_id=tenant_id,
            command=command,
            now=now,
            cooling_off_days=self.config.cooling_off_days,
        )

        uow = UnitOfWork("create_contract")
        uow.save_contract(contract)
        if subscription is not None:
            uow.save_subscription(self._attach_contract(subscription, contract, now))
        await self.repository.commit(uow)

        logger.info(f"Created contract {contract.contract_number} for member {contract.member_id}")
        await self.publisher.publish_contract_created(contract)
        return contract

    @staticmethod
    def _attach_contract(subscription: Subscription, contract: MembershipContract, now: datetime) -> Subscription:
        if subscription.contract_id and subscription.contract_id != contract.contract_id:
            raise ValidationFailureError(
                f"Subscription {subscription.subscription_id} already belongs to contract {subscription.contract_id}"
            )
        return subscription.model_copy(update={"contract_id": contract.contract_id, "updated_at": now})

    async def sign_contract(self, contract_id: str, signature_data: Optional[str] = None) -> MembershipContract:
        """Record the member signature; status stays PENDING_SIGNATURE until staff approval"""
        contract = contracts.sign(await self._get_contract(contract_id), signature_data, self._now())

        uow = UnitOfWork("sign_contract")
        uow.save_contract(contract)
        await self.repository.commit(uow)

        logger.info(f"Contract {contract.contract_number} signed by member {contract.member_id}")
        await self.publisher.publish_contract_signed(contract)
        return contract

    async def approve_contract(self, contract_id: str, staff_id: str) -> MembershipContract:
        """
        Staff approval of a signed contract; the contract becomes ACTIVE.

        A linked subscription waiting on the signature is activated in the
        same unit of work.
        """
        now = self._now()
        contract = contracts.approve(await self._get_contract(contract_id), staff_id, now)

        uow = UnitOfWork("approve_contract")
        uow.save_contract(contract)
        if contract.subscription_id:
            subscription = await self._get_subscription(contract.subscription_id)
            if subscription.status == SubscriptionStatus.PENDING_SIGNATURE:
                uow.save_subscription(subscriptions.activate(subscription, now))
        await self.repository.commit(uow)

        logger.info(f"Contract {contract.contract_number} approved by {staff_id}")
        await self.publisher.publish_contract_approved(contract)
        return contract

    async def link_subscription(self, contract_id: str, subscription_id: str) -> MembershipContract:
        """Link a contract and a subscription to each other"""
        now = self._now()
        contract = contracts.link_subscription(await self._get_contract(contract_id), subscription_id, now)
        subscription = self._attach_contract(await self._get_subscription(subscription_id), contract, now)

        uow = UnitOfWork("link_subscription")
        uow.save_contract(contract)
        uow.save_subscription(subscription)
        await self.repository.commit(uow)

        logger.info(f"Linked contract {contract.contract_number} to subscription {subscription_id}")
        return contract

    # ====================
    # Cancellation
    # ====================

    async def get_contract_terms(self, contract_id: str) -> ContractTermsSummary:
        """Cancellation-relevant terms as of today"""
        contract = await self._get_contract(contract_id)
        today = self._today()
        within_cooling_off = contracts.is_within_cooling_off(contract, today)
        return ContractTermsSummary(
            contract_id=contract.contract_id,
            contract_number=contract.contract_number,
            status=contract.status,
            is_within_cooling_off=within_cooling_off,
            cooling_off_days_remaining=contracts.cooling_off_days_remaining(contract, today),
            is_within_commitment=contracts.is_within_commitment(contract, today),
            commitment_months_remaining=contracts.commitment_months_remaining(contract, today),
            notice_period_days=contract.notice_period_days,
            locked_monthly_total=contracts.locked_monthly_total(contract),
            early_termination_fee=contracts.calculate_early_termination_fee(contract, today),
            refund_amount=contracts.cooling_off_refund(contract) if within_cooling_off else None,
        )

    async def cancel_within_cooling_off(self, contract_id: str, reason: Optional[str] = None) -> MembershipContract:
        """
        Cancel a contract inside its cooling-off window.

        The linked subscription, when there is one, is cancelled in the same
        unit of work and any pending scheduled plan change is superseded. The
        join and first membership fee refund is published for billing.

        Raises:
            InvalidStateError: cooling-off has ended or the contract is not cancellable
        """
        now = self._now()
        today = self._today()
        contract = contracts.cancel_within_cooling_off(
            await self._get_contract(contract_id), reason, today, now
        )

        uow = UnitOfWork("cancel_within_cooling_off")
        uow.save_contract(contract)
        superseded = None
        if contract.subscription_id:
            subscription = await self._get_subscription(contract.subscription_id)
            subscription, superseded = await supersede_scheduled_change(self.repository, subscription, now, uow)
            uow.save_subscription(subscriptions.cancel_immediately(subscription, None, today, now))
        await self.repository.commit(uow)

        refund = contracts.cooling_off_refund(contract)
        logger.info(f"Contract {contract.contract_number} cancelled within cooling-off, refund {refund}")
        if superseded is not None:
            await self.publisher.publish_plan_change_cancelled(superseded)
        await self.publisher.publish_contract_cancelled(contract, refund_amount=refund)
        return contract

    # ====================
    # Administrative Transitions
    # ====================

    async def suspend_contract(self, contract_id: str) -> MembershipContract:
        return await self._apply(contract_id, "suspend_contract", contracts.suspend)

    async def reactivate_contract(self, contract_id: str) -> MembershipContract:
        return await self._apply(contract_id, "reactivate_contract", contracts.reactivate)

    async def expire_contract(self, contract_id: str) -> MembershipContract:
        today = self._today()
        return await self._apply(
            contract_id, "expire_contract", lambda c, now: contracts.expire(c, today, now)
        )

    async def _apply(self, contract_id: str, label: str, transition) -> MembershipContract:
        contract = transition(await self._get_contract(contract_id), self._now())
        uow = UnitOfWork(label)
        uow.save_contract(contract)
        await self.repository.commit(uow)
        logger.info(f"{label}: contract {contract.contract_number} is now {contract.status.value}")
        return contract

    # ====================
    # Queries
    # ====================

    async def get_contract(self, contract_id: str) -> MembershipContract:
        return await self._get_contract(contract_id)

    async def get_contract_for_subscription(self, subscription_id: str) -> Optional[MembershipContract]:
        return await self.repository.get_contract_by_subscription(subscription_id)
