"""
Membership Lifecycle Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from .models import (
    CancellationRequest,
    CancellationRequestStatus,
    ExitSurvey,
    FreezeHistory,
    FreezePackage,
    MemberFreezeBalance,
    MembershipContract,
    MembershipPlan,
    PlanChangeHistory,
    RetentionOffer,
    ScheduledPlanChange,
    Subscription,
)
from .unit_of_work import UnitOfWork


# ====================
# Custom Exceptions
# ====================


class MembershipLifecycleError(Exception):
    """Base exception for membership lifecycle errors"""
    pass


class NotFoundError(MembershipLifecycleError):
    """An entity id did not resolve"""

    entity = "entity"

    def __init__(self, entity_id: str, message: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message or f"{self.entity} not found: {entity_id}")


class ContractNotFoundError(NotFoundError):
    entity = "Contract"


class SubscriptionNotFoundError(NotFoundError):
    entity = "Subscription"


class PlanNotFoundError(NotFoundError):
    entity = "Plan"


class CancellationRequestNotFoundError(NotFoundError):
    entity = "Cancellation request"


class RetentionOfferNotFoundError(NotFoundError):
    entity = "Retention offer"


class ScheduledPlanChangeNotFoundError(NotFoundError):
    entity = "Scheduled plan change"


class FreezePackageNotFoundError(NotFoundError):
    entity = "Freeze package"


class FreezeHistoryNotFoundError(NotFoundError):
    entity = "Active freeze record"


class InvalidStateError(MembershipLifecycleError):
    """Operation attempted from a state that forbids it"""

    def __init__(self, entity: str, current_state: Any, operation: str):
        self.entity = entity
        self.current_state = getattr(current_state, "value", current_state)
        self.operation = operation
        super().__init__(
            f"Cannot {operation}: {entity} is in state '{self.current_state}'"
        )


class DuplicateEpisodeError(MembershipLifecycleError):
    """A non-terminal cancellation or scheduled change already exists"""

    def __init__(self, subscription_id: str, episode: str):
        self.subscription_id = subscription_id
        self.episode = episode
        super().__init__(
            f"Subscription {subscription_id} already has a pending {episode}"
        )


class ValidationFailureError(MembershipLifecycleError):
    """Input rejected by a business rule"""
    pass


class OfferNotActionableError(MembershipLifecycleError):
    """Retention offer is expired or already responded to"""

    def __init__(self, offer_id: str, status: Any):
        self.offer_id = offer_id
        self.status = getattr(status, "value", status)
        super().__init__(f"Retention offer {offer_id} is no longer actionable (status: {self.status})")


class PlanServiceError(MembershipLifecycleError):
    """Plan collaborator could not be reached"""
    pass


# ====================
# Repository Protocol
# ====================


@runtime_checkable
class LifecycleRepositoryProtocol(Protocol):
    """
    Read access to lifecycle aggregates plus an atomic commit of collected writes.

    Writes never happen one aggregate at a time: services register every
    intended write on a UnitOfWork and hand it to commit(), which applies all
    of them in one transaction or none of them.
    """

    async def commit(self, unit_of_work: UnitOfWork) -> None:
        """
        Apply all writes registered on the unit of work atomically.

        Raises:
            DuplicateEpisodeError: A second non-terminal cancellation request or
                pending scheduled change was inserted for the same subscription
            ValidationFailureError: A second exit survey was inserted
        """
        ...

    async def next_contract_sequence(self, tenant_id: str, year: int) -> int:
        """Allocate the next contract number sequence for tenant and year"""
        ...

    # Contracts
    async def get_contract(self, contract_id: str) -> Optional[MembershipContract]:
        ...

    async def get_contract_by_subscription(self, subscription_id: str) -> Optional[MembershipContract]:
        ...

    # Subscriptions
    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        ...

    # Cancellation requests
    async def get_cancellation_request(self, request_id: str) -> Optional[CancellationRequest]:
        ...

    async def get_pending_cancellation(self, subscription_id: str) -> Optional[CancellationRequest]:
        """Get the PENDING or IN_NOTICE_PERIOD request for a subscription"""
        ...

    async def list_cancellations_by_status(
        self, status: CancellationRequestStatus, limit: int = 100, offset: int = 0
    ) -> List[CancellationRequest]:
        ...

    async def get_cancellations_due(
        self, as_of: date, limit: int = 100, exclude_ids: Sequence[str] = ()
    ) -> List[CancellationRequest]:
        """Get IN_NOTICE_PERIOD requests whose effective date is on or before as_of, skipping exclude_ids"""
        ...

    async def count_cancellations_by_status(
        self, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Count requests per status, optionally bounded by requested_at"""
        ...

    # Retention offers
    async def get_retention_offer(self, offer_id: str) -> Optional[RetentionOffer]:
        ...

    async def list_pending_offers(self, subscription_id: str) -> List[RetentionOffer]:
        ...

    async def list_offers_past_expiry(
        self, now: datetime, limit: int = 100, exclude_ids: Sequence[str] = ()
    ) -> List[RetentionOffer]:
        """Get PENDING offers whose expires_at is before now"""
        ...

    # Exit surveys
    async def get_exit_survey_by_subscription(self, subscription_id: str) -> Optional[ExitSurvey]:
        ...

    async def list_exit_surveys(self) -> List[ExitSurvey]:
        ...

    # Plan changes
    async def get_scheduled_change(self, scheduled_change_id: str) -> Optional[ScheduledPlanChange]:
        ...

    async def get_pending_scheduled_change(self, subscription_id: str) -> Optional[ScheduledPlanChange]:
        ...

    async def list_pending_scheduled_changes(self) -> List[ScheduledPlanChange]:
        ...

    async def get_scheduled_changes_due(
        self, as_of: date, limit: int = 100, exclude_ids: Sequence[str] = ()
    ) -> List[ScheduledPlanChange]:
        """Get PENDING scheduled changes dated on or before as_of, skipping exclude_ids"""
        ...

    async def list_plan_change_history(self, subscription_id: str) -> List[PlanChangeHistory]:
        ...

    # Freeze
    async def get_freeze_balance(self, subscription_id: str) -> Optional[MemberFreezeBalance]:
        ...

    async def get_freeze_package(self, package_id: str) -> Optional[FreezePackage]:
        ...

    async def get_active_freeze_history(self, subscription_id: str) -> Optional[FreezeHistory]:
        ...

    async def list_freeze_history(self, subscription_id: str) -> List[FreezeHistory]:
        ...


# ====================
# External Service Protocols
# ====================


@runtime_checkable
class PlanClientProtocol(Protocol):
    """Plan catalog lookups, scoped to one tenant"""

    async def get_plan(self, tenant_id: str, plan_id: str) -> Optional[MembershipPlan]:
        ...

    async def list_active_plans(self, tenant_id: str) -> List[MembershipPlan]:
        ...


@runtime_checkable
class EventBusProtocol(Protocol):
    """Event bus interface"""

    async def publish(self, subject: str, data: Dict[str, Any]) -> None:
        ...


__all__ = [
    # Exceptions
    "MembershipLifecycleError",
    "NotFoundError",
    "ContractNotFoundError",
    "SubscriptionNotFoundError",
    "PlanNotFoundError",
    "CancellationRequestNotFoundError",
    "RetentionOfferNotFoundError",
    "ScheduledPlanChangeNotFoundError",
    "FreezePackageNotFoundError",
    "FreezeHistoryNotFoundError",
    "InvalidStateError",
    "DuplicateEpisodeError",
    "ValidationFailureError",
    "OfferNotActionableError",
    "PlanServiceError",
    # Protocols
    "LifecycleRepositoryProtocol",
    "PlanClientProtocol",
    "EventBusProtocol",
]
