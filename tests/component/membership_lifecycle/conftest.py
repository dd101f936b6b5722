"""
Membership Lifecycle Component Test Fixtures

Provides mocks for lifecycle service component testing:
- MockLifecycleRepository: In-memory LifecycleRepositoryProtocol with the
  same unique-index rules as the PostgreSQL schema and all-or-nothing commits
- MockPlanClient: Mock plan catalog
- MockEventBus: Records published events
- FixedClock: Settable clock injected into every service
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from core.config import LifecycleConfig
from microservices.membership_lifecycle_service.models import (
    CancellationRequest,
    CancellationRequestStatus,
    ExitSurvey,
    FreezeHistory,
    FreezePackage,
    MemberFreezeBalance,
    MembershipContract,
    MembershipPlan,
    NON_TERMINAL_CANCELLATION_STATUSES,
    PlanChangeHistory,
    RetentionOffer,
    RetentionOfferStatus,
    ScheduledChangeStatus,
    ScheduledPlanChange,
    Subscription,
)
from microservices.membership_lifecycle_service.protocols import (
    DuplicateEpisodeError,
    ValidationFailureError,
)
from microservices.membership_lifecycle_service.unit_of_work import UnitOfWork, WriteKind
from tests.contracts.membership_lifecycle import LifecycleTestDataFactory


# =============================================================================
# Mock Repository Implementation
# =============================================================================


class MockLifecycleRepository:
    """
    Mock implementation of LifecycleRepositoryProtocol for testing.

    commit() applies writes to a copy of the store and swaps it in only when
    every write succeeded, so a failed unit of work leaves nothing behind.
    """

    _STORES = {
        WriteKind.CONTRACT: ("contracts", "contract_id"),
        WriteKind.SUBSCRIPTION: ("subscriptions", "subscription_id"),
        WriteKind.CANCELLATION_REQUEST: ("cancellation_requests", "request_id"),
        WriteKind.RETENTION_OFFER: ("retention_offers", "offer_id"),
        WriteKind.EXIT_SURVEY: ("exit_surveys", "survey_id"),
        WriteKind.SCHEDULED_CHANGE: ("scheduled_changes", "scheduled_change_id"),
        WriteKind.PLAN_CHANGE_HISTORY: ("plan_change_history", "history_id"),
        WriteKind.FREEZE_BALANCE: ("freeze_balances", "balance_id"),
        WriteKind.FREEZE_GRANT: ("freeze_grants", "grant_id"),
        WriteKind.FREEZE_HISTORY: ("freeze_history", "freeze_history_id"),
    }

    def __init__(self):
        self.store: Dict[str, Dict[str, Any]] = {name: {} for name, _ in self._STORES.values()}
        self.freeze_packages: Dict[str, FreezePackage] = {}
        self.sequences: Dict[Tuple[str, int], int] = {}

        # Subscriptions whose writes raise on commit (failure injection)
        self.fail_commits_for: Set[str] = set()

        # Track calls for verification
        self.method_calls: List[Tuple] = []
        self.commits: List[UnitOfWork] = []

    # Seeding

    def add(self, *entities) -> None:
        for entity in entities:
            if isinstance(entity, FreezePackage):
                self.freeze_packages[entity.package_id] = entity
                continue
            kind = self._kind_of(entity)
            name, key = self._STORES[kind]
            self.store[name][getattr(entity, key)] = entity

    @staticmethod
    def _kind_of(entity) -> WriteKind:
        mapping = {
            MembershipContract: WriteKind.CONTRACT,
            Subscription: WriteKind.SUBSCRIPTION,
            CancellationRequest: WriteKind.CANCELLATION_REQUEST,
            RetentionOffer: WriteKind.RETENTION_OFFER,
            ExitSurvey: WriteKind.EXIT_SURVEY,
            ScheduledPlanChange: WriteKind.SCHEDULED_CHANGE,
            PlanChangeHistory: WriteKind.PLAN_CHANGE_HISTORY,
            MemberFreezeBalance: WriteKind.FREEZE_BALANCE,
            FreezeHistory: WriteKind.FREEZE_HISTORY,
        }
        return mapping[type(entity)]

    # Unit of work

    def _check_unique(self, store: Dict[str, Dict[str, Any]], kind: WriteKind, entity) -> None:
        sub_id = getattr(entity, "subscription_id", None)
        if kind == WriteKind.CANCELLATION_REQUEST:
            open_requests = [
                r for r in store["cancellation_requests"].values()
                if r.subscription_id == sub_id and r.status in NON_TERMINAL_CANCELLATION_STATUSES
            ]
            if len(open_requests) > 1:
                raise DuplicateEpisodeError(sub_id, "cancellation request")
        elif kind == WriteKind.SCHEDULED_CHANGE:
            pending = [
                c for c in store["scheduled_changes"].values()
                if c.subscription_id == sub_id and c.status == ScheduledChangeStatus.PENDING
            ]
            if len(pending) > 1:
                raise DuplicateEpisodeError(sub_id, "scheduled plan change")
        elif kind == WriteKind.EXIT_SURVEY:
            surveys = [s for s in store["exit_surveys"].values() if s.subscription_id == sub_id]
            if len(surveys) > 1:
                raise ValidationFailureError(f"Exit survey already submitted for subscription {sub_id}")
        elif kind == WriteKind.FREEZE_HISTORY:
            active = [h for h in store["freeze_history"].values() if h.subscription_id == sub_id and h.is_active]
            if len(active) > 1:
                raise DuplicateEpisodeError(sub_id, "freeze")

    async def commit(self, unit_of_work: UnitOfWork) -> None:
        self.method_calls.append(("commit", unit_of_work.label))
        staged = {name: dict(rows) for name, rows in self.store.items()}
        for kind, entity in unit_of_work:
            if getattr(entity, "subscription_id", None) in self.fail_commits_for:
                raise RuntimeError(f"Injected failure for {entity.subscription_id}")
            name, key = self._STORES[kind]
            staged[name][getattr(entity, key)] = entity
            self._check_unique(staged, kind, entity)
        self.store = staged
        self.commits.append(unit_of_work)

    async def next_contract_sequence(self, tenant_id: str, year: int) -> int:
        self.sequences[(tenant_id, year)] = self.sequences.get((tenant_id, year), 0) + 1
        return self.sequences[(tenant_id, year)]

    # Reads

    def _rows(self, name: str) -> List[Any]:
        return list(self.store[name].values())

    async def get_contract(self, contract_id: str) -> Optional[MembershipContract]:
        self.method_calls.append(("get_contract", contract_id))
        return self.store["contracts"].get(contract_id)

    async def get_contract_by_subscription(self, subscription_id: str) -> Optional[MembershipContract]:
        for contract in self._rows("contracts"):
            if contract.subscription_id == subscription_id:
                return contract
        return None

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        self.method_calls.append(("get_subscription", subscription_id))
        return self.store["subscriptions"].get(subscription_id)

    async def get_cancellation_request(self, request_id: str) -> Optional[CancellationRequest]:
        return self.store["cancellation_requests"].get(request_id)

    async def get_pending_cancellation(self, subscription_id: str) -> Optional[CancellationRequest]:
        for request in self._rows("cancellation_requests"):
            if request.subscription_id == subscription_id and request.status in NON_TERMINAL_CANCELLATION_STATUSES:
                return request
        return None

    async def list_cancellations_by_status(
        self, status: CancellationRequestStatus, limit: int = 100, offset: int = 0
    ) -> List[CancellationRequest]:
        rows = [r for r in self._rows("cancellation_requests") if r.status == status]
        return rows[offset:offset + limit]

    async def get_cancellations_due(
        self, as_of: date, limit: int = 100, exclude_ids: Sequence[str] = ()
    ) -> List[CancellationRequest]:
        rows = [
            r for r in self._rows("cancellation_requests")
            if r.status == CancellationRequestStatus.IN_NOTICE_PERIOD and r.effective_date <= as_of
            and r.request_id not in exclude_ids
        ]
        rows.sort(key=lambda r: (r.effective_date, r.request_id))
        return rows[:limit]

    async def count_cancellations_by_status(
        self, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for request in self._rows("cancellation_requests"):
            if since and request.requested_at < since:
                continue
            if until and request.requested_at >= until:
                continue
            counts[request.status.value] = counts.get(request.status.value, 0) + 1
        return counts

    async def get_retention_offer(self, offer_id: str) -> Optional[RetentionOffer]:
        return self.store["retention_offers"].get(offer_id)

    async def list_pending_offers(self, subscription_id: str) -> List[RetentionOffer]:
        return [
            o for o in self._rows("retention_offers")
            if o.subscription_id == subscription_id and o.status == RetentionOfferStatus.PENDING
        ]

    async def list_offers_past_expiry(
        self, now: datetime, limit: int = 100, exclude_ids: Sequence[str] = ()
    ) -> List[RetentionOffer]:
        rows = [
            o for o in self._rows("retention_offers")
            if o.status == RetentionOfferStatus.PENDING and o.expires_at < now and o.offer_id not in exclude_ids
        ]
        rows.sort(key=lambda o: (o.expires_at, o.offer_id))
        return rows[:limit]

    async def get_exit_survey_by_subscription(self, subscription_id: str) -> Optional[ExitSurvey]:
        for survey in self._rows("exit_surveys"):
            if survey.subscription_id == subscription_id:
                return survey
        return None

    async def list_exit_surveys(self) -> List[ExitSurvey]:
        return self._rows("exit_surveys")

    async def get_scheduled_change(self, scheduled_change_id: str) -> Optional[ScheduledPlanChange]:
        return self.store["scheduled_changes"].get(scheduled_change_id)

    async def get_pending_scheduled_change(self, subscription_id: str) -> Optional[ScheduledPlanChange]:
        for change in self._rows("scheduled_changes"):
            if change.subscription_id == subscription_id and change.status == ScheduledChangeStatus.PENDING:
                return change
        return None

    async def list_pending_scheduled_changes(self) -> List[ScheduledPlanChange]:
        return [c for c in self._rows("scheduled_changes") if c.status == ScheduledChangeStatus.PENDING]

    async def get_scheduled_changes_due(
        self, as_of: date, limit: int = 100, exclude_ids: Sequence[str] = ()
    ) -> List[ScheduledPlanChange]:
        rows = [
            c for c in self._rows("scheduled_changes")
            if c.status == ScheduledChangeStatus.PENDING and c.scheduled_date <= as_of
            and c.scheduled_change_id not in exclude_ids
        ]
        rows.sort(key=lambda c: (c.scheduled_date, c.scheduled_change_id))
        return rows[:limit]

    async def list_plan_change_history(self, subscription_id: str) -> List[PlanChangeHistory]:
        return [h for h in self._rows("plan_change_history") if h.subscription_id == subscription_id]

    async def get_freeze_balance(self, subscription_id: str) -> Optional[MemberFreezeBalance]:
        for balance in self._rows("freeze_balances"):
            if balance.subscription_id == subscription_id:
                return balance
        return None

    async def get_freeze_package(self, package_id: str) -> Optional[FreezePackage]:
        return self.freeze_packages.get(package_id)

    async def get_active_freeze_history(self, subscription_id: str) -> Optional[FreezeHistory]:
        for history in self._rows("freeze_history"):
            if history.subscription_id == subscription_id and history.is_active:
                return history
        return None

    async def list_freeze_history(self, subscription_id: str) -> List[FreezeHistory]:
        return [h for h in self._rows("freeze_history") if h.subscription_id == subscription_id]


# =============================================================================
# Mock Collaborators
# =============================================================================


class MockPlanClient:
    """Mock plan catalog, records the tenant of every lookup"""

    def __init__(self):
        self.plans: Dict[str, MembershipPlan] = {}
        self.tenants_seen: List[str] = []

    def add(self, *plans: MembershipPlan) -> None:
        for plan in plans:
            self.plans[plan.plan_id] = plan

    async def get_plan(self, tenant_id: str, plan_id: str) -> Optional[MembershipPlan]:
        self.tenants_seen.append(tenant_id)
        return self.plans.get(plan_id)

    async def list_active_plans(self, tenant_id: str) -> List[MembershipPlan]:
        self.tenants_seen.append(tenant_id)
        return [p for p in self.plans.values() if p.is_active]


class MockEventBus:
    """Records published events"""

    def __init__(self):
        self.published: List[Tuple[str, Dict[str, Any]]] = []

    async def publish(self, subject: str, data: Dict[str, Any]) -> None:
        self.published.append((subject, data))

    def subjects(self) -> List[str]:
        return [subject for subject, _ in self.published]


class FixedClock:
    """Settable UTC clock"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set_date(self, day: date, hour: int = 10) -> None:
        self.now = datetime(day.year, day.month, day.day, hour, 0, tzinfo=timezone.utc)

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def lifecycle_config():
    """Default lifecycle settings"""
    return LifecycleConfig()


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 5, 1, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def mock_repository():
    return MockLifecycleRepository()


@pytest.fixture
def mock_plan_client():
    return MockPlanClient()


@pytest.fixture
def mock_event_bus():
    return MockEventBus()


@pytest.fixture
def data_factory():
    """Provide data factory for test data generation"""
    return LifecycleTestDataFactory


@pytest.fixture
def tenant_id(data_factory):
    return data_factory.make_tenant_id()


@pytest.fixture
def contract_service(mock_repository, mock_event_bus, lifecycle_config, clock):
    from microservices.membership_lifecycle_service.contract_service import ContractService

    return ContractService(mock_repository, event_bus=mock_event_bus, config=lifecycle_config, clock=clock)


@pytest.fixture
def freeze_service(mock_repository, mock_event_bus, lifecycle_config, clock):
    from microservices.membership_lifecycle_service.freeze_service import FreezeService

    return FreezeService(mock_repository, event_bus=mock_event_bus, config=lifecycle_config, clock=clock)


@pytest.fixture
def cancellation_service(mock_repository, mock_plan_client, mock_event_bus, lifecycle_config, clock):
    from microservices.membership_lifecycle_service.cancellation_service import CancellationService

    return CancellationService(
        mock_repository, mock_plan_client, event_bus=mock_event_bus, config=lifecycle_config, clock=clock
    )


@pytest.fixture
def plan_change_service(mock_repository, mock_plan_client, mock_event_bus, lifecycle_config, clock):
    from microservices.membership_lifecycle_service.plan_change_service import PlanChangeService

    return PlanChangeService(
        mock_repository, mock_plan_client, event_bus=mock_event_bus, config=lifecycle_config, clock=clock
    )


@pytest.fixture
def subscription_service(mock_repository, mock_event_bus, clock):
    from microservices.membership_lifecycle_service.subscription_service import SubscriptionService

    return SubscriptionService(mock_repository, event_bus=mock_event_bus, clock=clock)
