"""
Lifecycle Repository Integration Tests

Tests LifecycleRepository against a real PostgreSQL database. Requires the
POSTGRES_* environment variables to point at a reachable server.

Usage:
    pytest tests/integration/membership_lifecycle -v
"""

import uuid
from datetime import date, datetime, timezone

import pytest

from microservices.membership_lifecycle_service.models import (
    CancellationRequestStatus,
    PlanChangeType,
    ScheduledPlanChange,
)
from microservices.membership_lifecycle_service.protocols import DuplicateEpisodeError
from microservices.membership_lifecycle_service.unit_of_work import UnitOfWork

pytestmark = [pytest.mark.integration, pytest.mark.asyncio, pytest.mark.requires_db]

START = date(2026, 1, 1)


def _track(repository, subscription):
    repository.created_subscription_ids.append(subscription.subscription_id)
    return subscription


class TestLifecycleRepositoryIntegration:
    """LifecycleRepository against PostgreSQL"""

    async def test_commit_round_trips_aggregates(self, lifecycle_repository, data_factory):
        if not lifecycle_repository:
            pytest.skip("Database connection not available")

        sub = _track(lifecycle_repository, data_factory.make_subscription(START))
        contract = data_factory.make_contract(START, subscription_id=sub.subscription_id)
        sub = sub.model_copy(update={"contract_id": contract.contract_id})
        uow = UnitOfWork("integration")
        uow.save_contract(contract)
        uow.save_subscription(sub)

        await lifecycle_repository.commit(uow)

        assert await lifecycle_repository.get_subscription(sub.subscription_id) == sub
        assert await lifecycle_repository.get_contract(contract.contract_id) == contract
        assert await lifecycle_repository.get_contract_by_subscription(sub.subscription_id) == contract

    async def test_second_open_cancellation_rolls_back_whole_unit(self, lifecycle_repository, data_factory):
        if not lifecycle_repository:
            pytest.skip("Database connection not available")

        sub = _track(lifecycle_repository, data_factory.make_subscription(START))
        first = UnitOfWork("first")
        first.save_subscription(sub)
        first.save_cancellation_request(data_factory.make_cancellation_request(sub, date(2026, 6, 1)))
        await lifecycle_repository.commit(first)

        changed = sub.model_copy(update={"plan_id": "pln_changed"})
        second = UnitOfWork("second")
        second.save_subscription(changed)
        second.save_cancellation_request(data_factory.make_cancellation_request(sub, date(2026, 7, 1)))

        with pytest.raises(DuplicateEpisodeError):
            await lifecycle_repository.commit(second)

        stored = await lifecycle_repository.get_subscription(sub.subscription_id)
        assert stored.plan_id == sub.plan_id

    async def test_terminal_requests_do_not_block_a_new_episode(self, lifecycle_repository, data_factory):
        if not lifecycle_repository:
            pytest.skip("Database connection not available")

        sub = _track(lifecycle_repository, data_factory.make_subscription(START))
        uow = UnitOfWork("history")
        uow.save_subscription(sub)
        uow.save_cancellation_request(data_factory.make_cancellation_request(
            sub, date(2026, 2, 1), status=CancellationRequestStatus.WITHDRAWN
        ))
        uow.save_cancellation_request(data_factory.make_cancellation_request(sub, date(2026, 6, 1)))

        await lifecycle_repository.commit(uow)

        pending = await lifecycle_repository.get_pending_cancellation(sub.subscription_id)
        assert pending.status == CancellationRequestStatus.IN_NOTICE_PERIOD

    async def test_due_queries(self, lifecycle_repository, data_factory):
        if not lifecycle_repository:
            pytest.skip("Database connection not available")

        sub = _track(lifecycle_repository, data_factory.make_subscription(START))
        request = data_factory.make_cancellation_request(sub, date(2026, 3, 1))
        change = ScheduledPlanChange(
            scheduled_change_id=f"spc_{uuid.uuid4().hex[:16]}",
            subscription_id=sub.subscription_id,
            member_id=sub.member_id,
            current_plan_id=sub.plan_id,
            new_plan_id="pln_cheaper",
            change_type=PlanChangeType.DOWNGRADE,
            scheduled_date=date(2026, 3, 1),
            created_at=datetime(2026, 2, 1, tzinfo=timezone.utc),
        )
        uow = UnitOfWork("due")
        uow.save_subscription(sub)
        uow.save_cancellation_request(request)
        uow.save_scheduled_change(change)
        await lifecycle_repository.commit(uow)

        due_requests = await lifecycle_repository.get_cancellations_due(date(2026, 3, 1), limit=1000)
        due_changes = await lifecycle_repository.get_scheduled_changes_due(date(2026, 3, 1), limit=1000)
        assert request.request_id in [r.request_id for r in due_requests]
        assert change.scheduled_change_id in [c.scheduled_change_id for c in due_changes]
        earlier = await lifecycle_repository.get_cancellations_due(date(2026, 2, 28), limit=1000)
        assert request.request_id not in [r.request_id for r in earlier]

    async def test_contract_sequence_increments_per_tenant(self, lifecycle_repository, data_factory):
        if not lifecycle_repository:
            pytest.skip("Database connection not available")

        tenant_id = data_factory.make_tenant_id()

        first = await lifecycle_repository.next_contract_sequence(tenant_id, 2026)
        second = await lifecycle_repository.next_contract_sequence(tenant_id, 2026)
        other_year = await lifecycle_repository.next_contract_sequence(tenant_id, 2027)

        assert (first, second, other_year) == (1, 2, 1)
