"""
Component Tests for LifecycleJobs

Batch triggers draining pages of due work with per-item isolation.
"""

from datetime import date

import pytest

from core.config import LifecycleConfig
from microservices.membership_lifecycle_service.cancellation_service import CancellationService
from microservices.membership_lifecycle_service.jobs import LifecycleJobs
from microservices.membership_lifecycle_service.models import (
    CancellationRequestStatus,
    PlanChangeType,
    ScheduledChangeStatus,
    ScheduledPlanChange,
    SubscriptionStatus,
)
from microservices.membership_lifecycle_service.plan_change_service import PlanChangeService

pytestmark = [pytest.mark.component, pytest.mark.asyncio]

START = date(2026, 1, 1)
TODAY = date(2026, 5, 1)


def _due_cancellations(mock_repository, data_factory, count):
    """Subscriptions in notice period whose effective date is today"""
    subs = []
    for _ in range(count):
        sub = data_factory.make_subscription(
            START, status=SubscriptionStatus.PENDING_CANCELLATION, cancellation_effective_date=TODAY
        )
        request = data_factory.make_cancellation_request(sub, TODAY)
        sub = sub.model_copy(update={"cancellation_request_id": request.request_id})
        mock_repository.add(sub, request)
        subs.append((sub, request))
    return subs


def _jobs(mock_repository, mock_plan_client, mock_event_bus, clock, page_size):
    config = LifecycleConfig(batch_page_size=page_size)
    cancellations = CancellationService(
        mock_repository, mock_plan_client, event_bus=mock_event_bus, config=config, clock=clock
    )
    plan_changes = PlanChangeService(
        mock_repository, mock_plan_client, event_bus=mock_event_bus, config=config, clock=clock
    )
    return LifecycleJobs(cancellations, plan_changes)


class TestDueCancellationBatch:
    """Tests for run_due_cancellations"""

    async def test_one_failure_does_not_block_the_batch(
        self, mock_repository, mock_plan_client, mock_event_bus, clock, data_factory
    ):
        """100 due, the 47th fails: 99 complete, the 47th completes on the next run"""
        items = _due_cancellations(mock_repository, data_factory, 100)
        failing_sub, failing_request = items[46]
        mock_repository.fail_commits_for.add(failing_sub.subscription_id)
        jobs = _jobs(mock_repository, mock_plan_client, mock_event_bus, clock, page_size=100)

        first = await jobs.run_due_cancellations()

        assert first.processed_count == 99
        assert list(first.failed) == [failing_request.request_id]
        stuck = await mock_repository.get_cancellation_request(failing_request.request_id)
        assert stuck.status == CancellationRequestStatus.IN_NOTICE_PERIOD
        assert mock_repository.store["subscriptions"][failing_sub.subscription_id].status == (
            SubscriptionStatus.PENDING_CANCELLATION
        )
        completed = await mock_repository.list_cancellations_by_status(CancellationRequestStatus.COMPLETED, limit=200)
        assert len(completed) == 99

        mock_repository.fail_commits_for.clear()
        second = await jobs.run_due_cancellations()

        assert second.processed == [failing_request.request_id]
        assert second.failed == {}
        assert mock_repository.store["subscriptions"][failing_sub.subscription_id].status == (
            SubscriptionStatus.CANCELLED
        )

    async def test_failure_at_head_of_queue_does_not_starve_the_rest(
        self, mock_repository, mock_plan_client, mock_event_bus, clock, data_factory
    ):
        """150 due, the first in due order fails: the other 149 still complete"""
        items = _due_cancellations(mock_repository, data_factory, 150)
        head_sub, head_request = min(items, key=lambda item: item[1].request_id)
        mock_repository.fail_commits_for.add(head_sub.subscription_id)
        jobs = _jobs(mock_repository, mock_plan_client, mock_event_bus, clock, page_size=100)

        summary = await jobs.run_due_cancellations()

        assert summary.processed_count == 149
        assert list(summary.failed) == [head_request.request_id]
        still_due = await mock_repository.get_cancellations_due(TODAY, limit=1000)
        assert [r.request_id for r in still_due] == [head_request.request_id]

    async def test_full_page_of_failures_does_not_block_later_items(
        self, mock_repository, mock_plan_client, mock_event_bus, clock, data_factory
    ):
        items = sorted(_due_cancellations(mock_repository, data_factory, 15), key=lambda item: item[1].request_id)
        for sub, _ in items[:10]:
            mock_repository.fail_commits_for.add(sub.subscription_id)
        jobs = _jobs(mock_repository, mock_plan_client, mock_event_bus, clock, page_size=10)

        summary = await jobs.run_due_cancellations()

        assert summary.failed_count == 10
        assert sorted(summary.processed) == sorted(request.request_id for _, request in items[10:])

    async def test_drains_multiple_pages(
        self, mock_repository, mock_plan_client, mock_event_bus, clock, data_factory
    ):
        _due_cancellations(mock_repository, data_factory, 25)
        jobs = _jobs(mock_repository, mock_plan_client, mock_event_bus, clock, page_size=10)

        summary = await jobs.run_due_cancellations()

        assert summary.processed_count == 25
        assert await mock_repository.get_cancellations_due(TODAY) == []

    async def test_nothing_due(self, mock_repository, mock_plan_client, mock_event_bus, clock):
        jobs = _jobs(mock_repository, mock_plan_client, mock_event_bus, clock, page_size=10)

        summary = await jobs.run_due_cancellations()

        assert summary.processed == []
        assert summary.failed == {}


class TestDuePlanChangeBatch:
    """Tests for run_due_plan_changes"""

    async def test_stuck_change_does_not_starve_the_rest(
        self, mock_repository, mock_plan_client, mock_event_bus, clock, data_factory
    ):
        changes = []
        for index in range(12):
            status = SubscriptionStatus.CANCELLED if index < 5 else SubscriptionStatus.ACTIVE
            sub = data_factory.make_subscription(START, status=status)
            change = ScheduledPlanChange(
                scheduled_change_id=f"spc_{index:04d}",
                subscription_id=sub.subscription_id,
                member_id=sub.member_id,
                current_plan_id=sub.plan_id,
                new_plan_id="pln_cheaper",
                change_type=PlanChangeType.DOWNGRADE,
                scheduled_date=TODAY,
                created_at=clock(),
            )
            mock_repository.add(sub.model_copy(update={"scheduled_plan_change_id": change.scheduled_change_id}), change)
            changes.append(change)
        jobs = _jobs(mock_repository, mock_plan_client, mock_event_bus, clock, page_size=5)

        summary = await jobs.run_due_plan_changes()

        assert sorted(summary.failed) == [c.scheduled_change_id for c in changes[:5]]
        assert sorted(summary.processed) == [c.scheduled_change_id for c in changes[5:]]
        for change in changes[5:]:
            stored = mock_repository.store["scheduled_changes"][change.scheduled_change_id]
            assert stored.status == ScheduledChangeStatus.PROCESSED


class TestRunAll:
    """Tests for run_all"""

    async def test_runs_every_job_in_order(self, mock_repository, mock_plan_client, mock_event_bus, clock, data_factory):
        _due_cancellations(mock_repository, data_factory, 2)
        jobs = _jobs(mock_repository, mock_plan_client, mock_event_bus, clock, page_size=10)

        summaries = await jobs.run_all()

        assert [s.job for s in summaries] == [
            "expire_retention_offers",
            "process_scheduled_plan_changes",
            "complete_due_cancellations",
        ]
        assert summaries[2].processed_count == 2
