"""
Component Tests for SubscriptionService

Tests billing status transitions, renewal and billing period updates.
"""

from datetime import date, datetime, timezone

import pytest

from microservices.membership_lifecycle_service.models import SubscriptionStatus
from microservices.membership_lifecycle_service.protocols import (
    InvalidStateError,
    SubscriptionNotFoundError,
    ValidationFailureError,
)

pytestmark = [pytest.mark.component, pytest.mark.asyncio]

START = date(2026, 1, 1)
NOW = datetime(2026, 5, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def subscription(mock_repository, data_factory):
    sub = data_factory.make_subscription(START)
    mock_repository.add(sub)
    return sub


def _stored(mock_repository, subscription_id):
    return mock_repository.store["subscriptions"][subscription_id]


class TestBillingState:
    """Tests for past due, suspend and reactivate"""

    async def test_mark_past_due(self, subscription_service, mock_repository, mock_event_bus, subscription):
        updated = await subscription_service.mark_past_due(subscription.subscription_id)

        assert updated.status == SubscriptionStatus.PAST_DUE
        assert updated.past_due_at == NOW
        assert _stored(mock_repository, subscription.subscription_id).status == SubscriptionStatus.PAST_DUE
        subject, envelope = mock_event_bus.published[-1]
        assert subject == "membership.subscription.status_changed"
        assert envelope["data"]["previous_status"] == "active"
        assert envelope["data"]["status"] == "past_due"
        assert envelope["data"]["operation"] == "mark_past_due"

    async def test_past_due_then_suspend_then_reactivate(
        self, subscription_service, mock_repository, subscription
    ):
        await subscription_service.mark_past_due(subscription.subscription_id)
        suspended = await subscription_service.suspend_subscription(subscription.subscription_id)

        assert suspended.status == SubscriptionStatus.SUSPENDED
        assert suspended.suspended_at == NOW

        reactivated = await subscription_service.reactivate_subscription(subscription.subscription_id)

        assert reactivated.status == SubscriptionStatus.ACTIVE
        assert reactivated.past_due_at is None
        assert reactivated.suspended_at is None
        assert _stored(mock_repository, subscription.subscription_id) == reactivated

    async def test_cannot_mark_suspended_past_due(self, subscription_service, mock_repository, data_factory):
        sub = data_factory.make_subscription(START, status=SubscriptionStatus.SUSPENDED)
        mock_repository.add(sub)

        with pytest.raises(InvalidStateError):
            await subscription_service.mark_past_due(sub.subscription_id)

        assert mock_repository.commits == []

    async def test_cannot_reactivate_active(self, subscription_service, mock_event_bus, subscription):
        with pytest.raises(InvalidStateError):
            await subscription_service.reactivate_subscription(subscription.subscription_id)

        assert mock_event_bus.published == []

    async def test_unknown_subscription(self, subscription_service):
        with pytest.raises(SubscriptionNotFoundError):
            await subscription_service.suspend_subscription("sub_missing")

    async def test_no_event_when_commit_fails(
        self, subscription_service, mock_repository, mock_event_bus, subscription
    ):
        mock_repository.fail_commits_for.add(subscription.subscription_id)

        with pytest.raises(RuntimeError):
            await subscription_service.mark_past_due(subscription.subscription_id)

        assert mock_event_bus.published == []
        assert _stored(mock_repository, subscription.subscription_id).status == SubscriptionStatus.ACTIVE


class TestRenewal:
    """Tests for renew_subscription"""

    async def test_renew_active_extends_end_date(self, subscription_service, mock_event_bus, subscription):
        new_end = date(2027, 12, 31)

        renewed = await subscription_service.renew_subscription(subscription.subscription_id, new_end)

        assert renewed.end_date == new_end
        assert renewed.status == SubscriptionStatus.ACTIVE
        subject, envelope = mock_event_bus.published[-1]
        assert subject == "membership.subscription.status_changed"
        assert envelope["data"]["operation"] == "renew"
        assert envelope["data"]["end_date"] == "2027-12-31"

    async def test_renew_expired_reactivates(self, subscription_service, mock_repository, data_factory):
        sub = data_factory.make_subscription(START, status=SubscriptionStatus.EXPIRED)
        mock_repository.add(sub)

        renewed = await subscription_service.renew_subscription(sub.subscription_id, date(2027, 6, 1))

        assert renewed.status == SubscriptionStatus.ACTIVE

    async def test_end_date_must_move_forward(self, subscription_service, mock_repository, subscription):
        with pytest.raises(ValidationFailureError):
            await subscription_service.renew_subscription(subscription.subscription_id, subscription.end_date)

        assert mock_repository.commits == []

    async def test_cannot_renew_cancelled(self, subscription_service, mock_repository, data_factory):
        sub = data_factory.make_subscription(START, status=SubscriptionStatus.CANCELLED)
        mock_repository.add(sub)

        with pytest.raises(InvalidStateError):
            await subscription_service.renew_subscription(sub.subscription_id, date(2027, 6, 1))


class TestBillingPeriod:
    """Tests for update_billing_period"""

    async def test_rolls_period_without_event(
        self, subscription_service, mock_repository, mock_event_bus, subscription
    ):
        updated = await subscription_service.update_billing_period(
            subscription.subscription_id, date(2026, 5, 1), date(2026, 5, 31)
        )

        assert updated.current_billing_period_start == date(2026, 5, 1)
        assert updated.current_billing_period_end == date(2026, 5, 31)
        assert updated.status == SubscriptionStatus.ACTIVE
        assert _stored(mock_repository, subscription.subscription_id) == updated
        assert mock_event_bus.published == []

    async def test_rejects_inverted_period(self, subscription_service, subscription):
        with pytest.raises(ValidationFailureError):
            await subscription_service.update_billing_period(
                subscription.subscription_id, date(2026, 5, 31), date(2026, 5, 1)
            )
