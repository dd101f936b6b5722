"""
Unit Tests for service wiring

Event publisher envelope, factory assembly and scheduler job registration.
"""

from datetime import date

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.config import InfraConfig, LifecycleConfig
from microservices.membership_lifecycle_service.events.publishers import MembershipLifecycleEventPublisher
from microservices.membership_lifecycle_service.factory import create_lifecycle_services
from microservices.membership_lifecycle_service.jobs import LifecycleJobs
from microservices.membership_lifecycle_service.scheduler import register_jobs
from tests.contracts.membership_lifecycle import LifecycleTestDataFactory as factory


class RecordingBus:
    def __init__(self, error=None):
        self.error = error
        self.published = []

    async def publish(self, subject, data):
        if self.error is not None:
            raise self.error
        self.published.append((subject, data))


# ====================
# Publisher
# ====================

@pytest.mark.unit
@pytest.mark.asyncio
class TestEventPublisher:

    async def test_publishes_envelope_on_event_subject(self):
        bus = RecordingBus()
        contract = factory.make_contract(date(2026, 1, 1))

        published = await MembershipLifecycleEventPublisher(bus).publish_contract_created(contract)

        assert published is True
        subject, envelope = bus.published[0]
        assert subject == "membership.contract.created"
        assert envelope["event_type"] == "membership.contract.created"
        assert envelope["event_id"].startswith("evt_")
        assert envelope["data"]["contract_id"] == contract.contract_id

    async def test_missing_bus_returns_false(self):
        contract = factory.make_contract(date(2026, 1, 1))

        assert await MembershipLifecycleEventPublisher(None).publish_contract_created(contract) is False

    async def test_bus_failure_is_not_raised(self):
        bus = RecordingBus(error=RuntimeError("Not connected to NATS"))
        contract = factory.make_contract(date(2026, 1, 1))

        assert await MembershipLifecycleEventPublisher(bus).publish_contract_signed(contract) is False


# ====================
# Factory and scheduler
# ====================

@pytest.mark.unit
class TestFactory:

    def test_services_share_one_repository(self):
        plan_client = object()

        services = create_lifecycle_services(
            config=LifecycleConfig(), infra_config=InfraConfig(), plan_client=plan_client
        )

        assert services.contracts.repository is services.repository
        assert services.freezes.repository is services.repository
        assert services.subscriptions.repository is services.repository
        assert services.cancellations.repository is services.repository
        assert services.cancellations.plan_client is plan_client
        assert services.plan_changes.plan_client is plan_client


@pytest.mark.unit
class TestRegisterJobs:

    def test_registers_three_non_overlapping_cron_jobs(self):
        config = LifecycleConfig()
        services = create_lifecycle_services(config=config, infra_config=InfraConfig(), plan_client=object())
        jobs = LifecycleJobs(services.cancellations, services.plan_changes)
        scheduler = AsyncIOScheduler(timezone="UTC")

        register_jobs(scheduler, jobs, config)

        registered = {job.id: job for job in scheduler.get_jobs()}
        assert set(registered) == {
            "expire_retention_offers",
            "process_scheduled_plan_changes",
            "complete_due_cancellations",
        }
        for job in registered.values():
            assert job.max_instances == 1
            assert job.coalesce is True
