"""
Membership Lifecycle Service Factory

Factory for creating the lifecycle services with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from core.config import InfraConfig, LifecycleConfig

from .cancellation_service import CancellationService
from .clients.plan_client import PlanClient
from .contract_service import ContractService
from .freeze_service import FreezeService
from .lifecycle_repository import LifecycleRepository
from .plan_change_service import PlanChangeService
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


@dataclass
class LifecycleServices:
    """The lifecycle services sharing one repository"""
    repository: LifecycleRepository
    contracts: ContractService
    cancellations: CancellationService
    plan_changes: PlanChangeService
    freezes: FreezeService
    subscriptions: SubscriptionService


def create_repository(infra_config: Optional[InfraConfig] = None) -> LifecycleRepository:
    return LifecycleRepository(config=infra_config or InfraConfig.from_env())


def create_plan_client(config: Optional[LifecycleConfig] = None) -> PlanClient:
    config = config or LifecycleConfig.from_env()
    return PlanClient(base_url=config.plan_service_url)


def create_lifecycle_services(
    config: Optional[LifecycleConfig] = None,
    infra_config: Optional[InfraConfig] = None,
    event_bus=None,
    plan_client=None,
) -> LifecycleServices:
    """
    Create all lifecycle services with real dependencies

    Args:
        config: Optional lifecycle settings (loaded from env if not provided)
        infra_config: Optional PostgreSQL/NATS settings (loaded from env if not provided)
        event_bus: Optional event bus for event publishing
        plan_client: Optional plan catalog client (creates default if not provided)

    Returns:
        LifecycleServices bundle
    """
    if config is None:
        config = LifecycleConfig.from_env()

    repository = create_repository(infra_config)

    if plan_client is None:
        plan_client = create_plan_client(config)
        logger.info(f"PlanClient initialized for {config.plan_service_url}")

    if event_bus is None:
        logger.warning("No event bus provided; lifecycle events will not be published")

    return LifecycleServices(
        repository=repository,
        contracts=ContractService(repository, event_bus=event_bus, config=config),
        cancellations=CancellationService(repository, plan_client, event_bus=event_bus, config=config),
        plan_changes=PlanChangeService(repository, plan_client, event_bus=event_bus, config=config),
        freezes=FreezeService(repository, event_bus=event_bus, config=config),
        subscriptions=SubscriptionService(repository, event_bus=event_bus),
    )


__all__ = [
    "LifecycleServices",
    "create_repository",
    "create_plan_client",
    "create_lifecycle_services",
]
