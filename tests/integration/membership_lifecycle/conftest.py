"""
Membership Lifecycle Integration Test Fixtures

Provides a LifecycleRepository connected to the PostgreSQL instance named by
POSTGRES_* environment variables. The schema migration is applied on
connect; rows created by a test are removed afterwards.
"""

from pathlib import Path
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio

from core.config import InfraConfig
from core.postgres_client import PostgresClientWrapper
from microservices.membership_lifecycle_service.lifecycle_repository import LifecycleRepository
from tests.contracts.membership_lifecycle import LifecycleTestDataFactory

MIGRATION = (
    Path(__file__).resolve().parents[3]
    / "microservices" / "membership_lifecycle_service" / "migrations"
    / "001_create_membership_lifecycle_schema.sql"
)

_SUBSCRIPTION_TABLES = [
    "retention_offers",
    "exit_surveys",
    "cancellation_requests",
    "scheduled_plan_changes",
    "plan_change_history",
    "freeze_history",
    "freeze_balance_grants",
    "freeze_balances",
    "contracts",
    "subscriptions",
]


@pytest_asyncio.fixture(scope="function")
async def lifecycle_repository() -> AsyncGenerator[Optional[LifecycleRepository], None]:
    """
    LifecycleRepository against a real database

    Yields None when PostgreSQL is unreachable so tests can skip.
    """
    db = PostgresClientWrapper("membership_lifecycle_service_tests", InfraConfig.from_env())
    try:
        async with db.transaction() as conn:
            await conn.execute(MIGRATION.read_text())
    except Exception as e:
        print(f"Warning: Could not prepare membership schema: {e}")
        await db.close()
        yield None
        return

    repository = LifecycleRepository(db=db)
    repository.created_subscription_ids = []
    try:
        yield repository
    finally:
        ids = repository.created_subscription_ids
        if ids:
            async with db.transaction() as conn:
                for table in _SUBSCRIPTION_TABLES:
                    await conn.execute(
                        f"DELETE FROM membership.{table} WHERE subscription_id = ANY($1::text[])", ids
                    )
        await db.close()


@pytest.fixture
def data_factory():
    return LifecycleTestDataFactory
