"""
Unit Tests for UnitOfWork and the repository commit path

The repository is exercised against a recording fake connection so no
database is needed.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime, timezone

import asyncpg
import pytest

from microservices.membership_lifecycle_service.lifecycle_repository import (
    OPEN_CANCELLATION_INDEX,
    EXIT_SURVEY_INDEX,
    LifecycleRepository,
)
from microservices.membership_lifecycle_service.models import PlanChangeHistory, PlanChangeType, ProrationMode
from microservices.membership_lifecycle_service.protocols import (
    DuplicateEpisodeError,
    ValidationFailureError,
)
from microservices.membership_lifecycle_service.unit_of_work import UnitOfWork, WriteKind
from tests.contracts.membership_lifecycle import LifecycleTestDataFactory as factory

START = date(2026, 1, 1)
NOW = datetime(2026, 4, 1, tzinfo=timezone.utc)


def _history(subscription_id: str, history_id: str) -> PlanChangeHistory:
    return PlanChangeHistory(
        history_id=history_id,
        subscription_id=subscription_id,
        member_id="mbr_1",
        old_plan_id="pln_a",
        new_plan_id="pln_b",
        change_type=PlanChangeType.UPGRADE,
        proration_mode=ProrationMode.PRORATE_IMMEDIATELY,
        effective_date=START,
        created_at=NOW,
    )


@pytest.mark.unit
class TestUnitOfWork:
    """Tests for write registration"""

    def test_latest_state_wins_in_first_position(self):
        sub = factory.make_subscription(START)
        contract = factory.make_contract(START)
        uow = UnitOfWork("test")

        uow.save_subscription(sub)
        uow.save_contract(contract)
        uow.save_subscription(sub.model_copy(update={"plan_id": "pln_new"}))

        writes = uow.writes
        assert len(uow) == 2
        assert writes[0][0] == WriteKind.SUBSCRIPTION
        assert writes[0][1].plan_id == "pln_new"
        assert writes[1][0] == WriteKind.CONTRACT

    def test_append_only_kinds_are_not_collapsed(self):
        uow = UnitOfWork("test")
        uow.append_plan_change_history(_history("sub_1", "pch_1"))
        uow.append_plan_change_history(_history("sub_1", "pch_2"))

        assert len(uow) == 2

    def test_repr_lists_kinds(self):
        uow = UnitOfWork("label")
        uow.save_subscription(factory.make_subscription(START))

        assert "label" in repr(uow)
        assert "subscription" in repr(uow)


# ====================
# Repository Commit
# ====================


class RecordingConnection:
    def __init__(self, fail_on_table=None, constraint=None):
        self.statements = []
        self.fail_on_table = fail_on_table
        self.constraint = constraint

    async def execute(self, query, *params):
        if self.fail_on_table and f"membership.{self.fail_on_table} " in query:
            error = asyncpg.exceptions.UniqueViolationError("duplicate key value violates unique constraint")
            error.constraint_name = self.constraint
            raise error
        self.statements.append((query, params))


class FakeDb:
    def __init__(self, conn):
        self.conn = conn
        self.transactions = 0

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield self.conn


@pytest.mark.unit
@pytest.mark.asyncio
class TestRepositoryCommit:
    """Tests for LifecycleRepository.commit"""

    async def test_all_writes_in_one_transaction(self):
        conn = RecordingConnection()
        db = FakeDb(conn)
        repo = LifecycleRepository(db=db)
        uow = UnitOfWork("test")
        uow.save_contract(factory.make_contract(START))
        uow.save_subscription(factory.make_subscription(START))

        await repo.commit(uow)

        assert db.transactions == 1
        assert len(conn.statements) == 2
        assert "membership.contracts" in conn.statements[0][0]
        assert "ON CONFLICT (contract_id)" in conn.statements[0][0]

    async def test_history_is_insert_only(self):
        conn = RecordingConnection()
        repo = LifecycleRepository(db=FakeDb(conn))
        uow = UnitOfWork("test")
        uow.append_plan_change_history(_history("sub_1", "pch_1"))

        await repo.commit(uow)

        assert "ON CONFLICT" not in conn.statements[0][0]

    async def test_empty_unit_of_work_is_noop(self):
        db = FakeDb(RecordingConnection())
        await LifecycleRepository(db=db).commit(UnitOfWork("empty"))

        assert db.transactions == 0

    async def test_open_cancellation_violation_maps_to_duplicate_episode(self):
        conn = RecordingConnection("cancellation_requests", OPEN_CANCELLATION_INDEX)
        repo = LifecycleRepository(db=FakeDb(conn))
        sub = factory.make_subscription(START)
        uow = UnitOfWork("test")
        uow.save_cancellation_request(factory.make_cancellation_request(sub, date(2026, 5, 1)))

        with pytest.raises(DuplicateEpisodeError) as exc_info:
            await repo.commit(uow)

        assert exc_info.value.subscription_id == sub.subscription_id

    async def test_exit_survey_violation_maps_to_validation_failure(self):
        from microservices.membership_lifecycle_service.models import ExitSurvey

        conn = RecordingConnection("exit_surveys", EXIT_SURVEY_INDEX)
        repo = LifecycleRepository(db=FakeDb(conn))
        command = factory.make_exit_survey_command("sub_1")
        survey = ExitSurvey(survey_id="svy_1", member_id="mbr_1", submitted_at=NOW, **command.model_dump())
        uow = UnitOfWork("test")
        uow.save_exit_survey(survey)

        with pytest.raises(ValidationFailureError):
            await repo.commit(uow)

    async def test_unknown_constraint_propagates(self):
        conn = RecordingConnection("contracts", "uq_contracts_number")
        repo = LifecycleRepository(db=FakeDb(conn))
        uow = UnitOfWork("test")
        uow.save_contract(factory.make_contract(START))

        with pytest.raises(asyncpg.exceptions.UniqueViolationError):
            await repo.commit(uow)
