"""
Membership Lifecycle Repository

Data access layer for contracts, subscriptions, cancellation episodes,
plan changes and freeze balances - PostgreSQL (asyncpg)

Each table keeps the columns that are queried or constrained, plus the
full aggregate as a JSONB payload. Partial unique indexes enforce one open
cancellation, one pending scheduled change and one active freeze per
subscription; violations surface as typed errors.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import asyncpg
from pydantic import BaseModel

from core.config import InfraConfig
from core.postgres_client import PostgresClientWrapper

from .models import (
    CancellationRequest,
    CancellationRequestStatus,
    ExitSurvey,
    FreezeHistory,
    FreezePackage,
    MemberFreezeBalance,
    MembershipContract,
    PlanChangeHistory,
    RetentionOffer,
    RetentionOfferStatus,
    ScheduledChangeStatus,
    ScheduledPlanChange,
    Subscription,
)
from .protocols import DuplicateEpisodeError, ValidationFailureError
from .unit_of_work import UnitOfWork, WriteKind

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

OPEN_CANCELLATION_INDEX = "uq_cancellation_requests_open"
PENDING_SCHEDULED_CHANGE_INDEX = "uq_scheduled_plan_changes_pending"
EXIT_SURVEY_INDEX = "uq_exit_surveys_subscription"
ACTIVE_FREEZE_INDEX = "uq_freeze_history_active"


def _value(v: Any) -> Any:
    return getattr(v, "value", v)


class LifecycleRepository:
    """Membership lifecycle data access repository - PostgreSQL"""

    def __init__(self, db: Optional[PostgresClientWrapper] = None, config: Optional[InfraConfig] = None):
        """Initialize repository with an asyncpg pool wrapper."""
        self.db = db or PostgresClientWrapper("membership_lifecycle_service", config)
        self.schema = "membership"

    async def initialize(self):
        """Initialize repository"""
        await self.db.connect()
        logger.info("Membership lifecycle repository initialized")

    async def close(self):
        """Close repository connections"""
        await self.db.close()
        logger.info("Membership lifecycle repository connections closed")

    def _t(self, table: str) -> str:
        return f"{self.schema}.{table}"

    # ====================
    # Write Mapping
    # ====================

    def _columns(self, kind: WriteKind, entity: Any) -> Dict[str, Any]:
        """Indexed columns stored next to the JSONB payload"""
        if kind == WriteKind.CONTRACT:
            return {
                "contract_id": entity.contract_id,
                "tenant_id": entity.tenant_id,
                "contract_number": entity.contract_number,
                "member_id": entity.member_id,
                "subscription_id": entity.subscription_id,
                "status": _value(entity.status),
            }
        if kind == WriteKind.SUBSCRIPTION:
            return {
                "subscription_id": entity.subscription_id,
                "member_id": entity.member_id,
                "plan_id": entity.plan_id,
                "contract_id": entity.contract_id,
                "status": _value(entity.status),
            }
        if kind == WriteKind.CANCELLATION_REQUEST:
            return {
                "request_id": entity.request_id,
                "subscription_id": entity.subscription_id,
                "status": _value(entity.status),
                "effective_date": entity.effective_date,
                "requested_at": entity.requested_at,
            }
        if kind == WriteKind.RETENTION_OFFER:
            return {
                "offer_id": entity.offer_id,
                "subscription_id": entity.subscription_id,
                "status": _value(entity.status),
                "expires_at": entity.expires_at,
            }
        if kind == WriteKind.EXIT_SURVEY:
            return {
                "survey_id": entity.survey_id,
                "subscription_id": entity.subscription_id,
                "submitted_at": entity.submitted_at,
            }
        if kind == WriteKind.SCHEDULED_CHANGE:
            return {
                "scheduled_change_id": entity.scheduled_change_id,
                "subscription_id": entity.subscription_id,
                "status": _value(entity.status),
                "scheduled_date": entity.scheduled_date,
            }
        if kind == WriteKind.PLAN_CHANGE_HISTORY:
            return {
                "history_id": entity.history_id,
                "subscription_id": entity.subscription_id,
                "created_at": entity.created_at,
            }
        if kind == WriteKind.FREEZE_BALANCE:
            return {
                "balance_id": entity.balance_id,
                "subscription_id": entity.subscription_id,
            }
        if kind == WriteKind.FREEZE_GRANT:
            return {
                "grant_id": entity.grant_id,
                "balance_id": entity.balance_id,
                "subscription_id": entity.subscription_id,
                "created_at": entity.created_at,
            }
        if kind == WriteKind.FREEZE_HISTORY:
            return {
                "freeze_history_id": entity.freeze_history_id,
                "subscription_id": entity.subscription_id,
                "is_active": entity.is_active,
                "created_at": entity.created_at,
            }
        raise ValueError(f"Unsupported write kind: {kind}")

    _TABLES = {
        WriteKind.CONTRACT: ("contracts", "contract_id"),
        WriteKind.SUBSCRIPTION: ("subscriptions", "subscription_id"),
        WriteKind.CANCELLATION_REQUEST: ("cancellation_requests", "request_id"),
        WriteKind.RETENTION_OFFER: ("retention_offers", "offer_id"),
        WriteKind.EXIT_SURVEY: ("exit_surveys", "survey_id"),
        WriteKind.SCHEDULED_CHANGE: ("scheduled_plan_changes", "scheduled_change_id"),
        WriteKind.PLAN_CHANGE_HISTORY: ("plan_change_history", "history_id"),
        WriteKind.FREEZE_BALANCE: ("freeze_balances", "balance_id"),
        WriteKind.FREEZE_GRANT: ("freeze_balance_grants", "grant_id"),
        WriteKind.FREEZE_HISTORY: ("freeze_history", "freeze_history_id"),
    }

    async def _write(self, conn: asyncpg.Connection, kind: WriteKind, entity: BaseModel) -> None:
        table, key = self._TABLES[kind]
        columns = self._columns(kind, entity)
        columns["payload"] = entity.model_dump_json()
        names = list(columns)
        placeholders = [
            f"${i}::jsonb" if name == "payload" else f"${i}"
            for i, name in enumerate(names, start=1)
        ]
        query = f'''
            INSERT INTO {self._t(table)} ({", ".join(names)}, updated_at)
            VALUES ({", ".join(placeholders)}, NOW())
        '''
        if kind not in (WriteKind.PLAN_CHANGE_HISTORY, WriteKind.FREEZE_GRANT):
            updates = ", ".join(f"{name} = EXCLUDED.{name}" for name in names if name != key)
            query += f" ON CONFLICT ({key}) DO UPDATE SET {updates}, updated_at = NOW()"
        await conn.execute(query, *columns.values())

    @staticmethod
    def _translate_unique_violation(e: asyncpg.exceptions.UniqueViolationError, entity: Any) -> Exception:
        subscription_id = getattr(entity, "subscription_id", "")
        constraint = e.constraint_name
        if constraint == OPEN_CANCELLATION_INDEX:
            return DuplicateEpisodeError(subscription_id, "cancellation request")
        if constraint == PENDING_SCHEDULED_CHANGE_INDEX:
            return DuplicateEpisodeError(subscription_id, "scheduled plan change")
        if constraint == ACTIVE_FREEZE_INDEX:
            return DuplicateEpisodeError(subscription_id, "freeze")
        if constraint == EXIT_SURVEY_INDEX:
            return ValidationFailureError(f"Exit survey already submitted for subscription {subscription_id}")
        return e

    async def commit(self, unit_of_work: UnitOfWork) -> None:
        """Apply every registered write in one transaction"""
        if not len(unit_of_work):
            return
        async with self.db.transaction() as conn:
            for kind, entity in unit_of_work:
                try:
                    await self._write(conn, kind, entity)
                except asyncpg.exceptions.UniqueViolationError as e:
                    translated = self._translate_unique_violation(e, entity)
                    if translated is e:
                        raise
                    logger.warning(f"{unit_of_work.label} rejected by {e.constraint_name}: {translated}")
                    raise translated from e
        logger.debug(f"Committed {unit_of_work!r}")

    async def next_contract_sequence(self, tenant_id: str, year: int) -> int:
        query = f'''
            INSERT INTO {self._t("contract_number_sequences")} (tenant_id, year, last_value)
            VALUES ($1, $2, 1)
            ON CONFLICT (tenant_id, year)
            DO UPDATE SET last_value = {self._t("contract_number_sequences")}.last_value + 1
            RETURNING last_value
        '''
        row = await self.db.query_row(query, [tenant_id, year])
        return int(row["last_value"])

    # ====================
    # Read Helpers
    # ====================

    @staticmethod
    def _load(model: Type[M], row: Optional[Dict[str, Any]]) -> Optional[M]:
        if not row:
            return None
        return model.model_validate_json(row["payload"])

    async def _one(self, model: Type[M], query: str, params: List[Any]) -> Optional[M]:
        return self._load(model, await self.db.query_row(query, params))

    async def _many(self, model: Type[M], query: str, params: Optional[List[Any]] = None) -> List[M]:
        rows = await self.db.query(query, params or [])
        return [self._load(model, row) for row in rows]

    # ====================
    # Contracts and Subscriptions
    # ====================

    async def get_contract(self, contract_id: str) -> Optional[MembershipContract]:
        return await self._one(
            MembershipContract,
            f"SELECT payload FROM {self._t('contracts')} WHERE contract_id = $1",
            [contract_id],
        )

    async def get_contract_by_subscription(self, subscription_id: str) -> Optional[MembershipContract]:
        return await self._one(
            MembershipContract,
            f'''SELECT payload FROM {self._t('contracts')}
                WHERE subscription_id = $1 ORDER BY created_at DESC LIMIT 1''',
            [subscription_id],
        )

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return await self._one(
            Subscription,
            f"SELECT payload FROM {self._t('subscriptions')} WHERE subscription_id = $1",
            [subscription_id],
        )

    # ====================
    # Cancellation Requests
    # ====================

    async def get_cancellation_request(self, request_id: str) -> Optional[CancellationRequest]:
        return await self._one(
            CancellationRequest,
            f"SELECT payload FROM {self._t('cancellation_requests')} WHERE request_id = $1",
            [request_id],
        )

    async def get_pending_cancellation(self, subscription_id: str) -> Optional[CancellationRequest]:
        return await self._one(
            CancellationRequest,
            f'''SELECT payload FROM {self._t('cancellation_requests')}
                WHERE subscription_id = $1 AND status = ANY($2::text[])''',
            [
                subscription_id,
                [CancellationRequestStatus.PENDING.value, CancellationRequestStatus.IN_NOTICE_PERIOD.value],
            ],
        )

    async def list_cancellations_by_status(
        self, status: CancellationRequestStatus, limit: int = 100, offset: int = 0
    ) -> List[CancellationRequest]:
        return await self._many(
            CancellationRequest,
            f'''SELECT payload FROM {self._t('cancellation_requests')}
                WHERE status = $1 ORDER BY requested_at DESC LIMIT $2 OFFSET $3''',
            [_value(status), limit, offset],
        )

    async def get_cancellations_due(
        self, as_of: date, limit: int = 100, exclude_ids: Sequence[str] = ()
    ) -> List[CancellationRequest]:
        return await self._many(
            CancellationRequest,
            f'''SELECT payload FROM {self._t('cancellation_requests')}
                WHERE status = $1 AND effective_date <= $2 AND NOT (request_id = ANY($4::text[]))
                ORDER BY effective_date, request_id LIMIT $3''',
            [CancellationRequestStatus.IN_NOTICE_PERIOD.value, as_of, limit, list(exclude_ids)],
        )

    async def count_cancellations_by_status(
        self, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> Dict[str, int]:
        query = f'''
            SELECT status, COUNT(*) AS total FROM {self._t('cancellation_requests')}
            WHERE ($1::timestamptz IS NULL OR requested_at >= $1)
              AND ($2::timestamptz IS NULL OR requested_at < $2)
            GROUP BY status
        '''
        rows = await self.db.query(query, [since, until])
        return {row["status"]: int(row["total"]) for row in rows}

    # ====================
    # Retention Offers and Surveys
    # ====================

    async def get_retention_offer(self, offer_id: str) -> Optional[RetentionOffer]:
        return await self._one(
            RetentionOffer,
            f"SELECT payload FROM {self._t('retention_offers')} WHERE offer_id = $1",
            [offer_id],
        )

    async def list_pending_offers(self, subscription_id: str) -> List[RetentionOffer]:
        return await self._many(
            RetentionOffer,
            f'''SELECT payload FROM {self._t('retention_offers')}
                WHERE subscription_id = $1 AND status = $2 ORDER BY expires_at''',
            [subscription_id, RetentionOfferStatus.PENDING.value],
        )

    async def list_offers_past_expiry(
        self, now: datetime, limit: int = 100, exclude_ids: Sequence[str] = ()
    ) -> List[RetentionOffer]:
        return await self._many(
            RetentionOffer,
            f'''SELECT payload FROM {self._t('retention_offers')}
                WHERE status = $1 AND expires_at < $2 AND NOT (offer_id = ANY($4::text[]))
                ORDER BY expires_at, offer_id LIMIT $3''',
            [RetentionOfferStatus.PENDING.value, now, limit, list(exclude_ids)],
        )

    async def get_exit_survey_by_subscription(self, subscription_id: str) -> Optional[ExitSurvey]:
        return await self._one(
            ExitSurvey,
            f"SELECT payload FROM {self._t('exit_surveys')} WHERE subscription_id = $1",
            [subscription_id],
        )

    async def list_exit_surveys(self) -> List[ExitSurvey]:
        return await self._many(
            ExitSurvey,
            f"SELECT payload FROM {self._t('exit_surveys')} ORDER BY submitted_at DESC",
        )

    # ====================
    # Plan Changes
    # ====================

    async def get_scheduled_change(self, scheduled_change_id: str) -> Optional[ScheduledPlanChange]:
        return await self._one(
            ScheduledPlanChange,
            f"SELECT payload FROM {self._t('scheduled_plan_changes')} WHERE scheduled_change_id = $1",
            [scheduled_change_id],
        )

    async def get_pending_scheduled_change(self, subscription_id: str) -> Optional[ScheduledPlanChange]:
        return await self._one(
            ScheduledPlanChange,
            f'''SELECT payload FROM {self._t('scheduled_plan_changes')}
                WHERE subscription_id = $1 AND status = $2''',
            [subscription_id, ScheduledChangeStatus.PENDING.value],
        )

    async def list_pending_scheduled_changes(self) -> List[ScheduledPlanChange]:
        return await self._many(
            ScheduledPlanChange,
            f'''SELECT payload FROM {self._t('scheduled_plan_changes')}
                WHERE status = $1 ORDER BY scheduled_date''',
            [ScheduledChangeStatus.PENDING.value],
        )

    async def get_scheduled_changes_due(
        self, as_of: date, limit: int = 100, exclude_ids: Sequence[str] = ()
    ) -> List[ScheduledPlanChange]:
        return await self._many(
            ScheduledPlanChange,
            f'''SELECT payload FROM {self._t('scheduled_plan_changes')}
                WHERE status = $1 AND scheduled_date <= $2 AND NOT (scheduled_change_id = ANY($4::text[]))
                ORDER BY scheduled_date, scheduled_change_id LIMIT $3''',
            [ScheduledChangeStatus.PENDING.value, as_of, limit, list(exclude_ids)],
        )

    async def list_plan_change_history(self, subscription_id: str) -> List[PlanChangeHistory]:
        return await self._many(
            PlanChangeHistory,
            f'''SELECT payload FROM {self._t('plan_change_history')}
                WHERE subscription_id = $1 ORDER BY created_at DESC''',
            [subscription_id],
        )

    # ====================
    # Freeze
    # ====================

    async def get_freeze_balance(self, subscription_id: str) -> Optional[MemberFreezeBalance]:
        return await self._one(
            MemberFreezeBalance,
            f"SELECT payload FROM {self._t('freeze_balances')} WHERE subscription_id = $1",
            [subscription_id],
        )

    async def get_freeze_package(self, package_id: str) -> Optional[FreezePackage]:
        return await self._one(
            FreezePackage,
            f"SELECT payload FROM {self._t('freeze_packages')} WHERE package_id = $1",
            [package_id],
        )

    async def get_active_freeze_history(self, subscription_id: str) -> Optional[FreezeHistory]:
        return await self._one(
            FreezeHistory,
            f'''SELECT payload FROM {self._t('freeze_history')}
                WHERE subscription_id = $1 AND is_active''',
            [subscription_id],
        )

    async def list_freeze_history(self, subscription_id: str) -> List[FreezeHistory]:
        return await self._many(
            FreezeHistory,
            f'''SELECT payload FROM {self._t('freeze_history')}
                WHERE subscription_id = $1 ORDER BY created_at DESC''',
            [subscription_id],
        )
