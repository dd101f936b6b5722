"""
Unit of Work

Collects every write an operation intends to make so the repository can
commit them together in a single transaction.
"""

from enum import Enum
from typing import Iterator, List, Tuple

from pydantic import BaseModel

from .models import (
    CancellationRequest,
    ExitSurvey,
    FreezeBalanceGrant,
    FreezeHistory,
    MemberFreezeBalance,
    MembershipContract,
    PlanChangeHistory,
    RetentionOffer,
    ScheduledPlanChange,
    Subscription,
)


class WriteKind(str, Enum):
    """Aggregate kinds a unit of work can write"""
    CONTRACT = "contract"
    SUBSCRIPTION = "subscription"
    CANCELLATION_REQUEST = "cancellation_request"
    RETENTION_OFFER = "retention_offer"
    EXIT_SURVEY = "exit_survey"
    SCHEDULED_CHANGE = "scheduled_change"
    PLAN_CHANGE_HISTORY = "plan_change_history"      # append-only
    FREEZE_BALANCE = "freeze_balance"
    FREEZE_GRANT = "freeze_grant"                    # append-only
    FREEZE_HISTORY = "freeze_history"


APPEND_ONLY_KINDS = frozenset({WriteKind.PLAN_CHANGE_HISTORY, WriteKind.FREEZE_GRANT})


class UnitOfWork:
    """
    Ordered collection of pending writes.

    Registering the same aggregate twice keeps only the latest state, in the
    position of the first registration, so commit order follows the order in
    which aggregates were first touched.
    """

    def __init__(self, label: str = "unit_of_work"):
        self.label = label
        self._writes: List[Tuple[WriteKind, BaseModel]] = []
        self._index = {}

    def _register(self, kind: WriteKind, key: str, entity: BaseModel) -> None:
        slot = (kind, key)
        if slot in self._index and kind not in APPEND_ONLY_KINDS:
            self._writes[self._index[slot]] = (kind, entity)
            return
        self._index[slot] = len(self._writes)
        self._writes.append((kind, entity))

    def save_contract(self, contract: MembershipContract) -> None:
        self._register(WriteKind.CONTRACT, contract.contract_id, contract)

    def save_subscription(self, subscription: Subscription) -> None:
        self._register(WriteKind.SUBSCRIPTION, subscription.subscription_id, subscription)

    def save_cancellation_request(self, request: CancellationRequest) -> None:
        self._register(WriteKind.CANCELLATION_REQUEST, request.request_id, request)

    def save_retention_offer(self, offer: RetentionOffer) -> None:
        self._register(WriteKind.RETENTION_OFFER, offer.offer_id, offer)

    def save_exit_survey(self, survey: ExitSurvey) -> None:
        self._register(WriteKind.EXIT_SURVEY, survey.survey_id, survey)

    def save_scheduled_change(self, change: ScheduledPlanChange) -> None:
        self._register(WriteKind.SCHEDULED_CHANGE, change.scheduled_change_id, change)

    def append_plan_change_history(self, history: PlanChangeHistory) -> None:
        self._register(WriteKind.PLAN_CHANGE_HISTORY, history.history_id, history)

    def save_freeze_balance(self, balance: MemberFreezeBalance) -> None:
        self._register(WriteKind.FREEZE_BALANCE, balance.balance_id, balance)

    def append_freeze_grant(self, grant: FreezeBalanceGrant) -> None:
        self._register(WriteKind.FREEZE_GRANT, grant.grant_id, grant)

    def save_freeze_history(self, history: FreezeHistory) -> None:
        self._register(WriteKind.FREEZE_HISTORY, history.freeze_history_id, history)

    @property
    def writes(self) -> List[Tuple[WriteKind, BaseModel]]:
        return list(self._writes)

    def __iter__(self) -> Iterator[Tuple[WriteKind, BaseModel]]:
        return iter(self.writes)

    def __len__(self) -> int:
        return len(self._writes)

    def __repr__(self) -> str:
        kinds = ", ".join(kind.value for kind, _ in self._writes)
        return f"<UnitOfWork {self.label}: [{kinds}]>"


__all__ = ["WriteKind", "APPEND_ONLY_KINDS", "UnitOfWork"]
