"""
Cancellation Service - Business Logic Layer

Orchestrates cancellation episodes: preview, request (cooling-off or notice
period), retention offers, withdrawal, exit surveys, fee waivers and the
scheduled completion of due cancellations.

Every operation that touches more than one aggregate (request, offers,
subscription, contract, freeze balance) registers all of its writes on one
UnitOfWork and commits them together.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from core.config import LifecycleConfig

from . import contract_lifecycle as contracts
from . import subscription_state as subscriptions
from .events.publishers import MembershipLifecycleEventPublisher
from .freeze_service import credit_freeze_balance
from .models import (
    BatchRunSummary,
    CancellationPreview,
    CancellationRequest,
    CancellationRequestStatus,
    CancellationResult,
    CancellationType,
    ExitSurvey,
    ExitSurveyAnalytics,
    ExitSurveyCommand,
    FreezeSource,
    LocalizedText,
    MembershipContract,
    MembershipPlan,
    NON_TERMINAL_CANCELLATION_STATUSES,
    RequestCancellationCommand,
    RetentionOffer,
    RetentionOfferAcceptance,
    RetentionOfferPreview,
    RetentionOfferStatus,
    RetentionOfferType,
    Subscription,
)
from .plan_change_service import supersede_scheduled_change
from .protocols import (
    CancellationRequestNotFoundError,
    ContractNotFoundError,
    DuplicateEpisodeError,
    EventBusProtocol,
    InvalidStateError,
    LifecycleRepositoryProtocol,
    OfferNotActionableError,
    PlanClientProtocol,
    RetentionOfferNotFoundError,
    SubscriptionNotFoundError,
    ValidationFailureError,
)
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass
class CancellationTerms:
    """Cooling-off, commitment and notice terms that apply today"""
    is_within_cooling_off: bool
    cooling_off_days_remaining: int
    is_within_commitment: bool
    commitment_months_remaining: int
    notice_period_days: int
    notice_period_end_date: date
    effective_date: date
    early_termination_fee: Decimal
    refund_amount: Optional[Decimal]


class CancellationService:
    """
    Cancellation Service - cancellation workflow and retention

    Request states: PENDING -> IN_NOTICE_PERIOD -> COMPLETED, with WITHDRAWN
    reachable from PENDING/IN_NOTICE_PERIOD and SAVED from IN_NOTICE_PERIOD.
    """

    # Statuses a termination fee may still be waived in
    FEE_WAIVABLE_STATUSES = {
        CancellationRequestStatus.PENDING,
        CancellationRequestStatus.IN_NOTICE_PERIOD,
        CancellationRequestStatus.COMPLETED,
    }

    def __init__(
        self,
        repository: LifecycleRepositoryProtocol,
        plan_client: PlanClientProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        config: Optional[LifecycleConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize cancellation service with dependencies.

        Args:
            repository: Lifecycle repository for data access
            plan_client: Plan catalog lookups for downgrade offers
            event_bus: Event bus for publishing events (optional)
            config: Lifecycle settings (optional)
            clock: Returns the current UTC time (optional, for tests)
        """
        self.repository = repository
        self.plan_client = plan_client
        self.config = config or LifecycleConfig()
        self.publisher = MembershipLifecycleEventPublisher(event_bus)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        logger.info("Cancellation service initialized")

    def _now(self) -> datetime:
        return self._clock()

    def _today(self) -> date:
        return self._clock().date()

    # ====================
    # Lookups
    # ====================

    async def _get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.repository.get_subscription(subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    async def _get_request(self, request_id: str) -> CancellationRequest:
        request = await self.repository.get_cancellation_request(request_id)
        if not request:
            raise CancellationRequestNotFoundError(request_id)
        return request

    async def _get_offer(self, offer_id: str) -> RetentionOffer:
        offer = await self.repository.get_retention_offer(offer_id)
        if not offer:
            raise RetentionOfferNotFoundError(offer_id)
        return offer

    async def _resolve_contract(self, contract_id: Optional[str]) -> Optional[MembershipContract]:
        """No contract id means no contract; a dangling id is an error, never treated as absent"""
        if contract_id is None:
            return None
        contract = await self.repository.get_contract(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        return contract

    def _terms(self, contract: Optional[MembershipContract], today: date) -> CancellationTerms:
        if contract is None:
            notice_days = self.config.default_notice_period_days
            notice_end = today + timedelta(days=notice_days)
            return CancellationTerms(
                is_within_cooling_off=False,
                cooling_off_days_remaining=0,
                is_within_commitment=False,
                commitment_months_remaining=0,
                notice_period_days=notice_days,
                notice_period_end_date=notice_end,
                effective_date=notice_end + timedelta(days=1),
                early_termination_fee=ZERO,
                refund_amount=None,
            )

        within_cooling_off = contracts.is_within_cooling_off(contract, today)
        if within_cooling_off:
            notice_days = 0
            notice_end = today
            effective = today
        else:
            notice_days = contract.notice_period_days
            notice_end = today + timedelta(days=notice_days)
            effective = notice_end + timedelta(days=1)

        return CancellationTerms(
            is_within_cooling_off=within_cooling_off,
            cooling_off_days_remaining=contracts.cooling_off_days_remaining(contract, today),
            is_within_commitment=contracts.is_within_commitment(contract, today),
            commitment_months_remaining=contracts.commitment_months_remaining(contract, today),
            notice_period_days=notice_days,
            notice_period_end_date=notice_end,
            effective_date=effective,
            early_termination_fee=contracts.calculate_early_termination_fee(contract, today),
            refund_amount=contracts.cooling_off_refund(contract) if within_cooling_off else None,
        )

    # ====================
    # Retention Offers
    # ====================

    async def _find_cheaper_plan(self, tenant_id: str, current_plan_id: str) -> Optional[MembershipPlan]:
        """The most expensive active plan still cheaper than the current one"""
        current = await self.plan_client.get_plan(tenant_id, current_plan_id)
        if current is None:
            logger.warning(f"Current plan {current_plan_id} not found; no downgrade offer")
            return None

        cheaper = [
            plan for plan in await self.plan_client.list_active_plans(tenant_id)
            if plan.plan_id != current_plan_id and plan.recurring_total < current.recurring_total
        ]
        if not cheaper:
            return None
        return max(cheaper, key=lambda plan: plan.recurring_total)

    async def _offer_previews(
        self, tenant_id: str, subscription: Subscription, today: date, locale: str = "en"
    ) -> List[RetentionOfferPreview]:
        cfg = self.config
        offers = [
            RetentionOfferPreview(
                offer_type=RetentionOfferType.FREE_FREEZE,
                title=LocalizedText(en="Take a Break", ar="خذ استراحة"),
                description=LocalizedText(
                    en=f"Get {cfg.free_freeze_days} FREE freeze days to pause your membership",
                    ar=f"احصل على {cfg.free_freeze_days} يوم تجميد مجاني لإيقاف عضويتك مؤقتاً",
                ),
                priority=1,
                freeze_days=cfg.free_freeze_days,
            )
        ]

        tenure_days = (today - subscription.start_date).days
        if tenure_days >= cfg.loyalty_min_tenure_days:
            offers.append(RetentionOfferPreview(
                offer_type=RetentionOfferType.DISCOUNT,
                title=LocalizedText(en="Loyalty Discount", ar="خصم الولاء"),
                description=LocalizedText(
                    en=f"{cfg.loyalty_discount_percentage}% off your next {cfg.loyalty_discount_months} months",
                    ar=f"خصم {cfg.loyalty_discount_percentage}% على الأشهر الـ {cfg.loyalty_discount_months} القادمة",
                ),
                priority=2,
                discount_percentage=Decimal(cfg.loyalty_discount_percentage),
                discount_months=cfg.loyalty_discount_months,
            ))

        plan = await self._find_cheaper_plan(tenant_id, subscription.plan_id)
        if plan is not None:
            ar_name = plan.name.get("ar")
            offers.append(RetentionOfferPreview(
                offer_type=RetentionOfferType.DOWNGRADE,
                title=LocalizedText(en=f"Try {plan.name.get(locale)}", ar=f"جرب {ar_name}"),
                description=LocalizedText(
                    en=f"Switch to {plan.name.get(locale)} at {plan.currency} {plan.recurring_total}/month",
                    ar=f"انتقل إلى {ar_name} بسعر {plan.recurring_total} {plan.currency}/شهرياً",
                ),
                priority=3,
                alternative_plan_id=plan.plan_id,
                alternative_plan_name=plan.name,
                alternative_plan_price=plan.recurring_total,
            ))

        return offers

    @staticmethod
    def _offer_from_preview(
        preview: RetentionOfferPreview,
        subscription: Subscription,
        request: CancellationRequest,
        expires_at: datetime,
        now: datetime,
    ) -> RetentionOffer:
        return RetentionOffer(
            offer_id=f"rof_{uuid.uuid4().hex[:16]}",
            subscription_id=subscription.subscription_id,
            member_id=subscription.member_id,
            cancellation_request_id=request.request_id,
            contract_id=request.contract_id,
            status=RetentionOfferStatus.PENDING,
            expires_at=expires_at,
            created_at=now,
            **preview.model_dump(),
        )

    # ====================
    # Preview and Request
    # ====================

    async def preview_cancellation(
        self, tenant_id: str, subscription_id: str, locale: str = "en"
    ) -> CancellationPreview:
        """Read-only: what cancelling today would cost and which offers would be made"""
        subscription = await self._get_subscription(subscription_id)
        contract = await self._resolve_contract(subscription.contract_id)
        today = self._today()
        terms = self._terms(contract, today)

        return CancellationPreview(
            subscription_id=subscription_id,
            is_within_cooling_off=terms.is_within_cooling_off,
            cooling_off_days_remaining=terms.cooling_off_days_remaining,
            is_within_commitment=terms.is_within_commitment,
            commitment_months_remaining=terms.commitment_months_remaining,
            notice_period_days=terms.notice_period_days,
            notice_period_end_date=terms.notice_period_end_date,
            effective_date=terms.effective_date,
            early_termination_fee=terms.early_termination_fee,
            refund_amount=terms.refund_amount,
            retention_offers=await self._offer_previews(tenant_id, subscription, today, locale),
        )

    async def request_cancellation(
        self, tenant_id: str, command: RequestCancellationCommand
    ) -> CancellationResult:
        """
        Start a cancellation episode.

        Within cooling-off the subscription and contract are cancelled at once
        and no offers are made. Otherwise retention offers are created, the
        subscription enters PENDING_CANCELLATION and the contract enters its
        notice period. A pending scheduled plan change is superseded.

        Raises:
            SubscriptionNotFoundError: unknown subscription
            InvalidStateError: subscription status does not allow cancellation
            DuplicateEpisodeError: a PENDING/IN_NOTICE_PERIOD request already exists
        """
        now = self._now()
        today = self._today()
        subscription = await self._get_subscription(command.subscription_id)

        if not subscriptions.can_cancel(subscription):
            raise InvalidStateError("Subscription", subscription.status, "request cancellation")

        if await self.repository.get_pending_cancellation(subscription.subscription_id):
            raise DuplicateEpisodeError(subscription.subscription_id, "cancellation request")

        contract = await self._resolve_contract(subscription.contract_id)
        terms = self._terms(contract, today)
        reason = command.reason_detail or command.reason_category.value

        request = CancellationRequest(
            request_id=f"can_{uuid.uuid4().hex[:16]}",
            subscription_id=subscription.subscription_id,
            member_id=subscription.member_id,
            contract_id=contract.contract_id if contract else None,
            reason_category=command.reason_category,
            reason_detail=command.reason_detail,
            status=CancellationRequestStatus.PENDING,
            requested_at=now,
            notice_period_days=terms.notice_period_days,
            notice_period_end_date=terms.notice_period_end_date,
            effective_date=terms.effective_date,
            is_within_cooling_off=terms.is_within_cooling_off,
            is_within_commitment=terms.is_within_commitment,
            early_termination_fee=terms.early_termination_fee if terms.early_termination_fee > 0 else None,
        )

        uow = UnitOfWork("request_cancellation")
        offers: List[RetentionOffer] = []
        subscription, superseded = await supersede_scheduled_change(self.repository, subscription, now, uow)

        if terms.is_within_cooling_off:
            request = request.model_copy(update={
                "status": CancellationRequestStatus.COMPLETED,
                "completed_at": now,
            })
            subscription = subscriptions.cancel_immediately(subscription, request.request_id, today, now)
            uow.save_cancellation_request(request)
            uow.save_subscription(subscription)
            if contract is not None:
                uow.save_contract(contracts.cancel_within_cooling_off(contract, reason, today, now))
        else:
            request = request.model_copy(update={"status": CancellationRequestStatus.IN_NOTICE_PERIOD})
            subscription = subscriptions.request_cancellation(
                subscription,
                terms.notice_period_end_date,
                terms.effective_date,
                request.request_id,
                now,
            )
            uow.save_cancellation_request(request)
            uow.save_subscription(subscription)
            if contract is not None:
                uow.save_contract(contracts.request_cancellation(
                    contract, CancellationType.NOTICE_PERIOD, reason, terms.effective_date, now
                ))

            expires_at = now + timedelta(hours=self.config.retention_offer_expiry_hours)
            for preview in await self._offer_previews(tenant_id, subscription, today):
                offer = self._offer_from_preview(preview, subscription, request, expires_at, now)
                uow.save_retention_offer(offer)
                offers.append(offer)

        await self.repository.commit(uow)

        logger.info(
            f"Cancellation {request.request_id} for subscription {subscription.subscription_id}: "
            f"{'immediate (cooling-off)' if terms.is_within_cooling_off else f'effective {terms.effective_date}'}, "
            f"{len(offers)} retention offers"
        )
        if superseded is not None:
            await self.publisher.publish_plan_change_cancelled(superseded)
        await self.publisher.publish_cancellation_requested(
            request, immediate=terms.is_within_cooling_off, refund_amount=terms.refund_amount
        )
        return CancellationResult(
            cancellation_request=request,
            subscription=subscription,
            retention_offers=offers,
            was_immediate=terms.is_within_cooling_off,
        )

    # ====================
    # Offer Responses
    # ====================

    def _ensure_actionable(self, offer: RetentionOffer, now: datetime) -> None:
        if offer.status != RetentionOfferStatus.PENDING:
            raise OfferNotActionableError(offer.offer_id, offer.status)
        if offer.expires_at <= now:
            raise OfferNotActionableError(offer.offer_id, RetentionOfferStatus.EXPIRED)

    async def accept_retention_offer(self, offer_id: str) -> RetentionOfferAcceptance:
        """
        Accept an offer: the request is SAVED, the subscription and contract
        leave the notice period, the benefit is applied and every sibling
        offer is declined.

        Discount and downgrade benefits are applied by billing and plan
        change consumers of the acceptance event.

        Raises:
            RetentionOfferNotFoundError: unknown offer
            OfferNotActionableError: offer is expired or already responded to
            InvalidStateError: no cancellation in notice period for the subscription
        """
        now = self._now()
        offer = await self._get_offer(offer_id)
        self._ensure_actionable(offer, now)

        subscription = await self._get_subscription(offer.subscription_id)
        request = await self.repository.get_pending_cancellation(subscription.subscription_id)
        if request is None or request.status != CancellationRequestStatus.IN_NOTICE_PERIOD:
            raise InvalidStateError(
                "Cancellation request",
                request.status if request else "missing",
                "accept retention offer",
            )
        contract = await self._resolve_contract(request.contract_id)

        accepted = offer.model_copy(update={"status": RetentionOfferStatus.ACCEPTED, "responded_at": now})
        request = request.model_copy(update={
            "status": CancellationRequestStatus.SAVED,
            "saved_by_offer_id": offer.offer_id,
        })
        subscription = subscriptions.withdraw_cancellation(subscription, now)

        uow = UnitOfWork("accept_retention_offer")
        uow.save_retention_offer(accepted)
        uow.save_cancellation_request(request)
        uow.save_subscription(subscription)
        if contract is not None:
            uow.save_contract(contracts.withdraw_cancellation_request(contract, now))

        grant = None
        if accepted.offer_type == RetentionOfferType.FREE_FREEZE and accepted.freeze_days:
            balance = await self.repository.get_freeze_balance(subscription.subscription_id)
            balance, grant = credit_freeze_balance(
                balance,
                subscription,
                accepted.freeze_days,
                FreezeSource.RETENTION_OFFER,
                now,
                reference_id=accepted.offer_id,
            )
            uow.save_freeze_balance(balance)
            uow.append_freeze_grant(grant)

        declined_ids = []
        for sibling in await self.repository.list_pending_offers(subscription.subscription_id):
            if sibling.offer_id == accepted.offer_id:
                continue
            uow.save_retention_offer(sibling.model_copy(update={
                "status": RetentionOfferStatus.DECLINED,
                "responded_at": now,
            }))
            declined_ids.append(sibling.offer_id)

        await self.repository.commit(uow)

        logger.info(
            f"Member saved: offer {accepted.offer_id} ({accepted.offer_type.value}) accepted for "
            f"subscription {subscription.subscription_id}; {len(declined_ids)} sibling offers declined"
        )
        await self.publisher.publish_retention_offer_accepted(accepted, declined_ids)
        if grant is not None:
            await self.publisher.publish_freeze_days_credited(grant, subscription.member_id)
        return RetentionOfferAcceptance(
            offer=accepted,
            cancellation_request=request,
            subscription=subscription,
            declined_offer_ids=declined_ids,
        )

    async def decline_retention_offer(self, offer_id: str) -> RetentionOffer:
        now = self._now()
        offer = await self._get_offer(offer_id)
        self._ensure_actionable(offer, now)

        declined = offer.model_copy(update={"status": RetentionOfferStatus.DECLINED, "responded_at": now})
        uow = UnitOfWork("decline_retention_offer")
        uow.save_retention_offer(declined)
        await self.repository.commit(uow)

        logger.info(f"Retention offer {offer_id} declined")
        await self.publisher.publish_retention_offer_declined(declined)
        return declined

    # ====================
    # Withdrawal and Completion
    # ====================

    async def withdraw_cancellation(self, request_id: str, reason: Optional[str] = None) -> CancellationRequest:
        """
        Member changed their mind: the request is WITHDRAWN, the subscription
        and contract return to active and remaining offers expire.
        """
        now = self._now()
        request = await self._get_request(request_id)
        if request.status not in NON_TERMINAL_CANCELLATION_STATUSES:
            raise InvalidStateError("Cancellation request", request.status, "withdraw cancellation")

        subscription = subscriptions.withdraw_cancellation(
            await self._get_subscription(request.subscription_id), now
        )
        contract = await self._resolve_contract(request.contract_id)

        request = request.model_copy(update={
            "status": CancellationRequestStatus.WITHDRAWN,
            "withdrawal_reason": reason,
            "withdrawn_at": now,
        })

        uow = UnitOfWork("withdraw_cancellation")
        uow.save_cancellation_request(request)
        uow.save_subscription(subscription)
        if contract is not None:
            uow.save_contract(contracts.withdraw_cancellation_request(contract, now))
        for offer in await self.repository.list_pending_offers(request.subscription_id):
            uow.save_retention_offer(offer.model_copy(update={"status": RetentionOfferStatus.EXPIRED}))
        await self.repository.commit(uow)

        logger.info(f"Cancellation {request_id} withdrawn")
        await self.publisher.publish_cancellation_withdrawn(request)
        return request

    async def complete_cancellation(self, request_id: str) -> CancellationRequest:
        """
        Finish a cancellation whose notice period has elapsed.

        Request, subscription (with a reactivation window) and any linked
        contract are committed together.

        Raises:
            InvalidStateError: request is not IN_NOTICE_PERIOD
        """
        now = self._now()
        today = self._today()
        request = await self._get_request(request_id)
        if request.status != CancellationRequestStatus.IN_NOTICE_PERIOD:
            raise InvalidStateError("Cancellation request", request.status, "complete cancellation")

        subscription = await self._get_subscription(request.subscription_id)
        contract = await self._resolve_contract(request.contract_id)

        request = request.model_copy(update={
            "status": CancellationRequestStatus.COMPLETED,
            "completed_at": now,
        })
        subscription = subscriptions.complete_cancellation(subscription, today, now)
        subscription = subscriptions.open_reactivation_window(
            subscription, today, now, self.config.reactivation_window_days
        )

        uow = UnitOfWork("complete_cancellation")
        uow.save_cancellation_request(request)
        uow.save_subscription(subscription)
        if contract is not None:
            uow.save_contract(contracts.complete_cancellation(contract, today, now))
        await self.repository.commit(uow)

        logger.info(f"Cancellation {request_id} completed; subscription {subscription.subscription_id} cancelled")
        await self.publisher.publish_cancellation_completed(request)
        return request

    async def process_completed_cancellations(self, exclude_ids: Sequence[str] = ()) -> BatchRunSummary:
        """
        Complete one page of due cancellations (daily job).

        Each request is completed independently: a failure is logged and the
        request is left IN_NOTICE_PERIOD so the next run selects it again.

        Args:
            exclude_ids: requests that already failed earlier in this run

        Returns:
            Summary of processed and failed request ids
        """
        today = self._today()
        due = await self.repository.get_cancellations_due(
            today, limit=self.config.batch_page_size, exclude_ids=exclude_ids
        )
        summary = BatchRunSummary(job="complete_due_cancellations")

        for request in due:
            try:
                await self.complete_cancellation(request.request_id)
                summary.processed.append(request.request_id)
            except Exception as e:
                logger.error(f"Failed to complete cancellation {request.request_id}: {e}", exc_info=True)
                summary.failed[request.request_id] = str(e)

        logger.info(
            f"Due cancellations: {summary.processed_count} completed, {summary.failed_count} failed"
        )
        return summary

    async def expire_retention_offers(self, exclude_ids: Sequence[str] = ()) -> BatchRunSummary:
        """Mark PENDING offers past their expiry as EXPIRED (hourly job)"""
        now = self._now()
        stale = await self.repository.list_offers_past_expiry(
            now, limit=self.config.batch_page_size, exclude_ids=exclude_ids
        )
        summary = BatchRunSummary(job="expire_retention_offers")

        for offer in stale:
            try:
                uow = UnitOfWork("expire_retention_offer")
                uow.save_retention_offer(offer.model_copy(update={"status": RetentionOfferStatus.EXPIRED}))
                await self.repository.commit(uow)
                summary.processed.append(offer.offer_id)
            except Exception as e:
                logger.error(f"Failed to expire retention offer {offer.offer_id}: {e}", exc_info=True)
                summary.failed[offer.offer_id] = str(e)

        if summary.processed:
            await self.publisher.publish_retention_offers_expired(summary.processed)
        return summary

    # ====================
    # Auxiliary Operations
    # ====================

    async def submit_exit_survey(self, command: ExitSurveyCommand) -> ExitSurvey:
        """
        Record the exit survey (one per subscription) and link it to any
        pending cancellation request.

        Raises:
            ValidationFailureError: a survey was already submitted
        """
        now = self._now()
        subscription = await self._get_subscription(command.subscription_id)
        if await self.repository.get_exit_survey_by_subscription(subscription.subscription_id):
            raise ValidationFailureError(
                f"Exit survey already submitted for subscription {subscription.subscription_id}"
            )

        pending = await self.repository.get_pending_cancellation(subscription.subscription_id)
        survey = ExitSurvey(
            survey_id=f"svy_{uuid.uuid4().hex[:16]}",
            member_id=subscription.member_id,
            contract_id=subscription.contract_id,
            cancellation_request_id=pending.request_id if pending else None,
            submitted_at=now,
            **command.model_dump(),
        )

        uow = UnitOfWork("submit_exit_survey")
        uow.save_exit_survey(survey)
        if pending is not None:
            uow.save_cancellation_request(pending.model_copy(update={"exit_survey_id": survey.survey_id}))
        await self.repository.commit(uow)

        logger.info(f"Exit survey {survey.survey_id} submitted for subscription {subscription.subscription_id}")
        await self.publisher.publish_exit_survey_submitted(survey)
        return survey

    async def waive_termination_fee(self, request_id: str, waived_by: str, reason: str) -> CancellationRequest:
        """
        Waive the early termination fee on a request.

        Raises:
            InvalidStateError: request was withdrawn or saved
            ValidationFailureError: no fee to waive, or already waived
        """
        now = self._now()
        request = await self._get_request(request_id)
        if request.status not in self.FEE_WAIVABLE_STATUSES:
            raise InvalidStateError("Cancellation request", request.status, "waive termination fee")
        if not request.early_termination_fee:
            raise ValidationFailureError(f"Cancellation {request_id} has no termination fee")
        if request.fee_waived:
            raise ValidationFailureError(f"Termination fee on {request_id} is already waived")

        request = request.model_copy(update={
            "fee_waived": True,
            "fee_waived_by": waived_by,
            "fee_waived_reason": reason,
            "fee_waived_at": now,
        })
        uow = UnitOfWork("waive_termination_fee")
        uow.save_cancellation_request(request)
        await self.repository.commit(uow)

        logger.info(f"Termination fee {request.early_termination_fee} waived on {request_id} by {waived_by}")
        await self.publisher.publish_termination_fee_waived(request)
        return request

    # ====================
    # Queries
    # ====================

    async def get_cancellation_request(self, request_id: str) -> CancellationRequest:
        return await self._get_request(request_id)

    async def get_pending_cancellation(self, subscription_id: str) -> Optional[CancellationRequest]:
        return await self.repository.get_pending_cancellation(subscription_id)

    async def get_cancellations_by_status(
        self, status: CancellationRequestStatus, limit: int = 100, offset: int = 0
    ) -> List[CancellationRequest]:
        return await self.repository.list_cancellations_by_status(status, limit, offset)

    async def get_retention_rate(
        self, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> float:
        """Saved episodes as a percentage of saved plus completed episodes"""
        counts = await self.repository.count_cancellations_by_status(since, until)
        saved = counts.get(CancellationRequestStatus.SAVED.value, 0)
        completed = counts.get(CancellationRequestStatus.COMPLETED.value, 0)
        if saved + completed == 0:
            return 0.0
        return round(saved * 100.0 / (saved + completed), 2)

    async def get_exit_survey_analytics(self) -> ExitSurveyAnalytics:
        surveys = await self.repository.list_exit_surveys()
        reason_stats = {}
        nps_distribution = {}
        nps_scores = []
        for survey in surveys:
            key = survey.reason_category.value
            reason_stats[key] = reason_stats.get(key, 0) + 1
            if survey.nps_score is not None:
                nps_scores.append(survey.nps_score)
                nps_distribution[survey.nps_score] = nps_distribution.get(survey.nps_score, 0) + 1

        return ExitSurveyAnalytics(
            reason_stats=reason_stats,
            average_nps=round(sum(nps_scores) / len(nps_scores), 2) if nps_scores else 0.0,
            nps_distribution=nps_distribution,
            total_surveys=len(surveys),
        )
