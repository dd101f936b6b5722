"""
Lifecycle Jobs

Explicit batch triggers for time-driven lifecycle work. The scheduler (or
an operator, or a test) calls these; nothing here runs on its own.
"""

import logging

from .cancellation_service import CancellationService
from .models import BatchRunSummary
from .plan_change_service import PlanChangeService

logger = logging.getLogger(__name__)

# Upper bound on pages drained per trigger
MAX_PAGES_PER_RUN = 50


def _merge(total: BatchRunSummary, page: BatchRunSummary) -> None:
    total.processed.extend(page.processed)
    total.failed.update(page.failed)


class LifecycleJobs:
    """Batch triggers for due cancellations, due plan changes and offer expiry"""

    def __init__(
        self,
        cancellations: CancellationService,
        plan_changes: PlanChangeService,
    ):
        self.cancellations = cancellations
        self.plan_changes = plan_changes
        self.page_size = cancellations.config.batch_page_size

    async def _drain(self, job: str, run_page) -> BatchRunSummary:
        """
        Run pages until a short page shows the due set is exhausted.

        Completed items leave the due set, so each page re-reads from the
        start with this run's failed ids excluded. Failed items stay due and
        are retried on the next trigger.
        """
        total = BatchRunSummary(job=job)
        for _ in range(MAX_PAGES_PER_RUN):
            page = await run_page(exclude_ids=list(total.failed))
            _merge(total, page)
            if page.attempted_count < self.page_size:
                break
        logger.info(f"[{job}] processed={total.processed_count} failed={total.failed_count}")
        return total

    async def run_due_cancellations(self) -> BatchRunSummary:
        return await self._drain(
            "complete_due_cancellations", self.cancellations.process_completed_cancellations
        )

    async def run_due_plan_changes(self) -> BatchRunSummary:
        return await self._drain(
            "process_scheduled_plan_changes", self.plan_changes.process_scheduled_changes
        )

    async def run_expire_retention_offers(self) -> BatchRunSummary:
        return await self._drain(
            "expire_retention_offers", self.cancellations.expire_retention_offers
        )

    async def run_all(self) -> list:
        return [
            await self.run_expire_retention_offers(),
            await self.run_due_plan_changes(),
            await self.run_due_cancellations(),
        ]
