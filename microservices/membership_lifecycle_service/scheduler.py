"""
Lifecycle scheduler entry point

    python -m microservices.membership_lifecycle_service.scheduler
    python -m microservices.membership_lifecycle_service.scheduler --once
"""

import argparse
import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.config import InfraConfig, LifecycleConfig
from core.logger import setup_service_logger
from core.nats_client import get_event_bus

from .factory import create_lifecycle_services
from .jobs import LifecycleJobs

logger = setup_service_logger("membership_lifecycle_scheduler")


async def _build_jobs(config: LifecycleConfig, infra: InfraConfig):
    event_bus = None
    if infra.nats_enabled:
        try:
            event_bus = await get_event_bus(config.service_name, infra)
        except Exception as e:
            logger.warning(f"Event bus unavailable, jobs will run without events: {e}")

    services = create_lifecycle_services(config=config, infra_config=infra, event_bus=event_bus)
    await services.repository.initialize()
    return services, event_bus, LifecycleJobs(services.cancellations, services.plan_changes)


def register_jobs(scheduler: AsyncIOScheduler, jobs: LifecycleJobs, config: LifecycleConfig) -> None:
    schedule = [
        ("expire_retention_offers", jobs.run_expire_retention_offers, config.expire_offers_cron),
        ("process_scheduled_plan_changes", jobs.run_due_plan_changes, config.due_plan_changes_cron),
        ("complete_due_cancellations", jobs.run_due_cancellations, config.due_cancellations_cron),
    ]
    for job_id, func, cron in schedule:
        scheduler.add_job(
            func,
            CronTrigger.from_crontab(cron, timezone="UTC"),
            id=job_id,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Scheduled {job_id} ({cron} UTC)")


async def run(once: bool = False) -> None:
    config = LifecycleConfig.from_env()
    infra = InfraConfig.from_env()
    services, event_bus, jobs = await _build_jobs(config, infra)

    try:
        if once:
            for summary in await jobs.run_all():
                logger.info(f"{summary.job}: {summary.processed_count} processed, {summary.failed_count} failed")
            return

        scheduler = AsyncIOScheduler(timezone="UTC")
        register_jobs(scheduler, jobs, config)
        scheduler.start()
        logger.info("Lifecycle scheduler started")

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop.set)
        await stop.wait()

        logger.info("Lifecycle scheduler stopping")
        scheduler.shutdown(wait=False)
    finally:
        await services.repository.close()
        if event_bus is not None:
            await event_bus.close()


def main():
    parser = argparse.ArgumentParser(description="Membership lifecycle batch scheduler")
    parser.add_argument("--once", action="store_true", help="Run every job once and exit")
    args = parser.parse_args()
    asyncio.run(run(once=args.once))


if __name__ == "__main__":
    main()
