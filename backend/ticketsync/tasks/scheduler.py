"""Background task scheduler for ticket sync and analytics aggregation."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketsync.config import Settings, get_settings
from ticketsync.database import async_session_maker
from ticketsync.services.aggregation import DAILY, MONTHLY, WEEKLY, AggregationService
from ticketsync.services.cache import CacheInvalidator, NullCacheInvalidator
from ticketsync.services.ingestion import (
    AGENTS,
    GROUPS,
    ORGANIZATIONS,
    SNAPSHOT_ENTITY_TYPES,
    TICKETS,
    build_syncer,
)
from ticketsync.services.zendesk_client import ZendeskClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalendarTime:
    """
    A fixed UTC time of day, optionally pinned to a weekday or day of month.

    ``weekday`` follows ``date.weekday()`` (0 = Monday).
    """

    hour: int
    minute: int = 0
    weekday: int | None = None
    day: int | None = None


@dataclass(frozen=True)
class PeriodicTask:
    """A named job that runs either every ``every`` or at a ``CalendarTime``."""

    name: str
    job: Callable[[], Awaitable[None]]
    every: timedelta | None = None
    at: CalendarTime | None = None

    def __post_init__(self):
        if (self.every is None) == (self.at is None):
            raise ValueError(f"Task {self.name} needs exactly one of every/at")


_CRON_WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def build_trigger(task: PeriodicTask) -> BaseTrigger:
    """Translate a task's schedule into an APScheduler trigger (UTC)."""
    if task.every is not None:
        return IntervalTrigger(seconds=task.every.total_seconds(), timezone="UTC")

    at = task.at
    return CronTrigger(
        hour=at.hour,
        minute=at.minute,
        day_of_week=_CRON_WEEKDAYS[at.weekday] if at.weekday is not None else None,
        day=at.day,
        timezone="UTC",
    )


class SyncScheduler:
    """
    Owns the APScheduler instance and the jobs it runs.

    Every job opens its own session and logs (never raises) failures, so one
    broken run cannot stop the schedule or other tasks.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session_maker: async_sessionmaker[AsyncSession] = async_session_maker,
        client_factory: Callable[[], ZendeskClient] = ZendeskClient,
        cache: CacheInvalidator | None = None,
    ):
        self.settings = settings or get_settings()
        self.session_maker = session_maker
        self.client_factory = client_factory
        self.cache = cache or NullCacheInvalidator()
        self.scheduler: AsyncIOScheduler | None = None
        self._initial_pass: asyncio.Task | None = None

    async def run_sync(self, entity_type: str) -> None:
        """Run one syncer; failures are logged and swallowed."""
        logger.info(f"Starting scheduled {entity_type} sync")
        try:
            async with self.session_maker() as db:
                syncer = build_syncer(
                    entity_type, db, client=self.client_factory(), cache=self.cache
                )
                result = await syncer.sync()
                logger.info(f"{entity_type} sync complete: {result.records_synced} records")
        except Exception as e:
            logger.error(f"{entity_type} sync failed: {e}", exc_info=True)

    async def run_aggregation(self, aggregation_type: str) -> None:
        """Run one aggregation for its default period."""
        logger.info(f"Starting scheduled {aggregation_type} aggregation")
        try:
            async with self.session_maker() as db:
                result = await AggregationService(db).aggregate(aggregation_type)
                if not result.success:
                    logger.warning(
                        f"{aggregation_type} aggregation for {result.period} "
                        f"finished with error: {result.error}"
                    )
        except Exception as e:
            logger.error(f"{aggregation_type} aggregation failed: {e}", exc_info=True)

    async def run_initial_pass(self) -> None:
        """Snapshot entities concurrently, then tickets."""
        await asyncio.gather(*(self.run_sync(t) for t in SNAPSHOT_ENTITY_TYPES))
        await self.run_sync(TICKETS)

    async def _delayed_initial_pass(self) -> None:
        delay = random.uniform(
            self.settings.startup_jitter_min_seconds,
            self.settings.startup_jitter_max_seconds,
        )
        logger.info(f"Initial sync pass in {delay:.1f}s")
        await asyncio.sleep(delay)
        await self.run_initial_pass()

    def build_periodic_tasks(self) -> list[PeriodicTask]:
        s = self.settings

        def sync_job(entity_type: str) -> Callable[[], Awaitable[None]]:
            async def job() -> None:
                await self.run_sync(entity_type)

            return job

        def aggregation_job(aggregation_type: str) -> Callable[[], Awaitable[None]]:
            async def job() -> None:
                await self.run_aggregation(aggregation_type)

            return job

        entity_interval = timedelta(minutes=s.entities_poll_interval_minutes)
        return [
            PeriodicTask(
                "sync_tickets",
                sync_job(TICKETS),
                every=timedelta(minutes=s.tickets_poll_interval_minutes),
            ),
            PeriodicTask("sync_organizations", sync_job(ORGANIZATIONS), every=entity_interval),
            PeriodicTask("sync_agents", sync_job(AGENTS), every=entity_interval),
            PeriodicTask("sync_groups", sync_job(GROUPS), every=entity_interval),
            PeriodicTask(
                "aggregate_daily",
                aggregation_job(DAILY),
                at=CalendarTime(hour=s.daily_aggregation_hour),
            ),
            PeriodicTask(
                "aggregate_weekly",
                aggregation_job(WEEKLY),
                at=CalendarTime(hour=s.weekly_aggregation_hour, weekday=0),
            ),
            PeriodicTask(
                "aggregate_monthly",
                aggregation_job(MONTHLY),
                at=CalendarTime(hour=s.monthly_aggregation_hour, day=1),
            ),
        ]

    def start(self, initial_pass: bool = True) -> AsyncIOScheduler:
        """Register every periodic task, start the scheduler and the initial pass."""
        self.scheduler = AsyncIOScheduler(timezone="UTC")

        for task in self.build_periodic_tasks():
            self.scheduler.add_job(
                task.job,
                trigger=build_trigger(task),
                id=task.name,
                name=task.name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")

        if initial_pass:
            self._initial_pass = asyncio.create_task(self._delayed_initial_pass())

        return self.scheduler

    def shutdown(self) -> None:
        """Shut down the scheduler gracefully."""
        if self._initial_pass and not self._initial_pass.done():
            self._initial_pass.cancel()
        self._initial_pass = None

        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")
            self.scheduler = None
