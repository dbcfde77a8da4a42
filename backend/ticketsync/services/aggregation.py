"""
Pre-aggregation of synced tickets into daily, weekly and monthly rollups.

Every run recomputes a whole period from the ``tickets`` table and overwrites
the period's rollup rows, so running the same period twice gives the same
result. Progress of each (type, period) run is kept in ``aggregation_log``.
"""

import logging
from collections import Counter, defaultdict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsync.database import Base, upsert
from ticketsync.models import (
    AgentWeeklyAnalytics,
    AggregationLog,
    DailyAnalytics,
    OrgMonthlyAnalytics,
    Ticket,
)
from ticketsync.models.analytics import NO_ID, NO_PRIORITY
from ticketsync.services.dates import (
    as_utc,
    day_bounds,
    iter_days,
    month_start_of,
    next_month,
    previous_day,
    previous_month_start,
    previous_week_start,
    utc_now,
    week_start_of,
)

logger = logging.getLogger(__name__)

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
AGGREGATION_TYPES = (DAILY, WEEKLY, MONTHLY)

STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"

RESOLVED_STATUSES = ("solved", "closed")

# First-reply SLA targets in business minutes
SLA_THRESHOLDS_MINUTES = {
    "urgent": 60,
    "high": 240,
    "normal": 480,
}
DEFAULT_SLA_THRESHOLD_MINUTES = 1440


def sla_threshold_minutes(priority: str | None) -> int:
    return SLA_THRESHOLDS_MINUTES.get(priority or "", DEFAULT_SLA_THRESHOLD_MINUTES)


def sla_met(ticket: Ticket) -> bool | None:
    """
    Whether a resolved ticket met its first-reply SLA.

    None when the ticket is not solved/closed or has no first-reply time.
    """
    if ticket.status not in RESOLVED_STATUSES or ticket.first_reply_time_minutes is None:
        return None
    return ticket.first_reply_time_minutes <= sla_threshold_minutes(ticket.priority)


def touch_bucket(reply_count: int | None) -> str:
    """Classify by agent replies: 'one' (0 or 1), 'two' or 'multi'."""
    replies = reply_count or 0
    if replies <= 1:
        return "one"
    if replies == 2:
        return "two"
    return "multi"


def is_billable(tags: Iterable[str] | None) -> bool:
    return any("billable" in str(tag).lower() for tag in tags or [])


def round_half_up(value: Decimal, places: int = 0) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def average(values: Iterable[int | None], places: int = 0, divisor: int = 1) -> int | float | None:
    """Mean of the positive values (optionally divided by ``divisor``), rounded half-up."""
    kept = [v for v in values if v is not None and v > 0]
    if not kept:
        return None
    mean = Decimal(sum(kept)) / Decimal(len(kept)) / Decimal(divisor)
    rounded = round_half_up(mean, places)
    return int(rounded) if places == 0 else float(rounded)


def hours(minutes: int) -> float:
    return float(round_half_up(Decimal(minutes) / Decimal(60), 2))


def rate(numerator: int, denominator: int) -> float | None:
    """Percentage with one decimal; None when there is nothing to divide by."""
    if denominator == 0:
        return None
    return float(round_half_up(Decimal(numerator) * 100 / Decimal(denominator), 1))


def _in_range(value: datetime | None, start: datetime, end: datetime) -> bool:
    value = as_utc(value)
    return value is not None and start <= value < end


def _sum_minutes(tickets: Iterable[Ticket], billable_only: bool = False) -> int:
    return sum(
        t.agent_wait_time_minutes or 0
        for t in tickets
        if not billable_only or is_billable(t.tags)
    )


def _sla_counts(resolved: list[Ticket]) -> tuple[int, int]:
    """(met, breached) among resolved tickets that have a first-reply time."""
    outcomes = [sla_met(t) for t in resolved]
    return outcomes.count(True), outcomes.count(False)


def compute_daily_rows(tickets: Iterable[Ticket], day: date) -> list[dict[str, Any]]:
    """
    Daily rollup per (organization, agent, group, priority).

    A ticket counts towards ``day`` when it was created that day, or was
    solved/closed and last updated that day.
    """
    start, end = day_bounds(day)
    grouped: dict[tuple, list[Ticket]] = defaultdict(list)

    for ticket in sorted(tickets, key=lambda t: t.id):
        created = _in_range(ticket.created_at, start, end)
        resolved_today = ticket.status in RESOLVED_STATUSES and _in_range(
            ticket.updated_at, start, end
        )
        if not (created or resolved_today):
            continue
        key = (
            ticket.organization_id or NO_ID,
            ticket.assignee_id or NO_ID,
            ticket.group_id or NO_ID,
            ticket.priority or NO_PRIORITY,
        )
        grouped[key].append(ticket)

    rows = []
    for key in sorted(grouped):
        items = grouped[key]
        resolved = [t for t in items if t.status in RESOLVED_STATUSES]
        met, breached = _sla_counts(resolved)
        touches = Counter(touch_bucket(t.reply_count) for t in resolved)
        organization_id, agent_id, group_id, priority = key

        rows.append(
            {
                "day": day,
                "organization_id": organization_id,
                "agent_id": agent_id,
                "group_id": group_id,
                "priority": priority,
                "tickets_created": sum(1 for t in items if _in_range(t.created_at, start, end)),
                "tickets_solved": sum(
                    1
                    for t in items
                    if t.status == "solved" and _in_range(t.updated_at, start, end)
                ),
                "tickets_closed": sum(
                    1
                    for t in items
                    if t.status == "closed" and _in_range(t.updated_at, start, end)
                ),
                "tickets_reopened": sum(t.reopens or 0 for t in items),
                "total_time_minutes": _sum_minutes(items),
                "billable_time_minutes": _sum_minutes(items, billable_only=True),
                "avg_first_reply_minutes": average(t.first_reply_time_minutes for t in items),
                "avg_full_resolution_minutes": average(
                    t.full_resolution_time_minutes for t in items
                ),
                "avg_agent_wait_minutes": average(t.agent_wait_time_minutes for t in items),
                "avg_requester_wait_minutes": average(
                    t.requester_wait_time_minutes for t in items
                ),
                "sla_met": met,
                "sla_breached": breached,
                "one_touch_count": touches["one"],
                "two_touch_count": touches["two"],
                "multi_touch_count": touches["multi"],
            }
        )
    return rows


def compute_weekly_rows(tickets: Iterable[Ticket], week_start: date) -> list[dict[str, Any]]:
    """Weekly agent performance for assigned tickets updated during the week."""
    start, _ = day_bounds(week_start)
    end = start + timedelta(days=7)
    grouped: dict[int, list[Ticket]] = defaultdict(list)

    for ticket in sorted(tickets, key=lambda t: t.id):
        if ticket.assignee_id is None or not _in_range(ticket.updated_at, start, end):
            continue
        grouped[ticket.assignee_id].append(ticket)

    rows = []
    for agent_id in sorted(grouped):
        items = grouped[agent_id]
        resolved = [t for t in items if t.status in RESOLVED_STATUSES]
        met, breached = _sla_counts(resolved)
        touches = Counter(touch_bucket(t.reply_count) for t in resolved)

        rows.append(
            {
                "week_start": week_start,
                "agent_id": agent_id,
                "tickets_solved": len(resolved),
                "tickets_touched": len(items),
                "total_hours": hours(_sum_minutes(items)),
                "avg_resolution_minutes": average(t.full_resolution_time_minutes for t in items),
                "avg_first_reply_minutes": average(t.first_reply_time_minutes for t in items),
                "sla_compliance_rate": rate(met, met + breached),
                "one_touch_rate": rate(touches["one"], len(resolved)),
                "two_touch_rate": rate(touches["two"], len(resolved)),
            }
        )
    return rows


def compute_monthly_rows(tickets: Iterable[Ticket], month: date) -> list[dict[str, Any]]:
    """Monthly organization performance for tickets updated during the month."""
    start, _ = day_bounds(month)
    end, _ = day_bounds(next_month(month))
    grouped: dict[int, list[Ticket]] = defaultdict(list)

    for ticket in sorted(tickets, key=lambda t: t.id):
        if ticket.organization_id is None or not _in_range(ticket.updated_at, start, end):
            continue
        grouped[ticket.organization_id].append(ticket)

    rows = []
    for organization_id in sorted(grouped):
        items = grouped[organization_id]
        resolved = [t for t in items if t.status in RESOLVED_STATUSES]
        met, breached = _sla_counts(resolved)
        one_touch = sum(1 for t in resolved if touch_bucket(t.reply_count) == "one")

        rows.append(
            {
                "month": month,
                "organization_id": organization_id,
                "tickets_created": sum(1 for t in items if _in_range(t.created_at, start, end)),
                "tickets_solved": len(resolved),
                "total_hours": hours(_sum_minutes(items)),
                "billable_hours": hours(_sum_minutes(items, billable_only=True)),
                "avg_resolution_hours": average(
                    (t.full_resolution_time_minutes for t in items), places=2, divisor=60
                ),
                "sla_compliance_rate": rate(met, met + breached),
                "one_touch_rate": rate(one_touch, len(resolved)),
            }
        )
    return rows


@dataclass(frozen=True)
class RollupSpec:
    model: type[Base]
    period_column: str
    key_columns: tuple[str, ...]


ROLLUPS = {
    DAILY: RollupSpec(
        DailyAnalytics, "day", ("organization_id", "agent_id", "group_id", "priority")
    ),
    WEEKLY: RollupSpec(AgentWeeklyAnalytics, "week_start", ("agent_id",)),
    MONTHLY: RollupSpec(OrgMonthlyAnalytics, "month", ("organization_id",)),
}


@dataclass
class AggregationResult:
    aggregation_type: str
    period: date
    success: bool
    records: int = 0
    error: str | None = None


@dataclass
class BackfillResult:
    start: date
    end: date
    days: int = 0
    records: int = 0
    failed_days: list[date] = field(default_factory=list)


class AggregationService:
    """Runs rollups for one period at a time against a single session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_tickets(self, *criteria) -> list[Ticket]:
        result = await self.db.execute(select(Ticket).where(*criteria).order_by(Ticket.id))
        return list(result.scalars().all())

    async def _start_log(self, aggregation_type: str, period: date) -> None:
        values = {
            "aggregation_type": aggregation_type,
            "period": period,
            "status": STATUS_RUNNING,
            "started_at": utc_now(),
            "completed_at": None,
            "records_created": 0,
            "error_message": None,
        }
        stmt = upsert(self.db, AggregationLog, values, ["aggregation_type", "period"])
        await self.db.execute(stmt)
        await self.db.commit()

    async def _finish_log(self, aggregation_type: str, period: date, **values) -> None:
        await self.db.execute(
            update(AggregationLog)
            .where(
                AggregationLog.aggregation_type == aggregation_type,
                AggregationLog.period == period,
            )
            .values(completed_at=utc_now(), **values)
        )

    async def _store_rows(self, spec: RollupSpec, period: date, rows: list[dict]) -> None:
        """Upsert the period's rows and drop dimension combinations that vanished."""
        conflict_columns = [spec.period_column, *spec.key_columns]
        for row in rows:
            await self.db.execute(upsert(self.db, spec.model, row, conflict_columns))

        period_col = getattr(spec.model, spec.period_column)
        key_cols = [getattr(spec.model, c) for c in spec.key_columns]
        produced = {tuple(row[c] for c in spec.key_columns) for row in rows}

        existing = await self.db.execute(select(*key_cols).where(period_col == period))
        for stale in existing.all():
            if tuple(stale) in produced:
                continue
            await self.db.execute(
                delete(spec.model).where(
                    period_col == period,
                    *[col == value for col, value in zip(key_cols, stale)],
                )
            )

    async def _run(
        self,
        aggregation_type: str,
        period: date,
        compute: Callable[[], Awaitable[list[dict[str, Any]]]],
    ) -> AggregationResult:
        logger.info(f"Starting {aggregation_type} aggregation for {period}")

        await self._start_log(aggregation_type, period)

        try:
            rows = await compute()
            await self._store_rows(ROLLUPS[aggregation_type], period, rows)
            await self._finish_log(
                aggregation_type,
                period,
                status=STATUS_SUCCESS,
                records_created=len(rows),
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"{aggregation_type} aggregation failed for {period}: {e}", exc_info=True
            )
            await self._finish_log(
                aggregation_type,
                period,
                status=STATUS_ERROR,
                error_message=str(e) or repr(e),
            )
            await self.db.commit()
            return AggregationResult(aggregation_type, period, success=False, error=str(e))

        logger.info(f"{aggregation_type} aggregation complete: {len(rows)} records for {period}")
        return AggregationResult(aggregation_type, period, success=True, records=len(rows))

    async def aggregate_daily(self, day: date | None = None) -> AggregationResult:
        """Aggregate one day (default: yesterday, UTC)."""
        day = day or previous_day(utc_now().date())
        start, end = day_bounds(day)

        async def compute() -> list[dict[str, Any]]:
            tickets = await self._load_tickets(
                or_(
                    and_(Ticket.created_at >= start, Ticket.created_at < end),
                    and_(
                        Ticket.status.in_(RESOLVED_STATUSES),
                        Ticket.updated_at >= start,
                        Ticket.updated_at < end,
                    ),
                )
            )
            return compute_daily_rows(tickets, day)

        return await self._run(DAILY, day, compute)

    async def aggregate_weekly(self, week_start: date | None = None) -> AggregationResult:
        """Aggregate agent performance for a Monday-start week (default: last week)."""
        week_start = week_start_of(week_start or previous_week_start(utc_now().date()))
        start, _ = day_bounds(week_start)
        end = start + timedelta(days=7)

        async def compute() -> list[dict[str, Any]]:
            tickets = await self._load_tickets(
                Ticket.assignee_id.is_not(None),
                Ticket.updated_at >= start,
                Ticket.updated_at < end,
            )
            return compute_weekly_rows(tickets, week_start)

        return await self._run(WEEKLY, week_start, compute)

    async def aggregate_monthly(self, month: date | None = None) -> AggregationResult:
        """Aggregate organization performance for a month (default: last month)."""
        month = month_start_of(month or previous_month_start(utc_now().date()))
        start, _ = day_bounds(month)
        end, _ = day_bounds(next_month(month))

        async def compute() -> list[dict[str, Any]]:
            tickets = await self._load_tickets(
                Ticket.organization_id.is_not(None),
                Ticket.updated_at >= start,
                Ticket.updated_at < end,
            )
            return compute_monthly_rows(tickets, month)

        return await self._run(MONTHLY, month, compute)

    async def aggregate(self, aggregation_type: str, period: date | None = None) -> AggregationResult:
        """Dispatch by aggregation type name."""
        if aggregation_type == DAILY:
            return await self.aggregate_daily(period)
        if aggregation_type == WEEKLY:
            return await self.aggregate_weekly(period)
        if aggregation_type == MONTHLY:
            return await self.aggregate_monthly(period)
        raise ValueError(f"Unknown aggregation type: {aggregation_type}")

    async def backfill_daily(self, start: date, end: date) -> BackfillResult:
        """Run the daily aggregation for every day in [start, end]."""
        if start > end:
            raise ValueError(f"Backfill start {start} is after end {end}")

        logger.info(f"Backfilling daily analytics from {start} to {end}")
        result = BackfillResult(start=start, end=end)

        for day in iter_days(start, end):
            outcome = await self.aggregate_daily(day)
            if outcome.success:
                result.records += outcome.records
            else:
                result.failed_days.append(day)
            result.days += 1

            if result.days % 7 == 0:
                logger.info(f"Processed {result.days} days, {result.records} total records...")

        logger.info(f"Backfill complete: {result.days} days, {result.records} records")
        return result

    async def get_log(self, aggregation_type: str, period: date) -> AggregationLog | None:
        result = await self.db.execute(
            select(AggregationLog).where(
                AggregationLog.aggregation_type == aggregation_type,
                AggregationLog.period == period,
            )
        )
        return result.scalar_one_or_none()

    async def get_aggregation_status(self) -> list[dict[str, Any]]:
        """Per aggregation type: last period, success/error counts, last completion."""
        stmt = (
            select(
                AggregationLog.aggregation_type,
                func.max(AggregationLog.period).label("last_processed"),
                func.sum(case((AggregationLog.status == STATUS_SUCCESS, 1), else_=0)).label(
                    "success_count"
                ),
                func.sum(case((AggregationLog.status == STATUS_ERROR, 1), else_=0)).label(
                    "error_count"
                ),
                func.max(AggregationLog.completed_at).label("last_completed"),
            )
            .group_by(AggregationLog.aggregation_type)
            .order_by(AggregationLog.aggregation_type)
        )
        result = await self.db.execute(stmt)
        return [dict(row._mapping) for row in result.all()]
