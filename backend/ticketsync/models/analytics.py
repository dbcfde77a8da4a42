"""Aggregation run log and pre-computed analytics rollups."""

from datetime import date, datetime

from sqlalchemy import BigInteger, Date, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ticketsync.database import Base

# Dimension values are part of the rollup primary keys, so they cannot be NULL.
NO_ID = 0
NO_PRIORITY = "none"


class AggregationLog(Base):
    """
    One row per (aggregation type, period) processed.

    Reprocessing a period overwrites its row, which makes the table a cheap
    status view for monitoring and backfills.
    """

    __tablename__ = "aggregation_log"

    aggregation_type: Mapped[str] = mapped_column(String(20), primary_key=True)
    period: Mapped[date] = mapped_column(Date, primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # running, success, error
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    records_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<AggregationLog {self.aggregation_type} {self.period}: {self.status}>"


class DailyAnalytics(Base):
    """Daily ticket rollup per (organization, agent, group, priority)."""

    __tablename__ = "analytics_daily"

    day: Mapped[date] = mapped_column(Date, primary_key=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    agent_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    group_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    priority: Mapped[str] = mapped_column(String(50), primary_key=True)

    # Volume
    tickets_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tickets_solved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tickets_closed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tickets_reopened: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Time (minutes)
    total_time_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    billable_time_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_first_reply_minutes: Mapped[int | None] = mapped_column(Integer)
    avg_full_resolution_minutes: Mapped[int | None] = mapped_column(Integer)
    avg_agent_wait_minutes: Mapped[int | None] = mapped_column(Integer)
    avg_requester_wait_minutes: Mapped[int | None] = mapped_column(Integer)

    # SLA and touches
    sla_met: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sla_breached: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    one_touch_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    two_touch_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    multi_touch_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class AgentWeeklyAnalytics(Base):
    """Weekly agent performance (weeks start on Monday)."""

    __tablename__ = "analytics_agent_weekly"

    week_start: Mapped[date] = mapped_column(Date, primary_key=True)
    agent_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    tickets_solved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tickets_touched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_resolution_minutes: Mapped[int | None] = mapped_column(Integer)
    avg_first_reply_minutes: Mapped[int | None] = mapped_column(Integer)
    sla_compliance_rate: Mapped[float | None] = mapped_column(Float)
    one_touch_rate: Mapped[float | None] = mapped_column(Float)
    two_touch_rate: Mapped[float | None] = mapped_column(Float)


class OrgMonthlyAnalytics(Base):
    """Monthly organization performance (month is the first day of the month)."""

    __tablename__ = "analytics_org_monthly"

    month: Mapped[date] = mapped_column(Date, primary_key=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    tickets_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tickets_solved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    billable_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_resolution_hours: Mapped[float | None] = mapped_column(Float)
    sla_compliance_rate: Mapped[float | None] = mapped_column(Float)
    one_touch_rate: Mapped[float | None] = mapped_column(Float)
