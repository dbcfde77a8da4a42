"""Database models."""

from ticketsync.models.agent import Agent
from ticketsync.models.analytics import (
    AgentWeeklyAnalytics,
    AggregationLog,
    DailyAnalytics,
    OrgMonthlyAnalytics,
)
from ticketsync.models.group import Group
from ticketsync.models.organization import Organization
from ticketsync.models.sync_checkpoint import SyncCheckpoint
from ticketsync.models.ticket import Ticket

__all__ = [
    "Agent",
    "AgentWeeklyAnalytics",
    "AggregationLog",
    "DailyAnalytics",
    "Group",
    "OrgMonthlyAnalytics",
    "Organization",
    "SyncCheckpoint",
    "Ticket",
]
