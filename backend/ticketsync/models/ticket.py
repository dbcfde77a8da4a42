"""Ticket model mirroring Zendesk tickets plus their embedded metric set."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ticketsync.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")
# None is stored as SQL NULL rather than JSON null
NullableJSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class Ticket(Base):
    """
    Local copy of a Zendesk ticket.

    Keyed by the upstream ticket id so re-syncing the same snapshot is a no-op.
    Metric columns hold business-hours values from the ticket's metric set.
    """

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    subject: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str | None] = mapped_column(String(50), index=True)
    priority: Mapped[str | None] = mapped_column(String(50))
    request_type: Mapped[str | None] = mapped_column(String(100))

    # Timestamps
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    # Relations (upstream ids, not enforced as foreign keys)
    requester_id: Mapped[int | None] = mapped_column(BigInteger)
    assignee_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    organization_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    group_id: Mapped[int | None] = mapped_column(BigInteger, index=True)

    tags: Mapped[list[str] | None] = mapped_column(JSONType)
    custom_fields: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType)

    # Metrics
    metric_set: Mapped[dict[str, Any] | None] = mapped_column(NullableJSONType)
    reply_count: Mapped[int | None] = mapped_column(Integer)
    reopens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    first_reply_time_minutes: Mapped[int | None] = mapped_column(Integer)
    full_resolution_time_minutes: Mapped[int | None] = mapped_column(Integer)
    agent_wait_time_minutes: Mapped[int | None] = mapped_column(Integer)
    requester_wait_time_minutes: Mapped[int | None] = mapped_column(Integer)
    on_hold_time_minutes: Mapped[int | None] = mapped_column(Integer)

    __table_args__ = (
        Index("idx_tickets_status_updated", "status", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<Ticket {self.id}: {self.status}>"
