"""Initial schema for ticketsync.

Revision ID: 1f0c6a2d9e57
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "1f0c6a2d9e57"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "sync_checkpoints",
        sa.Column("entity_type", sa.String(length=50), primary_key=True, nullable=False),
        sa.Column("cursor", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), server_default="idle", nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("records_synced", sa.BigInteger(), server_default=sa.text("0"), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        if_not_exists=True,
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=True),
        sa.Column("priority", sa.String(length=50), nullable=True),
        sa.Column("request_type", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requester_id", sa.BigInteger(), nullable=True),
        sa.Column("assignee_id", sa.BigInteger(), nullable=True),
        sa.Column("organization_id", sa.BigInteger(), nullable=True),
        sa.Column("group_id", sa.BigInteger(), nullable=True),
        sa.Column("tags", JSONB(), nullable=True),
        sa.Column("custom_fields", JSONB(), nullable=True),
        sa.Column("metric_set", JSONB(), nullable=True),
        sa.Column("reply_count", sa.Integer(), nullable=True),
        sa.Column("reopens", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("first_reply_time_minutes", sa.Integer(), nullable=True),
        sa.Column("full_resolution_time_minutes", sa.Integer(), nullable=True),
        sa.Column("agent_wait_time_minutes", sa.Integer(), nullable=True),
        sa.Column("requester_wait_time_minutes", sa.Integer(), nullable=True),
        sa.Column("on_hold_time_minutes", sa.Integer(), nullable=True),
        if_not_exists=True,
    )
    op.create_index("ix_tickets_status", "tickets", ["status"], if_not_exists=True)
    op.create_index("ix_tickets_created_at", "tickets", ["created_at"], if_not_exists=True)
    op.create_index("ix_tickets_updated_at", "tickets", ["updated_at"], if_not_exists=True)
    op.create_index("ix_tickets_assignee_id", "tickets", ["assignee_id"], if_not_exists=True)
    op.create_index(
        "ix_tickets_organization_id", "tickets", ["organization_id"], if_not_exists=True
    )
    op.create_index("ix_tickets_group_id", "tickets", ["group_id"], if_not_exists=True)
    op.create_index(
        "idx_tickets_status_updated", "tickets", ["status", "updated_at"], if_not_exists=True
    )

    op.create_table(
        "organizations",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("domain_names", JSONB(), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tags", JSONB(), nullable=True),
        if_not_exists=True,
    )

    op.create_table(
        "agents",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=True),
        sa.Column("suspended", sa.Boolean(), nullable=True),
        sa.Column("tags", JSONB(), nullable=True),
        if_not_exists=True,
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted", sa.Boolean(), nullable=True),
        if_not_exists=True,
    )

    op.create_table(
        "aggregation_log",
        sa.Column("aggregation_type", sa.String(length=20), nullable=False),
        sa.Column("period", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("records_created", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("aggregation_type", "period"),
        if_not_exists=True,
    )

    op.create_table(
        "analytics_daily",
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("organization_id", sa.BigInteger(), nullable=False),
        sa.Column("agent_id", sa.BigInteger(), nullable=False),
        sa.Column("group_id", sa.BigInteger(), nullable=False),
        sa.Column("priority", sa.String(length=50), nullable=False),
        sa.Column("tickets_created", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("tickets_solved", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("tickets_closed", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("tickets_reopened", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("total_time_minutes", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column(
            "billable_time_minutes", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column("avg_first_reply_minutes", sa.Integer(), nullable=True),
        sa.Column("avg_full_resolution_minutes", sa.Integer(), nullable=True),
        sa.Column("avg_agent_wait_minutes", sa.Integer(), nullable=True),
        sa.Column("avg_requester_wait_minutes", sa.Integer(), nullable=True),
        sa.Column("sla_met", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("sla_breached", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("one_touch_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("two_touch_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("multi_touch_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.PrimaryKeyConstraint("day", "organization_id", "agent_id", "group_id", "priority"),
        if_not_exists=True,
    )

    op.create_table(
        "analytics_agent_weekly",
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("agent_id", sa.BigInteger(), nullable=False),
        sa.Column("tickets_solved", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("tickets_touched", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("total_hours", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("avg_resolution_minutes", sa.Integer(), nullable=True),
        sa.Column("avg_first_reply_minutes", sa.Integer(), nullable=True),
        sa.Column("sla_compliance_rate", sa.Float(), nullable=True),
        sa.Column("one_touch_rate", sa.Float(), nullable=True),
        sa.Column("two_touch_rate", sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint("week_start", "agent_id"),
        if_not_exists=True,
    )

    op.create_table(
        "analytics_org_monthly",
        sa.Column("month", sa.Date(), nullable=False),
        sa.Column("organization_id", sa.BigInteger(), nullable=False),
        sa.Column("tickets_created", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("tickets_solved", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("total_hours", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("billable_hours", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("avg_resolution_hours", sa.Float(), nullable=True),
        sa.Column("sla_compliance_rate", sa.Float(), nullable=True),
        sa.Column("one_touch_rate", sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint("month", "organization_id"),
        if_not_exists=True,
    )


def downgrade() -> None:
    op.drop_table("analytics_org_monthly", if_exists=True)
    op.drop_table("analytics_agent_weekly", if_exists=True)
    op.drop_table("analytics_daily", if_exists=True)
    op.drop_table("aggregation_log", if_exists=True)
    op.drop_table("groups", if_exists=True)
    op.drop_table("agents", if_exists=True)
    op.drop_table("organizations", if_exists=True)
    op.drop_table("tickets", if_exists=True)
    op.drop_table("sync_checkpoints", if_exists=True)
