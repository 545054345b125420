"""Add check_in_responses, check_in_alerts, sms_opt_outs, revenue_events.

Revision ID: 002
Revises: 001
Create Date: 2026-09-21

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "check_in_responses",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("assessment_id", sa.String(64), nullable=False),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column("branch", sa.String(8), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("red_flags_matched", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_check_in_responses_assessment_id", "check_in_responses", ["assessment_id"], unique=False)
    op.create_index("ix_check_in_responses_created_at", "check_in_responses", ["created_at"], unique=False)

    op.create_table(
        "check_in_alerts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("assessment_id", sa.String(64), nullable=False),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(32), nullable=False, server_default="red_flag"),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("webhook_status", sa.String(16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_check_in_alerts_assessment_id", "check_in_alerts", ["assessment_id"], unique=False)

    op.create_table(
        "sms_opt_outs",
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("opted_out_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("opt_out_source", sa.String(64), nullable=False),
        sa.PrimaryKeyConstraint("phone_number"),
    )

    op.create_table(
        "revenue_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("assessment_id", sa.String(64), nullable=True),
        sa.Column("stripe_session_id", sa.String(255), nullable=False),
        sa.Column("tier", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("source", sa.String(64), nullable=True),
        sa.Column("checkin_day", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_session_id", name="uq_revenue_events_stripe_session_id"),
    )
    op.create_index("ix_revenue_events_assessment_id", "revenue_events", ["assessment_id"], unique=False)
    op.create_index("ix_revenue_events_source", "revenue_events", ["source"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_revenue_events_source", table_name="revenue_events")
    op.drop_index("ix_revenue_events_assessment_id", table_name="revenue_events")
    op.drop_table("revenue_events")
    op.drop_table("sms_opt_outs")
    op.drop_index("ix_check_in_alerts_assessment_id", table_name="check_in_alerts")
    op.drop_table("check_in_alerts")
    op.drop_index("ix_check_in_responses_created_at", table_name="check_in_responses")
    op.drop_index("ix_check_in_responses_assessment_id", table_name="check_in_responses")
    op.drop_table("check_in_responses")
