"""Initial schema: users, audit_log, assessments, check_in_queue, message_templates, diagnosis_inserts

Revision ID: 001
Revises:
Create Date: 2026-09-14

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="viewer"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "audit_log",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("resource", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.String(64), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_user_id", "audit_log", ["user_id"], unique=False)
    op.create_index("ix_audit_log_action", "audit_log", ["action"], unique=False)

    op.create_table(
        "assessments",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("guide_type", sa.String(64), nullable=True),
        sa.Column("tier", sa.String(16), nullable=False, server_default="free"),
        sa.Column("sms_opt_in", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sms_opted_out", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("guide_delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_assessments_email", "assessments", ["email"], unique=False)
    op.create_index("ix_assessments_phone_number", "assessments", ["phone_number"], unique=False)

    op.create_table(
        "check_in_queue",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("assessment_id", sa.String(64), nullable=False),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("channel", sa.String(8), nullable=False),
        sa.Column("template_key", sa.String(64), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("provider_message_id", sa.String(255), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("assessment_id", "day", name="uq_check_in_queue_assessment_day"),
    )
    op.create_index("ix_check_in_queue_assessment_id", "check_in_queue", ["assessment_id"], unique=False)
    op.create_index("ix_check_in_queue_due_at", "check_in_queue", ["due_at"], unique=False)
    op.create_index("ix_check_in_queue_status", "check_in_queue", ["status"], unique=False)

    op.create_table(
        "message_templates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("channel", sa.String(8), nullable=False),
        sa.Column("subject", sa.String(255), nullable=True),
        sa.Column("shell_text", sa.Text(), nullable=False),
        sa.Column("disclaimer_text", sa.Text(), nullable=True),
        sa.Column("cta_url", sa.String(512), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_message_templates_key", "message_templates", ["key"], unique=True)

    op.create_table(
        "diagnosis_inserts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("diagnosis_code", sa.String(64), nullable=False),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column("branch", sa.String(8), nullable=False),
        sa.Column("insert_text", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("diagnosis_code", "day", "branch", name="uq_diagnosis_insert_code_day_branch"),
        sa.CheckConstraint("branch IN ('better', 'same', 'worse')", name="ck_diagnosis_inserts_branch"),
    )
    op.create_index("ix_diagnosis_inserts_diagnosis_code", "diagnosis_inserts", ["diagnosis_code"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_diagnosis_inserts_diagnosis_code", table_name="diagnosis_inserts")
    op.drop_table("diagnosis_inserts")
    op.drop_index("ix_message_templates_key", table_name="message_templates")
    op.drop_table("message_templates")
    op.drop_index("ix_check_in_queue_status", table_name="check_in_queue")
    op.drop_index("ix_check_in_queue_due_at", table_name="check_in_queue")
    op.drop_index("ix_check_in_queue_assessment_id", table_name="check_in_queue")
    op.drop_table("check_in_queue")
    op.drop_index("ix_assessments_phone_number", table_name="assessments")
    op.drop_index("ix_assessments_email", table_name="assessments")
    op.drop_table("assessments")
    op.drop_index("ix_audit_log_action", table_name="audit_log")
    op.drop_index("ix_audit_log_user_id", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
