"""Initial clock-in schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = postgresql.ENUM("employee", "admin", name="user_role", create_type=False)
check_status = postgresql.ENUM(
    "on_time",
    "late",
    "early_leave",
    "missed",
    name="check_status",
    create_type=False,
)
daily_status = postgresql.ENUM(
    "present",
    "half_day_absent",
    "in_progress",
    "absent",
    "on_leave",
    name="daily_status",
    create_type=False,
)
violation_type = postgresql.ENUM(
    "late",
    "early_leave",
    "absent",
    "half_day_absent",
    name="violation_type",
    create_type=False,
)
penalty_status = postgresql.ENUM("active", "waived", "paid", name="penalty_status", create_type=False)
leave_type = postgresql.ENUM("full", "medical", "maternity", "half", name="leave_type", create_type=False)
leave_status = postgresql.ENUM(
    "pending",
    "approved",
    "rejected",
    "cancelled",
    name="leave_status",
    create_type=False,
)
attachment_status = postgresql.ENUM("pending", "ready", "rejected", name="attachment_status", create_type=False)
flag_status = postgresql.ENUM("processing", "completed", "error", name="flag_status", create_type=False)

ENUM_TYPES = (
    user_role,
    check_status,
    daily_status,
    violation_type,
    penalty_status,
    leave_type,
    leave_status,
    attachment_status,
    flag_status,
)


def _jsonb(default: str) -> dict:
    return {
        "type_": postgresql.JSONB(astext_type=sa.Text()),
        "nullable": False,
        "server_default": sa.text(f"'{default}'::jsonb"),
    }


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=False, server_default="employee"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("full_leave_balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("medical_leave_balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("maternity_leave_balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "company_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("workplace_lat", sa.Float(), nullable=True),
        sa.Column("workplace_lng", sa.Float(), nullable=True),
        sa.Column("workplace_radius", sa.Float(), nullable=True),
        sa.Column("geo_fencing_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("time_windows", **_jsonb("{}")),
        sa.Column("grace_periods", **_jsonb("{}")),
        sa.Column("penalty_rules", **_jsonb("{}")),
        sa.Column("working_days", **_jsonb("{}")),
        sa.Column("holidays", **_jsonb("[]")),
        sa.Column("leave_policy", **_jsonb("{}")),
        sa.Column("leave_attachment_required_types", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _timestamp("updated_at"),
    )

    slot_columns = []
    for slot in ("check1", "check2", "check3"):
        slot_columns.extend(
            [
                sa.Column(f"{slot}_status", check_status, nullable=True),
                sa.Column(f"{slot}_timestamp", sa.DateTime(timezone=True), nullable=True),
                sa.Column(f"{slot}_lat", sa.Float(), nullable=True),
                sa.Column(f"{slot}_lng", sa.Float(), nullable=True),
            ]
        )
    op.create_table(
        "attendance_records",
        sa.Column("id", sa.String(length=160), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        *slot_columns,
        sa.Column("status", daily_status, nullable=False),
        sa.Column("is_manual_entry", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("manual_reason", sa.String(length=1000), nullable=True),
        sa.Column("manual_updated_by", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column("leave_request_id", sa.String(length=64), nullable=True),
        sa.Column("leave_backfill", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_auto_generated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_attendance_records_user_id", "attendance_records", ["user_id"])
    op.create_index("ix_attendance_records_attendance_date", "attendance_records", ["attendance_date"])
    op.create_index("ix_attendance_records_status", "attendance_records", ["status"])
    op.create_index("ix_attendance_records_leave_request_id", "attendance_records", ["leave_request_id"])

    op.create_table(
        "penalties",
        sa.Column("id", sa.String(length=255), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("violation_type", violation_type, nullable=False),
        sa.Column("violation_field", sa.String(length=32), nullable=False),
        sa.Column("date_key", sa.String(length=10), nullable=False),
        sa.Column("date_incurred", sa.Date(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_warning", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("violation_count", sa.Integer(), nullable=False),
        sa.Column("threshold", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", penalty_status, nullable=False, server_default="active"),
        sa.Column("attendance_record_id", sa.String(length=160), nullable=True),
        sa.Column("waived_reason", sa.String(length=1000), nullable=True),
        sa.Column("waived_by", sa.String(length=128), nullable=True),
        sa.Column("waived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledgement_note", sa.String(length=1000), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_penalties_user_id", "penalties", ["user_id"])
    op.create_index("ix_penalties_date_key", "penalties", ["date_key"])
    op.create_index("ix_penalties_date_incurred", "penalties", ["date_incurred"])

    op.create_table(
        "violation_summaries",
        sa.Column("id", sa.String(length=160), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("monthly_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("counts", **_jsonb("{}")),
        sa.Column("details", **_jsonb("[]")),
        sa.Column("fined_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("warning_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("fined_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_violation_summaries_user_id", "violation_summaries", ["user_id"])
    op.create_index("ix_violation_summaries_month", "violation_summaries", ["month"])

    op.create_table(
        "leave_attachments",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("status", attachment_status, nullable=False, server_default="pending"),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=True),
        sa.Column("attached_to_leave", sa.String(length=64), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_leave_attachments_user_id", "leave_attachments", ["user_id"])

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("leave_type", leave_type, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("total_days", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=True),
        sa.Column("status", leave_status, nullable=False, server_default="pending"),
        sa.Column("attachment_id", sa.String(length=64), nullable=True),
        sa.Column("reviewed_by", sa.String(length=128), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewer_notes", sa.String(length=1000), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("submitted_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_leave_requests_user_id", "leave_requests", ["user_id"])
    op.create_index("ix_leave_requests_status", "leave_requests", ["status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False, server_default="info"),
        sa.Column("related_id", sa.String(length=255), nullable=True),
        sa.Column("payload", **_jsonb("{}")),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _timestamp("ts_utc"),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="success"),
        sa.Column("performed_by", sa.String(length=128), nullable=False),
        sa.Column("old_values", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("new_values", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("details", **_jsonb("{}")),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])

    op.create_table(
        "system_flags",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("status", flag_status, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
    )


def downgrade() -> None:
    op.drop_table("system_flags")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_leave_requests_status", table_name="leave_requests")
    op.drop_index("ix_leave_requests_user_id", table_name="leave_requests")
    op.drop_table("leave_requests")
    op.drop_index("ix_leave_attachments_user_id", table_name="leave_attachments")
    op.drop_table("leave_attachments")
    op.drop_index("ix_violation_summaries_month", table_name="violation_summaries")
    op.drop_index("ix_violation_summaries_user_id", table_name="violation_summaries")
    op.drop_table("violation_summaries")
    op.drop_index("ix_penalties_date_incurred", table_name="penalties")
    op.drop_index("ix_penalties_date_key", table_name="penalties")
    op.drop_index("ix_penalties_user_id", table_name="penalties")
    op.drop_table("penalties")
    op.drop_index("ix_attendance_records_leave_request_id", table_name="attendance_records")
    op.drop_index("ix_attendance_records_status", table_name="attendance_records")
    op.drop_index("ix_attendance_records_attendance_date", table_name="attendance_records")
    op.drop_index("ix_attendance_records_user_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_table("company_settings")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
