"""Initial HR schema

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

employee_role = postgresql.ENUM("Employee", "HOD", "CEO", "Admin", name="employee_role", create_type=False)
employee_type = postgresql.ENUM(
    "Probation",
    "Confirmed",
    "Contractual",
    "Intern",
    name="employee_type",
    create_type=False,
)
employee_status = postgresql.ENUM("Working", "Resigned", name="employee_status", create_type=False)
compensatory_status = postgresql.ENUM(
    "Available",
    "Claimed",
    "Expired",
    name="compensatory_status",
    create_type=False,
)
punch_direction = postgresql.ENUM("in", "out", name="punch_direction", create_type=False)
attendance_status = postgresql.ENUM("Present", "Absent", "HalfDay", name="attendance_status", create_type=False)
half_day_portion = postgresql.ENUM("FirstHalf", "SecondHalf", name="half_day_portion", create_type=False)
approval_status = postgresql.ENUM(
    "PENDING",
    "SUBMITTED",
    "APPROVED",
    "REJECTED",
    "ACKNOWLEDGED",
    name="approval_status",
    create_type=False,
)
leave_type = postgresql.ENUM(
    "Casual",
    "Medical",
    "Maternity",
    "Paternity",
    "RestrictedHoliday",
    "Compensatory",
    "Emergency",
    "LeaveWithoutPay",
    name="leave_type",
    create_type=False,
)
leave_duration = postgresql.ENUM("full", "half", name="leave_duration", create_type=False)
leave_session = postgresql.ENUM("forenoon", "afternoon", name="leave_session", create_type=False)
overtime_claim_type = postgresql.ENUM("overtime", "compensatory", name="overtime_claim_type", create_type=False)
alert_type = postgresql.ENUM("warning", "termination", name="alert_type", create_type=False)
audit_actor_type = postgresql.ENUM("EMPLOYEE", "SYSTEM", name="audit_actor_type", create_type=False)

ENUM_TYPES = (
    employee_role,
    employee_type,
    employee_status,
    compensatory_status,
    punch_direction,
    attendance_status,
    half_day_portion,
    approval_status,
    leave_type,
    leave_duration,
    leave_session,
    overtime_claim_type,
    alert_type,
    audit_actor_type,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _approval_columns() -> list[sa.Column]:
    return [
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("stage_a", approval_status, nullable=False, server_default="PENDING"),
        sa.Column("stage_b", approval_status, nullable=False, server_default="PENDING"),
        sa.Column("stage_c", approval_status, nullable=False, server_default="PENDING"),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("charge_given_to_id", sa.Integer(), nullable=True),
        _created_at(),
    ]


def _approval_constraints() -> list[sa.ForeignKeyConstraint]:
    return [
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["charge_given_to_id"], ["employees.id"], ondelete="SET NULL"),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.UniqueConstraint("name", name="uq_departments_name"),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_code", sa.String(length=64), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("external_user_id", sa.String(length=64), nullable=True),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("designation", sa.String(length=255), nullable=True),
        sa.Column("role", employee_role, nullable=False, server_default="Employee"),
        sa.Column("employee_type", employee_type, nullable=False, server_default="Probation"),
        sa.Column("status", employee_status, nullable=False, server_default="Working"),
        sa.Column("date_of_joining", sa.Date(), nullable=False),
        sa.Column("confirmation_date", sa.Date(), nullable=True),
        sa.Column("date_of_resigning", sa.Date(), nullable=True),
        sa.Column("paid_leave_balance", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("medical_leave_balance", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("restricted_holiday_balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("unpaid_leave_taken", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("maternity_claims_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("paternity_claims_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("emergency_leave_granted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("emergency_leave_granted_on", sa.Date(), nullable=True),
        sa.Column("leave_reset_marker", sa.Date(), nullable=True),
        sa.Column("medical_reset_marker", sa.Date(), nullable=True),
        sa.Column("restricted_reset_marker", sa.Date(), nullable=True),
        sa.Column("compensatory_reset_marker", sa.Date(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("employee_code", name="uq_employees_employee_code"),
        sa.UniqueConstraint("external_user_id", name="uq_employees_external_user_id"),
    )
    op.create_index("ix_employees_department_id", "employees", ["department_id"])

    op.create_table(
        "compensatory_grants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("grant_date", sa.Date(), nullable=False),
        sa.Column("amount_hours", sa.Integer(), nullable=False),
        sa.Column("status", compensatory_status, nullable=False, server_default="Available"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_compensatory_grants_employee_id", "compensatory_grants", ["employee_id"])

    op.create_table(
        "raw_punches",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("external_user_id", sa.String(length=64), nullable=False),
        sa.Column("log_date", sa.Date(), nullable=False),
        sa.Column("log_time", sa.String(length=8), nullable=False),
        sa.Column("direction", punch_direction, nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("external_user_id", "log_date", "log_time", name="uq_raw_punches_user_date_time"),
    )
    op.create_index("ix_raw_punches_external_user_id", "raw_punches", ["external_user_id"])
    op.create_index("ix_raw_punches_log_date", "raw_punches", ["log_date"])
    op.create_index("ix_raw_punches_processed", "raw_punches", ["processed"])

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("log_date", sa.Date(), nullable=False),
        sa.Column("time_in", sa.String(length=8), nullable=True),
        sa.Column("time_out", sa.String(length=8), nullable=True),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("half_day", half_day_portion, nullable=True),
        sa.Column("overtime_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("late_penalty", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "log_date", name="uq_attendance_records_employee_day"),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"])
    op.create_index("ix_attendance_records_log_date", "attendance_records", ["log_date"])

    op.create_table(
        "sync_metadata",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("name", name="uq_sync_metadata_name"),
    )

    op.create_table(
        "leaves",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        *_approval_columns(),
        sa.Column("leave_type", leave_type, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("start_duration", leave_duration, nullable=False, server_default="full"),
        sa.Column("start_session", leave_session, nullable=True),
        sa.Column("end_duration", leave_duration, nullable=False, server_default="full"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("compensatory_grant_id", sa.Integer(), nullable=True),
        *_approval_constraints(),
        sa.ForeignKeyConstraint(["compensatory_grant_id"], ["compensatory_grants.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_leaves_employee_id", "leaves", ["employee_id"])

    op.create_table(
        "business_trips",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        *_approval_columns(),
        sa.Column("date_out", sa.Date(), nullable=False),
        sa.Column("time_out", sa.String(length=8), nullable=True),
        sa.Column("date_in", sa.Date(), nullable=False),
        sa.Column("time_in", sa.String(length=8), nullable=True),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("place_unit_visit", sa.String(length=255), nullable=True),
        *_approval_constraints(),
    )
    op.create_index("ix_business_trips_employee_id", "business_trips", ["employee_id"])

    op.create_table(
        "overtime_claims",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        *_approval_columns(),
        sa.Column("claim_date", sa.Date(), nullable=False),
        sa.Column("overtime_minutes", sa.Integer(), nullable=False),
        sa.Column("claim_type", overtime_claim_type, nullable=False),
        sa.Column("compensatory_hours", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("project_details", sa.Text(), nullable=True),
        *_approval_constraints(),
        sa.UniqueConstraint("employee_id", "claim_date", name="uq_overtime_claims_employee_day"),
    )
    op.create_index("ix_overtime_claims_employee_id", "overtime_claims", ["employee_id"])

    op.create_table(
        "missed_punch_corrections",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        *_approval_columns(),
        sa.Column("punch_date", sa.Date(), nullable=False),
        sa.Column("punch_type", punch_direction, nullable=False),
        sa.Column("requested_time", sa.String(length=8), nullable=False),
        sa.Column("corrected_time", sa.String(length=8), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        *_approval_constraints(),
    )
    op.create_index("ix_missed_punch_corrections_employee_id", "missed_punch_corrections", ["employee_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("recipient_employee_id", sa.Integer(), nullable=False),
        sa.Column("subject_employee_id", sa.Integer(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("alert_type", alert_type, nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.ForeignKeyConstraint(["recipient_employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["subject_employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_notifications_recipient_employee_id", "notifications", ["recipient_employee_id"])
    op.create_index("ix_notifications_subject_employee_id", "notifications", ["subject_employee_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_notifications_created_at", table_name="notifications")
    op.drop_index("ix_notifications_subject_employee_id", table_name="notifications")
    op.drop_index("ix_notifications_recipient_employee_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_missed_punch_corrections_employee_id", table_name="missed_punch_corrections")
    op.drop_table("missed_punch_corrections")
    op.drop_index("ix_overtime_claims_employee_id", table_name="overtime_claims")
    op.drop_table("overtime_claims")
    op.drop_index("ix_business_trips_employee_id", table_name="business_trips")
    op.drop_table("business_trips")
    op.drop_index("ix_leaves_employee_id", table_name="leaves")
    op.drop_table("leaves")
    op.drop_table("sync_metadata")
    op.drop_index("ix_attendance_records_log_date", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index("ix_raw_punches_processed", table_name="raw_punches")
    op.drop_index("ix_raw_punches_log_date", table_name="raw_punches")
    op.drop_index("ix_raw_punches_external_user_id", table_name="raw_punches")
    op.drop_table("raw_punches")
    op.drop_index("ix_compensatory_grants_employee_id", table_name="compensatory_grants")
    op.drop_table("compensatory_grants")
    op.drop_index("ix_employees_department_id", table_name="employees")
    op.drop_table("employees")
    op.drop_table("departments")

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
