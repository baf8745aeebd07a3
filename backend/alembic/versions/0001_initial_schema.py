"""Initial medication scheduling schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_by", sa.String(length=64)),
    ]


def upgrade() -> None:
    user_role_enum = sa.Enum(
        "ADMIN", "MANAGER", "SCHOOLNURSE", "PARENT", "STUDENT", name="userrole"
    )
    priority_enum = sa.Enum("LOW", "NORMAL", "HIGH", "CRITICAL", name="priority")
    order_status_enum = sa.Enum(
        "PENDING_APPROVAL",
        "APPROVED",
        "REJECTED",
        "ACTIVE",
        "COMPLETED",
        "DISCONTINUED",
        name="orderstatus",
    )
    frequency_enum = sa.Enum(
        "DAILY",
        "EVERY_OTHER_DAY",
        "WEEKLY",
        "BI_WEEKLY",
        "MONTHLY",
        "SPECIFIC_DAYS",
        "AS_NEEDED",
        name="frequencytype",
    )
    time_of_day_enum = sa.Enum(
        "BEFORE_BREAKFAST",
        "AFTER_BREAKFAST",
        "BEFORE_LUNCH",
        "AFTER_LUNCH",
        "BEFORE_DINNER",
        "AFTER_DINNER",
        "BEFORE_BED",
        "SPECIFIC_TIME",
        name="timeofday",
    )
    dose_status_enum = sa.Enum(
        "PENDING", "COMPLETED", "MISSED", "STUDENT_ABSENT", "CANCELLED", name="dosestatus"
    )
    health_event_status_enum = sa.Enum(
        "PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED", name="healtheventstatus"
    )
    notification_kind_enum = sa.Enum(
        "DOSE_REMINDER",
        "DOSE_ADMINISTERED",
        "DOSE_MISSED",
        "STUDENT_ABSENT",
        "LOW_STOCK",
        "ORDER_EXPIRING",
        "ORDER_STATUS",
        "INCIDENT_ESCALATION",
        "INCIDENT_REMINDER",
        name="notificationkind",
    )
    alert_kind_enum = sa.Enum(
        "EXPIRY_WARNING",
        "INCIDENT_ESCALATION",
        "INCIDENT_REMINDER",
        name="alertkind",
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("student_code", sa.String(length=50)),
        sa.Column("role", user_role_enum, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit_columns(),
    )
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_is_deleted", "users", ["is_deleted"])

    op.create_table(
        "medication_orders",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "student_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "parent_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "approved_by_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column("medication_name", sa.String(length=255), nullable=False),
        sa.Column("dosage", sa.String(length=120), nullable=False),
        sa.Column("instructions", sa.Text()),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=False),
        sa.Column("frequency_type", frequency_enum, nullable=False),
        sa.Column("specific_days", sa.JSON()),
        sa.Column("time_of_day", time_of_day_enum),
        sa.Column("specific_times", sa.JSON()),
        sa.Column("skip_weekends", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("skip_dates", sa.Text()),
        sa.Column(
            "auto_generate_schedule", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("priority", priority_enum, nullable=False),
        sa.Column("total_doses", sa.Integer()),
        sa.Column("remaining_doses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_stock_threshold", sa.Integer(), nullable=False, server_default="3"),
        sa.Column(
            "low_stock_alert_sent", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "require_nurse_confirmation",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("status", order_status_enum, nullable=False),
        sa.Column("approved_at", sa.DateTime()),
        sa.Column("rejection_reason", sa.Text()),
        *_audit_columns(),
    )
    op.create_index("ix_medication_orders_student_id", "medication_orders", ["student_id"])
    op.create_index("ix_medication_orders_parent_id", "medication_orders", ["parent_id"])
    op.create_index("ix_medication_orders_status", "medication_orders", ["status"])
    op.create_index("ix_medication_orders_is_deleted", "medication_orders", ["is_deleted"])

    op.create_table(
        "administration_records",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("medication_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("dose_instance_id", sa.Uuid(as_uuid=True), nullable=False, unique=True),
        sa.Column(
            "administered_by_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("administered_at", sa.DateTime(), nullable=False),
        sa.Column("actual_dosage", sa.String(length=120), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("student_refused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("refusal_reason", sa.Text()),
        sa.Column("side_effects_observed", sa.Text()),
        *_audit_columns(),
    )
    op.create_index(
        "ix_administration_records_order_id", "administration_records", ["order_id"]
    )
    op.create_index(
        "ix_administration_records_is_deleted", "administration_records", ["is_deleted"]
    )

    op.create_table(
        "dose_instances",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("medication_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("scheduled_time", sa.Time(), nullable=False),
        sa.Column("scheduled_dosage", sa.String(length=120), nullable=False),
        sa.Column("priority", priority_enum, nullable=False),
        sa.Column("status", dose_status_enum, nullable=False),
        sa.Column("special_instructions", sa.Text()),
        sa.Column(
            "requires_nurse_confirmation",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reminder_sent_at", sa.DateTime()),
        sa.Column("reminder_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("student_present", sa.Boolean()),
        sa.Column("attendance_checked_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("missed_at", sa.DateTime()),
        sa.Column("missed_reason", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "administration_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("administration_records.id", ondelete="SET NULL"),
        ),
        *_audit_columns(),
        sa.UniqueConstraint(
            "order_id", "scheduled_date", "scheduled_time", name="uq_dose_instance_slot"
        ),
    )
    op.create_index("ix_dose_instances_order_id", "dose_instances", ["order_id"])
    op.create_index("ix_dose_instances_scheduled_date", "dose_instances", ["scheduled_date"])
    op.create_index("ix_dose_instances_status", "dose_instances", ["status"])
    op.create_index("ix_dose_instances_is_deleted", "dose_instances", ["is_deleted"])

    op.create_table(
        "health_events",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(length=50)),
        sa.Column(
            "student_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "handled_by_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("location", sa.String(length=255)),
        sa.Column("is_emergency", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", health_event_status_enum, nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("assigned_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
        *_audit_columns(),
    )
    op.create_index("ix_health_events_status", "health_events", ["status"])
    op.create_index("ix_health_events_is_deleted", "health_events", ["is_deleted"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "recipient_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "sender_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column("kind", notification_kind_enum, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column(
            "requires_confirmation", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime()),
        sa.Column("is_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_dismissed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("dismissed_at", sa.DateTime()),
        sa.Column("expires_at", sa.DateTime()),
        sa.Column(
            "dose_instance_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("dose_instances.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "order_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("medication_orders.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "health_event_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("health_events.id", ondelete="SET NULL"),
        ),
        *_audit_columns(),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_kind", "notifications", ["kind"])
    op.create_index("ix_notifications_health_event_id", "notifications", ["health_event_id"])
    op.create_index("ix_notifications_is_deleted", "notifications", ["is_deleted"])

    op.create_table(
        "alert_marks",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("subject_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("kind", alert_kind_enum, nullable=False),
        sa.Column("last_sent_at", sa.DateTime(), nullable=False),
        sa.Column("send_count", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("subject_id", "kind", name="uq_alert_mark_subject_kind"),
    )
    op.create_index("ix_alert_marks_subject_id", "alert_marks", ["subject_id"])


def downgrade() -> None:
    op.drop_index("ix_alert_marks_subject_id", table_name="alert_marks")
    op.drop_table("alert_marks")
    sa.Enum(name="alertkind").drop(op.get_bind(), checkfirst=True)

    op.drop_table("notifications")
    sa.Enum(name="notificationkind").drop(op.get_bind(), checkfirst=True)

    op.drop_table("health_events")
    sa.Enum(name="healtheventstatus").drop(op.get_bind(), checkfirst=True)

    op.drop_table("dose_instances")
    sa.Enum(name="dosestatus").drop(op.get_bind(), checkfirst=True)

    op.drop_table("administration_records")

    op.drop_table("medication_orders")
    sa.Enum(name="timeofday").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="frequencytype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="orderstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="priority").drop(op.get_bind(), checkfirst=True)

    op.drop_table("users")
    sa.Enum(name="userrole").drop(op.get_bind(), checkfirst=True)
