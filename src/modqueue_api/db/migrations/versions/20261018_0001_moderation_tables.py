"""add moderation tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user_roles",
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("role IN ('moderator', 'admin')", name="ck_user_roles_role"),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "content_items",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("content_type", sa.String(length=32), nullable=False),
        sa.Column("content_id", UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=True),
        sa.Column("removed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("removed_by_action_id", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("content_type", "content_id", name="uq_content_items_type_id"),
    )
    op.create_index("ix_content_items_owner", "content_items", ["owner_id"])

    op.create_table(
        "moderation_reports",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("reporter_id", UUID(as_uuid=True), nullable=False),
        sa.Column("reported_user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("report_type", sa.String(length=32), nullable=False),
        sa.Column("target_id", UUID(as_uuid=True), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("evidence", JSONB, nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("moderator_flagged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reviewed_by", UUID(as_uuid=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("action_taken", sa.String(length=64), nullable=True),
        sa.CheckConstraint("priority BETWEEN 1 AND 5", name="ck_moderation_reports_priority"),
        sa.CheckConstraint(
            "status IN ('pending', 'under_review', 'resolved', 'dismissed')",
            name="ck_moderation_reports_status",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_moderation_reports_reporter_target_created",
        "moderation_reports",
        ["reporter_id", "report_type", "target_id", "created_at"],
    )
    op.create_index(
        "ix_moderation_reports_reporter_created",
        "moderation_reports",
        ["reporter_id", "created_at"],
    )
    op.create_index(
        "ix_moderation_reports_status_priority",
        "moderation_reports",
        ["status", "priority", "created_at"],
    )

    op.create_table(
        "moderation_actions",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("moderator_id", UUID(as_uuid=True), nullable=False),
        sa.Column("target_user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("target_type", sa.String(length=32), nullable=False),
        sa.Column("target_id", UUID(as_uuid=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("related_report_id", UUID(as_uuid=True), nullable=True),
        sa.Column("reapplied_from_id", UUID(as_uuid=True), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("notification_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", JSONB, nullable=True),
        sa.CheckConstraint(
            "duration_days IS NULL OR (duration_days >= 0 AND duration_days <= 365)",
            name="ck_moderation_actions_duration",
        ),
        sa.ForeignKeyConstraint(["related_report_id"], ["moderation_reports.id"]),
        sa.ForeignKeyConstraint(["reapplied_from_id"], ["moderation_actions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_moderation_actions_moderator_created",
        "moderation_actions",
        ["moderator_id", "created_at"],
    )
    op.create_index(
        "ix_moderation_actions_target_user",
        "moderation_actions",
        ["target_user_id", "created_at"],
    )
    op.create_index("ix_moderation_actions_report", "moderation_actions", ["related_report_id"])

    op.create_table(
        "action_reversals",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("action_id", UUID(as_uuid=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_by", UUID(as_uuid=True), nullable=False),
        sa.Column("reversal_reason", sa.Text(), nullable=False),
        sa.Column("is_self_reversal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("length(reversal_reason) > 0", name="ck_action_reversals_reason"),
        sa.ForeignKeyConstraint(["action_id"], ["moderation_actions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("action_id", name="uq_action_reversals_action_id"),
    )

    op.create_table(
        "user_restrictions",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("restriction_type", sa.String(length=32), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("applied_by", UUID(as_uuid=True), nullable=False),
        sa.Column("related_action_id", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["related_action_id"], ["moderation_actions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_user_restrictions_active_type",
        "user_restrictions",
        ["user_id", "restriction_type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "ix_user_restrictions_user_active",
        "user_restrictions",
        ["user_id", "is_active", "restriction_type"],
    )
    op.create_index("ix_user_restrictions_expires_at", "user_restrictions", ["expires_at"])
    op.create_index(
        "ix_user_restrictions_related_action", "user_restrictions", ["related_action_id"]
    )

    op.create_table(
        "user_standings",
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspended_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspension_reason", sa.Text(), nullable=True),
        sa.Column("suspension_action_id", UUID(as_uuid=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_user_standings_suspended_until", "user_standings", ["suspended_until"])

    op.create_table(
        "security_events",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("details", JSONB, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_security_events_created_at", "security_events", ["created_at"])
    op.create_index(
        "ix_security_events_type_created", "security_events", ["event_type", "created_at"]
    )
    op.create_index(
        "ix_security_events_user_created", "security_events", ["user_id", "created_at"]
    )

    op.create_table(
        "notification_outbox",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("payload", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notification_outbox_user_created", "notification_outbox", ["user_id", "created_at"]
    )
    op.create_index(
        "ix_notification_outbox_pending",
        "notification_outbox",
        ["dispatched_at", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_notification_outbox_pending", table_name="notification_outbox")
    op.drop_index("ix_notification_outbox_user_created", table_name="notification_outbox")
    op.drop_table("notification_outbox")
    op.drop_index("ix_security_events_user_created", table_name="security_events")
    op.drop_index("ix_security_events_type_created", table_name="security_events")
    op.drop_index("ix_security_events_created_at", table_name="security_events")
    op.drop_table("security_events")
    op.drop_index("ix_user_standings_suspended_until", table_name="user_standings")
    op.drop_table("user_standings")
    op.drop_index("ix_user_restrictions_related_action", table_name="user_restrictions")
    op.drop_index("ix_user_restrictions_expires_at", table_name="user_restrictions")
    op.drop_index("ix_user_restrictions_user_active", table_name="user_restrictions")
    op.drop_index("uq_user_restrictions_active_type", table_name="user_restrictions")
    op.drop_table("user_restrictions")
    op.drop_table("action_reversals")
    op.drop_index("ix_moderation_actions_report", table_name="moderation_actions")
    op.drop_index("ix_moderation_actions_target_user", table_name="moderation_actions")
    op.drop_index("ix_moderation_actions_moderator_created", table_name="moderation_actions")
    op.drop_table("moderation_actions")
    op.drop_index("ix_moderation_reports_status_priority", table_name="moderation_reports")
    op.drop_index("ix_moderation_reports_reporter_created", table_name="moderation_reports")
    op.drop_index(
        "ix_moderation_reports_reporter_target_created", table_name="moderation_reports"
    )
    op.drop_table("moderation_reports")
    op.drop_index("ix_content_items_owner", table_name="content_items")
    op.drop_table("content_items")
    op.drop_table("user_roles")
