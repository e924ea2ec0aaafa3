from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from modqueue_api.db.types import JsonDocument, UTCDateTime
from modqueue_api.domain.action_types import ActionState
from modqueue_api.domain.report_state import ReportStatus


class Base(DeclarativeBase):
    pass


class ImmutableRecordError(RuntimeError):
    pass


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (
        CheckConstraint("role IN ('moderator', 'admin')", name="ck_user_roles_role"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class ContentItem(Base):
    __tablename__ = "content_items"
    __table_args__ = (
        UniqueConstraint("content_type", "content_id", name="uq_content_items_type_id"),
        Index("ix_content_items_owner", "owner_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    content_type: Mapped[str] = mapped_column(String(32), nullable=False)
    content_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    removed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime, nullable=True)
    removed_by_action_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Report(Base):
    __tablename__ = "moderation_reports"
    __table_args__ = (
        Index(
            "ix_moderation_reports_reporter_target_created",
            "reporter_id",
            "report_type",
            "target_id",
            "created_at",
        ),
        Index("ix_moderation_reports_reporter_created", "reporter_id", "created_at"),
        Index("ix_moderation_reports_status_priority", "status", "priority", "created_at"),
        CheckConstraint("priority BETWEEN 1 AND 5", name="ck_moderation_reports_priority"),
        CheckConstraint(
            "status IN ('pending', 'under_review', 'resolved', 'dismissed')",
            name="ck_moderation_reports_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reporter_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reported_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    report_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[dict[str, object] | None] = mapped_column(JsonDocument, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ReportStatus.pending.value
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    moderator_flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    reviewed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_taken: Mapped[str | None] = mapped_column(String(64), nullable=True)


class ModerationAction(Base):
    __tablename__ = "moderation_actions"
    __table_args__ = (
        Index("ix_moderation_actions_moderator_created", "moderator_id", "created_at"),
        Index("ix_moderation_actions_target_user", "target_user_id", "created_at"),
        Index("ix_moderation_actions_report", "related_report_id"),
        CheckConstraint(
            "duration_days IS NULL OR (duration_days >= 0 AND duration_days <= 365)",
            name="ck_moderation_actions_duration",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    moderator_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    target_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime, nullable=True)
    related_report_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("moderation_reports.id"), nullable=True
    )
    reapplied_from_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("moderation_actions.id"), nullable=True
    )
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    details: Mapped[dict[str, object] | None] = mapped_column(
        "metadata", JsonDocument, nullable=True
    )

    reversal: Mapped[ActionReversal | None] = relationship(
        back_populates="action", lazy="selectin", uselist=False
    )

    @property
    def revoked_at(self) -> dt.datetime | None:
        return self.reversal.revoked_at if self.reversal else None

    @property
    def revoked_by(self) -> uuid.UUID | None:
        return self.reversal.revoked_by if self.reversal else None

    @property
    def reversal_reason(self) -> str | None:
        return self.reversal.reversal_reason if self.reversal else None

    def state_at(self, now: dt.datetime) -> ActionState:
        if self.reversal is not None:
            return ActionState.reversed
        if self.expires_at is not None and self.expires_at <= now:
            return ActionState.expired
        return ActionState.active


class ActionReversal(Base):
    """Write-once reversal fact for a moderation action.

    Rows are inserted exactly once per action and never updated or deleted; storage
    triggers reject both, and the mapper refuses to flush either.
    """

    __tablename__ = "action_reversals"
    __table_args__ = (
        UniqueConstraint("action_id", name="uq_action_reversals_action_id"),
        CheckConstraint("length(reversal_reason) > 0", name="ck_action_reversals_reason"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    action_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("moderation_actions.id"), nullable=False
    )
    revoked_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, nullable=False)
    revoked_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reversal_reason: Mapped[str] = mapped_column(Text, nullable=False)
    is_self_reversal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    action: Mapped[ModerationAction] = relationship(back_populates="reversal")


class UserRestriction(Base):
    __tablename__ = "user_restrictions"
    __table_args__ = (
        Index(
            "uq_user_restrictions_active_type",
            "user_id",
            "restriction_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_user_restrictions_user_active", "user_id", "is_active", "restriction_type"),
        Index("ix_user_restrictions_expires_at", "expires_at"),
        Index("ix_user_restrictions_related_action", "related_action_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    restriction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    expires_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    applied_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    related_action_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("moderation_actions.id"), nullable=True
    )
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class UserStanding(Base):
    __tablename__ = "user_standings"
    __table_args__ = (Index("ix_user_standings_suspended_until", "suspended_until"),)

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    suspended_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime, nullable=True)
    suspended_until: Mapped[dt.datetime | None] = mapped_column(UTCDateTime, nullable=True)
    suspension_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    suspension_action_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    @property
    def is_suspended(self) -> bool:
        return self.suspended_at is not None


class SecurityEvent(Base):
    __tablename__ = "security_events"
    __table_args__ = (
        Index("ix_security_events_created_at", "created_at"),
        Index("ix_security_events_type_created", "event_type", "created_at"),
        Index("ix_security_events_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    details: Mapped[dict[str, object] | None] = mapped_column(JsonDocument, nullable=True)


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"
    __table_args__ = (
        Index("ix_notification_outbox_user_created", "user_id", "created_at"),
        Index("ix_notification_outbox_pending", "dispatched_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, object] | None] = mapped_column(JsonDocument, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    dispatched_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime, nullable=True)


@event.listens_for(ActionReversal, "before_update")
def _refuse_reversal_update(mapper, connection, target: ActionReversal) -> None:
    raise ImmutableRecordError(f"Action reversal {target.id} is immutable")


@event.listens_for(ActionReversal, "before_delete")
def _refuse_reversal_delete(mapper, connection, target: ActionReversal) -> None:
    raise ImmutableRecordError(f"Action reversal {target.id} cannot be deleted")


@event.listens_for(ModerationAction, "before_delete")
def _refuse_action_delete(mapper, connection, target: ModerationAction) -> None:
    raise ImmutableRecordError(f"Moderation action {target.id} cannot be deleted")


# Storage-level guards, mirrored by the reversal immutability migration.
SQLITE_IMMUTABILITY_DDL = (
    "CREATE TRIGGER IF NOT EXISTS trg_action_reversals_no_update "
    "BEFORE UPDATE ON action_reversals "
    "BEGIN SELECT RAISE(ABORT, 'action reversal records are immutable'); END",
    "CREATE TRIGGER IF NOT EXISTS trg_action_reversals_no_delete "
    "BEFORE DELETE ON action_reversals "
    "BEGIN SELECT RAISE(ABORT, 'action reversal records are immutable'); END",
    "CREATE TRIGGER IF NOT EXISTS trg_moderation_actions_no_delete "
    "BEFORE DELETE ON moderation_actions "
    "BEGIN SELECT RAISE(ABORT, 'moderation actions cannot be deleted'); END",
)

POSTGRES_IMMUTABILITY_DDL = (
    "CREATE OR REPLACE FUNCTION prevent_immutable_row_change() RETURNS trigger AS $$ "
    "BEGIN RAISE EXCEPTION 'row in % is immutable', TG_TABLE_NAME "
    "USING ERRCODE = 'integrity_constraint_violation'; END; $$ LANGUAGE plpgsql",
    "CREATE TRIGGER trg_action_reversals_immutable "
    "BEFORE UPDATE OR DELETE ON action_reversals "
    "FOR EACH ROW EXECUTE FUNCTION prevent_immutable_row_change()",
    "CREATE TRIGGER trg_moderation_actions_no_delete "
    "BEFORE DELETE ON moderation_actions "
    "FOR EACH ROW EXECUTE FUNCTION prevent_immutable_row_change()",
)


def _install_immutability_triggers() -> None:
    for statement in SQLITE_IMMUTABILITY_DDL:
        event.listen(
            ActionReversal.__table__,
            "after_create",
            DDL(statement).execute_if(dialect="sqlite"),
        )
    for statement in POSTGRES_IMMUTABILITY_DDL:
        event.listen(
            ActionReversal.__table__,
            "after_create",
            DDL(statement.replace("%", "%%")).execute_if(dialect="postgresql"),
        )


_install_immutability_triggers()
