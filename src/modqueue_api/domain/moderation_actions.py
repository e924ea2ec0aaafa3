from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import ContentItem, ModerationAction, NotificationOutbox, Report
from modqueue_api.db.session import database_guard
from modqueue_api.domain.action_types import (
    ADMIN_ONLY_ACTIONS,
    ActionState,
    ActionType,
    RestrictionType,
    SUSPENSION_ACTIONS,
)
from modqueue_api.domain.directory import ContentDirectory, IdentityDirectory
from modqueue_api.domain.errors import AppError, ErrorKind, error_for_kind
from modqueue_api.domain.evidence import sanitize_text
from modqueue_api.domain.notifications import queue_action_notification
from modqueue_api.domain.report_state import (
    ReportStatus,
    assert_valid_report_transition,
    is_finalized,
)
from modqueue_api.domain.report_taxonomy import ReportType
from modqueue_api.domain.restrictions import apply_restriction, suspend_user
from modqueue_api.domain.roles import Actor, Role
from modqueue_api.domain.security_events import SecurityEventType, record_security_event
from modqueue_api.observability.ops import observe_operation, observe_transition
from modqueue_api.settings import Settings
from modqueue_api.time import seconds_until

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 1000
MAX_INTERNAL_NOTES_LENGTH = 5000
MAX_VERIFICATION_NOTES_LENGTH = 500
MAX_DURATION_DAYS = 365

USER_TARGETED_ACTIONS = frozenset(
    {
        ActionType.user_warned,
        ActionType.user_suspended,
        ActionType.user_banned,
        ActionType.restriction_applied,
    }
)
DURATION_ACTIONS = frozenset({ActionType.user_suspended, ActionType.restriction_applied})


@dataclass(frozen=True)
class ActionParams:
    action_type: ActionType
    reason: str
    duration_days: int | None = None
    restriction_type: RestrictionType | None = None
    internal_notes: str | None = None
    evidence_verified: bool | None = None
    verification_notes: str | None = None
    target_user_id: uuid.UUID | None = None


@dataclass(frozen=True)
class ActionOutcome:
    action: ModerationAction
    report: Report | None
    notifications: list[NotificationOutbox] = field(default_factory=list)


def _invalid(message: str, **details: Any) -> AppError:
    return error_for_kind(ErrorKind.validation, message, details)


def _forbidden(message: str) -> AppError:
    return error_for_kind(ErrorKind.forbidden, message)


def validate_action_params(params: ActionParams) -> ActionParams:
    reason = sanitize_text(params.reason)
    if not reason:
        raise _invalid("A reason is required for moderation actions", field="reason")
    if len(reason) > MAX_REASON_LENGTH:
        raise _invalid(
            f"Reason must be at most {MAX_REASON_LENGTH} characters", field="reason"
        )

    duration = params.duration_days
    if duration is not None:
        if params.action_type not in DURATION_ACTIONS:
            raise _invalid(
                "Duration only applies to suspensions and restrictions", field="duration_days"
            )
        if not 1 <= duration <= MAX_DURATION_DAYS:
            raise _invalid(
                f"Duration must be between 1 and {MAX_DURATION_DAYS} days", field="duration_days"
            )
    elif params.action_type == ActionType.user_suspended:
        raise _invalid("Suspensions require a duration in days", field="duration_days")

    if params.action_type == ActionType.restriction_applied:
        if params.restriction_type is None:
            raise _invalid("A restriction type is required", field="restriction_type")
        if params.restriction_type == RestrictionType.suspended:
            raise _invalid(
                "Use a suspension action to suspend an account", field="restriction_type"
            )
    elif params.restriction_type is not None:
        raise _invalid(
            "Restriction type only applies to restriction actions", field="restriction_type"
        )

    internal_notes = sanitize_text(params.internal_notes) or None
    if internal_notes and len(internal_notes) > MAX_INTERNAL_NOTES_LENGTH:
        raise _invalid(
            f"Internal notes must be at most {MAX_INTERNAL_NOTES_LENGTH} characters",
            field="internal_notes",
        )
    verification_notes = sanitize_text(params.verification_notes) or None
    if verification_notes and len(verification_notes) > MAX_VERIFICATION_NOTES_LENGTH:
        raise _invalid(
            f"Verification notes must be at most {MAX_VERIFICATION_NOTES_LENGTH} characters",
            field="verification_notes",
        )

    return ActionParams(
        action_type=params.action_type,
        reason=reason,
        duration_days=duration,
        restriction_type=params.restriction_type,
        internal_notes=internal_notes,
        evidence_verified=params.evidence_verified,
        verification_notes=verification_notes,
        target_user_id=params.target_user_id,
    )


def _action_details(params: ActionParams, actor: Actor, now: dt.datetime) -> dict[str, Any]:
    details: dict[str, Any] = {}
    if params.restriction_type is not None:
        details["restriction_type"] = params.restriction_type.value
    if params.evidence_verified is not None or params.verification_notes:
        details["evidence_verification"] = {
            "verified": bool(params.evidence_verified),
            "notes": params.verification_notes,
            "verified_by": str(actor.user_id),
            "verified_at": now.isoformat(),
        }
    return details


async def _authorize(
    db: AsyncSession,
    *,
    actor: Actor,
    action_type: ActionType,
    target_user_id: uuid.UUID | None,
    identity: IdentityDirectory,
    now: dt.datetime,
    operation: str,
) -> None:
    if not actor.is_moderator:
        raise _forbidden("Moderator access is required")
    if action_type in ADMIN_ONLY_ACTIONS and not actor.is_admin:
        raise _forbidden("Only admins may ban users")
    if target_user_id is None or actor.is_admin:
        return
    if await identity.role_of(db, target_user_id) == Role.admin:
        await record_security_event(
            db,
            SecurityEventType.unauthorized_action_on_admin,
            actor.user_id,
            occurred_at=now,
            details={
                "target_user_id": str(target_user_id),
                "action_type": action_type.value,
                "operation": operation,
            },
        )
        raise _forbidden("Moderators cannot take actions against admin accounts")


async def _enforce_action_rate_limit(
    db: AsyncSession, *, actor: Actor, settings: Settings, now: dt.datetime
) -> None:
    window = dt.timedelta(seconds=settings.action_rate_window_seconds)
    window_start = now - window
    recent = int(
        await db.scalar(
            select(func.count())
            .select_from(ModerationAction)
            .where(
                ModerationAction.moderator_id == actor.user_id,
                ModerationAction.created_at > window_start,
            )
        )
        or 0
    )
    if recent < settings.max_actions_per_moderator_per_window:
        return
    oldest = await db.scalar(
        select(ModerationAction.created_at)
        .where(
            ModerationAction.moderator_id == actor.user_id,
            ModerationAction.created_at > window_start,
        )
        .order_by(ModerationAction.created_at.asc())
        .offset(max(0, recent - settings.max_actions_per_moderator_per_window))
        .limit(1)
    )
    details: dict[str, Any] = {
        "max_per_window": settings.max_actions_per_moderator_per_window,
        "window_seconds": settings.action_rate_window_seconds,
        "current_count": recent,
    }
    if oldest is not None:
        retry_at = oldest + window
        details["retry_after_seconds"] = seconds_until(retry_at, now)
        details["retry_at"] = retry_at.isoformat()
    await record_security_event(
        db,
        SecurityEventType.moderation_action_rate_limit_exceeded,
        actor.user_id,
        occurred_at=now,
        details=details,
    )
    raise AppError(
        code="action_rate_limited",
        message="Too many moderation actions. Please slow down and try again later.",
        status_code=429,
        details=details,
    )


async def _apply_side_effect(
    db: AsyncSession,
    action: ModerationAction,
    *,
    restriction_type: RestrictionType | None,
    now: dt.datetime,
) -> None:
    action_type = ActionType(action.action_type)
    if action_type == ActionType.content_removed:
        item = await db.scalar(
            select(ContentItem).where(
                ContentItem.content_type == action.target_type,
                ContentItem.content_id == action.target_id,
            )
        )
        if item is None:
            item = ContentItem(
                content_type=action.target_type,
                content_id=action.target_id,
                owner_id=action.target_user_id,
                created_at=now,
            )
            db.add(item)
        item.removed_at = now
        item.removed_by_action_id = action.id
        return

    if action.target_user_id is None:
        return

    if action_type in SUSPENSION_ACTIONS:
        await apply_restriction(
            db,
            user_id=action.target_user_id,
            restriction_type=RestrictionType.suspended,
            expires_at=action.expires_at,
            reason=action.reason,
            applied_by=action.moderator_id,
            action_id=action.id,
            now=now,
        )
        await suspend_user(
            db,
            user_id=action.target_user_id,
            until=action.expires_at,
            reason=action.reason,
            action_id=action.id,
            now=now,
        )
    elif action_type == ActionType.restriction_applied and restriction_type is not None:
        await apply_restriction(
            db,
            user_id=action.target_user_id,
            restriction_type=restriction_type,
            expires_at=action.expires_at,
            reason=action.reason,
            applied_by=action.moderator_id,
            action_id=action.id,
            now=now,
        )


def _expires_at(
    action_type: ActionType, duration_days: int | None, now: dt.datetime
) -> dt.datetime | None:
    if action_type in DURATION_ACTIONS and duration_days:
        return now + dt.timedelta(days=duration_days)
    return None


async def _resolve_target_user(
    db: AsyncSession,
    report: Report,
    params: ActionParams,
    content: ContentDirectory,
) -> uuid.UUID | None:
    if params.target_user_id is not None:
        return params.target_user_id
    owner_id = await content.owner_of(db, ReportType(report.report_type), report.target_id)
    if owner_id is not None:
        return owner_id
    return report.reported_user_id


async def take_action(
    db: AsyncSession,
    report_id: uuid.UUID,
    params: ActionParams,
    *,
    actor: Actor,
    now: dt.datetime,
    settings: Settings,
    identity: IdentityDirectory,
    content: ContentDirectory,
) -> ActionOutcome:
    """Apply a moderator decision to a report in a single transaction.

    The action row, the report's final status and the action's side effect (content
    removal, restriction or suspension) commit together or not at all.
    """
    params = validate_action_params(params)
    action_type = params.action_type
    async with observe_operation(
        "take_action",
        attributes={"action.type": action_type.value, "report.id": str(report_id)},
    ):
        async with database_guard(db, "take_action"):
            report = await db.get(Report, report_id)
            if report is None:
                raise error_for_kind(ErrorKind.not_found, "Report not found")
            if is_finalized(report.status):
                raise AppError(
                    code="report_already_finalized",
                    message="This report has already been reviewed",
                    status_code=409,
                    details={"status": report.status},
                )

            target_user_id = await _resolve_target_user(db, report, params, content)
            if action_type in USER_TARGETED_ACTIONS and target_user_id is None:
                raise _invalid("This action requires a target user", field="target_user_id")
            if action_type == ActionType.content_removed and report.report_type == ReportType.user:
                raise _invalid("User profiles cannot be removed as content", field="action_type")

            await _authorize(
                db,
                actor=actor,
                action_type=action_type,
                target_user_id=target_user_id,
                identity=identity,
                now=now,
                operation="take_action",
            )
            await _enforce_action_rate_limit(db, actor=actor, settings=settings, now=now)

            target_status = (
                ReportStatus.dismissed
                if action_type == ActionType.content_approved
                else ReportStatus.resolved
            )
            try:
                assert_valid_report_transition(ReportStatus(report.status), target_status)
            except ValueError as exc:
                raise AppError(
                    code="invalid_report_transition",
                    message=str(exc),
                    status_code=409,
                ) from exc

            with observe_transition(
                action_type=action_type.value, from_state="none", to_state=ActionState.active
            ):
                action = ModerationAction(
                    moderator_id=actor.user_id,
                    target_user_id=target_user_id,
                    action_type=action_type.value,
                    target_type=report.report_type,
                    target_id=report.target_id,
                    reason=params.reason,
                    duration_days=params.duration_days,
                    expires_at=_expires_at(action_type, params.duration_days, now),
                    related_report_id=report.id,
                    internal_notes=params.internal_notes,
                    created_at=now,
                    details=_action_details(params, actor, now) or None,
                    reversal=None,
                )
                db.add(action)
                await db.flush()

                report.status = target_status.value
                report.reviewed_by = actor.user_id
                report.reviewed_at = now
                report.resolution_notes = params.reason
                report.action_taken = action_type.value
                report.updated_at = now

                await _apply_side_effect(
                    db, action, restriction_type=params.restriction_type, now=now
                )

                notification = queue_action_notification(db, action=action, now=now)
                action.notification_sent = notification is not None
                await db.commit()

    logger.info(
        "moderation_action_taken",
        extra={
            "action_id": str(action.id),
            "action_type": action.action_type,
            "report_id": str(report.id),
            "moderator_id": str(actor.user_id),
            "target_user_id": str(target_user_id) if target_user_id else None,
        },
    )
    return ActionOutcome(
        action=action,
        report=report,
        notifications=[notification] if notification is not None else [],
    )


async def reapply_action(
    db: AsyncSession,
    action_id: uuid.UUID,
    *,
    reason: str,
    actor: Actor,
    now: dt.datetime,
    settings: Settings,
    identity: IdentityDirectory,
) -> ActionOutcome:
    """Re-apply a reversed action as a new action row that references the original."""
    reason = sanitize_text(reason)
    if not reason:
        raise _invalid("A reason is required to re-apply an action", field="reason")
    if len(reason) > MAX_REASON_LENGTH:
        raise _invalid(f"Reason must be at most {MAX_REASON_LENGTH} characters", field="reason")

    async with observe_operation("reapply_action", attributes={"action.id": str(action_id)}):
        async with database_guard(db, "reapply_action"):
            original = await db.get(ModerationAction, action_id)
            if original is None:
                raise error_for_kind(ErrorKind.not_found, "Moderation action not found")
            if original.state_at(now) != ActionState.reversed:
                raise AppError(
                    code="action_not_reversed",
                    message="Only reversed actions can be re-applied",
                    status_code=409,
                    details={"state": original.state_at(now).value},
                )
            existing = await db.scalar(
                select(ModerationAction.id).where(ModerationAction.reapplied_from_id == original.id)
            )
            if existing is not None:
                raise AppError(
                    code="action_already_reapplied",
                    message="This action has already been re-applied",
                    status_code=409,
                    details={"reapplied_action_id": str(existing)},
                )
            action_type = ActionType(original.action_type)
            await _authorize(
                db,
                actor=actor,
                action_type=action_type,
                target_user_id=original.target_user_id,
                identity=identity,
                now=now,
                operation="reapply_action",
            )
            await _enforce_action_rate_limit(db, actor=actor, settings=settings, now=now)

            restriction_value = (original.details or {}).get("restriction_type")
            restriction_type = RestrictionType(restriction_value) if restriction_value else None
            details: dict[str, Any] = {}
            if restriction_type is not None:
                details["restriction_type"] = restriction_type.value

            with observe_transition(
                action_type=action_type.value,
                from_state=ActionState.reversed,
                to_state=ActionState.active,
            ):
                action = ModerationAction(
                    moderator_id=actor.user_id,
                    target_user_id=original.target_user_id,
                    action_type=original.action_type,
                    target_type=original.target_type,
                    target_id=original.target_id,
                    reason=reason,
                    duration_days=original.duration_days,
                    expires_at=_expires_at(action_type, original.duration_days, now),
                    related_report_id=original.related_report_id,
                    reapplied_from_id=original.id,
                    internal_notes=original.internal_notes,
                    created_at=now,
                    details=details or None,
                    reversal=None,
                )
                db.add(action)
                await db.flush()
                await _apply_side_effect(db, action, restriction_type=restriction_type, now=now)
                notification = queue_action_notification(db, action=action, now=now)
                action.notification_sent = notification is not None
                await db.commit()

    logger.info(
        "moderation_action_reapplied",
        extra={
            "action_id": str(action.id),
            "reapplied_from_id": str(original.id),
            "moderator_id": str(actor.user_id),
        },
    )
    return ActionOutcome(
        action=action,
        report=None,
        notifications=[notification] if notification is not None else [],
    )


def action_history(
    action: ModerationAction, reapplications: list[ModerationAction] | None = None
) -> list[dict[str, Any]]:
    """Derive the applied / reversed / reapplied timeline of an action."""
    history: list[dict[str, Any]] = [
        {
            "timestamp": action.created_at,
            "action": "reapplied" if action.reapplied_from_id else "applied",
            "by_user_id": action.moderator_id,
            "reason": action.reason,
            "is_self_action": False,
        }
    ]
    if action.reversal is not None:
        history.append(
            {
                "timestamp": action.reversal.revoked_at,
                "action": "reversed",
                "by_user_id": action.reversal.revoked_by,
                "reason": action.reversal.reversal_reason,
                "is_self_action": action.reversal.is_self_reversal,
            }
        )
    for child in reapplications or []:
        history.append(
            {
                "timestamp": child.created_at,
                "action": "reapplied",
                "by_user_id": child.moderator_id,
                "reason": child.reason,
                "is_self_action": child.moderator_id == action.moderator_id,
            }
        )
    return sorted(history, key=lambda entry: entry["timestamp"])
