from __future__ import annotations

import datetime as dt

from modqueue_api.api.schemas import (
    ModerationActionPublic,
    ReportPublic,
    RestrictionPublic,
    StateChange,
)
from modqueue_api.db.models import ModerationAction, Report, UserRestriction
from modqueue_api.domain.action_types import ActionState
from modqueue_api.domain.errors import AppError, ErrorKind, error_for_kind
from modqueue_api.domain.moderation_actions import action_history
from modqueue_api.domain.moderation_queue import report_has_evidence


def report_to_public(report: Report) -> ReportPublic:
    return ReportPublic(
        id=report.id,
        reporter_id=report.reporter_id,
        reported_user_id=report.reported_user_id,
        report_type=report.report_type,
        target_id=report.target_id,
        reason=report.reason,
        description=report.description,
        evidence=report.evidence,
        has_evidence=report_has_evidence(report),
        status=report.status,
        priority=report.priority,
        moderator_flagged=report.moderator_flagged,
        created_at=report.created_at,
        reviewed_by=report.reviewed_by,
        reviewed_at=report.reviewed_at,
        resolution_notes=report.resolution_notes,
        action_taken=report.action_taken,
    )


def action_to_public(
    action: ModerationAction,
    *,
    now: dt.datetime,
    reapplications: list[ModerationAction] | None = None,
) -> ModerationActionPublic:
    state = action.state_at(now)
    return ModerationActionPublic(
        id=action.id,
        moderator_id=action.moderator_id,
        target_user_id=action.target_user_id,
        action_type=action.action_type,
        target_type=action.target_type,
        target_id=action.target_id,
        reason=action.reason,
        duration_days=action.duration_days,
        expires_at=action.expires_at,
        related_report_id=action.related_report_id,
        reapplied_from_id=action.reapplied_from_id,
        internal_notes=action.internal_notes,
        notification_sent=action.notification_sent,
        created_at=action.created_at,
        revoked_at=action.revoked_at,
        revoked_by=action.revoked_by,
        reversal_reason=action.reversal_reason,
        is_self_reversal=bool(action.reversal and action.reversal.is_self_reversal),
        state=state.value,
        is_active=state == ActionState.active,
        metadata=action.details,
        state_changes=[StateChange(**entry) for entry in action_history(action, reapplications)],
    )


def restriction_to_public(restriction: UserRestriction) -> RestrictionPublic:
    return RestrictionPublic(
        id=restriction.id,
        restriction_type=restriction.restriction_type,
        expires_at=restriction.expires_at,
        is_active=restriction.is_active,
        reason=restriction.reason,
        applied_by=restriction.applied_by,
        related_action_id=restriction.related_action_id,
        created_at=restriction.created_at,
    )


def rejection_to_error(kind: str, message: str, details: dict | None = None) -> AppError:
    return error_for_kind(ErrorKind(kind), message, details)
