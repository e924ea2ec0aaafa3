from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import ModerationAction, NotificationOutbox, Report
from modqueue_api.domain.action_types import ActionType
from modqueue_api.domain.report_taxonomy import content_noun

MAX_NOTIFICATION_BODY_LENGTH = 2000

_ACTION_TITLES: dict[ActionType, str] = {
    ActionType.content_removed: "Content Removed",
    ActionType.user_warned: "Warning Issued",
    ActionType.user_suspended: "Account Suspended",
    ActionType.user_banned: "Account Permanently Suspended",
    ActionType.restriction_applied: "Account Restricted",
}

_REVERSAL_TEXT: dict[ActionType, tuple[str, str]] = {
    ActionType.user_suspended: ("Suspension Lifted", "Your account suspension has been lifted"),
    ActionType.user_banned: ("Ban Removed", "Your permanent ban has been removed"),
    ActionType.restriction_applied: (
        "Restriction Removed",
        "A restriction on your account has been removed",
    ),
    ActionType.user_warned: ("Warning Revoked", "A warning on your account has been revoked"),
    ActionType.content_removed: (
        "Content Removal Revoked",
        "A content removal action has been revoked (note: content cannot be restored)",
    ),
}


def _truncate(body: str) -> str:
    return body[:MAX_NOTIFICATION_BODY_LENGTH]


def _action_body(action: ModerationAction) -> str:
    action_type = ActionType(action.action_type)
    lines: list[str]
    if action_type == ActionType.content_removed:
        lines = [f"Your {content_noun(action.target_type)} was removed for violating our guidelines."]
    elif action_type == ActionType.user_warned:
        lines = ["You have received a warning from the moderation team."]
    elif action_type == ActionType.user_suspended:
        lines = [f"Your account has been suspended for {action.duration_days} day(s)."]
        if action.expires_at is not None:
            lines.append(f"Suspension ends: {action.expires_at.isoformat()}")
    elif action_type == ActionType.user_banned:
        lines = ["Your account has been permanently suspended."]
    else:
        restriction = (action.details or {}).get("restriction_type", "restriction")
        lines = [f"A restriction ({restriction}) has been applied to your account."]
        if action.expires_at is not None:
            lines.append(f"Restriction ends: {action.expires_at.isoformat()}")
    lines.append(f"Reason: {action.reason}")
    return _truncate("\n\n".join(lines))


def queue_action_notification(
    db: AsyncSession,
    *,
    action: ModerationAction,
    now: dt.datetime,
) -> NotificationOutbox | None:
    action_type = ActionType(action.action_type)
    if action.target_user_id is None or action_type not in _ACTION_TITLES:
        return None
    notification = NotificationOutbox(
        user_id=action.target_user_id,
        event_type="moderation_action",
        title=_ACTION_TITLES[action_type],
        body=_action_body(action),
        payload={
            "action_id": str(action.id),
            "action_type": action_type.value,
            "target_type": action.target_type,
            "target_id": str(action.target_id),
            "expires_at": action.expires_at.isoformat() if action.expires_at else None,
        },
        created_at=now,
    )
    db.add(notification)
    return notification


def queue_reversal_notification(
    db: AsyncSession,
    *,
    action: ModerationAction,
    reason: str,
    now: dt.datetime,
) -> NotificationOutbox | None:
    action_type = ActionType(action.action_type)
    if action.target_user_id is None or action_type not in _REVERSAL_TEXT:
        return None
    title, prefix = _REVERSAL_TEXT[action_type]
    body = (
        f"{prefix}.\n\nReason: {reason}\n\nOriginal action reason: {action.reason}\n\n"
        "Please continue to follow our community guidelines to keep your account in good standing."
    )
    notification = NotificationOutbox(
        user_id=action.target_user_id,
        event_type="moderation_action_reversed",
        title=title,
        body=_truncate(body),
        payload={"action_id": str(action.id), "action_type": action_type.value},
        created_at=now,
    )
    db.add(notification)
    return notification


def queue_restriction_lifted_notification(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    restriction_type: str,
    reason: str,
    now: dt.datetime,
) -> NotificationOutbox:
    if restriction_type == "suspended":
        title, prefix = "Suspension Lifted", "Your account suspension has been lifted"
    else:
        title = "Restriction Removed"
        prefix = f"The {restriction_type} restriction on your account has been removed"
    notification = NotificationOutbox(
        user_id=user_id,
        event_type="restriction_lifted",
        title=title,
        body=_truncate(f"{prefix}.\n\nReason: {reason}"),
        payload={"restriction_type": restriction_type},
        created_at=now,
    )
    db.add(notification)
    return notification


def queue_high_priority_report_notifications(
    db: AsyncSession,
    *,
    report: Report,
    recipients: Iterable[uuid.UUID],
    now: dt.datetime,
) -> list[NotificationOutbox]:
    notifications: list[NotificationOutbox] = []
    label = "Urgent" if report.priority == 1 else "High priority"
    for recipient in recipients:
        if recipient == report.reporter_id:
            continue
        notification = NotificationOutbox(
            user_id=recipient,
            event_type="high_priority_report",
            title=f"{label} report: {report.reason}",
            body=_truncate(
                f"A {content_noun(report.report_type)} was reported for {report.reason} "
                f"(priority {report.priority})."
            ),
            payload={
                "report_id": str(report.id),
                "report_type": report.report_type,
                "priority": report.priority,
            },
            created_at=now,
        )
        db.add(notification)
        notifications.append(notification)
    return notifications


def queue_admin_alert(
    db: AsyncSession,
    *,
    recipients: Iterable[uuid.UUID],
    severity: str,
    title: str,
    body: str,
    details: dict[str, Any],
    now: dt.datetime,
) -> list[NotificationOutbox]:
    notifications = [
        NotificationOutbox(
            user_id=recipient,
            event_type="security_alert",
            title=f"[{severity.upper()}] {title}",
            body=_truncate(body),
            payload={"severity": severity, **details},
            created_at=now,
        )
        for recipient in recipients
    ]
    db.add_all(notifications)
    return notifications
