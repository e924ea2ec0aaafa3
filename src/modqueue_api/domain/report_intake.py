from __future__ import annotations

import datetime as dt
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import NotificationOutbox, Report
from modqueue_api.db.session import database_guard
from modqueue_api.domain.directory import ContentDirectory, IdentityDirectory
from modqueue_api.domain.errors import ErrorKind
from modqueue_api.domain.evidence import (
    EvidenceError,
    filter_eligible_evidence,
    sanitize_text,
    validate_evidence,
)
from modqueue_api.domain.notifications import queue_high_priority_report_notifications
from modqueue_api.domain.report_state import ReportStatus
from modqueue_api.domain.report_taxonomy import (
    MAX_PRIORITY,
    MIN_PRIORITY,
    ReportReason,
    ReportType,
    content_noun,
    priority_for_reason,
)
from modqueue_api.domain.roles import ELEVATED_ROLES, Role
from modqueue_api.domain.security_events import SecurityEventType, record_security_event
from modqueue_api.observability import metrics
from modqueue_api.observability.ops import observe_operation
from modqueue_api.settings import Settings
from modqueue_api.time import seconds_until

logger = logging.getLogger(__name__)

NOTIFY_MODERATORS_AT_PRIORITY = 2
REPORT_TYPE_VALUES = frozenset(item.value for item in ReportType)


class IntakeChannel(StrEnum):
    user = "user"
    moderator_flag = "moderator_flag"


class RejectionKind(StrEnum):
    validation = ErrorKind.validation.value
    self_report = ErrorKind.self_report.value
    duplicate_report = ErrorKind.duplicate_report.value
    admin_protected = ErrorKind.admin_protected.value
    rate_limit_exceeded = ErrorKind.rate_limit_exceeded.value


@dataclass(frozen=True)
class ReportDraft:
    reporter_id: uuid.UUID
    report_type: str
    target_id: uuid.UUID
    reason: str
    description: str | None
    evidence: Mapping[str, Any] | None = None
    reported_user_id: uuid.UUID | None = None
    priority: int | None = None


@dataclass(frozen=True)
class Admitted:
    report: Report
    notifications: list[NotificationOutbox] = field(default_factory=list)


@dataclass(frozen=True)
class Rejected:
    kind: RejectionKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    retry_at: dt.datetime | None = None


IntakeResult = Admitted | Rejected


@dataclass(frozen=True)
class _ValidDraft:
    report_type: ReportType
    reason: ReportReason
    description: str
    evidence: dict[str, Any] | None
    priority: int


def _validation(message: str, **details: Any) -> Rejected:
    return Rejected(kind=RejectionKind.validation, message=message, details=details)


def _validate_draft(
    draft: ReportDraft, *, channel: IntakeChannel, settings: Settings
) -> _ValidDraft | Rejected:
    try:
        report_type = ReportType(draft.report_type)
    except ValueError:
        return _validation("Invalid report type", field="report_type")
    try:
        reason = ReportReason(draft.reason)
    except ValueError:
        return _validation("Please select a valid reason for reporting", field="reason")

    description = sanitize_text(draft.description)
    min_length = (
        settings.moderator_description_min_length
        if channel == IntakeChannel.moderator_flag
        else settings.user_description_min_length
    )
    if len(description) < min_length:
        return _validation(
            f"Please provide at least {min_length} characters describing the issue",
            field="description",
            min_length=min_length,
        )
    if len(description) > settings.description_max_length:
        return _validation(
            f"Description must be at most {settings.description_max_length} characters",
            field="description",
            max_length=settings.description_max_length,
        )

    try:
        evidence = validate_evidence(draft.evidence)
    except EvidenceError as exc:
        return _validation(str(exc), field=exc.field)

    priority = priority_for_reason(reason)
    if draft.priority is not None:
        if channel != IntakeChannel.moderator_flag:
            return _validation("Only moderators may set a report priority", field="priority")
        if not MIN_PRIORITY <= draft.priority <= MAX_PRIORITY:
            return _validation(
                f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}", field="priority"
            )
        priority = draft.priority

    return _ValidDraft(
        report_type=report_type,
        reason=reason,
        description=description,
        evidence=filter_eligible_evidence(evidence, report_type, reason),
        priority=priority,
    )


def _window_hours(seconds: int) -> int:
    return max(1, seconds // 3600)


async def _find_recent_duplicate(
    db: AsyncSession,
    draft: ReportDraft,
    report_type: ReportType,
    *,
    window_start: dt.datetime,
) -> Report | None:
    return await db.scalar(
        select(Report)
        .where(
            Report.reporter_id == draft.reporter_id,
            Report.report_type == report_type.value,
            Report.target_id == draft.target_id,
            Report.created_at > window_start,
        )
        .order_by(Report.created_at.desc())
        .limit(1)
    )


async def _rate_limit_retry_at(
    db: AsyncSession,
    reporter_id: uuid.UUID,
    *,
    window_start: dt.datetime,
    window: dt.timedelta,
    recent_count: int,
    max_per_window: int,
) -> dt.datetime | None:
    # The reporter drops back under the limit once enough of the oldest reports age out.
    offset = max(0, recent_count - max_per_window)
    oldest = await db.scalar(
        select(Report.created_at)
        .where(Report.reporter_id == reporter_id, Report.created_at > window_start)
        .order_by(Report.created_at.asc())
        .offset(offset)
        .limit(1)
    )
    if oldest is None:
        return None
    return oldest + window


def _with_retry_after(
    details: dict[str, Any], *, now: dt.datetime, retry_at: dt.datetime | None
) -> dict[str, Any]:
    if retry_at is None:
        return details
    details["retry_after_seconds"] = seconds_until(retry_at, now)
    details["retry_at"] = retry_at.isoformat()
    return details


async def _reject_and_log(
    db: AsyncSession,
    *,
    event_type: str,
    draft: ReportDraft,
    report_type: ReportType,
    rejection: Rejected,
    now: dt.datetime,
) -> Rejected:
    await record_security_event(
        db,
        event_type,
        draft.reporter_id,
        occurred_at=now,
        details={
            "report_type": report_type.value,
            "target_id": str(draft.target_id),
            **rejection.details,
        },
    )
    return rejection


async def submit_report(
    db: AsyncSession,
    draft: ReportDraft,
    *,
    channel: IntakeChannel,
    now: dt.datetime,
    settings: Settings,
    identity: IdentityDirectory,
    content: ContentDirectory,
) -> IntakeResult:
    """Run the intake policy gate and persist the report when it passes.

    Checks run in a fixed order and the first failure wins: validation, self-report,
    duplicate, admin protection, rate limit. Every rejection after validation is
    written to the security log.
    """
    async with observe_operation(
        "report_intake",
        attributes={"report.type": draft.report_type, "intake.channel": channel.value},
    ):
        async with database_guard(db, "report_intake"):
            result = await _run_gate(
                db,
                draft,
                channel=channel,
                now=now,
                settings=settings,
                identity=identity,
                content=content,
            )
        outcome = result.kind.value if isinstance(result, Rejected) else "admitted"
        metrics.report_intake_total.labels(
            report_type=draft.report_type if draft.report_type in REPORT_TYPE_VALUES else "unknown",
            outcome=outcome,
            moderator_flag=str(channel == IntakeChannel.moderator_flag).lower(),
        ).inc()
        return result


async def _run_gate(
    db: AsyncSession,
    draft: ReportDraft,
    *,
    channel: IntakeChannel,
    now: dt.datetime,
    settings: Settings,
    identity: IdentityDirectory,
    content: ContentDirectory,
) -> IntakeResult:
    valid = _validate_draft(draft, channel=channel, settings=settings)
    if isinstance(valid, Rejected):
        return valid

    report_type = valid.report_type
    noun = content_noun(report_type)

    owner_id = await content.owner_of(db, report_type, draft.target_id)
    if (
        owner_id is not None
        and draft.reported_user_id is not None
        and draft.reported_user_id != owner_id
    ):
        return _validation(
            f"The reported user does not own this {noun}", field="reported_user_id"
        )
    if owner_id is not None and owner_id == draft.reporter_id:
        return await _reject_and_log(
            db,
            event_type=SecurityEventType.self_report_attempt,
            draft=draft,
            report_type=report_type,
            rejection=Rejected(
                kind=RejectionKind.self_report,
                message=f"You cannot report your own {noun}.",
            ),
            now=now,
        )

    duplicate_window = dt.timedelta(seconds=settings.duplicate_window_seconds)
    duplicate = await _find_recent_duplicate(
        db, draft, report_type, window_start=now - duplicate_window
    )
    if duplicate is not None:
        retry_at = duplicate.created_at + duplicate_window
        hours = _window_hours(settings.duplicate_window_seconds)
        return await _reject_and_log(
            db,
            event_type=SecurityEventType.duplicate_report_attempt,
            draft=draft,
            report_type=report_type,
            rejection=Rejected(
                kind=RejectionKind.duplicate_report,
                message=(
                    f"You have already reported this {noun} recently. "
                    f"Please wait {hours} hours before reporting again."
                ),
                details=_with_retry_after(
                    {
                        "original_report_id": str(duplicate.id),
                        "original_reported_at": duplicate.created_at.isoformat(),
                    },
                    now=now,
                    retry_at=retry_at,
                ),
                retry_at=retry_at,
            ),
            now=now,
        )

    if report_type == ReportType.user:
        target_role = await identity.role_of(db, draft.target_id)
        if target_role == Role.admin:
            return await _reject_and_log(
                db,
                event_type=SecurityEventType.admin_report_attempt,
                draft=draft,
                report_type=report_type,
                rejection=Rejected(
                    kind=RejectionKind.admin_protected,
                    message=f"This {noun} cannot be reported.",
                ),
                now=now,
            )

    rate_window = dt.timedelta(seconds=settings.report_window_seconds)
    window_start = now - rate_window
    recent_count = int(
        await db.scalar(
            select(func.count())
            .select_from(Report)
            .where(Report.reporter_id == draft.reporter_id, Report.created_at > window_start)
        )
        or 0
    )
    if recent_count >= settings.max_reports_per_window:
        retry_at = await _rate_limit_retry_at(
            db,
            draft.reporter_id,
            window_start=window_start,
            window=rate_window,
            recent_count=recent_count,
            max_per_window=settings.max_reports_per_window,
        )
        hours = _window_hours(settings.report_window_seconds)
        return await _reject_and_log(
            db,
            event_type=SecurityEventType.report_rate_limit_exceeded,
            draft=draft,
            report_type=report_type,
            rejection=Rejected(
                kind=RejectionKind.rate_limit_exceeded,
                message=(
                    f"You have reached the limit of {settings.max_reports_per_window} reports "
                    f"per {hours} hours. Please try again later."
                ),
                details=_with_retry_after(
                    {
                        "max_per_window": settings.max_reports_per_window,
                        "window_seconds": settings.report_window_seconds,
                        "current_count": recent_count,
                    },
                    now=now,
                    retry_at=retry_at,
                ),
                retry_at=retry_at,
            ),
            now=now,
        )

    flagged = channel == IntakeChannel.moderator_flag
    report = Report(
        reporter_id=draft.reporter_id,
        reported_user_id=owner_id if owner_id is not None else draft.reported_user_id,
        report_type=report_type.value,
        target_id=draft.target_id,
        reason=valid.reason.value,
        description=valid.description,
        evidence=valid.evidence,
        status=(ReportStatus.under_review if flagged else ReportStatus.pending).value,
        priority=valid.priority,
        moderator_flagged=flagged,
        created_at=now,
        updated_at=now,
    )
    db.add(report)
    await db.flush()

    notifications: list[NotificationOutbox] = []
    if report.priority <= NOTIFY_MODERATORS_AT_PRIORITY:
        recipients = await identity.user_ids_with_roles(db, set(ELEVATED_ROLES))
        notifications = queue_high_priority_report_notifications(
            db, report=report, recipients=recipients, now=now
        )

    await db.commit()
    logger.info(
        "report_admitted",
        extra={
            "report_id": str(report.id),
            "report_type": report.report_type,
            "reason": report.reason,
            "priority": report.priority,
            "moderator_flagged": flagged,
        },
    )
    return Admitted(report=report, notifications=notifications)
