from __future__ import annotations

import datetime as dt
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select

from modqueue_api.api.conversions import (
    action_to_public,
    rejection_to_error,
    report_to_public,
)
from modqueue_api.api.schemas import (
    ModerationActionResponse,
    QualityScorePublic,
    QueueResponse,
    ReapplyActionRequest,
    ReportQualityResponse,
    ReporterAccuracyPublic,
    ReporterAccuracyResponse,
    ReverseActionRequest,
    TakeActionRequest,
)
from modqueue_api.auth.deps import ModeratorActor
from modqueue_api.db.models import ModerationAction
from modqueue_api.db.session import DbSessionDep, database_guard
from modqueue_api.domain.action_reversals import ReversalRejected, reverse_action
from modqueue_api.domain.directory import ContentDirectoryDep, IdentityDirectoryDep
from modqueue_api.domain.errors import ErrorKind, error_for_kind
from modqueue_api.domain.moderation_actions import ActionParams, reapply_action, take_action
from modqueue_api.domain.moderation_queue import QueueFilters, list_queue
from modqueue_api.domain.notification_dispatch import (
    NotificationDispatcherDep,
    dispatch_notifications,
)
from modqueue_api.domain.report_state import ReportStatus
from modqueue_api.domain.report_taxonomy import ReportType
from modqueue_api.domain.reporter_scoring import QualityScore, report_quality, reporter_accuracy
from modqueue_api.settings import Settings, get_settings
from modqueue_api.time import UtcNow, get_utcnow

router = APIRouter(prefix="/v1/moderation", tags=["moderation"])


def quality_to_public(score: QualityScore) -> QualityScorePublic:
    return QualityScorePublic(
        report_count=score.report_count,
        evidence_eligible_count=score.evidence_eligible_count,
        evidence_coverage=score.evidence_coverage,
        average_description_length=score.average_description_length,
        description_score=score.description_score,
        accuracy_rate=score.accuracy_rate,
        score=score.score,
    )


@router.get("/queue", response_model=QueueResponse)
async def get_queue(
    db: DbSessionDep,
    _actor: ModeratorActor,
    status: list[ReportStatus] | None = Query(default=None),
    priority: int | None = Query(default=None, ge=1, le=5),
    report_type: ReportType | None = Query(default=None),
    has_evidence: bool | None = Query(default=None),
    moderator_flagged: bool | None = Query(default=None),
    created_after: dt.datetime | None = Query(default=None),
    created_before: dt.datetime | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=500),
    settings: Settings = Depends(get_settings),
    now: UtcNow = Depends(get_utcnow),
) -> QueueResponse:
    timestamp = now()
    filters = QueueFilters(
        statuses=frozenset(status) if status else None,
        priority=priority,
        report_type=report_type,
        has_evidence=has_evidence,
        moderator_flagged=moderator_flagged,
        created_after=created_after,
        created_before=created_before,
        limit=limit or settings.queue_default_limit,
    )
    async with database_guard(db, "list_queue"):
        reports = await list_queue(
            db,
            filters,
            now=timestamp,
            age_protection=dt.timedelta(seconds=settings.queue_age_protection_seconds),
        )
    return QueueResponse(
        reports=[report_to_public(report) for report in reports], generated_at=timestamp
    )


@router.post(
    "/reports/{report_id}/actions", response_model=ModerationActionResponse, status_code=201
)
async def create_action(
    report_id: uuid.UUID,
    body: TakeActionRequest,
    db: DbSessionDep,
    actor: ModeratorActor,
    identity: IdentityDirectoryDep,
    content: ContentDirectoryDep,
    dispatcher: NotificationDispatcherDep,
    settings: Settings = Depends(get_settings),
    now: UtcNow = Depends(get_utcnow),
) -> ModerationActionResponse:
    timestamp = now()
    outcome = await take_action(
        db,
        report_id,
        ActionParams(**body.model_dump()),
        actor=actor,
        now=timestamp,
        settings=settings,
        identity=identity,
        content=content,
    )
    await dispatch_notifications(db, dispatcher, outcome.notifications, now=timestamp)
    return ModerationActionResponse(
        action=action_to_public(outcome.action, now=timestamp),
        report=report_to_public(outcome.report) if outcome.report else None,
    )


@router.get("/actions/{action_id}", response_model=ModerationActionResponse)
async def get_action(
    action_id: uuid.UUID,
    db: DbSessionDep,
    _actor: ModeratorActor,
    now: UtcNow = Depends(get_utcnow),
) -> ModerationActionResponse:
    timestamp = now()
    async with database_guard(db, "get_action"):
        action = await db.get(ModerationAction, action_id)
        if action is None:
            raise error_for_kind(ErrorKind.not_found, "Moderation action not found")
        reapplications = list(
            (
                await db.scalars(
                    select(ModerationAction)
                    .where(ModerationAction.reapplied_from_id == action.id)
                    .order_by(ModerationAction.created_at)
                )
            ).all()
        )
    return ModerationActionResponse(
        action=action_to_public(action, now=timestamp, reapplications=reapplications)
    )


@router.post("/actions/{action_id}/reversal", response_model=ModerationActionResponse)
async def reverse(
    action_id: uuid.UUID,
    body: ReverseActionRequest,
    db: DbSessionDep,
    actor: ModeratorActor,
    identity: IdentityDirectoryDep,
    dispatcher: NotificationDispatcherDep,
    now: UtcNow = Depends(get_utcnow),
) -> ModerationActionResponse:
    timestamp = now()
    result = await reverse_action(
        db, action_id, actor=actor, reason=body.reason, now=timestamp, identity=identity
    )
    if isinstance(result, ReversalRejected):
        raise rejection_to_error(result.kind, result.message, result.details)
    await dispatch_notifications(db, dispatcher, result.notifications, now=timestamp)
    return ModerationActionResponse(action=action_to_public(result.action, now=timestamp))


@router.post(
    "/actions/{action_id}/reapply", response_model=ModerationActionResponse, status_code=201
)
async def reapply(
    action_id: uuid.UUID,
    body: ReapplyActionRequest,
    db: DbSessionDep,
    actor: ModeratorActor,
    identity: IdentityDirectoryDep,
    dispatcher: NotificationDispatcherDep,
    settings: Settings = Depends(get_settings),
    now: UtcNow = Depends(get_utcnow),
) -> ModerationActionResponse:
    timestamp = now()
    outcome = await reapply_action(
        db,
        action_id,
        reason=body.reason,
        actor=actor,
        now=timestamp,
        settings=settings,
        identity=identity,
    )
    await dispatch_notifications(db, dispatcher, outcome.notifications, now=timestamp)
    return ModerationActionResponse(action=action_to_public(outcome.action, now=timestamp))


@router.get("/reporters/{reporter_id}/accuracy", response_model=ReporterAccuracyResponse)
async def get_reporter_accuracy(
    reporter_id: uuid.UUID,
    db: DbSessionDep,
    _actor: ModeratorActor,
) -> ReporterAccuracyResponse:
    accuracy = await reporter_accuracy(db, reporter_id)
    return ReporterAccuracyResponse(
        reporter_id=reporter_id,
        accuracy=ReporterAccuracyPublic(
            total=accuracy.total, validated=accuracy.validated, rate=accuracy.rate
        )
        if accuracy
        else None,
    )


@router.get("/report-quality", response_model=ReportQualityResponse)
async def get_report_quality(
    db: DbSessionDep,
    _actor: ModeratorActor,
    reporter_id: uuid.UUID | None = Query(default=None),
    created_after: dt.datetime | None = Query(default=None),
) -> ReportQualityResponse:
    quality = await report_quality(db, reporter_id=reporter_id, created_after=created_after)
    return ReportQualityResponse(
        reporter_id=reporter_id,
        overall=quality_to_public(quality.overall) if quality.overall else None,
        by_reason={
            reason: quality_to_public(score) for reason, score in quality.by_reason.items()
        },
    )
