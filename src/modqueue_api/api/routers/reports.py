from __future__ import annotations

import datetime as dt
import uuid

from fastapi import APIRouter, Depends

from modqueue_api.api.conversions import rejection_to_error, report_to_public
from modqueue_api.api.schemas import (
    CreateReportRequest,
    CreateReportResponse,
    ModeratorFlagRequest,
)
from modqueue_api.auth.deps import CurrentActor, ModeratorActor
from modqueue_api.db.session import DbSessionDep
from modqueue_api.domain.directory import ContentDirectoryDep, IdentityDirectoryDep
from modqueue_api.domain.notification_dispatch import (
    NotificationDispatcherDep,
    dispatch_notifications,
)
from modqueue_api.domain.report_intake import (
    IntakeChannel,
    IntakeResult,
    Rejected,
    ReportDraft,
    submit_report,
)
from modqueue_api.settings import Settings, get_settings
from modqueue_api.time import UtcNow, get_utcnow

router = APIRouter(prefix="/v1", tags=["reports"])


def _draft_from_request(
    body: CreateReportRequest, reporter_id: uuid.UUID, priority: int | None = None
) -> ReportDraft:
    return ReportDraft(
        reporter_id=reporter_id,
        report_type=body.report_type,
        target_id=body.target_id,
        reason=body.reason,
        description=body.description,
        evidence=body.evidence.model_dump(exclude_none=True) if body.evidence else None,
        reported_user_id=body.reported_user_id,
        priority=priority,
    )


async def _admitted_response(
    result: IntakeResult,
    db: DbSessionDep,
    dispatcher: NotificationDispatcherDep,
    now: dt.datetime,
) -> CreateReportResponse:
    if isinstance(result, Rejected):
        raise rejection_to_error(result.kind, result.message, result.details)
    await dispatch_notifications(db, dispatcher, result.notifications, now=now)
    return CreateReportResponse(report=report_to_public(result.report))


@router.post("/reports", response_model=CreateReportResponse, status_code=201)
async def create_report(
    body: CreateReportRequest,
    db: DbSessionDep,
    actor: CurrentActor,
    identity: IdentityDirectoryDep,
    content: ContentDirectoryDep,
    dispatcher: NotificationDispatcherDep,
    settings: Settings = Depends(get_settings),
    now: UtcNow = Depends(get_utcnow),
) -> CreateReportResponse:
    timestamp = now()
    result = await submit_report(
        db,
        _draft_from_request(body, actor.user_id),
        channel=IntakeChannel.user,
        now=timestamp,
        settings=settings,
        identity=identity,
        content=content,
    )
    return await _admitted_response(result, db, dispatcher, timestamp)


@router.post("/moderation/flags", response_model=CreateReportResponse, status_code=201)
async def flag_content(
    body: ModeratorFlagRequest,
    db: DbSessionDep,
    actor: ModeratorActor,
    identity: IdentityDirectoryDep,
    content: ContentDirectoryDep,
    dispatcher: NotificationDispatcherDep,
    settings: Settings = Depends(get_settings),
    now: UtcNow = Depends(get_utcnow),
) -> CreateReportResponse:
    timestamp = now()
    result = await submit_report(
        db,
        _draft_from_request(body, actor.user_id, priority=body.priority),
        channel=IntakeChannel.moderator_flag,
        now=timestamp,
        settings=settings,
        identity=identity,
        content=content,
    )
    return await _admitted_response(result, db, dispatcher, timestamp)
