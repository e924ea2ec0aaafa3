from __future__ import annotations

import datetime as dt
import uuid

from fastapi import APIRouter, Depends, Query

from modqueue_api.api.conversions import action_to_public
from modqueue_api.api.schemas import (
    DurationSummaryPublic,
    HistoryEntryPublic,
    LiftRequest,
    LiftResponse,
    ModerationHistoryResponse,
    ModeratorReversalStatsResponse,
    PreviousReversalsResponse,
    RateBreakdownPublic,
    ReversalRateResponse,
    ReversalTimeMetricsResponse,
)
from modqueue_api.auth.deps import ModeratorActor
from modqueue_api.db.models import Report
from modqueue_api.db.session import DbSessionDep, database_guard
from modqueue_api.domain.action_types import ActionType
from modqueue_api.domain.directory import IdentityDirectoryDep
from modqueue_api.domain.errors import ErrorKind, error_for_kind
from modqueue_api.domain.moderation_history import (
    HistoryEntry,
    ReversalHistoryFilters,
    previous_reversals,
    reversal_history,
    user_moderation_history,
)
from modqueue_api.domain.notification_dispatch import (
    NotificationDispatcherDep,
    dispatch_notifications,
)
from modqueue_api.domain.restriction_lifting import Lifted, lift_restriction, lift_suspension
from modqueue_api.domain.reversal_metrics import (
    DurationSummary,
    RateBreakdown,
    moderator_reversal_stats,
    reversal_rate,
    reversal_time_metrics,
)
from modqueue_api.time import UtcNow, get_utcnow

router = APIRouter(prefix="/v1/moderation", tags=["moderation"])


def history_to_public(
    entries: list[HistoryEntry], *, now: dt.datetime
) -> ModerationHistoryResponse:
    return ModerationHistoryResponse(
        entries=[
            HistoryEntryPublic(
                action=action_to_public(
                    entry.action, now=now, reapplications=entry.reapplications
                ),
                hours_to_reversal=(
                    round(entry.hours_to_reversal, 2)
                    if entry.hours_to_reversal is not None
                    else None
                ),
                was_reapplied=entry.was_reapplied,
            )
            for entry in entries
        ]
    )


def breakdown_to_public(items: list[RateBreakdown]) -> list[RateBreakdownPublic]:
    return [
        RateBreakdownPublic(
            key=item.key,
            total_actions=item.total_actions,
            reversed_actions=item.reversed_actions,
            reversal_rate=item.reversal_rate,
        )
        for item in items
    ]


def duration_to_public(summary: DurationSummary) -> DurationSummaryPublic:
    return DurationSummaryPublic(
        count=summary.count,
        average_hours=summary.average_hours,
        median_hours=summary.median_hours,
        fastest_hours=summary.fastest_hours,
        slowest_hours=summary.slowest_hours,
    )


def lifted_to_public(lifted: Lifted, *, now: dt.datetime) -> LiftResponse:
    return LiftResponse(
        user_id=lifted.user_id,
        restriction_type=lifted.restriction_type,
        reversed_action=(
            action_to_public(lifted.reversed_action, now=now)
            if lifted.reversed_action is not None
            else None
        ),
    )


@router.get("/users/{user_id}/history", response_model=ModerationHistoryResponse)
async def get_user_history(
    user_id: uuid.UUID,
    db: DbSessionDep,
    _actor: ModeratorActor,
    include_reversed: bool = Query(default=True),
    now: UtcNow = Depends(get_utcnow),
) -> ModerationHistoryResponse:
    timestamp = now()
    entries = await user_moderation_history(db, user_id, include_reversed=include_reversed)
    return history_to_public(entries, now=timestamp)


@router.get("/reversals", response_model=ModerationHistoryResponse)
async def list_reversals(
    db: DbSessionDep,
    _actor: ModeratorActor,
    revoked_after: dt.datetime | None = Query(default=None),
    revoked_before: dt.datetime | None = Query(default=None),
    moderator_id: uuid.UUID | None = Query(default=None),
    revoked_by: uuid.UUID | None = Query(default=None),
    target_user_id: uuid.UUID | None = Query(default=None),
    action_type: ActionType | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    now: UtcNow = Depends(get_utcnow),
) -> ModerationHistoryResponse:
    timestamp = now()
    entries = await reversal_history(
        db,
        ReversalHistoryFilters(
            revoked_after=revoked_after,
            revoked_before=revoked_before,
            moderator_id=moderator_id,
            revoked_by=revoked_by,
            target_user_id=target_user_id,
            action_type=action_type,
            limit=limit,
        ),
    )
    return history_to_public(entries, now=timestamp)


@router.get("/reports/{report_id}/previous-reversals", response_model=PreviousReversalsResponse)
async def get_previous_reversals(
    report_id: uuid.UUID,
    db: DbSessionDep,
    _actor: ModeratorActor,
    now: UtcNow = Depends(get_utcnow),
) -> PreviousReversalsResponse:
    timestamp = now()
    async with database_guard(db, "get_report"):
        report = await db.get(Report, report_id)
    if report is None:
        raise error_for_kind(ErrorKind.not_found, "Report not found")
    prior = await previous_reversals(db, report)
    return PreviousReversalsResponse(
        report_id=report_id,
        has_previous_reversals=prior.has_previous_reversals,
        reversal_count=prior.count,
        most_recent=(
            action_to_public(prior.most_recent, now=timestamp)
            if prior.most_recent is not None
            else None
        ),
    )


@router.get("/reversal-metrics/rate", response_model=ReversalRateResponse)
async def get_reversal_rate(
    db: DbSessionDep,
    _actor: ModeratorActor,
    start: dt.datetime = Query(),
    end: dt.datetime = Query(),
) -> ReversalRateResponse:
    rate = await reversal_rate(db, start=start, end=end)
    return ReversalRateResponse(
        start=start,
        end=end,
        total_actions=rate.total_actions,
        total_reversals=rate.total_reversals,
        overall_rate=rate.overall_rate,
        by_action_type=breakdown_to_public(rate.by_action_type),
        by_priority=breakdown_to_public(rate.by_priority),
    )


@router.get(
    "/reversal-metrics/moderators/{moderator_id}", response_model=ModeratorReversalStatsResponse
)
async def get_moderator_reversal_stats(
    moderator_id: uuid.UUID,
    db: DbSessionDep,
    _actor: ModeratorActor,
    start: dt.datetime = Query(),
    end: dt.datetime = Query(),
) -> ModeratorReversalStatsResponse:
    stats = await moderator_reversal_stats(db, moderator_id, start=start, end=end)
    return ModeratorReversalStatsResponse(
        moderator_id=moderator_id,
        start=start,
        end=end,
        total_actions=stats.total_actions,
        reversed_actions=stats.reversed_actions,
        reversal_rate=stats.reversal_rate,
        average_hours_to_reversal=stats.average_hours_to_reversal,
        self_reversals=stats.self_reversals,
        reversals_by_others=stats.reversals_by_others,
        by_action_type=breakdown_to_public(stats.by_action_type),
    )


@router.get("/reversal-metrics/time", response_model=ReversalTimeMetricsResponse)
async def get_reversal_time_metrics(
    db: DbSessionDep,
    _actor: ModeratorActor,
    start: dt.datetime = Query(),
    end: dt.datetime = Query(),
) -> ReversalTimeMetricsResponse:
    metrics = await reversal_time_metrics(db, start=start, end=end)
    return ReversalTimeMetricsResponse(
        start=start,
        end=end,
        overall=duration_to_public(metrics.overall) if metrics.overall else None,
        by_action_type={
            action_type: duration_to_public(summary)
            for action_type, summary in metrics.by_action_type.items()
        },
    )


@router.post("/restrictions/{restriction_id}/lift", response_model=LiftResponse)
async def lift_user_restriction(
    restriction_id: uuid.UUID,
    body: LiftRequest,
    db: DbSessionDep,
    actor: ModeratorActor,
    identity: IdentityDirectoryDep,
    dispatcher: NotificationDispatcherDep,
    now: UtcNow = Depends(get_utcnow),
) -> LiftResponse:
    timestamp = now()
    lifted = await lift_restriction(
        db, restriction_id, actor=actor, reason=body.reason, now=timestamp, identity=identity
    )
    await dispatch_notifications(db, dispatcher, lifted.notifications, now=timestamp)
    return lifted_to_public(lifted, now=timestamp)


@router.post("/users/{user_id}/suspension/lift", response_model=LiftResponse)
async def lift_user_suspension(
    user_id: uuid.UUID,
    body: LiftRequest,
    db: DbSessionDep,
    actor: ModeratorActor,
    identity: IdentityDirectoryDep,
    dispatcher: NotificationDispatcherDep,
    now: UtcNow = Depends(get_utcnow),
) -> LiftResponse:
    timestamp = now()
    lifted = await lift_suspension(
        db, user_id, actor=actor, reason=body.reason, now=timestamp, identity=identity
    )
    await dispatch_notifications(db, dispatcher, lifted.notifications, now=timestamp)
    return lifted_to_public(lifted, now=timestamp)
