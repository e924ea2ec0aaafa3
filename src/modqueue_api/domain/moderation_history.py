from __future__ import annotations

import datetime as dt
import uuid
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import ActionReversal, ModerationAction, Report
from modqueue_api.db.session import database_guard
from modqueue_api.domain.action_types import ActionType
from modqueue_api.domain.errors import ErrorKind, error_for_kind
from modqueue_api.domain.report_taxonomy import ReportType

MAX_HISTORY_LIMIT = 500


@dataclass(frozen=True)
class HistoryEntry:
    action: ModerationAction
    reapplications: list[ModerationAction]

    @property
    def hours_to_reversal(self) -> float | None:
        if self.action.reversal is None:
            return None
        return hours_between(self.action.created_at, self.action.reversal.revoked_at)

    @property
    def was_reapplied(self) -> bool:
        return bool(self.reapplications)


@dataclass(frozen=True)
class ReversalHistoryFilters:
    revoked_after: dt.datetime | None = None
    revoked_before: dt.datetime | None = None
    moderator_id: uuid.UUID | None = None
    revoked_by: uuid.UUID | None = None
    target_user_id: uuid.UUID | None = None
    action_type: ActionType | None = None
    limit: int = 100


@dataclass(frozen=True)
class PriorReversals:
    count: int
    most_recent: ModerationAction | None

    @property
    def has_previous_reversals(self) -> bool:
        return self.count > 0


def hours_between(start: dt.datetime, end: dt.datetime) -> float:
    return (end - start).total_seconds() / 3600


def ensure_period(start: dt.datetime | None, end: dt.datetime | None) -> None:
    if start is not None and end is not None and start > end:
        raise error_for_kind(
            ErrorKind.validation,
            "Start date must be before end date",
            {"field": "start", "start": start.isoformat(), "end": end.isoformat()},
        )


async def _reapplications_by_source(
    db: AsyncSession, action_ids: list[uuid.UUID]
) -> dict[uuid.UUID, list[ModerationAction]]:
    grouped: dict[uuid.UUID, list[ModerationAction]] = defaultdict(list)
    if not action_ids:
        return grouped
    children = await db.scalars(
        select(ModerationAction)
        .where(ModerationAction.reapplied_from_id.in_(action_ids))
        .order_by(ModerationAction.created_at)
    )
    for child in children.all():
        grouped[child.reapplied_from_id].append(child)
    return grouped


async def user_moderation_history(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    include_reversed: bool = True,
) -> list[HistoryEntry]:
    """Every action taken against a user, newest first, with its reversal timeline."""
    async with database_guard(db, "user_moderation_history"):
        query = select(ModerationAction).where(ModerationAction.target_user_id == user_id)
        if not include_reversed:
            query = query.where(~ModerationAction.reversal.has())
        actions = list(
            (await db.scalars(query.order_by(ModerationAction.created_at.desc()))).all()
        )
        reapplied = await _reapplications_by_source(db, [action.id for action in actions])
    return [
        HistoryEntry(action=action, reapplications=reapplied.get(action.id, []))
        for action in actions
    ]


async def reversal_history(
    db: AsyncSession, filters: ReversalHistoryFilters
) -> list[HistoryEntry]:
    """Reversed actions, most recently reversed first."""
    ensure_period(filters.revoked_after, filters.revoked_before)
    query = select(ModerationAction).join(
        ActionReversal, ActionReversal.action_id == ModerationAction.id
    )
    if filters.revoked_after is not None:
        query = query.where(ActionReversal.revoked_at >= filters.revoked_after)
    if filters.revoked_before is not None:
        query = query.where(ActionReversal.revoked_at <= filters.revoked_before)
    if filters.moderator_id is not None:
        query = query.where(ModerationAction.moderator_id == filters.moderator_id)
    if filters.revoked_by is not None:
        query = query.where(ActionReversal.revoked_by == filters.revoked_by)
    if filters.target_user_id is not None:
        query = query.where(ModerationAction.target_user_id == filters.target_user_id)
    if filters.action_type is not None:
        query = query.where(ModerationAction.action_type == filters.action_type.value)
    limit = max(1, min(filters.limit, MAX_HISTORY_LIMIT))

    async with database_guard(db, "reversal_history"):
        actions = list(
            (
                await db.scalars(
                    query.order_by(ActionReversal.revoked_at.desc(), ModerationAction.id).limit(
                        limit
                    )
                )
            ).all()
        )
        reapplied = await _reapplications_by_source(db, [action.id for action in actions])
    return [
        HistoryEntry(action=action, reapplications=reapplied.get(action.id, []))
        for action in actions
    ]


async def previous_reversals(db: AsyncSession, report: Report) -> PriorReversals:
    """Reversed actions on the same subject as ``report``.

    Profile reports look at every action against the reported user; content
    reports look at actions on the same item.
    """
    query = select(ModerationAction).join(
        ActionReversal, ActionReversal.action_id == ModerationAction.id
    )
    if report.report_type == ReportType.user and report.reported_user_id is not None:
        query = query.where(ModerationAction.target_user_id == report.reported_user_id)
    else:
        query = query.where(
            ModerationAction.target_type == report.report_type,
            ModerationAction.target_id == report.target_id,
        )
    async with database_guard(db, "previous_reversals"):
        actions = list((await db.scalars(query.order_by(ActionReversal.revoked_at.desc()))).all())
    return PriorReversals(count=len(actions), most_recent=actions[0] if actions else None)
