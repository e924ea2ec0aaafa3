from __future__ import annotations

import datetime as dt
import statistics
import uuid
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import ModerationAction, Report
from modqueue_api.db.session import database_guard
from modqueue_api.domain.moderation_history import ensure_period, hours_between

# Actions without a linked report are bucketed as normal priority.
UNLINKED_ACTION_PRIORITY = 3


@dataclass(frozen=True)
class RateBreakdown:
    key: str
    total_actions: int
    reversed_actions: int
    reversal_rate: float


@dataclass(frozen=True)
class ReversalRate:
    total_actions: int
    total_reversals: int
    overall_rate: float
    by_action_type: list[RateBreakdown]
    by_priority: list[RateBreakdown]


@dataclass(frozen=True)
class ModeratorReversalStats:
    moderator_id: uuid.UUID
    total_actions: int
    reversed_actions: int
    reversal_rate: float
    average_hours_to_reversal: float
    self_reversals: int
    reversals_by_others: int
    by_action_type: list[RateBreakdown]


@dataclass(frozen=True)
class DurationSummary:
    count: int
    average_hours: float
    median_hours: float
    fastest_hours: float
    slowest_hours: float


@dataclass(frozen=True)
class ReversalTimeMetrics:
    overall: DurationSummary | None
    by_action_type: dict[str, DurationSummary]


def percentage(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return round(part / whole * 100, 2)


def summarize_durations(hours: Sequence[float]) -> DurationSummary | None:
    if not hours:
        return None
    return DurationSummary(
        count=len(hours),
        average_hours=round(statistics.fmean(hours), 2),
        median_hours=round(statistics.median(hours), 2),
        fastest_hours=round(min(hours), 2),
        slowest_hours=round(max(hours), 2),
    )


def _breakdown(pairs: Iterable[tuple[str, bool]]) -> list[RateBreakdown]:
    totals: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    for key, is_reversed in pairs:
        totals[key][0] += 1
        totals[key][1] += int(is_reversed)
    return [
        RateBreakdown(
            key=key,
            total_actions=total,
            reversed_actions=reversed_count,
            reversal_rate=percentage(reversed_count, total),
        )
        for key, (total, reversed_count) in totals.items()
    ]


def _hours_to_reversal(action: ModerationAction) -> float | None:
    if action.reversal is None:
        return None
    return hours_between(action.created_at, action.reversal.revoked_at)


async def _actions_in_period(
    db: AsyncSession,
    start: dt.datetime,
    end: dt.datetime,
    *,
    moderator_id: uuid.UUID | None = None,
) -> list[tuple[ModerationAction, int | None]]:
    ensure_period(start, end)
    query = (
        select(ModerationAction, Report.priority)
        .outerjoin(Report, Report.id == ModerationAction.related_report_id)
        .where(ModerationAction.created_at >= start, ModerationAction.created_at <= end)
    )
    if moderator_id is not None:
        query = query.where(ModerationAction.moderator_id == moderator_id)
    async with database_guard(db, "reversal_metrics"):
        rows = await db.execute(query.order_by(ModerationAction.created_at))
        return [(action, priority) for action, priority in rows.all()]


def rate_from_actions(rows: Sequence[tuple[ModerationAction, int | None]]) -> ReversalRate:
    reversed_count = sum(1 for action, _ in rows if action.reversal is not None)
    by_type = _breakdown((action.action_type, action.reversal is not None) for action, _ in rows)
    by_priority = _breakdown(
        (str(priority or UNLINKED_ACTION_PRIORITY), action.reversal is not None)
        for action, priority in rows
    )
    return ReversalRate(
        total_actions=len(rows),
        total_reversals=reversed_count,
        overall_rate=percentage(reversed_count, len(rows)),
        by_action_type=sorted(by_type, key=lambda item: (-item.reversal_rate, item.key)),
        by_priority=sorted(by_priority, key=lambda item: int(item.key)),
    )


async def reversal_rate(db: AsyncSession, *, start: dt.datetime, end: dt.datetime) -> ReversalRate:
    """Share of actions created in ``[start, end]`` that were later reversed.

    Broken down by action type (highest rate first) and by the priority of the
    related report (most urgent first).
    """
    return rate_from_actions(await _actions_in_period(db, start, end))


async def moderator_reversal_stats(
    db: AsyncSession,
    moderator_id: uuid.UUID,
    *,
    start: dt.datetime,
    end: dt.datetime,
) -> ModeratorReversalStats:
    rows = await _actions_in_period(db, start, end, moderator_id=moderator_id)
    actions = [action for action, _ in rows]
    reversed_actions = [action for action in actions if action.reversal is not None]
    self_reversals = sum(
        1 for action in reversed_actions if action.reversal.revoked_by == moderator_id
    )
    durations = [
        hours
        for action in reversed_actions
        if (hours := _hours_to_reversal(action)) is not None
    ]
    return ModeratorReversalStats(
        moderator_id=moderator_id,
        total_actions=len(actions),
        reversed_actions=len(reversed_actions),
        reversal_rate=percentage(len(reversed_actions), len(actions)),
        average_hours_to_reversal=round(statistics.fmean(durations), 2) if durations else 0.0,
        self_reversals=self_reversals,
        reversals_by_others=len(reversed_actions) - self_reversals,
        by_action_type=sorted(
            _breakdown((action.action_type, action.reversal is not None) for action in actions),
            key=lambda item: item.key,
        ),
    )


def time_metrics_from_actions(actions: Sequence[ModerationAction]) -> ReversalTimeMetrics:
    overall: list[float] = []
    by_type: dict[str, list[float]] = defaultdict(list)
    for action in actions:
        hours = _hours_to_reversal(action)
        if hours is None:
            continue
        overall.append(hours)
        by_type[action.action_type].append(hours)
    return ReversalTimeMetrics(
        overall=summarize_durations(overall),
        by_action_type={
            action_type: summary
            for action_type, hours in sorted(by_type.items())
            if (summary := summarize_durations(hours)) is not None
        },
    )


async def reversal_time_metrics(
    db: AsyncSession, *, start: dt.datetime, end: dt.datetime
) -> ReversalTimeMetrics:
    """Hours between an action and its reversal, for actions created in the period."""
    rows = await _actions_in_period(db, start, end)
    return time_metrics_from_actions([action for action, _ in rows])
