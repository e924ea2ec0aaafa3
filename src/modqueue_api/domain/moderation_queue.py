from __future__ import annotations

import datetime as dt
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import Report
from modqueue_api.domain.evidence import has_eligible_evidence
from modqueue_api.domain.report_state import OPEN_REPORT_STATUSES, STATUS_RANK, ReportStatus
from modqueue_api.domain.report_taxonomy import ReportType

AGE_PROTECTION = dt.timedelta(hours=24)


@dataclass(frozen=True)
class QueueFilters:
    statuses: frozenset[ReportStatus] | None = None
    priority: int | None = None
    report_type: ReportType | None = None
    has_evidence: bool | None = None
    moderator_flagged: bool | None = None
    created_after: dt.datetime | None = None
    created_before: dt.datetime | None = None
    limit: int = 100


def report_has_evidence(report: Report) -> bool:
    return has_eligible_evidence(report.evidence, report.report_type, report.reason)


def queue_sort_key(
    report: Report,
    *,
    now: dt.datetime,
    age_protection: dt.timedelta = AGE_PROTECTION,
) -> tuple[int, int, int, int, dt.datetime, str]:
    """Ordering key for the moderation queue.

    Status rank, then priority. Within a priority, reports older than the
    age-protection window sort purely by age ahead of younger ones; younger reports
    put evidence first. Creation time and id break remaining ties.
    """
    is_old = now - report.created_at > age_protection
    if is_old:
        age_bucket, evidence_bucket = 0, 0
    else:
        age_bucket = 1
        evidence_bucket = 0 if report_has_evidence(report) else 1
    return (
        STATUS_RANK.get(ReportStatus(report.status), len(STATUS_RANK)),
        report.priority,
        age_bucket,
        evidence_bucket,
        report.created_at,
        str(report.id),
    )


def sort_queue(
    reports: Iterable[Report],
    *,
    now: dt.datetime,
    age_protection: dt.timedelta = AGE_PROTECTION,
) -> list[Report]:
    return sorted(
        reports,
        key=lambda report: queue_sort_key(report, now=now, age_protection=age_protection),
    )


async def list_queue(
    db: AsyncSession,
    filters: QueueFilters,
    *,
    now: dt.datetime,
    age_protection: dt.timedelta = AGE_PROTECTION,
) -> list[Report]:
    statuses = filters.statuses or OPEN_REPORT_STATUSES
    query = select(Report).where(Report.status.in_(sorted(status.value for status in statuses)))
    if filters.priority is not None:
        query = query.where(Report.priority == filters.priority)
    if filters.report_type is not None:
        query = query.where(Report.report_type == filters.report_type.value)
    if filters.moderator_flagged is not None:
        query = query.where(Report.moderator_flagged.is_(filters.moderator_flagged))
    if filters.created_after is not None:
        query = query.where(Report.created_at >= filters.created_after)
    if filters.created_before is not None:
        query = query.where(Report.created_at <= filters.created_before)

    reports = list((await db.scalars(query)).all())
    if filters.has_evidence is not None:
        reports = [
            report for report in reports if report_has_evidence(report) == filters.has_evidence
        ]
    return sort_queue(reports, now=now, age_protection=age_protection)[: filters.limit]
