from __future__ import annotations

import datetime as dt
import uuid
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import Report
from modqueue_api.db.session import database_guard
from modqueue_api.domain.evidence import evidence_eligible, has_eligible_evidence
from modqueue_api.domain.report_state import FINALIZED_REPORT_STATUSES, ReportStatus

EVIDENCE_WEIGHT = 0.4
DESCRIPTION_WEIGHT = 0.3
ACCURACY_WEIGHT = 0.3
DESCRIPTION_TARGET_LENGTH = 100
MIN_REPORTS_PER_REASON = 3


@dataclass(frozen=True)
class ReporterAccuracy:
    total: int
    validated: int
    rate: float


@dataclass(frozen=True)
class QualityScore:
    report_count: int
    evidence_eligible_count: int
    evidence_coverage: float | None
    average_description_length: float
    description_score: float
    accuracy_rate: float | None
    score: float


@dataclass(frozen=True)
class QualityReport:
    overall: QualityScore | None
    by_reason: dict[str, QualityScore]


def accuracy_from_counts(resolved: int, dismissed: int) -> ReporterAccuracy | None:
    total = resolved + dismissed
    if total == 0:
        return None
    return ReporterAccuracy(total=total, validated=resolved, rate=resolved / total * 100)


async def reporter_accuracy(db: AsyncSession, reporter_id: uuid.UUID) -> ReporterAccuracy | None:
    """Share of a reporter's finalized reports that led to action.

    Pending and under-review reports are excluded, so unjudged reports never lower
    the score.
    """
    async with database_guard(db, "reporter_accuracy"):
        rows = await db.execute(
            select(Report.status, func.count())
            .where(
                Report.reporter_id == reporter_id,
                Report.status.in_([status.value for status in FINALIZED_REPORT_STATUSES]),
            )
            .group_by(Report.status)
        )
        counts = {status: int(count) for status, count in rows.all()}
    return accuracy_from_counts(
        resolved=counts.get(ReportStatus.resolved.value, 0),
        dismissed=counts.get(ReportStatus.dismissed.value, 0),
    )


def compute_quality(reports: Sequence[Report]) -> QualityScore | None:
    """Composite reporter quality score in the 0-100 range.

    Weights are 40% evidence coverage, 30% description length (capped at 100
    characters) and 30% accuracy. Evidence coverage counts only reports whose
    type/reason can carry evidence; when none can, or when nothing is finalized,
    the missing component is left out and the remaining weights are rescaled.

    This differs from the dashboard score of the first moderation release, which
    counted missing evidence coverage as 0 and so capped such reporters at 60.
    """
    if not reports:
        return None

    eligible = [report for report in reports if evidence_eligible(report.report_type, report.reason)]
    evidence_coverage: float | None = None
    if eligible:
        with_evidence = sum(
            1
            for report in eligible
            if has_eligible_evidence(report.evidence, report.report_type, report.reason)
        )
        evidence_coverage = with_evidence / len(eligible) * 100

    average_length = sum(len(report.description or "") for report in reports) / len(reports)
    description_score = min(average_length / DESCRIPTION_TARGET_LENGTH * 100, 100.0)

    resolved = sum(1 for report in reports if report.status == ReportStatus.resolved)
    dismissed = sum(1 for report in reports if report.status == ReportStatus.dismissed)
    accuracy = accuracy_from_counts(resolved, dismissed)
    accuracy_rate = accuracy.rate if accuracy else None

    components = [(description_score, DESCRIPTION_WEIGHT)]
    if evidence_coverage is not None:
        components.append((evidence_coverage, EVIDENCE_WEIGHT))
    if accuracy_rate is not None:
        components.append((accuracy_rate, ACCURACY_WEIGHT))
    total_weight = sum(weight for _, weight in components)
    score = sum(value * weight for value, weight in components) / total_weight

    return QualityScore(
        report_count=len(reports),
        evidence_eligible_count=len(eligible),
        evidence_coverage=evidence_coverage,
        average_description_length=average_length,
        description_score=description_score,
        accuracy_rate=accuracy_rate,
        score=round(score, 2),
    )


def quality_by_reason(reports: Sequence[Report]) -> dict[str, QualityScore]:
    grouped: dict[str, list[Report]] = defaultdict(list)
    for report in reports:
        grouped[report.reason].append(report)
    breakdown: dict[str, QualityScore] = {}
    for reason, group in sorted(grouped.items()):
        if len(group) < MIN_REPORTS_PER_REASON:
            continue
        score = compute_quality(group)
        if score is not None:
            breakdown[reason] = score
    return breakdown


async def report_quality(
    db: AsyncSession,
    *,
    reporter_id: uuid.UUID | None = None,
    created_after: dt.datetime | None = None,
) -> QualityReport:
    async with database_guard(db, "report_quality"):
        query = select(Report)
        if reporter_id is not None:
            query = query.where(Report.reporter_id == reporter_id)
        if created_after is not None:
            query = query.where(Report.created_at >= created_after)
        reports = list((await db.scalars(query)).all())
    return QualityReport(overall=compute_quality(reports), by_reason=quality_by_reason(reports))
