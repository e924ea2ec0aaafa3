from __future__ import annotations

from enum import StrEnum


class ReportStatus(StrEnum):
    pending = "pending"
    under_review = "under_review"
    resolved = "resolved"
    dismissed = "dismissed"


OPEN_REPORT_STATUSES = frozenset({ReportStatus.pending, ReportStatus.under_review})
FINALIZED_REPORT_STATUSES = frozenset({ReportStatus.resolved, ReportStatus.dismissed})

ALLOWED_REPORT_TRANSITIONS: dict[ReportStatus, set[ReportStatus]] = {
    ReportStatus.pending: {
        ReportStatus.under_review,
        ReportStatus.resolved,
        ReportStatus.dismissed,
    },
    ReportStatus.under_review: {ReportStatus.resolved, ReportStatus.dismissed},
    ReportStatus.resolved: set(),
    ReportStatus.dismissed: set(),
}

STATUS_RANK: dict[ReportStatus, int] = {
    ReportStatus.under_review: 0,
    ReportStatus.pending: 1,
    ReportStatus.resolved: 2,
    ReportStatus.dismissed: 3,
}


def assert_valid_report_transition(current: ReportStatus, target: ReportStatus) -> None:
    allowed = ALLOWED_REPORT_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise ValueError(f"Invalid report transition: {current} -> {target}")


def is_finalized(status: ReportStatus | str) -> bool:
    return ReportStatus(status) in FINALIZED_REPORT_STATUSES
