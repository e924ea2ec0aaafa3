from __future__ import annotations

from enum import StrEnum


class ReportType(StrEnum):
    post = "post"
    comment = "comment"
    track = "track"
    album = "album"
    user = "user"


class ReportReason(StrEnum):
    spam = "spam"
    harassment = "harassment"
    hate_speech = "hate_speech"
    inappropriate_content = "inappropriate_content"
    copyright_violation = "copyright_violation"
    impersonation = "impersonation"
    self_harm = "self_harm"
    other = "other"


PRIORITY_BY_REASON: dict[ReportReason, int] = {
    ReportReason.self_harm: 1,
    ReportReason.hate_speech: 2,
    ReportReason.harassment: 2,
    ReportReason.inappropriate_content: 3,
    ReportReason.spam: 3,
    ReportReason.copyright_violation: 3,
    ReportReason.impersonation: 3,
    ReportReason.other: 4,
}

MIN_PRIORITY = 1
MAX_PRIORITY = 5

# Noun used in user-facing messages, so every category reads the same across types.
CONTENT_NOUNS: dict[ReportType, str] = {
    ReportType.post: "post",
    ReportType.comment: "comment",
    ReportType.track: "track",
    ReportType.album: "album",
    ReportType.user: "user",
}


def priority_for_reason(reason: ReportReason) -> int:
    return PRIORITY_BY_REASON.get(reason, 4)


def content_noun(report_type: ReportType | str) -> str:
    try:
        return CONTENT_NOUNS[ReportType(report_type)]
    except ValueError:
        return "content"
