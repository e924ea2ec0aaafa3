from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from modqueue_api.domain.report_taxonomy import ReportReason, ReportType

ORIGINAL_WORK_LINK = "original_work_link"
PROOF_OF_OWNERSHIP = "proof_of_ownership"
AUDIO_TIMESTAMP = "audio_timestamp"

COPYRIGHT_FIELDS = (ORIGINAL_WORK_LINK, PROOF_OF_OWNERSHIP)
EVIDENCE_FIELDS = (*COPYRIGHT_FIELDS, AUDIO_TIMESTAMP)

AUDIO_TIMESTAMP_REASONS = frozenset(
    {
        ReportReason.hate_speech,
        ReportReason.harassment,
        ReportReason.inappropriate_content,
    }
)

PROOF_OF_OWNERSHIP_MAX_LENGTH = 500
ORIGINAL_WORK_LINK_MAX_LENGTH = 2048

_TAG_RE = re.compile(r"<[^>]*>")
_TIMESTAMP_RE = re.compile(r"^(\d{1,2}):([0-5]\d)(?::([0-5]\d))?$")


class EvidenceError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


def sanitize_text(value: str | None) -> str:
    if not value:
        return ""
    return _TAG_RE.sub("", value).replace("\x00", "").strip()


def is_valid_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def is_valid_timestamp(value: str) -> bool:
    match = _TIMESTAMP_RE.fullmatch(value)
    if match is None:
        return False
    first, second, third = match.groups()
    if third is None:
        # MM:SS
        return int(first) <= 59
    # HH:MM:SS
    return int(first) <= 23


def is_valid_timestamp_list(value: str) -> bool:
    """Validate a comma-separated list of MM:SS / HH:MM:SS timestamps.

    Blank entries (e.g. from a trailing comma) are ignored.
    """
    entries = [entry.strip() for entry in value.split(",")]
    return all(is_valid_timestamp(entry) for entry in entries if entry)


def normalize_timestamp_list(value: str) -> str:
    return ", ".join(entry.strip() for entry in value.split(",") if entry.strip())


def copyright_evidence_eligible(reason: ReportReason | str) -> bool:
    return reason == ReportReason.copyright_violation


def audio_timestamp_eligible(report_type: ReportType | str, reason: ReportReason | str) -> bool:
    return report_type == ReportType.track and reason in AUDIO_TIMESTAMP_REASONS


def evidence_eligible(report_type: ReportType | str, reason: ReportReason | str) -> bool:
    return copyright_evidence_eligible(reason) or audio_timestamp_eligible(report_type, reason)


def eligible_fields(report_type: ReportType | str, reason: ReportReason | str) -> tuple[str, ...]:
    fields: list[str] = []
    if copyright_evidence_eligible(reason):
        fields.extend(COPYRIGHT_FIELDS)
    if audio_timestamp_eligible(report_type, reason):
        fields.append(AUDIO_TIMESTAMP)
    return tuple(fields)


def validate_evidence(evidence: Mapping[str, Any] | None) -> dict[str, str]:
    """Check the format of every supplied evidence field.

    Returns the cleaned, non-empty fields. Raises EvidenceError on the first
    malformed field.
    """
    cleaned: dict[str, str] = {}
    if not evidence:
        return cleaned

    link = evidence.get(ORIGINAL_WORK_LINK)
    if link is not None and str(link).strip():
        link = str(link).strip()
        if len(link) > ORIGINAL_WORK_LINK_MAX_LENGTH or not is_valid_http_url(link):
            raise EvidenceError(
                ORIGINAL_WORK_LINK, "Original work link must be a valid http or https URL"
            )
        cleaned[ORIGINAL_WORK_LINK] = link

    proof = evidence.get(PROOF_OF_OWNERSHIP)
    if proof is not None:
        proof = sanitize_text(str(proof))
        if len(proof) > PROOF_OF_OWNERSHIP_MAX_LENGTH:
            raise EvidenceError(
                PROOF_OF_OWNERSHIP,
                f"Proof of ownership must be at most {PROOF_OF_OWNERSHIP_MAX_LENGTH} characters",
            )
        if proof:
            cleaned[PROOF_OF_OWNERSHIP] = proof

    timestamps = evidence.get(AUDIO_TIMESTAMP)
    if timestamps is not None and str(timestamps).strip():
        timestamps = str(timestamps)
        if not is_valid_timestamp_list(timestamps):
            raise EvidenceError(
                AUDIO_TIMESTAMP,
                "Timestamps must use MM:SS or HH:MM:SS, separated by commas",
            )
        normalized = normalize_timestamp_list(timestamps)
        if normalized:
            cleaned[AUDIO_TIMESTAMP] = normalized

    return cleaned


def filter_eligible_evidence(
    evidence: Mapping[str, Any] | None,
    report_type: ReportType | str,
    reason: ReportReason | str,
) -> dict[str, Any] | None:
    if not evidence:
        return None
    allowed = eligible_fields(report_type, reason)
    kept = {key: value for key, value in evidence.items() if key in allowed and value}
    return kept or None


def has_eligible_evidence(
    evidence: Mapping[str, Any] | None,
    report_type: ReportType | str,
    reason: ReportReason | str,
) -> bool:
    return filter_eligible_evidence(evidence, report_type, reason) is not None
