from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field

from modqueue_api.domain.action_types import ActionType, Capability, RestrictionType


class HealthResponse(BaseModel):
    status: str = "ok"


class ReportEvidence(BaseModel):
    original_work_link: str | None = None
    proof_of_ownership: str | None = None
    audio_timestamp: str | None = None


class CreateReportRequest(BaseModel):
    report_type: str
    target_id: uuid.UUID
    reason: str
    description: str | None = None
    evidence: ReportEvidence | None = None
    reported_user_id: uuid.UUID | None = None


class ModeratorFlagRequest(CreateReportRequest):
    priority: int | None = None


class ReportPublic(BaseModel):
    id: uuid.UUID
    reporter_id: uuid.UUID
    reported_user_id: uuid.UUID | None
    report_type: str
    target_id: uuid.UUID
    reason: str
    description: str
    evidence: dict[str, Any] | None
    has_evidence: bool
    status: str
    priority: int
    moderator_flagged: bool
    created_at: dt.datetime
    reviewed_by: uuid.UUID | None
    reviewed_at: dt.datetime | None
    resolution_notes: str | None
    action_taken: str | None


class CreateReportResponse(BaseModel):
    report: ReportPublic


class QueueResponse(BaseModel):
    reports: list[ReportPublic]
    generated_at: dt.datetime


class TakeActionRequest(BaseModel):
    action_type: ActionType
    reason: str
    duration_days: int | None = None
    restriction_type: RestrictionType | None = None
    internal_notes: str | None = None
    evidence_verified: bool | None = None
    verification_notes: str | None = None
    target_user_id: uuid.UUID | None = None


class ReverseActionRequest(BaseModel):
    reason: str


class ReapplyActionRequest(BaseModel):
    reason: str


class StateChange(BaseModel):
    timestamp: dt.datetime
    action: Literal["applied", "reversed", "reapplied"]
    by_user_id: uuid.UUID
    reason: str
    is_self_action: bool


class ModerationActionPublic(BaseModel):
    id: uuid.UUID
    moderator_id: uuid.UUID
    target_user_id: uuid.UUID | None
    action_type: str
    target_type: str
    target_id: uuid.UUID
    reason: str
    duration_days: int | None
    expires_at: dt.datetime | None
    related_report_id: uuid.UUID | None
    reapplied_from_id: uuid.UUID | None
    internal_notes: str | None
    notification_sent: bool
    created_at: dt.datetime
    revoked_at: dt.datetime | None
    revoked_by: uuid.UUID | None
    reversal_reason: str | None
    is_self_reversal: bool
    state: str
    is_active: bool
    metadata: dict[str, Any] | None
    state_changes: list[StateChange] = Field(default_factory=list)


class ModerationActionResponse(BaseModel):
    action: ModerationActionPublic
    report: ReportPublic | None = None


class CapabilityResponse(BaseModel):
    user_id: uuid.UUID
    capability: Capability
    allowed: bool
    checked_at: dt.datetime


class RestrictionPublic(BaseModel):
    id: uuid.UUID
    restriction_type: str
    expires_at: dt.datetime | None
    is_active: bool
    reason: str
    applied_by: uuid.UUID
    related_action_id: uuid.UUID | None
    created_at: dt.datetime


class SuspensionPublic(BaseModel):
    is_suspended: bool
    suspended_until: dt.datetime | None
    is_permanent: bool
    days_remaining: int | None
    reason: str | None


class UserRestrictionsResponse(BaseModel):
    user_id: uuid.UUID
    restrictions: list[RestrictionPublic]
    suspension: SuspensionPublic


class ReporterAccuracyPublic(BaseModel):
    total: int
    validated: int
    rate: float


class ReporterAccuracyResponse(BaseModel):
    reporter_id: uuid.UUID
    accuracy: ReporterAccuracyPublic | None


class QualityScorePublic(BaseModel):
    report_count: int
    evidence_eligible_count: int
    evidence_coverage: float | None
    average_description_length: float
    description_score: float
    accuracy_rate: float | None
    score: float


class ReportQualityResponse(BaseModel):
    reporter_id: uuid.UUID | None
    overall: QualityScorePublic | None
    by_reason: dict[str, QualityScorePublic]


class AdminSecurityEvent(BaseModel):
    id: uuid.UUID
    event_type: str
    user_id: uuid.UUID | None
    created_at: dt.datetime
    details: dict[str, Any] | None


class AdminSecurityEventsResponse(BaseModel):
    events: list[AdminSecurityEvent]


class IntegrityCheckResponse(BaseModel):
    action_id: uuid.UUID
    is_reversed: bool
    is_valid: bool
    violations: list[str]


class ImmutabilityProbeRequest(BaseModel):
    revoked_at: dt.datetime | None = None
    revoked_by: uuid.UUID | None = None
    reversal_reason: str | None = None


class ImmutabilityProbeResponse(BaseModel):
    action_id: uuid.UUID
    prevented: bool
    error: str | None


class SuspiciousPatternPublic(BaseModel):
    pattern: str
    severity: str
    description: str
    count: int
    user_ids: list[uuid.UUID]


class SuspiciousActivityResponse(BaseModel):
    window_start: dt.datetime
    events_scanned: int
    suspicious_activity_detected: bool
    alert_severity: str | None
    patterns: list[SuspiciousPatternPublic]


class RestrictionSweepResponse(BaseModel):
    restrictions_expired: int
    suspensions_cleared: int


class LiftRequest(BaseModel):
    reason: str


class LiftResponse(BaseModel):
    user_id: uuid.UUID
    restriction_type: str
    reversed_action: ModerationActionPublic | None


class HistoryEntryPublic(BaseModel):
    action: ModerationActionPublic
    hours_to_reversal: float | None
    was_reapplied: bool


class ModerationHistoryResponse(BaseModel):
    entries: list[HistoryEntryPublic]


class PreviousReversalsResponse(BaseModel):
    report_id: uuid.UUID
    has_previous_reversals: bool
    reversal_count: int
    most_recent: ModerationActionPublic | None


class RateBreakdownPublic(BaseModel):
    key: str
    total_actions: int
    reversed_actions: int
    reversal_rate: float


class ReversalRateResponse(BaseModel):
    start: dt.datetime
    end: dt.datetime
    total_actions: int
    total_reversals: int
    overall_rate: float
    by_action_type: list[RateBreakdownPublic]
    by_priority: list[RateBreakdownPublic]


class ModeratorReversalStatsResponse(BaseModel):
    moderator_id: uuid.UUID
    start: dt.datetime
    end: dt.datetime
    total_actions: int
    reversed_actions: int
    reversal_rate: float
    average_hours_to_reversal: float
    self_reversals: int
    reversals_by_others: int
    by_action_type: list[RateBreakdownPublic]


class DurationSummaryPublic(BaseModel):
    count: int
    average_hours: float
    median_hours: float
    fastest_hours: float
    slowest_hours: float


class ReversalTimeMetricsResponse(BaseModel):
    start: dt.datetime
    end: dt.datetime
    overall: DurationSummaryPublic | None
    by_action_type: dict[str, DurationSummaryPublic]
