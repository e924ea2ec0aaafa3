from __future__ import annotations

import datetime as dt
import logging
import uuid
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import NotificationOutbox, SecurityEvent
from modqueue_api.db.session import database_guard
from modqueue_api.domain.directory import IdentityDirectory
from modqueue_api.domain.notifications import queue_admin_alert
from modqueue_api.domain.roles import Role
from modqueue_api.domain.security_events import SecurityEventType, add_security_event
from modqueue_api.observability import metrics
from modqueue_api.settings import Settings

logger = logging.getLogger(__name__)

TAMPER_EVENT_TYPES = (
    SecurityEventType.reversal_modification_attempt,
    SecurityEventType.reversal_modification_prevented,
    SecurityEventType.reversal_modification_succeeded,
    SecurityEventType.reversal_integrity_violation,
    SecurityEventType.self_reversal,
)


class Severity(StrEnum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


SEVERITY_ORDER = {
    Severity.low: 0,
    Severity.medium: 1,
    Severity.high: 2,
    Severity.critical: 3,
}


@dataclass(frozen=True)
class Thresholds:
    attempts_medium: int = 5
    attempts_high: int = 10
    rapid_fire_gap: dt.timedelta = dt.timedelta(seconds=1)
    rapid_fire_count: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "Thresholds":
        return cls(
            attempts_medium=settings.suspicious_attempts_medium,
            attempts_high=settings.suspicious_attempts_high,
            rapid_fire_gap=dt.timedelta(seconds=settings.suspicious_rapid_fire_seconds),
            rapid_fire_count=settings.suspicious_rapid_fire_run,
        )


@dataclass(frozen=True)
class SuspiciousPattern:
    pattern: str
    severity: Severity
    description: str
    count: int
    user_ids: list[uuid.UUID] = field(default_factory=list)


@dataclass(frozen=True)
class ActivityScan:
    window_start: dt.datetime
    events_scanned: int
    patterns: list[SuspiciousPattern]
    alert_severity: Severity | None
    alerts: list[NotificationOutbox] = field(default_factory=list)

    @property
    def suspicious(self) -> bool:
        return any(pattern.severity != Severity.low for pattern in self.patterns)


def highest_severity(patterns: Sequence[SuspiciousPattern]) -> Severity | None:
    if not patterns:
        return None
    return max((pattern.severity for pattern in patterns), key=SEVERITY_ORDER.__getitem__)


def find_suspicious_patterns(
    events: Sequence[SecurityEvent],
    thresholds: Thresholds = Thresholds(),
) -> list[SuspiciousPattern]:
    patterns: list[SuspiciousPattern] = []
    attempts = [
        event
        for event in events
        if event.event_type == SecurityEventType.reversal_modification_attempt
    ]

    attempts_by_user: dict[uuid.UUID, list[SecurityEvent]] = defaultdict(list)
    for event in attempts:
        if event.user_id is not None:
            attempts_by_user[event.user_id].append(event)

    for user_id, user_attempts in sorted(attempts_by_user.items(), key=lambda item: str(item[0])):
        count = len(user_attempts)
        if count >= thresholds.attempts_medium:
            patterns.append(
                SuspiciousPattern(
                    pattern="repeated_modification_attempts",
                    severity=(
                        Severity.high if count >= thresholds.attempts_high else Severity.medium
                    ),
                    description=f"User {user_id} attempted to modify reversal records {count} times",
                    count=count,
                    user_ids=[user_id],
                )
            )

        ordered = sorted(user_attempts, key=lambda event: event.created_at)
        rapid = sum(
            1
            for previous, current in zip(ordered, ordered[1:])
            if current.created_at - previous.created_at < thresholds.rapid_fire_gap
        )
        if rapid >= thresholds.rapid_fire_count:
            patterns.append(
                SuspiciousPattern(
                    pattern="rapid_fire_attempts",
                    severity=Severity.high,
                    description=(
                        f"{rapid} modification attempts by user {user_id} came within "
                        f"{thresholds.rapid_fire_gap.total_seconds():g}s of each other"
                    ),
                    count=rapid,
                    user_ids=[user_id],
                )
            )

    succeeded = [
        event
        for event in events
        if event.event_type == SecurityEventType.reversal_modification_succeeded
    ]
    if succeeded:
        patterns.append(
            SuspiciousPattern(
                pattern="immutability_breach",
                severity=Severity.critical,
                description=f"{len(succeeded)} reversal record write(s) were accepted by the store",
                count=len(succeeded),
                user_ids=_distinct_users(succeeded),
            )
        )

    violations = [
        event
        for event in events
        if event.event_type == SecurityEventType.reversal_integrity_violation
    ]
    if violations:
        patterns.append(
            SuspiciousPattern(
                pattern="integrity_violations",
                severity=Severity.high,
                description=f"{len(violations)} reversal record(s) failed integrity verification",
                count=len(violations),
                user_ids=_distinct_users(violations),
            )
        )

    self_reversals = [
        event for event in events if event.event_type == SecurityEventType.self_reversal
    ]
    if self_reversals:
        patterns.append(
            SuspiciousPattern(
                pattern="self_reversals",
                severity=Severity.low,
                description=f"{len(self_reversals)} action(s) were reversed by their own moderator",
                count=len(self_reversals),
                user_ids=_distinct_users(self_reversals),
            )
        )
    return patterns


def _distinct_users(events: Sequence[SecurityEvent]) -> list[uuid.UUID]:
    seen: dict[uuid.UUID, None] = {}
    for event in events:
        if event.user_id is not None:
            seen.setdefault(event.user_id, None)
    return list(seen)


def _pattern_details(pattern: SuspiciousPattern) -> dict[str, Any]:
    return {
        "pattern": pattern.pattern,
        "severity": pattern.severity.value,
        "count": pattern.count,
        "user_ids": [str(user_id) for user_id in pattern.user_ids],
    }


async def detect_suspicious_activity(
    db: AsyncSession,
    *,
    now: dt.datetime,
    settings: Settings,
    identity: IdentityDirectory,
    window_hours: int | None = None,
    user_id: uuid.UUID | None = None,
) -> ActivityScan:
    """Scan recent tamper-related security events and alert admins on findings.

    Low-severity findings (self-reversals) are reported but never alert.
    """
    hours = window_hours or settings.suspicious_activity_window_hours
    window_start = now - dt.timedelta(hours=hours)
    async with database_guard(db, "detect_suspicious_activity"):
        query = select(SecurityEvent).where(
            SecurityEvent.event_type.in_([str(event_type) for event_type in TAMPER_EVENT_TYPES]),
            SecurityEvent.created_at >= window_start,
        )
        if user_id is not None:
            query = query.where(SecurityEvent.user_id == user_id)
        events = list((await db.scalars(query.order_by(SecurityEvent.created_at))).all())

        patterns = find_suspicious_patterns(events, Thresholds.from_settings(settings))
        alerting = [pattern for pattern in patterns if pattern.severity != Severity.low]
        severity = highest_severity(alerting)
        alerts: list[NotificationOutbox] = []
        if severity is not None:
            details = {
                "window_hours": hours,
                "events_scanned": len(events),
                "patterns": [_pattern_details(pattern) for pattern in alerting],
            }
            add_security_event(
                db,
                SecurityEventType.suspicious_activity_detected,
                None,
                occurred_at=now,
                details={"severity": severity.value, **details},
            )
            alerts = queue_admin_alert(
                db,
                recipients=await identity.user_ids_with_roles(db, {Role.admin}),
                severity=severity.value,
                title="Suspicious reversal activity detected",
                body="; ".join(pattern.description for pattern in alerting),
                details=details,
                now=now,
            )
            await db.commit()
            metrics.security_alerts_total.labels(severity=severity.value).inc()
            logger.warning(
                "suspicious_activity_detected",
                extra={"severity": severity.value, "patterns_detected": len(alerting)},
            )
    return ActivityScan(
        window_start=window_start,
        events_scanned=len(events),
        patterns=patterns,
        alert_severity=severity,
        alerts=alerts,
    )
