from __future__ import annotations

import datetime as dt
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select

from modqueue_api.api.schemas import (
    AdminSecurityEvent,
    AdminSecurityEventsResponse,
    ImmutabilityProbeRequest,
    ImmutabilityProbeResponse,
    IntegrityCheckResponse,
    RestrictionSweepResponse,
    SuspiciousActivityResponse,
    SuspiciousPatternPublic,
)
from modqueue_api.auth.deps import AdminActor, require_admin
from modqueue_api.db.models import SecurityEvent
from modqueue_api.db.session import DbSessionDep, database_guard
from modqueue_api.domain.action_reversals import (
    attempt_reversal_modification,
    verify_reversal_integrity,
)
from modqueue_api.domain.directory import IdentityDirectoryDep
from modqueue_api.domain.notification_dispatch import (
    NotificationDispatcherDep,
    dispatch_notifications,
)
from modqueue_api.domain.restrictions import expire_restrictions
from modqueue_api.domain.suspicious_activity import TAMPER_EVENT_TYPES, detect_suspicious_activity
from modqueue_api.settings import Settings, get_settings
from modqueue_api.time import UtcNow, get_utcnow

router = APIRouter(prefix="/v1/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def security_event_to_admin(event: SecurityEvent) -> AdminSecurityEvent:
    return AdminSecurityEvent(
        id=event.id,
        event_type=event.event_type,
        user_id=event.user_id,
        created_at=event.created_at,
        details=event.details,
    )


@router.get("/security-events", response_model=AdminSecurityEventsResponse)
async def list_security_events(
    db: DbSessionDep,
    event_type: list[str] | None = Query(default=None),
    tamper_only: bool = Query(default=False),
    user_id: uuid.UUID | None = Query(default=None),
    created_after: dt.datetime | None = Query(default=None),
    created_before: dt.datetime | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
) -> AdminSecurityEventsResponse:
    query = select(SecurityEvent)
    if event_type:
        query = query.where(SecurityEvent.event_type.in_(event_type))
    if tamper_only:
        query = query.where(
            SecurityEvent.event_type.in_([str(kind) for kind in TAMPER_EVENT_TYPES])
        )
    if user_id is not None:
        query = query.where(SecurityEvent.user_id == user_id)
    if created_after is not None:
        query = query.where(SecurityEvent.created_at >= created_after)
    if created_before is not None:
        query = query.where(SecurityEvent.created_at <= created_before)

    async with database_guard(db, "list_security_events"):
        events = (
            await db.scalars(query.order_by(SecurityEvent.created_at.desc()).limit(limit))
        ).all()
    return AdminSecurityEventsResponse(events=[security_event_to_admin(event) for event in events])


@router.get("/actions/{action_id}/integrity", response_model=IntegrityCheckResponse)
async def check_integrity(
    action_id: uuid.UUID,
    db: DbSessionDep,
    actor: AdminActor,
    now: UtcNow = Depends(get_utcnow),
) -> IntegrityCheckResponse:
    timestamp = now()
    check = await verify_reversal_integrity(db, action_id, actor=actor, now=timestamp)
    return IntegrityCheckResponse(
        action_id=check.action_id,
        is_reversed=check.is_reversed,
        is_valid=check.is_valid,
        violations=check.violations,
    )


@router.post("/actions/{action_id}/immutability-probe", response_model=ImmutabilityProbeResponse)
async def probe_immutability(
    action_id: uuid.UUID,
    body: ImmutabilityProbeRequest,
    db: DbSessionDep,
    actor: AdminActor,
    identity: IdentityDirectoryDep,
    dispatcher: NotificationDispatcherDep,
    now: UtcNow = Depends(get_utcnow),
) -> ImmutabilityProbeResponse:
    timestamp = now()
    result = await attempt_reversal_modification(
        db,
        action_id,
        body.model_dump(exclude_none=True),
        actor=actor,
        now=timestamp,
        identity=identity,
    )
    await dispatch_notifications(db, dispatcher, result.alerts, now=timestamp)
    return ImmutabilityProbeResponse(
        action_id=result.action_id, prevented=result.prevented, error=result.error
    )


@router.get("/suspicious-activity", response_model=SuspiciousActivityResponse)
async def scan_suspicious_activity(
    db: DbSessionDep,
    identity: IdentityDirectoryDep,
    dispatcher: NotificationDispatcherDep,
    window_hours: int | None = Query(default=None, ge=1, le=720),
    user_id: uuid.UUID | None = Query(default=None),
    settings: Settings = Depends(get_settings),
    now: UtcNow = Depends(get_utcnow),
) -> SuspiciousActivityResponse:
    timestamp = now()
    scan = await detect_suspicious_activity(
        db,
        now=timestamp,
        settings=settings,
        identity=identity,
        window_hours=window_hours,
        user_id=user_id,
    )
    await dispatch_notifications(db, dispatcher, scan.alerts, now=timestamp)
    return SuspiciousActivityResponse(
        window_start=scan.window_start,
        events_scanned=scan.events_scanned,
        suspicious_activity_detected=scan.suspicious,
        alert_severity=scan.alert_severity.value if scan.alert_severity else None,
        patterns=[
            SuspiciousPatternPublic(
                pattern=pattern.pattern,
                severity=pattern.severity.value,
                description=pattern.description,
                count=pattern.count,
                user_ids=pattern.user_ids,
            )
            for pattern in scan.patterns
        ],
    )


@router.post("/restrictions/sweep", response_model=RestrictionSweepResponse)
async def sweep_restrictions(
    db: DbSessionDep,
    now: UtcNow = Depends(get_utcnow),
) -> RestrictionSweepResponse:
    timestamp = now()
    result = await expire_restrictions(db, now=timestamp)
    return RestrictionSweepResponse(
        restrictions_expired=result.restrictions_expired,
        suspensions_cleared=result.suspensions_cleared,
    )
