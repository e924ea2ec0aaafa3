from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import SecurityEvent

logger = logging.getLogger("modqueue_api.security")


class SecurityEventType:
    self_report_attempt = "self_report_attempt"
    duplicate_report_attempt = "duplicate_report_attempt"
    admin_report_attempt = "admin_report_attempt"
    report_rate_limit_exceeded = "report_rate_limit_exceeded"
    moderation_action_rate_limit_exceeded = "moderation_action_rate_limit_exceeded"
    unauthorized_action_on_admin = "unauthorized_action_on_admin"
    self_reversal = "self_reversal"
    reversal_modification_attempt = "reversal_modification_attempt"
    reversal_modification_prevented = "reversal_modification_prevented"
    reversal_modification_succeeded = "reversal_modification_succeeded"
    reversal_integrity_violation = "reversal_integrity_violation"
    suspicious_activity_detected = "suspicious_activity_detected"
    restriction_lifted = "restriction_lifted"
    unauthorized_self_restriction_modification = "unauthorized_self_restriction_modification"


def add_security_event(
    db: AsyncSession,
    event_type: str,
    user_id: uuid.UUID | None,
    *,
    occurred_at: dt.datetime,
    details: dict[str, Any] | None = None,
) -> SecurityEvent:
    """Stage a security event on the session without committing."""
    payload = {**(details or {}), "timestamp": occurred_at.isoformat()}
    if user_id is not None:
        payload.setdefault("user_id", str(user_id))
    event = SecurityEvent(
        event_type=event_type,
        user_id=user_id,
        created_at=occurred_at,
        details=payload,
    )
    db.add(event)
    logger.warning("security_event", extra={"event_type": event_type, **payload})
    return event


async def record_security_event(
    db: AsyncSession,
    event_type: str,
    user_id: uuid.UUID | None,
    *,
    occurred_at: dt.datetime,
    details: dict[str, Any] | None = None,
) -> None:
    add_security_event(
        db, event_type, user_id, occurred_at=occurred_at, details=details
    )
    await db.commit()
