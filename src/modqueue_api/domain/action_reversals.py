from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import ActionReversal, ModerationAction, NotificationOutbox
from modqueue_api.db.session import database_guard
from modqueue_api.domain.action_types import ADMIN_ONLY_ACTIONS, ActionState, ActionType
from modqueue_api.domain.directory import IdentityDirectory
from modqueue_api.domain.errors import ErrorKind, error_for_kind
from modqueue_api.domain.evidence import sanitize_text
from modqueue_api.domain.notifications import queue_admin_alert, queue_reversal_notification
from modqueue_api.domain.restrictions import lift_action_restrictions
from modqueue_api.domain.roles import Actor, Role
from modqueue_api.domain.security_events import (
    SecurityEventType,
    add_security_event,
    record_security_event,
)
from modqueue_api.observability import metrics
from modqueue_api.observability.ops import observe_operation, observe_transition

logger = logging.getLogger(__name__)

MAX_REVERSAL_REASON_LENGTH = 1000
REVERSAL_FIELDS = frozenset({"revoked_at", "revoked_by", "reversal_reason"})


class ReversalRejectionKind(StrEnum):
    validation = ErrorKind.validation.value
    not_found = ErrorKind.not_found.value
    forbidden = ErrorKind.forbidden.value
    already_reversed = ErrorKind.already_reversed.value
    action_expired = ErrorKind.action_expired.value


@dataclass(frozen=True)
class Reversed:
    action: ModerationAction
    notifications: list[NotificationOutbox] = field(default_factory=list)


@dataclass(frozen=True)
class ReversalRejected:
    kind: ReversalRejectionKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)


ReversalResult = Reversed | ReversalRejected


@dataclass(frozen=True)
class IntegrityCheck:
    action_id: uuid.UUID
    is_reversed: bool
    violations: list[str]

    @property
    def is_valid(self) -> bool:
        return not self.violations


@dataclass(frozen=True)
class ProbeResult:
    action_id: uuid.UUID
    prevented: bool
    error: str | None = None
    alerts: list[NotificationOutbox] = field(default_factory=list)


async def _admin_ids(db: AsyncSession, identity: IdentityDirectory) -> list[uuid.UUID]:
    return await identity.user_ids_with_roles(db, {Role.admin})


async def reverse_action(
    db: AsyncSession,
    action_id: uuid.UUID,
    *,
    actor: Actor,
    reason: str,
    now: dt.datetime,
    identity: IdentityDirectory,
) -> ReversalResult:
    """Record the one permitted reversal of an action.

    The reversal is written to a write-once table; restrictions created by the
    action are deactivated and a suspension it owns is cleared. The related report
    keeps its status.
    """
    if not actor.is_moderator:
        return ReversalRejected(
            kind=ReversalRejectionKind.forbidden, message="Moderator access is required"
        )
    reason = sanitize_text(reason)
    if not reason:
        return ReversalRejected(
            kind=ReversalRejectionKind.validation,
            message="A reason is required to reverse an action",
            details={"field": "reason"},
        )
    if len(reason) > MAX_REVERSAL_REASON_LENGTH:
        return ReversalRejected(
            kind=ReversalRejectionKind.validation,
            message=f"Reason must be at most {MAX_REVERSAL_REASON_LENGTH} characters",
            details={"field": "reason"},
        )

    async with observe_operation("reverse_action", attributes={"action.id": str(action_id)}):
        async with database_guard(db, "reverse_action"):
            action = await db.get(ModerationAction, action_id)
            if action is None:
                return ReversalRejected(
                    kind=ReversalRejectionKind.not_found, message="Moderation action not found"
                )

            if action.reversal is not None:
                await record_security_event(
                    db,
                    SecurityEventType.reversal_modification_attempt,
                    actor.user_id,
                    occurred_at=now,
                    details={
                        "action_id": str(action.id),
                        "attempted_fields": sorted(REVERSAL_FIELDS),
                        "existing_revoked_at": action.reversal.revoked_at.isoformat(),
                        "existing_revoked_by": str(action.reversal.revoked_by),
                    },
                )
                return ReversalRejected(
                    kind=ReversalRejectionKind.already_reversed,
                    message="This action has already been reversed",
                    details={
                        "revoked_at": action.reversal.revoked_at.isoformat(),
                        "revoked_by": str(action.reversal.revoked_by),
                    },
                )

            state = action.state_at(now)
            if state == ActionState.expired:
                return ReversalRejected(
                    kind=ReversalRejectionKind.action_expired,
                    message="This action has already expired and cannot be reversed",
                    details={"expires_at": action.expires_at.isoformat()},
                )

            action_type = ActionType(action.action_type)
            if action_type in ADMIN_ONLY_ACTIONS and not actor.is_admin:
                return ReversalRejected(
                    kind=ReversalRejectionKind.forbidden,
                    message="Only admins may reverse bans",
                )
            if (
                action.target_user_id is not None
                and not actor.is_admin
                and await identity.role_of(db, action.target_user_id) == Role.admin
            ):
                await record_security_event(
                    db,
                    SecurityEventType.unauthorized_action_on_admin,
                    actor.user_id,
                    occurred_at=now,
                    details={
                        "target_user_id": str(action.target_user_id),
                        "action_id": str(action.id),
                        "operation": "reverse_action",
                    },
                )
                return ReversalRejected(
                    kind=ReversalRejectionKind.forbidden,
                    message="Moderators cannot reverse actions on admin accounts",
                )

            is_self = action.moderator_id == actor.user_id
            try:
                with observe_transition(
                    action_type=action_type.value,
                    from_state=ActionState.active,
                    to_state=ActionState.reversed,
                ):
                    db.add(
                        ActionReversal(
                            action=action,
                            revoked_at=now,
                            revoked_by=actor.user_id,
                            reversal_reason=reason,
                            is_self_reversal=is_self,
                            created_at=now,
                        )
                    )
                    await db.flush()
                    lifted = await lift_action_restrictions(db, action.id, now=now)
                    notification = queue_reversal_notification(
                        db, action=action, reason=reason, now=now
                    )
                    if is_self:
                        add_security_event(
                            db,
                            SecurityEventType.self_reversal,
                            actor.user_id,
                            occurred_at=now,
                            details={"action_id": str(action.id), "action_type": action_type.value},
                        )
                    await db.commit()
            except IntegrityError:
                # A concurrent reversal won the unique action_id constraint.
                await db.rollback()
                await record_security_event(
                    db,
                    SecurityEventType.reversal_modification_attempt,
                    actor.user_id,
                    occurred_at=now,
                    details={"action_id": str(action_id), "concurrent": True},
                )
                return ReversalRejected(
                    kind=ReversalRejectionKind.already_reversed,
                    message="This action has already been reversed",
                )

    logger.info(
        "moderation_action_reversed",
        extra={
            "action_id": str(action.id),
            "action_type": action.action_type,
            "revoked_by": str(actor.user_id),
            "is_self_reversal": is_self,
            "restrictions_lifted": lifted,
        },
    )
    return Reversed(
        action=action, notifications=[notification] if notification is not None else []
    )


def check_reversal_consistency(
    action: ModerationAction, reversal: ActionReversal | None, *, now: dt.datetime
) -> list[str]:
    """Recompute the invariants a stored reversal must satisfy."""
    if reversal is None:
        return []
    violations: list[str] = []
    if (reversal.revoked_at is None) != (reversal.revoked_by is None):
        violations.append("revoked_at and revoked_by must be set together")
    if not (reversal.reversal_reason or "").strip():
        violations.append("reversal reason is missing")
    if reversal.revoked_at is not None:
        if reversal.revoked_at > now:
            violations.append("revoked_at is in the future")
        if reversal.revoked_at < action.created_at:
            violations.append("revoked_at precedes the action's creation")
    if reversal.action_id != action.id:
        violations.append("reversal is linked to a different action")
    return violations


async def verify_reversal_integrity(
    db: AsyncSession,
    action_id: uuid.UUID,
    *,
    actor: Actor,
    now: dt.datetime,
) -> IntegrityCheck:
    async with database_guard(db, "verify_reversal_integrity"):
        action = await db.get(ModerationAction, action_id)
        if action is None:
            raise error_for_kind(ErrorKind.not_found, "Moderation action not found")
        reversal = await db.scalar(
            select(ActionReversal).where(ActionReversal.action_id == action_id)
        )
        violations = check_reversal_consistency(action, reversal, now=now)
        if violations:
            await record_security_event(
                db,
                SecurityEventType.reversal_integrity_violation,
                actor.user_id,
                occurred_at=now,
                details={"action_id": str(action_id), "violations": violations},
            )
    return IntegrityCheck(
        action_id=action_id, is_reversed=reversal is not None, violations=violations
    )


async def attempt_reversal_modification(
    db: AsyncSession,
    action_id: uuid.UUID,
    changes: dict[str, Any],
    *,
    actor: Actor,
    now: dt.datetime,
    identity: IdentityDirectory,
) -> ProbeResult:
    """Try to overwrite a stored reversal below the ORM and report what the store did.

    The attempt is always logged. A store that refuses the write confirms the
    immutability guard; a store that accepts it is a breach: the write is rolled back,
    a critical event is logged and admins are alerted immediately.
    """
    unknown = set(changes) - REVERSAL_FIELDS
    if not changes or unknown:
        raise error_for_kind(
            ErrorKind.validation,
            "Only reversal fields can be probed",
            {"allowed_fields": sorted(REVERSAL_FIELDS), "unknown_fields": sorted(unknown)},
        )

    async with observe_operation(
        "reversal_modification_probe", attributes={"action.id": str(action_id)}
    ):
        reversal_id = await db.scalar(
            select(ActionReversal.id).where(ActionReversal.action_id == action_id)
        )
        if reversal_id is None:
            raise error_for_kind(ErrorKind.not_found, "No reversal exists for this action")

        base_details = {
            "action_id": str(action_id),
            "attempted_fields": sorted(changes),
        }
        await record_security_event(
            db,
            SecurityEventType.reversal_modification_attempt,
            actor.user_id,
            occurred_at=now,
            details={**base_details, "probe": True},
        )

        try:
            result = await db.execute(
                update(ActionReversal.__table__)
                .where(ActionReversal.__table__.c.action_id == action_id)
                .values(**changes)
            )
        except DBAPIError as exc:
            await db.rollback()
            message = str(exc.orig) if exc.orig is not None else str(exc)
            await record_security_event(
                db,
                SecurityEventType.reversal_modification_prevented,
                actor.user_id,
                occurred_at=now,
                details={**base_details, "error": message[:500]},
            )
            return ProbeResult(action_id=action_id, prevented=True, error=message[:500])

        await db.rollback()
        if not result.rowcount:
            return ProbeResult(action_id=action_id, prevented=True, error="no rows affected")

        async with database_guard(db, "reversal_modification_probe"):
            add_security_event(
                db,
                SecurityEventType.reversal_modification_succeeded,
                actor.user_id,
                occurred_at=now,
                details={**base_details, "severity": "critical"},
            )
            alerts = queue_admin_alert(
                db,
                recipients=await _admin_ids(db, identity),
                severity="critical",
                title="Reversal record modified",
                body=(
                    f"A write to the reversal of action {action_id} was accepted by the store. "
                    "The change was rolled back; the immutability guard needs attention."
                ),
                details=base_details,
                now=now,
            )
            await db.commit()
        metrics.security_alerts_total.labels(severity="critical").inc()
        logger.critical("reversal_modification_succeeded", extra=base_details)
        return ProbeResult(action_id=action_id, prevented=False, alerts=alerts)

