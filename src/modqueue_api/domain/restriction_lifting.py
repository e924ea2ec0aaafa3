from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import (
    ModerationAction,
    NotificationOutbox,
    UserRestriction,
    UserStanding,
)
from modqueue_api.db.session import database_guard
from modqueue_api.domain.action_reversals import (
    MAX_REVERSAL_REASON_LENGTH,
    ReversalRejected,
    reverse_action,
)
from modqueue_api.domain.action_types import ActionState, RestrictionType
from modqueue_api.domain.directory import IdentityDirectory
from modqueue_api.domain.errors import ErrorKind, error_for_kind
from modqueue_api.domain.evidence import sanitize_text
from modqueue_api.domain.notifications import queue_restriction_lifted_notification
from modqueue_api.domain.roles import Actor, Role
from modqueue_api.domain.security_events import (
    SecurityEventType,
    add_security_event,
    record_security_event,
)
from modqueue_api.observability.ops import observe_operation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lifted:
    user_id: uuid.UUID
    restriction_type: str
    reversed_action: ModerationAction | None = None
    notifications: list[NotificationOutbox] = field(default_factory=list)


def _clean_reason(reason: str, *, operation: str) -> str:
    reason = sanitize_text(reason)
    if not reason:
        raise error_for_kind(
            ErrorKind.validation, f"A reason is required for {operation}", {"field": "reason"}
        )
    if len(reason) > MAX_REVERSAL_REASON_LENGTH:
        raise error_for_kind(
            ErrorKind.validation,
            f"Reason must be at most {MAX_REVERSAL_REASON_LENGTH} characters",
            {"field": "reason"},
        )
    return reason


async def _authorize(
    db: AsyncSession,
    actor: Actor,
    user_id: uuid.UUID,
    *,
    identity: IdentityDirectory,
    now: dt.datetime,
    details: dict[str, Any],
) -> None:
    if not actor.is_moderator:
        raise error_for_kind(ErrorKind.forbidden, "Moderator access is required")
    if actor.user_id == user_id:
        await record_security_event(
            db,
            SecurityEventType.unauthorized_self_restriction_modification,
            actor.user_id,
            occurred_at=now,
            details=details,
        )
        raise error_for_kind(ErrorKind.forbidden, "Users cannot modify their own restrictions")
    if not actor.is_admin and await identity.role_of(db, user_id) == Role.admin:
        await record_security_event(
            db,
            SecurityEventType.unauthorized_action_on_admin,
            actor.user_id,
            occurred_at=now,
            details={"target_user_id": str(user_id), **details},
        )
        raise error_for_kind(
            ErrorKind.forbidden, "Moderators cannot lift restrictions on admin accounts"
        )


async def _reverse_source_action(
    db: AsyncSession,
    action: ModerationAction,
    *,
    actor: Actor,
    reason: str,
    now: dt.datetime,
    identity: IdentityDirectory,
    restriction_type: str,
) -> Lifted:
    result = await reverse_action(
        db, action.id, actor=actor, reason=reason, now=now, identity=identity
    )
    if isinstance(result, ReversalRejected):
        raise error_for_kind(ErrorKind(result.kind.value), result.message, result.details)
    return Lifted(
        user_id=action.target_user_id,
        restriction_type=restriction_type,
        reversed_action=result.action,
        notifications=result.notifications,
    )


async def _clear_standing(db: AsyncSession, user_id: uuid.UUID, now: dt.datetime) -> None:
    standing = await db.get(UserStanding, user_id)
    if standing is None:
        return
    standing.suspended_at = None
    standing.suspended_until = None
    standing.suspension_reason = None
    standing.suspension_action_id = None
    standing.updated_at = now


def _audit_lift(
    db: AsyncSession,
    actor: Actor,
    user_id: uuid.UUID,
    *,
    restriction_type: str,
    reason: str,
    now: dt.datetime,
    details: dict[str, Any],
) -> NotificationOutbox:
    add_security_event(
        db,
        SecurityEventType.restriction_lifted,
        actor.user_id,
        occurred_at=now,
        details={
            "target_user_id": str(user_id),
            "restriction_type": restriction_type,
            "reason": reason,
            **details,
        },
    )
    return queue_restriction_lifted_notification(
        db, user_id=user_id, restriction_type=restriction_type, reason=reason, now=now
    )


async def lift_restriction(
    db: AsyncSession,
    restriction_id: uuid.UUID,
    *,
    actor: Actor,
    reason: str,
    now: dt.datetime,
    identity: IdentityDirectory,
) -> Lifted:
    """Lift one active restriction ahead of its expiry.

    A restriction created by a still-active action is lifted by reversing that
    action, so the write-once reversal record carries the audit trail. Restrictions
    without a live source action are deactivated directly and audited as a
    security event.
    """
    reason = _clean_reason(reason, operation="removing a restriction")
    async with observe_operation(
        "lift_restriction", attributes={"restriction.id": str(restriction_id)}
    ):
        async with database_guard(db, "lift_restriction"):
            restriction = await db.get(UserRestriction, restriction_id)
            if restriction is None:
                raise error_for_kind(ErrorKind.not_found, "Restriction not found")
            expired = restriction.expires_at is not None and restriction.expires_at <= now
            if not restriction.is_active or expired:
                raise error_for_kind(
                    ErrorKind.validation,
                    "Restriction is already inactive",
                    {"restriction_id": str(restriction_id)},
                )
            details = {"restriction_id": str(restriction_id), "operation": "lift_restriction"}
            await _authorize(
                db, actor, restriction.user_id, identity=identity, now=now, details=details
            )
            source = None
            if restriction.related_action_id is not None:
                source = await db.get(ModerationAction, restriction.related_action_id)

        if source is not None and source.state_at(now) == ActionState.active:
            lifted = await _reverse_source_action(
                db,
                source,
                actor=actor,
                reason=reason,
                now=now,
                identity=identity,
                restriction_type=restriction.restriction_type,
            )
        else:
            async with database_guard(db, "lift_restriction"):
                restriction.is_active = False
                restriction.updated_at = now
                if restriction.restriction_type == RestrictionType.suspended:
                    await _clear_standing(db, restriction.user_id, now)
                notification = _audit_lift(
                    db,
                    actor,
                    restriction.user_id,
                    restriction_type=restriction.restriction_type,
                    reason=reason,
                    now=now,
                    details=details,
                )
                await db.commit()
            lifted = Lifted(
                user_id=restriction.user_id,
                restriction_type=restriction.restriction_type,
                notifications=[notification],
            )

    logger.info(
        "restriction_lifted",
        extra={
            "restriction_id": str(restriction_id),
            "user_id": str(lifted.user_id),
            "lifted_by": str(actor.user_id),
            "via_reversal": lifted.reversed_action is not None,
        },
    )
    return lifted


async def lift_suspension(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    actor: Actor,
    reason: str,
    now: dt.datetime,
    identity: IdentityDirectory,
) -> Lifted:
    """Lift a user's current suspension; permanent suspensions (bans) need an admin."""
    reason = _clean_reason(reason, operation="lifting a suspension")
    async with observe_operation("lift_suspension", attributes={"user.id": str(user_id)}):
        async with database_guard(db, "lift_suspension"):
            details = {"operation": "lift_suspension"}
            await _authorize(db, actor, user_id, identity=identity, now=now, details=details)
            standing = await db.get(UserStanding, user_id)
            lapsed = (
                standing is not None
                and standing.suspended_until is not None
                and standing.suspended_until <= now
            )
            if standing is None or not standing.is_suspended or lapsed:
                raise error_for_kind(
                    ErrorKind.validation,
                    "User is not currently suspended",
                    {"user_id": str(user_id)},
                )
            if standing.suspended_until is None and not actor.is_admin:
                raise error_for_kind(
                    ErrorKind.forbidden, "Only admins may remove a permanent suspension"
                )
            source = None
            if standing.suspension_action_id is not None:
                source = await db.get(ModerationAction, standing.suspension_action_id)

        if source is not None and source.state_at(now) == ActionState.active:
            lifted = await _reverse_source_action(
                db,
                source,
                actor=actor,
                reason=reason,
                now=now,
                identity=identity,
                restriction_type=RestrictionType.suspended.value,
            )
        else:
            async with database_guard(db, "lift_suspension"):
                await db.execute(
                    update(UserRestriction)
                    .where(
                        UserRestriction.user_id == user_id,
                        UserRestriction.restriction_type == RestrictionType.suspended.value,
                        UserRestriction.is_active.is_(True),
                    )
                    .values(is_active=False, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                await _clear_standing(db, user_id, now)
                notification = _audit_lift(
                    db,
                    actor,
                    user_id,
                    restriction_type=RestrictionType.suspended.value,
                    reason=reason,
                    now=now,
                    details=details,
                )
                await db.commit()
            lifted = Lifted(
                user_id=user_id,
                restriction_type=RestrictionType.suspended.value,
                notifications=[notification],
            )

    logger.info(
        "suspension_lifted",
        extra={
            "user_id": str(user_id),
            "lifted_by": str(actor.user_id),
            "via_reversal": lifted.reversed_action is not None,
        },
    )
    return lifted
