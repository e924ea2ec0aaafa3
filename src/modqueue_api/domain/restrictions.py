from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import UserRestriction, UserStanding
from modqueue_api.db.session import database_guard
from modqueue_api.domain.action_types import Capability, RestrictionType, blocking_restrictions
from modqueue_api.observability import metrics
from modqueue_api.observability.ops import observe_operation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SuspensionStatus:
    is_suspended: bool
    suspended_until: dt.datetime | None
    is_permanent: bool
    days_remaining: int | None
    reason: str | None


@dataclass(frozen=True)
class SweepResult:
    restrictions_expired: int
    suspensions_cleared: int


def _unexpired(now: dt.datetime):
    return or_(UserRestriction.expires_at.is_(None), UserRestriction.expires_at > now)


async def can_perform(
    db: AsyncSession,
    user_id: uuid.UUID,
    capability: Capability,
    *,
    now: dt.datetime,
) -> bool:
    blocking = [restriction.value for restriction in blocking_restrictions(capability)]
    blocked = await db.scalar(
        select(
            exists().where(
                UserRestriction.user_id == user_id,
                UserRestriction.is_active.is_(True),
                UserRestriction.restriction_type.in_(blocking),
                _unexpired(now),
            )
        )
    )
    return not blocked


async def active_restrictions(
    db: AsyncSession, user_id: uuid.UUID, *, now: dt.datetime
) -> list[UserRestriction]:
    result = await db.scalars(
        select(UserRestriction)
        .where(
            UserRestriction.user_id == user_id,
            UserRestriction.is_active.is_(True),
            _unexpired(now),
        )
        .order_by(UserRestriction.created_at.desc())
    )
    return list(result.all())


async def suspension_status(
    db: AsyncSession, user_id: uuid.UUID, *, now: dt.datetime
) -> SuspensionStatus:
    standing = await db.get(UserStanding, user_id)
    if standing is None or standing.suspended_at is None:
        return SuspensionStatus(False, None, False, None, None)
    until = standing.suspended_until
    if until is not None and until <= now:
        return SuspensionStatus(False, until, False, 0, standing.suspension_reason)
    days_remaining = None
    if until is not None:
        days_remaining = max(0, (until - now).days + (1 if (until - now).seconds else 0))
    return SuspensionStatus(
        is_suspended=True,
        suspended_until=until,
        is_permanent=until is None,
        days_remaining=days_remaining,
        reason=standing.suspension_reason,
    )


async def apply_restriction(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    restriction_type: RestrictionType,
    expires_at: dt.datetime | None,
    reason: str,
    applied_by: uuid.UUID,
    action_id: uuid.UUID,
    now: dt.datetime,
) -> UserRestriction:
    """Replace any active restriction of this type with one linked to ``action_id``.

    The previous row is deactivated, never deleted, so history is kept and the
    one-active-per-type index holds.
    """
    await db.execute(
        update(UserRestriction)
        .where(
            UserRestriction.user_id == user_id,
            UserRestriction.restriction_type == restriction_type.value,
            UserRestriction.is_active.is_(True),
        )
        .values(is_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    restriction = UserRestriction(
        user_id=user_id,
        restriction_type=restriction_type.value,
        expires_at=expires_at,
        is_active=True,
        reason=reason,
        applied_by=applied_by,
        related_action_id=action_id,
        created_at=now,
        updated_at=now,
    )
    db.add(restriction)
    await db.flush()
    return restriction


async def suspend_user(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    until: dt.datetime | None,
    reason: str,
    action_id: uuid.UUID,
    now: dt.datetime,
) -> UserStanding:
    standing = await db.get(UserStanding, user_id)
    if standing is None:
        standing = UserStanding(user_id=user_id)
        db.add(standing)
    standing.suspended_at = now
    standing.suspended_until = until
    standing.suspension_reason = reason
    standing.suspension_action_id = action_id
    standing.updated_at = now
    return standing


async def lift_action_restrictions(
    db: AsyncSession, action_id: uuid.UUID, *, now: dt.datetime
) -> int:
    """Deactivate every restriction created by an action and clear its suspension."""
    result = await db.execute(
        update(UserRestriction)
        .where(
            UserRestriction.related_action_id == action_id,
            UserRestriction.is_active.is_(True),
        )
        .values(is_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(UserStanding)
        .where(UserStanding.suspension_action_id == action_id)
        .values(
            suspended_at=None,
            suspended_until=None,
            suspension_reason=None,
            suspension_action_id=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def expire_restrictions(db: AsyncSession, *, now: dt.datetime) -> SweepResult:
    """Flip expired restrictions to inactive and clear lapsed suspensions.

    Both updates only ever move rows to the inactive/cleared state, so repeated or
    concurrent runs converge on the same result.
    """
    async with observe_operation("restriction_sweep"):
        async with database_guard(db, "restriction_sweep"):
            expired = await db.execute(
                update(UserRestriction)
                .where(
                    UserRestriction.is_active.is_(True),
                    UserRestriction.expires_at.is_not(None),
                    UserRestriction.expires_at <= now,
                )
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            cleared = await db.execute(
                update(UserStanding)
                .where(
                    and_(
                        UserStanding.suspended_at.is_not(None),
                        UserStanding.suspended_until.is_not(None),
                        UserStanding.suspended_until <= now,
                    )
                )
                .values(
                    suspended_at=None,
                    suspended_until=None,
                    suspension_reason=None,
                    suspension_action_id=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
    result = SweepResult(
        restrictions_expired=int(expired.rowcount or 0),
        suspensions_cleared=int(cleared.rowcount or 0),
    )
    metrics.restrictions_expired_total.inc(result.restrictions_expired)
    logger.info(
        "restriction_sweep_completed",
        extra={
            "restrictions_expired": result.restrictions_expired,
            "suspensions_cleared": result.suspensions_cleared,
        },
    )
    return result
