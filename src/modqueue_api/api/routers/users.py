from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from modqueue_api.api.conversions import restriction_to_public
from modqueue_api.api.schemas import CapabilityResponse, SuspensionPublic, UserRestrictionsResponse
from modqueue_api.auth.deps import CurrentActor
from modqueue_api.db.session import DbSessionDep, database_guard
from modqueue_api.domain.action_types import Capability
from modqueue_api.domain.errors import ErrorKind, error_for_kind
from modqueue_api.domain.restrictions import active_restrictions, can_perform, suspension_status
from modqueue_api.domain.roles import Actor
from modqueue_api.time import UtcNow, get_utcnow

router = APIRouter(prefix="/v1/users", tags=["users"])


def _ensure_can_view(actor: Actor, user_id: uuid.UUID) -> None:
    if actor.user_id != user_id and not actor.is_moderator:
        raise error_for_kind(
            ErrorKind.forbidden, "Only moderators can view another user's restrictions"
        )


@router.get("/{user_id}/capabilities/{capability}", response_model=CapabilityResponse)
async def get_capability(
    user_id: uuid.UUID,
    capability: Capability,
    db: DbSessionDep,
    actor: CurrentActor,
    now: UtcNow = Depends(get_utcnow),
) -> CapabilityResponse:
    timestamp = now()
    _ensure_can_view(actor, user_id)
    async with database_guard(db, "can_perform"):
        allowed = await can_perform(db, user_id, capability, now=timestamp)
    return CapabilityResponse(
        user_id=user_id, capability=capability, allowed=allowed, checked_at=timestamp
    )


@router.get("/{user_id}/restrictions", response_model=UserRestrictionsResponse)
async def get_restrictions(
    user_id: uuid.UUID,
    db: DbSessionDep,
    actor: CurrentActor,
    now: UtcNow = Depends(get_utcnow),
) -> UserRestrictionsResponse:
    timestamp = now()
    _ensure_can_view(actor, user_id)
    async with database_guard(db, "user_restrictions"):
        restrictions = await active_restrictions(db, user_id, now=timestamp)
        suspension = await suspension_status(db, user_id, now=timestamp)
    return UserRestrictionsResponse(
        user_id=user_id,
        restrictions=[restriction_to_public(restriction) for restriction in restrictions],
        suspension=SuspensionPublic(
            is_suspended=suspension.is_suspended,
            suspended_until=suspension.suspended_until,
            is_permanent=suspension.is_permanent,
            days_remaining=suspension.days_remaining,
            reason=suspension.reason,
        ),
    )
