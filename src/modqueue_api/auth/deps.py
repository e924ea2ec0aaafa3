from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import Depends, Header

from modqueue_api.db.session import DbSessionDep
from modqueue_api.domain.directory import IdentityDirectoryDep
from modqueue_api.domain.errors import AppError
from modqueue_api.domain.roles import Actor

USER_ID_HEADER = "X-User-Id"


async def get_optional_actor(
    db: DbSessionDep,
    identity: IdentityDirectoryDep,
    x_user_id: Annotated[str | None, Header(alias=USER_ID_HEADER)] = None,
) -> Actor | None:
    if not x_user_id:
        return None
    try:
        user_id = uuid.UUID(x_user_id.strip())
    except ValueError:
        return None
    return Actor(user_id=user_id, role=await identity.role_of(db, user_id))


async def require_actor(actor: Annotated[Actor | None, Depends(get_optional_actor)]) -> Actor:
    if actor is None:
        raise AppError(code="auth_required", message="Authentication required", status_code=401)
    return actor


async def require_moderator(actor: Annotated[Actor, Depends(require_actor)]) -> Actor:
    if not actor.is_moderator:
        raise AppError(code="forbidden", message="Moderator access is required", status_code=403)
    return actor


async def require_admin(actor: Annotated[Actor, Depends(require_actor)]) -> Actor:
    if not actor.is_admin:
        raise AppError(code="forbidden", message="Admin access is required", status_code=403)
    return actor


CurrentActor = Annotated[Actor, Depends(require_actor)]
ModeratorActor = Annotated[Actor, Depends(require_moderator)]
AdminActor = Annotated[Actor, Depends(require_admin)]
