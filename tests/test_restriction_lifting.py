from __future__ import annotations

import datetime as dt
import uuid

import pytest
from sqlalchemy import select

from modqueue_api.db.models import Report, SecurityEvent, UserRestriction, UserStanding
from modqueue_api.domain.action_types import ActionType, Capability, RestrictionType
from modqueue_api.domain.directory import TableContentDirectory, TableIdentityDirectory
from modqueue_api.domain.errors import AppError
from modqueue_api.domain.moderation_actions import ActionParams, take_action
from modqueue_api.domain.restriction_lifting import lift_restriction, lift_suspension
from modqueue_api.domain.restrictions import can_perform, suspension_status
from modqueue_api.domain.roles import Actor, Role
from modqueue_api.domain.security_events import SecurityEventType
from modqueue_api.settings import get_settings

NOW = dt.datetime(2026, 10, 18, 12, 0, tzinfo=dt.UTC)
EARLIER = NOW - dt.timedelta(hours=1)


async def sanction(
    db_sessionmaker, actor: Actor, user_id: uuid.UUID, params: ActionParams
) -> uuid.UUID:
    report = Report(
        reporter_id=uuid.uuid4(),
        reported_user_id=user_id,
        report_type="user",
        target_id=user_id,
        reason="harassment",
        description="Abusive replies under several tracks.",
        status="pending",
        priority=2,
        moderator_flagged=False,
        created_at=EARLIER,
        updated_at=EARLIER,
    )
    async with db_sessionmaker() as session:
        session.add(report)
        await session.commit()
        outcome = await take_action(
            session,
            report.id,
            params,
            actor=actor,
            now=EARLIER,
            settings=get_settings(),
            identity=TableIdentityDirectory(),
            content=TableContentDirectory(),
        )
    return outcome.action.id


async def add_bare_restriction(
    db_sessionmaker,
    user_id: uuid.UUID,
    restriction_type: RestrictionType = RestrictionType.commenting_disabled,
    *,
    is_active: bool = True,
) -> uuid.UUID:
    restriction = UserRestriction(
        user_id=user_id,
        restriction_type=restriction_type.value,
        expires_at=None,
        is_active=is_active,
        reason="Imported from the previous moderation tool",
        applied_by=uuid.uuid4(),
        related_action_id=None,
        created_at=EARLIER,
        updated_at=EARLIER,
    )
    async with db_sessionmaker() as session:
        session.add(restriction)
        await session.commit()
    return restriction.id


async def events_of(db_sessionmaker, event_type: SecurityEventType) -> list[SecurityEvent]:
    async with db_sessionmaker() as session:
        result = await session.scalars(
            select(SecurityEvent).where(SecurityEvent.event_type == event_type.value)
        )
        return list(result.all())


@pytest.mark.asyncio
async def test_lifting_an_action_restriction_reverses_the_action(db_sessionmaker) -> None:
    moderator = Actor(uuid.uuid4(), Role.moderator)
    reviewer = Actor(uuid.uuid4(), Role.moderator)
    user_id = uuid.uuid4()
    action_id = await sanction(
        db_sessionmaker,
        moderator,
        user_id,
        ActionParams(
            action_type=ActionType.restriction_applied,
            reason="Comment spam",
            duration_days=7,
            restriction_type=RestrictionType.commenting_disabled,
        ),
    )

    async with db_sessionmaker() as session:
        restriction_id = await session.scalar(
            select(UserRestriction.id).where(UserRestriction.related_action_id == action_id)
        )
        lifted = await lift_restriction(
            session,
            restriction_id,
            actor=reviewer,
            reason="Spam filter false positive",
            now=NOW,
            identity=TableIdentityDirectory(),
        )
    async with db_sessionmaker() as session:
        allowed = await can_perform(session, user_id, Capability.comment, now=NOW)

    assert lifted.reversed_action is not None
    assert lifted.reversed_action.id == action_id
    assert [n.title for n in lifted.notifications] == ["Restriction Removed"]
    assert allowed is True


@pytest.mark.asyncio
async def test_lifting_a_restriction_without_a_source_action_is_audited(db_sessionmaker) -> None:
    moderator = Actor(uuid.uuid4(), Role.moderator)
    user_id = uuid.uuid4()
    restriction_id = await add_bare_restriction(db_sessionmaker, user_id)

    async with db_sessionmaker() as session:
        lifted = await lift_restriction(
            session,
            restriction_id,
            actor=moderator,
            reason="Legacy restriction no longer applies",
            now=NOW,
            identity=TableIdentityDirectory(),
        )
    async with db_sessionmaker() as session:
        restriction = await session.get(UserRestriction, restriction_id)
        allowed = await can_perform(session, user_id, Capability.comment, now=NOW)

    assert lifted.reversed_action is None
    assert restriction.is_active is False
    assert allowed is True
    assert lifted.notifications[0].event_type == "restriction_lifted"
    assert "commenting_disabled" in lifted.notifications[0].body

    events = await events_of(db_sessionmaker, SecurityEventType.restriction_lifted)
    assert len(events) == 1
    assert events[0].user_id == moderator.user_id
    assert events[0].details["target_user_id"] == str(user_id)
    assert events[0].details["restriction_id"] == str(restriction_id)
    assert events[0].details["reason"] == "Legacy restriction no longer applies"


@pytest.mark.asyncio
async def test_moderators_cannot_lift_their_own_restrictions(db_sessionmaker) -> None:
    moderator = Actor(uuid.uuid4(), Role.moderator)
    restriction_id = await add_bare_restriction(db_sessionmaker, moderator.user_id)

    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await lift_restriction(
                session,
                restriction_id,
                actor=moderator,
                reason="Let me comment again",
                now=NOW,
                identity=TableIdentityDirectory(),
            )
    async with db_sessionmaker() as session:
        restriction = await session.get(UserRestriction, restriction_id)

    assert exc_info.value.code == "forbidden"
    assert restriction.is_active is True
    events = await events_of(
        db_sessionmaker, SecurityEventType.unauthorized_self_restriction_modification
    )
    assert [event.user_id for event in events] == [moderator.user_id]


@pytest.mark.asyncio
async def test_moderators_cannot_lift_restrictions_on_admins(db_sessionmaker, grant_role) -> None:
    admin_id = await grant_role(Role.admin)
    moderator = Actor(uuid.uuid4(), Role.moderator)
    restriction_id = await add_bare_restriction(db_sessionmaker, admin_id)

    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await lift_restriction(
                session,
                restriction_id,
                actor=moderator,
                reason="Cleanup",
                now=NOW,
                identity=TableIdentityDirectory(),
            )

    assert exc_info.value.code == "forbidden"
    events = await events_of(db_sessionmaker, SecurityEventType.unauthorized_action_on_admin)
    assert events[0].details["target_user_id"] == str(admin_id)


@pytest.mark.asyncio
async def test_lift_restriction_rejects_bad_input(db_sessionmaker) -> None:
    moderator = Actor(uuid.uuid4(), Role.moderator)
    inactive_id = await add_bare_restriction(db_sessionmaker, uuid.uuid4(), is_active=False)
    identity = TableIdentityDirectory()

    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as missing:
            await lift_restriction(
                session, uuid.uuid4(), actor=moderator, reason="x", now=NOW, identity=identity
            )
        with pytest.raises(AppError) as inactive:
            await lift_restriction(
                session, inactive_id, actor=moderator, reason="x", now=NOW, identity=identity
            )
        with pytest.raises(AppError) as blank:
            await lift_restriction(
                session, inactive_id, actor=moderator, reason="   ", now=NOW, identity=identity
            )

    assert missing.value.code == "not_found"
    assert inactive.value.code == "validation_error"
    assert blank.value.code == "validation_error"
    assert blank.value.details == {"field": "reason"}


@pytest.mark.asyncio
async def test_removing_a_ban_requires_an_admin(db_sessionmaker) -> None:
    admin = Actor(uuid.uuid4(), Role.admin)
    moderator = Actor(uuid.uuid4(), Role.moderator)
    user_id = uuid.uuid4()
    action_id = await sanction(
        db_sessionmaker,
        admin,
        user_id,
        ActionParams(action_type=ActionType.user_banned, reason="Ban evasion"),
    )
    identity = TableIdentityDirectory()

    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await lift_suspension(
                session, user_id, actor=moderator, reason="Appeal", now=NOW, identity=identity
            )
        lifted = await lift_suspension(
            session, user_id, actor=admin, reason="Appeal upheld", now=NOW, identity=identity
        )
    async with db_sessionmaker() as session:
        status = await suspension_status(session, user_id, now=NOW)

    assert exc_info.value.code == "forbidden"
    assert lifted.reversed_action.id == action_id
    assert [n.title for n in lifted.notifications] == ["Ban Removed"]
    assert status.is_suspended is False


@pytest.mark.asyncio
async def test_lifting_a_suspension_without_a_source_action(db_sessionmaker) -> None:
    moderator = Actor(uuid.uuid4(), Role.moderator)
    user_id = uuid.uuid4()
    restriction_id = await add_bare_restriction(
        db_sessionmaker, user_id, RestrictionType.suspended
    )
    async with db_sessionmaker() as session:
        session.add(
            UserStanding(
                user_id=user_id,
                suspended_at=EARLIER,
                suspended_until=NOW + dt.timedelta(days=3),
                suspension_reason="Imported suspension",
                suspension_action_id=None,
                updated_at=EARLIER,
            )
        )
        await session.commit()

    async with db_sessionmaker() as session:
        lifted = await lift_suspension(
            session,
            user_id,
            actor=moderator,
            reason="Served enough time",
            now=NOW,
            identity=TableIdentityDirectory(),
        )
    async with db_sessionmaker() as session:
        restriction = await session.get(UserRestriction, restriction_id)
        status = await suspension_status(session, user_id, now=NOW)
        with pytest.raises(AppError) as again:
            await lift_suspension(
                session,
                user_id,
                actor=moderator,
                reason="Served enough time",
                now=NOW,
                identity=TableIdentityDirectory(),
            )

    assert lifted.reversed_action is None
    assert [n.title for n in lifted.notifications] == ["Suspension Lifted"]
    assert restriction.is_active is False
    assert status.is_suspended is False
    assert again.value.code == "validation_error"
    assert again.value.message == "User is not currently suspended"


@pytest.mark.asyncio
async def test_lift_suspension_endpoint(client, grant_role, db_sessionmaker) -> None:
    moderator_id = await grant_role(Role.moderator)
    user_id = uuid.uuid4()
    action_id = await sanction(
        db_sessionmaker,
        Actor(uuid.uuid4(), Role.moderator),
        user_id,
        ActionParams(action_type=ActionType.user_suspended, reason="Harassment", duration_days=7),
    )

    response = await client.post(
        f"/v1/moderation/users/{user_id}/suspension/lift",
        json={"reason": "Appeal accepted"},
        headers={"X-User-Id": str(moderator_id)},
    )
    repeat = await client.post(
        f"/v1/moderation/users/{user_id}/suspension/lift",
        json={"reason": "Appeal accepted"},
        headers={"X-User-Id": str(moderator_id)},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == str(user_id)
    assert body["restriction_type"] == "suspended"
    assert body["reversed_action"]["id"] == str(action_id)
    assert body["reversed_action"]["state"] == "reversed"
    assert repeat.status_code == 400
    assert repeat.json()["error"]["code"] == "validation_error"
