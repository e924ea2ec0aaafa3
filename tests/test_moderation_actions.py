from __future__ import annotations

import datetime as dt
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from modqueue_api.db.models import (
    ContentItem,
    ModerationAction,
    NotificationOutbox,
    Report,
    SecurityEvent,
    UserRestriction,
    UserStanding,
)
from modqueue_api.domain import moderation_actions
from modqueue_api.domain.action_types import ActionState, ActionType, RestrictionType
from modqueue_api.domain.directory import TableContentDirectory, TableIdentityDirectory
from modqueue_api.domain.errors import AppError
from modqueue_api.domain.moderation_actions import (
    ActionParams,
    action_history,
    reapply_action,
    take_action,
    validate_action_params,
)
from modqueue_api.domain.action_reversals import Reversed, reverse_action
from modqueue_api.domain.roles import Actor, Role
from modqueue_api.domain.security_events import SecurityEventType
from modqueue_api.settings import get_settings

NOW = dt.datetime(2026, 10, 18, 12, 0, tzinfo=dt.UTC)


async def create_report(
    db_sessionmaker,
    *,
    report_type: str = "track",
    reported_user_id: uuid.UUID | None = None,
    status: str = "pending",
) -> Report:
    report = Report(
        reporter_id=uuid.uuid4(),
        reported_user_id=reported_user_id,
        report_type=report_type,
        target_id=reported_user_id if report_type == "user" else uuid.uuid4(),
        reason="harassment",
        description="Abusive lyrics aimed at another artist.",
        status=status,
        priority=2,
        moderator_flagged=False,
        created_at=NOW - dt.timedelta(hours=1),
        updated_at=NOW - dt.timedelta(hours=1),
    )
    async with db_sessionmaker() as session:
        session.add(report)
        await session.commit()
    return report


async def act(session, report_id: uuid.UUID, params: ActionParams, actor: Actor, *, now=NOW):
    return await take_action(
        session,
        report_id,
        params,
        actor=actor,
        now=now,
        settings=get_settings(),
        identity=TableIdentityDirectory(),
        content=TableContentDirectory(),
    )


def expect_app_error(exc_info: pytest.ExceptionInfo, code: str, status_code: int) -> AppError:
    error = exc_info.value
    assert error.code == code
    assert error.status_code == status_code
    return error


def test_suspension_requires_duration() -> None:
    with pytest.raises(AppError) as exc_info:
        validate_action_params(ActionParams(action_type=ActionType.user_suspended, reason="x"))
    assert expect_app_error(exc_info, "validation_error", 400).details["field"] == "duration_days"


def test_duration_only_for_timed_actions() -> None:
    with pytest.raises(AppError) as exc_info:
        validate_action_params(
            ActionParams(action_type=ActionType.user_warned, reason="x", duration_days=3)
        )
    expect_app_error(exc_info, "validation_error", 400)


def test_duration_bounds() -> None:
    for duration in (0, 366):
        with pytest.raises(AppError):
            validate_action_params(
                ActionParams(
                    action_type=ActionType.user_suspended, reason="x", duration_days=duration
                )
            )


def test_restriction_action_needs_a_real_restriction_type() -> None:
    with pytest.raises(AppError):
        validate_action_params(ActionParams(action_type=ActionType.restriction_applied, reason="x"))
    with pytest.raises(AppError):
        validate_action_params(
            ActionParams(
                action_type=ActionType.restriction_applied,
                reason="x",
                restriction_type=RestrictionType.suspended,
            )
        )


def test_reason_is_required_and_sanitized() -> None:
    with pytest.raises(AppError):
        validate_action_params(ActionParams(action_type=ActionType.user_warned, reason=" <b></b> "))
    params = validate_action_params(
        ActionParams(action_type=ActionType.user_warned, reason=" <em>Rude</em> ")
    )
    assert params.reason == "Rude"


@pytest.mark.asyncio
async def test_content_removal_resolves_report_and_notifies_owner(
    db_sessionmaker, register_content
) -> None:
    owner_id = uuid.uuid4()
    moderator = Actor(uuid.uuid4(), Role.moderator)
    content_id = await register_content(owner_id)
    report = Report(
        reporter_id=uuid.uuid4(),
        report_type="track",
        target_id=content_id,
        reason="copyright_violation",
        description="Sampled without any clearance at all.",
        status="pending",
        priority=3,
        moderator_flagged=False,
        created_at=NOW,
        updated_at=NOW,
    )
    async with db_sessionmaker() as session:
        session.add(report)
        await session.commit()

    async with db_sessionmaker() as session:
        outcome = await act(
            session,
            report.id,
            ActionParams(
                action_type=ActionType.content_removed,
                reason="Confirmed infringement",
                evidence_verified=True,
                verification_notes="Matched the original master",
            ),
            moderator,
        )

    action = outcome.action
    assert action.target_user_id == owner_id
    assert action.state_at(NOW) == ActionState.active
    assert action.notification_sent is True
    assert action.details["evidence_verification"]["verified"] is True
    assert outcome.report.status == "resolved"
    assert outcome.report.reviewed_by == moderator.user_id
    assert outcome.report.action_taken == "content_removed"

    async with db_sessionmaker() as session:
        item = await session.scalar(select(ContentItem).where(ContentItem.content_id == content_id))
        notifications = (await session.scalars(select(NotificationOutbox))).all()
    assert item.removed_at == NOW
    assert item.removed_by_action_id == action.id
    assert [notification.user_id for notification in notifications] == [owner_id]
    assert notifications[0].title == "Content Removed"


@pytest.mark.asyncio
async def test_approval_dismisses_without_notifying(db_sessionmaker) -> None:
    report = await create_report(db_sessionmaker, reported_user_id=uuid.uuid4())
    async with db_sessionmaker() as session:
        outcome = await act(
            session,
            report.id,
            ActionParams(action_type=ActionType.content_approved, reason="No violation"),
            Actor(uuid.uuid4(), Role.moderator),
        )
    assert outcome.report.status == "dismissed"
    assert outcome.notifications == []
    assert outcome.action.notification_sent is False


@pytest.mark.asyncio
async def test_suspension_creates_restriction_and_standing(db_sessionmaker) -> None:
    target_id = uuid.uuid4()
    report = await create_report(db_sessionmaker, report_type="user", reported_user_id=target_id)
    async with db_sessionmaker() as session:
        outcome = await act(
            session,
            report.id,
            ActionParams(action_type=ActionType.user_suspended, reason="Harassment", duration_days=7),
            Actor(uuid.uuid4(), Role.moderator),
        )

    assert outcome.action.expires_at == NOW + dt.timedelta(days=7)
    async with db_sessionmaker() as session:
        restriction = await session.scalar(
            select(UserRestriction).where(UserRestriction.user_id == target_id)
        )
        standing = await session.get(UserStanding, target_id)
    assert restriction.restriction_type == "suspended"
    assert restriction.is_active is True
    assert restriction.related_action_id == outcome.action.id
    assert standing.is_suspended


@pytest.mark.asyncio
async def test_sanction_lands_on_content_owner_not_stored_reported_user(
    db_sessionmaker, register_content
) -> None:
    owner_id = uuid.uuid4()
    bystander_id = uuid.uuid4()
    track_id = await register_content(owner_id)
    report = Report(
        reporter_id=uuid.uuid4(),
        reported_user_id=bystander_id,
        report_type="track",
        target_id=track_id,
        reason="harassment",
        description="Abusive lyrics aimed at another artist.",
        status="pending",
        priority=2,
        moderator_flagged=False,
        created_at=NOW,
        updated_at=NOW,
    )
    async with db_sessionmaker() as session:
        session.add(report)
        await session.commit()
        outcome = await act(
            session,
            report.id,
            ActionParams(action_type=ActionType.user_suspended, reason="Harassment", duration_days=7),
            Actor(uuid.uuid4(), Role.moderator),
        )

    assert outcome.action.target_user_id == owner_id
    async with db_sessionmaker() as session:
        assert await session.get(UserStanding, owner_id) is not None
        assert await session.get(UserStanding, bystander_id) is None
    assert standing.suspended_until == NOW + dt.timedelta(days=7)


@pytest.mark.asyncio
async def test_finalized_reports_reject_new_actions(db_sessionmaker) -> None:
    report = await create_report(db_sessionmaker, status="resolved")
    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await act(
                session,
                report.id,
                ActionParams(action_type=ActionType.content_removed, reason="Late"),
                Actor(uuid.uuid4(), Role.moderator),
            )
    expect_app_error(exc_info, "report_already_finalized", 409)


@pytest.mark.asyncio
async def test_missing_report_is_not_found(db_sessionmaker) -> None:
    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await act(
                session,
                uuid.uuid4(),
                ActionParams(action_type=ActionType.content_removed, reason="Gone"),
                Actor(uuid.uuid4(), Role.moderator),
            )
    expect_app_error(exc_info, "not_found", 404)


@pytest.mark.asyncio
async def test_bans_are_admin_only(db_sessionmaker) -> None:
    target_id = uuid.uuid4()
    report = await create_report(db_sessionmaker, report_type="user", reported_user_id=target_id)
    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await act(
                session,
                report.id,
                ActionParams(action_type=ActionType.user_banned, reason="Repeat offender"),
                Actor(uuid.uuid4(), Role.moderator),
            )
    expect_app_error(exc_info, "forbidden", 403)

    async with db_sessionmaker() as session:
        outcome = await act(
            session,
            report.id,
            ActionParams(action_type=ActionType.user_banned, reason="Repeat offender"),
            Actor(uuid.uuid4(), Role.admin),
        )
    assert outcome.action.expires_at is None


@pytest.mark.asyncio
async def test_moderators_cannot_act_on_admins(db_sessionmaker, grant_role) -> None:
    admin_id = await grant_role(Role.admin)
    moderator = Actor(uuid.uuid4(), Role.moderator)
    report = await create_report(db_sessionmaker, reported_user_id=admin_id)
    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await act(
                session,
                report.id,
                ActionParams(action_type=ActionType.user_warned, reason="Tone"),
                moderator,
            )
    expect_app_error(exc_info, "forbidden", 403)

    async with db_sessionmaker() as session:
        events = (
            await session.scalars(
                select(SecurityEvent).where(
                    SecurityEvent.event_type == SecurityEventType.unauthorized_action_on_admin
                )
            )
        ).all()
    assert [event.user_id for event in events] == [moderator.user_id]


@pytest.mark.asyncio
async def test_regular_users_cannot_take_actions(db_sessionmaker) -> None:
    report = await create_report(db_sessionmaker)
    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await act(
                session,
                report.id,
                ActionParams(action_type=ActionType.content_removed, reason="Nope"),
                Actor(uuid.uuid4(), Role.regular),
            )
    expect_app_error(exc_info, "forbidden", 403)


@pytest.mark.asyncio
async def test_action_rate_limit_per_moderator(db_sessionmaker, monkeypatch) -> None:
    monkeypatch.setenv("MAX_ACTIONS_PER_MODERATOR_PER_WINDOW", "2")
    get_settings.cache_clear()
    moderator = Actor(uuid.uuid4(), Role.moderator)
    reports = [await create_report(db_sessionmaker) for _ in range(3)]

    async with db_sessionmaker() as session:
        for index, report in enumerate(reports[:2]):
            await act(
                session,
                report.id,
                ActionParams(action_type=ActionType.content_approved, reason="Fine"),
                moderator,
                now=NOW + dt.timedelta(minutes=index),
            )
        with pytest.raises(AppError) as exc_info:
            await act(
                session,
                reports[2].id,
                ActionParams(action_type=ActionType.content_approved, reason="Fine"),
                moderator,
                now=NOW + dt.timedelta(minutes=2),
            )
    error = expect_app_error(exc_info, "action_rate_limited", 429)
    assert error.details["retry_at"] == (NOW + dt.timedelta(hours=1)).isoformat()


@pytest.mark.asyncio
async def test_failed_side_effect_rolls_back_everything(db_sessionmaker, monkeypatch) -> None:
    target_id = uuid.uuid4()
    report = await create_report(db_sessionmaker, report_type="user", reported_user_id=target_id)

    async def _broken_restriction(*args, **kwargs):
        raise OperationalError("INSERT INTO user_restrictions", {}, Exception("disk full"))

    monkeypatch.setattr(moderation_actions, "apply_restriction", _broken_restriction)

    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await act(
                session,
                report.id,
                ActionParams(
                    action_type=ActionType.user_suspended, reason="Harassment", duration_days=3
                ),
                Actor(uuid.uuid4(), Role.moderator),
            )
    error = expect_app_error(exc_info, "database_error", 503)
    assert error.details["retry"] == "retry"

    async with db_sessionmaker() as session:
        action_count = await session.scalar(select(func.count()).select_from(ModerationAction))
        stored = await session.get(Report, report.id)
        standing = await session.get(UserStanding, target_id)
    assert action_count == 0
    assert stored.status == "pending"
    assert stored.reviewed_by is None
    assert standing is None


@pytest.mark.asyncio
async def test_reapply_creates_a_linked_action(db_sessionmaker) -> None:
    target_id = uuid.uuid4()
    moderator = Actor(uuid.uuid4(), Role.moderator)
    report = await create_report(db_sessionmaker, report_type="user", reported_user_id=target_id)
    async with db_sessionmaker() as session:
        outcome = await act(
            session,
            report.id,
            ActionParams(
                action_type=ActionType.restriction_applied,
                reason="Spamming comments",
                duration_days=2,
                restriction_type=RestrictionType.commenting_disabled,
            ),
            moderator,
        )
    original_id = outcome.action.id

    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await reapply_action(
                session,
                original_id,
                reason="Again",
                actor=moderator,
                now=NOW,
                settings=get_settings(),
                identity=TableIdentityDirectory(),
            )
    expect_app_error(exc_info, "action_not_reversed", 409)

    later = NOW + dt.timedelta(hours=1)
    async with db_sessionmaker() as session:
        reversal = await reverse_action(
            session,
            original_id,
            actor=moderator,
            reason="Appeal accepted",
            now=later,
            identity=TableIdentityDirectory(),
        )
    assert isinstance(reversal, Reversed)

    async with db_sessionmaker() as session:
        reapplied = await reapply_action(
            session,
            original_id,
            reason="Appeal evidence was fabricated",
            actor=moderator,
            now=later + dt.timedelta(minutes=5),
            settings=get_settings(),
            identity=TableIdentityDirectory(),
        )
    assert reapplied.action.reapplied_from_id == original_id
    assert reapplied.action.details == {"restriction_type": "commenting_disabled"}

    async with db_sessionmaker() as session:
        with pytest.raises(AppError) as exc_info:
            await reapply_action(
                session,
                original_id,
                reason="Third time",
                actor=moderator,
                now=later + dt.timedelta(minutes=10),
                settings=get_settings(),
                identity=TableIdentityDirectory(),
            )
        expect_app_error(exc_info, "action_already_reapplied", 409)

        original = await session.get(ModerationAction, original_id)
        history = action_history(original, [reapplied.action])
        active = (
            await session.scalars(
                select(UserRestriction).where(
                    UserRestriction.user_id == target_id, UserRestriction.is_active.is_(True)
                )
            )
        ).all()
    assert [entry["action"] for entry in history] == ["applied", "reversed", "reapplied"]
    assert [restriction.related_action_id for restriction in active] == [reapplied.action.id]
