from __future__ import annotations

import datetime as dt
import uuid

import pytest
from sqlalchemy import select

from modqueue_api.db.models import NotificationOutbox, Report, SecurityEvent
from modqueue_api.domain.directory import TableContentDirectory, TableIdentityDirectory
from modqueue_api.domain.report_intake import (
    Admitted,
    IntakeChannel,
    Rejected,
    RejectionKind,
    ReportDraft,
    submit_report,
)
from modqueue_api.domain.report_taxonomy import ReportType
from modqueue_api.domain.roles import Role
from modqueue_api.domain.security_events import SecurityEventType
from modqueue_api.settings import get_settings

NOW = dt.datetime(2026, 10, 18, 12, 0, tzinfo=dt.UTC)
DESCRIPTION = "This track copies my release note for note."


def make_draft(
    reporter_id: uuid.UUID, target_id: uuid.UUID | None = None, **overrides
) -> ReportDraft:
    values = {
        "reporter_id": reporter_id,
        "report_type": "track",
        "target_id": target_id or uuid.uuid4(),
        "reason": "spam",
        "description": DESCRIPTION,
    }
    values.update(overrides)
    return ReportDraft(**values)


async def submit(
    session,
    draft: ReportDraft,
    *,
    now: dt.datetime = NOW,
    channel: IntakeChannel = IntakeChannel.user,
):
    return await submit_report(
        session,
        draft,
        channel=channel,
        now=now,
        settings=get_settings(),
        identity=TableIdentityDirectory(),
        content=TableContentDirectory(),
    )


async def security_events(db_sessionmaker, event_type: str) -> list[SecurityEvent]:
    async with db_sessionmaker() as session:
        result = await session.scalars(
            select(SecurityEvent).where(SecurityEvent.event_type == event_type)
        )
        return list(result.all())


@pytest.mark.asyncio
async def test_report_is_admitted_with_reason_priority(db_sessionmaker) -> None:
    reporter_id = uuid.uuid4()
    async with db_sessionmaker() as session:
        result = await submit(session, make_draft(reporter_id, reason="harassment"))

    assert isinstance(result, Admitted)
    report = result.report
    assert report.status == "pending"
    assert report.priority == 2
    assert report.moderator_flagged is False
    assert report.created_at == NOW


@pytest.mark.asyncio
async def test_duplicate_within_window_is_rejected_then_allowed(db_sessionmaker) -> None:
    reporter_id = uuid.uuid4()
    target_id = uuid.uuid4()
    async with db_sessionmaker() as session:
        first = await submit(session, make_draft(reporter_id, target_id))
        assert isinstance(first, Admitted)

        almost = NOW + dt.timedelta(hours=23, minutes=59)
        second = await submit(session, make_draft(reporter_id, target_id), now=almost)
        assert isinstance(second, Rejected)
        assert second.kind == RejectionKind.duplicate_report
        assert second.details["original_reported_at"] == NOW.isoformat()
        assert second.retry_at == NOW + dt.timedelta(hours=24)
        assert "already reported this track" in second.message

        later = NOW + dt.timedelta(hours=24)
        third = await submit(session, make_draft(reporter_id, target_id), now=later)
        assert isinstance(third, Admitted)

    events = await security_events(db_sessionmaker, SecurityEventType.duplicate_report_attempt)
    assert len(events) == 1
    assert events[0].user_id == reporter_id
    assert events[0].details["report_type"] == "track"
    assert events[0].details["target_id"] == str(target_id)
    assert events[0].details["original_report_id"] == str(first.report.id)


@pytest.mark.asyncio
async def test_eleventh_report_in_window_is_rate_limited(db_sessionmaker) -> None:
    reporter_id = uuid.uuid4()
    report_types = ["track", "post", "comment", "album", "user"]
    async with db_sessionmaker() as session:
        for index in range(10):
            result = await submit(
                session,
                make_draft(reporter_id, report_type=report_types[index % len(report_types)]),
                now=NOW + dt.timedelta(minutes=index),
            )
            assert isinstance(result, Admitted)

        result = await submit(
            session, make_draft(reporter_id), now=NOW + dt.timedelta(minutes=10)
        )

    assert isinstance(result, Rejected)
    assert result.kind == RejectionKind.rate_limit_exceeded
    assert result.retry_at == NOW + dt.timedelta(hours=24)
    assert result.details["current_count"] == 10
    events = await security_events(db_sessionmaker, SecurityEventType.report_rate_limit_exceeded)
    assert len(events) == 1


@pytest.mark.asyncio
async def test_rate_limit_window_rolls_as_oldest_report_ages_out(db_sessionmaker) -> None:
    reporter_id = uuid.uuid4()
    async with db_sessionmaker() as session:
        for index in range(10):
            result = await submit(
                session, make_draft(reporter_id), now=NOW + dt.timedelta(hours=index)
            )
            assert isinstance(result, Admitted)

        blocked = await submit(
            session, make_draft(reporter_id), now=NOW + dt.timedelta(hours=23, minutes=59)
        )
        assert isinstance(blocked, Rejected)
        assert blocked.retry_at == NOW + dt.timedelta(hours=24)

        # Only the first report has left the window at this point.
        admitted = await submit(
            session, make_draft(reporter_id), now=NOW + dt.timedelta(hours=24)
        )
        again = await submit(
            session, make_draft(reporter_id), now=NOW + dt.timedelta(hours=24, minutes=1)
        )

    assert isinstance(admitted, Admitted)
    assert isinstance(again, Rejected)
    assert again.kind == RejectionKind.rate_limit_exceeded
    assert again.retry_at == NOW + dt.timedelta(hours=25)


@pytest.mark.asyncio
async def test_reporting_own_content_is_rejected(db_sessionmaker, register_content) -> None:
    owner_id = uuid.uuid4()
    content_id = await register_content(owner_id, ReportType.track)
    async with db_sessionmaker() as session:
        result = await submit(session, make_draft(owner_id, content_id))
        own_profile = await submit(
            session, make_draft(owner_id, owner_id, report_type="user", reason="impersonation")
        )

    assert isinstance(result, Rejected)
    assert result.kind == RejectionKind.self_report
    assert result.message == "You cannot report your own track."
    assert isinstance(own_profile, Rejected)
    assert own_profile.kind == RejectionKind.self_report
    events = await security_events(db_sessionmaker, SecurityEventType.self_report_attempt)
    assert len(events) == 2


@pytest.mark.asyncio
async def test_admin_profile_is_protected_but_their_content_is_not(
    db_sessionmaker, grant_role, register_content
) -> None:
    admin_id = await grant_role(Role.admin)
    admin_track = await register_content(admin_id, ReportType.track)
    moderator_id = await grant_role(Role.moderator)
    reporter_id = uuid.uuid4()

    async with db_sessionmaker() as session:
        profile = await submit(
            session, make_draft(reporter_id, admin_id, report_type="user", reason="harassment")
        )
        content = await submit(session, make_draft(reporter_id, admin_track))
        moderator_profile = await submit(
            session,
            make_draft(reporter_id, moderator_id, report_type="user", reason="harassment"),
        )

    assert isinstance(profile, Rejected)
    assert profile.kind == RejectionKind.admin_protected
    assert profile.message == "This user cannot be reported."
    assert isinstance(content, Admitted)
    assert content.report.reported_user_id == admin_id
    assert isinstance(moderator_profile, Admitted)
    events = await security_events(db_sessionmaker, SecurityEventType.admin_report_attempt)
    assert len(events) == 1


@pytest.mark.asyncio
async def test_validation_failures_are_not_security_events(db_sessionmaker) -> None:
    reporter_id = uuid.uuid4()
    async with db_sessionmaker() as session:
        short = await submit(session, make_draft(reporter_id, description="too short"))
        bad_reason = await submit(session, make_draft(reporter_id, reason="boring"))
        bad_type = await submit(session, make_draft(reporter_id, report_type="playlist"))
        bad_timestamp = await submit(
            session,
            make_draft(reporter_id, reason="hate_speech", evidence={"audio_timestamp": "99:99"}),
        )
        user_priority = await submit(session, make_draft(reporter_id, priority=1))

    for result in (short, bad_reason, bad_type, bad_timestamp, user_priority):
        assert isinstance(result, Rejected)
        assert result.kind == RejectionKind.validation
    assert short.details["field"] == "description"
    assert bad_timestamp.details["field"] == "audio_timestamp"
    assert user_priority.details["field"] == "priority"

    async with db_sessionmaker() as session:
        assert (await session.scalars(select(SecurityEvent))).all() == []
        assert (await session.scalars(select(Report))).all() == []


@pytest.mark.asyncio
async def test_description_is_sanitized_and_ineligible_evidence_dropped(db_sessionmaker) -> None:
    reporter_id = uuid.uuid4()
    async with db_sessionmaker() as session:
        result = await submit(
            session,
            make_draft(
                reporter_id,
                reason="hate_speech",
                description="  <script>x</script>Slurs throughout the second verse.  ",
                evidence={
                    "audio_timestamp": "1:23,2:45",
                    "original_work_link": "https://example.com/original",
                },
            ),
        )

    assert isinstance(result, Admitted)
    assert result.report.description == "xSlurs throughout the second verse."
    assert result.report.evidence == {"audio_timestamp": "1:23, 2:45"}


@pytest.mark.asyncio
async def test_high_priority_reports_notify_staff(db_sessionmaker, grant_role) -> None:
    moderator_id = await grant_role(Role.moderator)
    admin_id = await grant_role(Role.admin)
    async with db_sessionmaker() as session:
        result = await submit(session, make_draft(moderator_id, reason="self_harm"))

    assert isinstance(result, Admitted)
    assert result.report.priority == 1
    assert [notification.user_id for notification in result.notifications] == [admin_id]
    async with db_sessionmaker() as session:
        stored = (await session.scalars(select(NotificationOutbox))).all()
    assert len(stored) == 1
    assert stored[0].title == "Urgent report: self_harm"


@pytest.mark.asyncio
async def test_moderator_flag_starts_under_review(db_sessionmaker) -> None:
    moderator_id = uuid.uuid4()
    async with db_sessionmaker() as session:
        result = await submit(
            session,
            make_draft(moderator_id, description="Spam ring.", priority=5),
            channel=IntakeChannel.moderator_flag,
        )
        out_of_range = await submit(
            session,
            make_draft(moderator_id, description="Spam ring.", priority=6),
            channel=IntakeChannel.moderator_flag,
        )

    assert isinstance(result, Admitted)
    assert result.report.status == "under_review"
    assert result.report.moderator_flagged is True
    assert result.report.priority == 5
    assert isinstance(out_of_range, Rejected)
    assert out_of_range.kind == RejectionKind.validation


@pytest.mark.asyncio
async def test_moderator_flags_share_the_duplicate_gate(db_sessionmaker) -> None:
    moderator_id = uuid.uuid4()
    target_id = uuid.uuid4()
    async with db_sessionmaker() as session:
        first = await submit(
            session,
            make_draft(moderator_id, target_id, description="Spam ring."),
            channel=IntakeChannel.moderator_flag,
        )
        second = await submit(
            session,
            make_draft(moderator_id, target_id, description="Spam ring."),
            channel=IntakeChannel.moderator_flag,
        )
    assert isinstance(first, Admitted)
    assert isinstance(second, Rejected)
    assert second.kind == RejectionKind.duplicate_report


@pytest.mark.asyncio
async def test_reported_user_is_taken_from_the_content_owner(
    db_sessionmaker, register_content
) -> None:
    owner_id = uuid.uuid4()
    bystander_id = uuid.uuid4()
    reporter_id = uuid.uuid4()
    track_id = await register_content(owner_id, ReportType.track)

    async with db_sessionmaker() as session:
        wrong_track_owner = await submit(
            session, make_draft(reporter_id, track_id, reported_user_id=bystander_id)
        )
        wrong_profile = await submit(
            session,
            make_draft(
                reporter_id,
                owner_id,
                report_type="user",
                reason="harassment",
                reported_user_id=bystander_id,
            ),
        )
        unnamed = await submit(session, make_draft(reporter_id, track_id))

    for rejected in (wrong_track_owner, wrong_profile):
        assert isinstance(rejected, Rejected)
        assert rejected.kind == RejectionKind.validation
        assert rejected.details["field"] == "reported_user_id"
    assert isinstance(unnamed, Admitted)
    assert unnamed.report.reported_user_id == owner_id
    async with db_sessionmaker() as session:
        stored = await session.scalars(select(Report.reported_user_id))
        assert list(stored.all()) == [owner_id]
