from __future__ import annotations

import datetime as dt
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from modqueue_api.db.models import ContentItem, NotificationOutbox
from modqueue_api.domain.roles import Role


def _headers(user_id: uuid.UUID) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


def _parse(value: str) -> dt.datetime:
    return dt.datetime.fromisoformat(value)


@pytest.mark.asyncio
async def test_report_action_reversal_lifecycle(
    client: AsyncClient, clock, db_sessionmaker, grant_role, register_content
) -> None:
    owner_id = uuid.uuid4()
    reporter_id = uuid.uuid4()
    moderator_id = await grant_role(Role.moderator)
    reviewer_id = await grant_role(Role.moderator)
    admin_id = await grant_role(Role.admin)
    content_id = await register_content(owner_id)

    submitted = await client.post(
        "/v1/reports",
        json={
            "report_type": "track",
            "target_id": str(content_id),
            "reason": "copyright_violation",
            "description": "This is my unreleased demo, uploaded by someone else.",
            "evidence": {"original_work_link": "https://example.com/demo"},
        },
        headers=_headers(reporter_id),
    )
    assert submitted.status_code == 201
    report = submitted.json()["report"]
    assert report["status"] == "pending"
    assert report["priority"] == 3
    assert report["has_evidence"] is True
    assert report["reported_user_id"] == str(owner_id)

    clock.advance(minutes=30)
    queue = await client.get("/v1/moderation/queue", headers=_headers(moderator_id))
    assert queue.status_code == 200
    assert [entry["id"] for entry in queue.json()["reports"]] == [report["id"]]

    taken = await client.post(
        f"/v1/moderation/reports/{report['id']}/actions",
        json={
            "action_type": "content_removed",
            "reason": "Upload matches the reporter's original",
            "evidence_verified": True,
        },
        headers=_headers(moderator_id),
    )
    assert taken.status_code == 201
    action = taken.json()["action"]
    assert action["state"] == "active"
    assert action["is_active"] is True
    assert action["target_user_id"] == str(owner_id)
    assert action["notification_sent"] is True
    assert taken.json()["report"]["status"] == "resolved"

    finalized = await client.post(
        f"/v1/moderation/reports/{report['id']}/actions",
        json={"action_type": "content_approved", "reason": "Second look"},
        headers=_headers(reviewer_id),
    )
    assert finalized.status_code == 409
    assert finalized.json()["error"]["code"] == "report_already_finalized"

    reversal_time = clock.advance(hours=1)
    reversed_ = await client.post(
        f"/v1/moderation/actions/{action['id']}/reversal",
        json={"reason": "Reporter withdrew the claim"},
        headers=_headers(reviewer_id),
    )
    assert reversed_.status_code == 200
    reversed_action = reversed_.json()["action"]
    assert reversed_action["state"] == "reversed"
    assert reversed_action["is_active"] is False
    assert _parse(reversed_action["revoked_at"]) == reversal_time
    assert reversed_action["revoked_by"] == str(reviewer_id)
    assert reversed_action["is_self_reversal"] is False

    clock.advance(minutes=10)
    again = await client.post(
        f"/v1/moderation/actions/{action['id']}/reversal",
        json={"reason": "Trying to overwrite"},
        headers=_headers(moderator_id),
    )
    assert again.status_code == 409
    error = again.json()["error"]
    assert error["code"] == "already_reversed"
    assert _parse(error["details"]["revoked_at"]) == reversal_time
    assert error["details"]["revoked_by"] == str(reviewer_id)

    fetched = await client.get(
        f"/v1/moderation/actions/{action['id']}", headers=_headers(moderator_id)
    )
    assert fetched.status_code == 200
    fetched_action = fetched.json()["action"]
    assert fetched_action["reversal_reason"] == "Reporter withdrew the claim"
    assert [change["action"] for change in fetched_action["state_changes"]] == [
        "applied",
        "reversed",
    ]

    integrity = await client.get(
        f"/v1/admin/actions/{action['id']}/integrity", headers=_headers(admin_id)
    )
    assert integrity.status_code == 200
    assert integrity.json()["is_valid"] is True
    assert integrity.json()["is_reversed"] is True

    probe = await client.post(
        f"/v1/admin/actions/{action['id']}/immutability-probe",
        json={"reversal_reason": "rewritten"},
        headers=_headers(admin_id),
    )
    assert probe.status_code == 200
    assert probe.json()["prevented"] is True

    events = await client.get(
        "/v1/admin/security-events",
        params={"event_type": "reversal_modification_attempt"},
        headers=_headers(admin_id),
    )
    assert events.status_code == 200
    assert len(events.json()["events"]) == 2

    async with db_sessionmaker() as session:
        item = await session.scalar(select(ContentItem).where(ContentItem.content_id == content_id))
        titles = (
            await session.scalars(
                select(NotificationOutbox.title).order_by(NotificationOutbox.created_at)
            )
        ).all()
    assert item.removed_at is not None
    assert titles == ["Content Removed", "Content Removal Revoked"]


@pytest.mark.asyncio
async def test_suspension_expires_and_can_be_reapplied(
    client: AsyncClient, clock, grant_role
) -> None:
    target_id = uuid.uuid4()
    reporter_id = uuid.uuid4()
    moderator_id = await grant_role(Role.moderator)
    admin_id = await grant_role(Role.admin)

    submitted = await client.post(
        "/v1/reports",
        json={
            "report_type": "user",
            "target_id": str(target_id),
            "reason": "harassment",
            "description": "Keeps sending threats in direct messages.",
            "evidence": {"audio_timestamp": "0:42"},
        },
        headers=_headers(reporter_id),
    )
    assert submitted.status_code == 201
    report_id = submitted.json()["report"]["id"]

    taken = await client.post(
        f"/v1/moderation/reports/{report_id}/actions",
        json={"action_type": "user_suspended", "reason": "Threats", "duration_days": 1},
        headers=_headers(moderator_id),
    )
    assert taken.status_code == 201
    action_id = taken.json()["action"]["id"]

    blocked = await client.get(
        f"/v1/users/{target_id}/capabilities/comment", headers=_headers(target_id)
    )
    assert blocked.json()["allowed"] is False
    restrictions = await client.get(
        f"/v1/users/{target_id}/restrictions", headers=_headers(target_id)
    )
    assert restrictions.json()["suspension"]["is_suspended"] is True
    assert [r["restriction_type"] for r in restrictions.json()["restrictions"]] == ["suspended"]

    clock.advance(hours=2)
    reversed_ = await client.post(
        f"/v1/moderation/actions/{action_id}/reversal",
        json={"reason": "Wrong account"},
        headers=_headers(moderator_id),
    )
    assert reversed_.status_code == 200
    assert reversed_.json()["action"]["is_self_reversal"] is True

    reapplied = await client.post(
        f"/v1/moderation/actions/{action_id}/reapply",
        json={"reason": "Confirmed the right account after all"},
        headers=_headers(moderator_id),
    )
    assert reapplied.status_code == 201
    new_action = reapplied.json()["action"]
    assert new_action["reapplied_from_id"] == action_id
    assert new_action["state"] == "active"

    clock.advance(days=1)
    expired = await client.get(
        f"/v1/moderation/actions/{new_action['id']}", headers=_headers(moderator_id)
    )
    assert expired.json()["action"]["state"] == "expired"
    allowed = await client.get(
        f"/v1/users/{target_id}/capabilities/comment", headers=_headers(target_id)
    )
    assert allowed.json()["allowed"] is True

    late = await client.post(
        f"/v1/moderation/actions/{new_action['id']}/reversal",
        json={"reason": "Too late"},
        headers=_headers(moderator_id),
    )
    assert late.status_code == 409
    assert late.json()["error"]["code"] == "action_expired"

    sweep = await client.post("/v1/admin/restrictions/sweep", headers=_headers(admin_id))
    assert sweep.status_code == 200
    assert sweep.json() == {"restrictions_expired": 1, "suspensions_cleared": 1}

    scan = await client.get("/v1/admin/suspicious-activity", headers=_headers(admin_id))
    assert scan.status_code == 200
    assert scan.json()["suspicious_activity_detected"] is False
