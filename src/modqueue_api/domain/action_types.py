from __future__ import annotations

from enum import StrEnum


class ActionType(StrEnum):
    content_removed = "content_removed"
    content_approved = "content_approved"
    user_warned = "user_warned"
    user_suspended = "user_suspended"
    user_banned = "user_banned"
    restriction_applied = "restriction_applied"


class RestrictionType(StrEnum):
    posting_disabled = "posting_disabled"
    commenting_disabled = "commenting_disabled"
    upload_disabled = "upload_disabled"
    suspended = "suspended"


class Capability(StrEnum):
    post = "post"
    comment = "comment"
    upload = "upload"


class ActionState(StrEnum):
    active = "active"
    reversed = "reversed"
    expired = "expired"


CAPABILITY_RESTRICTIONS: dict[Capability, RestrictionType] = {
    Capability.post: RestrictionType.posting_disabled,
    Capability.comment: RestrictionType.commenting_disabled,
    Capability.upload: RestrictionType.upload_disabled,
}

SUSPENSION_ACTIONS = frozenset({ActionType.user_suspended, ActionType.user_banned})
ADMIN_ONLY_ACTIONS = frozenset({ActionType.user_banned})
# Actions that leave a user-visible consequence worth notifying about.
NOTIFIED_ACTIONS = frozenset(
    {
        ActionType.content_removed,
        ActionType.user_warned,
        ActionType.user_suspended,
        ActionType.user_banned,
        ActionType.restriction_applied,
    }
)


def blocking_restrictions(capability: Capability) -> tuple[RestrictionType, RestrictionType]:
    return (CAPABILITY_RESTRICTIONS[capability], RestrictionType.suspended)
