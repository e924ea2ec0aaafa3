from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    regular = "regular"
    moderator = "moderator"
    admin = "admin"


ELEVATED_ROLES = frozenset({Role.moderator, Role.admin})


@dataclass(frozen=True)
class Actor:
    user_id: uuid.UUID
    role: Role

    @property
    def is_moderator(self) -> bool:
        return self.role in ELEVATED_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin
