from __future__ import annotations

import uuid
from typing import Annotated, Protocol

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import ContentItem, UserRole
from modqueue_api.domain.report_taxonomy import ReportType
from modqueue_api.domain.roles import Role


class IdentityDirectory(Protocol):
    async def role_of(self, db: AsyncSession, user_id: uuid.UUID) -> Role:
        ...

    async def user_ids_with_roles(self, db: AsyncSession, roles: set[Role]) -> list[uuid.UUID]:
        ...


class ContentDirectory(Protocol):
    async def owner_of(
        self, db: AsyncSession, report_type: ReportType, target_id: uuid.UUID
    ) -> uuid.UUID | None:
        ...


class TableIdentityDirectory:
    async def role_of(self, db: AsyncSession, user_id: uuid.UUID) -> Role:
        row = await db.get(UserRole, user_id)
        if row is None:
            return Role.regular
        try:
            return Role(row.role)
        except ValueError:
            return Role.regular

    async def user_ids_with_roles(self, db: AsyncSession, roles: set[Role]) -> list[uuid.UUID]:
        result = await db.scalars(
            select(UserRole.user_id)
            .where(UserRole.role.in_([role.value for role in roles]))
            .order_by(UserRole.user_id)
        )
        return list(result.all())


class TableContentDirectory:
    async def owner_of(
        self, db: AsyncSession, report_type: ReportType, target_id: uuid.UUID
    ) -> uuid.UUID | None:
        if report_type == ReportType.user:
            return target_id
        return await db.scalar(
            select(ContentItem.owner_id).where(
                ContentItem.content_type == report_type.value,
                ContentItem.content_id == target_id,
            )
        )


_identity_directory = TableIdentityDirectory()
_content_directory = TableContentDirectory()


def get_identity_directory() -> IdentityDirectory:
    return _identity_directory


def get_content_directory() -> ContentDirectory:
    return _content_directory


IdentityDirectoryDep = Annotated[IdentityDirectory, Depends(get_identity_directory)]
ContentDirectoryDep = Annotated[ContentDirectory, Depends(get_content_directory)]
