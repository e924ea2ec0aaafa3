from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from modqueue_api.domain.errors import database_error
from modqueue_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@lru_cache(maxsize=4)
def create_sessionmaker(database_url: str) -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(database_url, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return async_sessionmaker(engine, expire_on_commit=False)


async def get_db_session(
    settings: Annotated[Settings, Depends(get_settings)],
) -> AsyncIterator[AsyncSession]:
    sessionmaker = create_sessionmaker(settings.database_url)
    async with sessionmaker() as session:
        yield session


@asynccontextmanager
async def database_guard(db: AsyncSession, operation: str) -> AsyncIterator[None]:
    """Roll back and surface storage failures as a retryable database_error."""
    try:
        yield
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("database_error", extra={"operation": operation})
        raise database_error(operation) from exc


DbSessionDep = Annotated[AsyncSession, Depends(get_db_session)]
