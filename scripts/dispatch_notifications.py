from __future__ import annotations

import argparse
import asyncio

from modqueue_api.db.models import utcnow
from modqueue_api.db.session import create_sessionmaker
from modqueue_api.domain.notification_dispatch import (
    dispatch_pending_notifications,
    get_notification_dispatcher,
)
from modqueue_api.observability.logging import configure_logging
from modqueue_api.settings import get_settings


async def _run_once() -> int:
    settings = get_settings()
    sessionmaker = create_sessionmaker(settings.database_url)
    dispatcher = get_notification_dispatcher(settings)
    async with sessionmaker() as db:
        return await dispatch_pending_notifications(
            db,
            dispatcher,
            now=utcnow(),
            limit=settings.notifications_retry_batch_size,
        )


async def _run_loop() -> None:
    settings = get_settings()
    interval_seconds = settings.notifications_retry_interval_seconds
    if interval_seconds < 1:
        raise ValueError("Retry interval must be at least 1 second for loop mode.")

    while True:
        delivered = await _run_once()
        print(f"dispatch_notifications: delivered={delivered}")
        await asyncio.sleep(interval_seconds)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Deliver pending moderation notifications.")
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Run continuously, sleeping for the configured interval between runs.",
    )
    args = parser.parse_args()
    configure_logging()

    if args.loop:
        await _run_loop()
    else:
        delivered = await _run_once()
        print(f"dispatch_notifications: delivered={delivered}")


if __name__ == "__main__":
    asyncio.run(main())
