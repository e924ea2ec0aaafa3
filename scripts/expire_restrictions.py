from __future__ import annotations

import argparse
import asyncio

from modqueue_api.db.models import utcnow
from modqueue_api.db.session import create_sessionmaker
from modqueue_api.domain.restrictions import SweepResult, expire_restrictions
from modqueue_api.observability.logging import configure_logging
from modqueue_api.settings import get_settings


async def _run_once() -> SweepResult:
    settings = get_settings()
    sessionmaker = create_sessionmaker(settings.database_url)
    async with sessionmaker() as db:
        return await expire_restrictions(db, now=utcnow())


async def _run_loop() -> None:
    settings = get_settings()
    interval_seconds = settings.restriction_sweep_interval_seconds
    if interval_seconds < 1:
        raise ValueError("Sweep interval must be at least 1 second for loop mode.")

    while True:
        result = await _run_once()
        print(
            "expire_restrictions: "
            f"restrictions_expired={result.restrictions_expired} "
            f"suspensions_cleared={result.suspensions_cleared}"
        )
        await asyncio.sleep(interval_seconds)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Deactivate expired restrictions and suspensions.")
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Run continuously, sleeping for the configured interval between runs.",
    )
    args = parser.parse_args()
    configure_logging()

    if args.loop:
        await _run_loop()
        return

    result = await _run_once()
    print(
        "expire_restrictions: "
        f"restrictions_expired={result.restrictions_expired} "
        f"suspensions_cleared={result.suspensions_cleared}"
    )


if __name__ == "__main__":
    asyncio.run(main())
