"""Worker process for the scheduled auto-reject sweep.

Runs an asyncio loop that rejects stale pending requests matching an active
auto_reject rule, once every ``auto_reject_interval_seconds``.
"""

from __future__ import annotations

import asyncio
import logging

from approvals.config import get_settings
from approvals.db import get_session_factory

logger = logging.getLogger(__name__)


async def run_auto_reject_loop() -> None:
    """Main worker loop."""
    from approvals.services.request import run_auto_reject

    settings = get_settings()
    logger.info(
        "Auto-reject worker started (age threshold %dh, every %ds)",
        settings.auto_reject_after_hours,
        settings.auto_reject_interval_seconds,
    )
    session_factory = get_session_factory()

    while True:
        try:
            async with session_factory() as session:
                await run_auto_reject(session)
        except Exception:
            logger.exception("Auto-reject sweep failed")

        await asyncio.sleep(settings.auto_reject_interval_seconds)


def main() -> None:
    """Entry point for the worker process."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    asyncio.run(run_auto_reject_loop())


if __name__ == "__main__":
    main()
