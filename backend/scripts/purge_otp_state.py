"""Purge stale OTP rate-limit counters, expired codes, and expired sessions.

Standalone maintenance script. Run hourly from cron or a systemd timer.

Usage:
    cd backend && python -m scripts.purge_otp_state
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.services.otp_cleanup import CleanupError, run_otp_cleanup

logger = logging.getLogger(__name__)


async def main() -> None:
    """CLI entry point: run cleanup against the configured database."""
    import sys

    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from app.core.config import settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = create_async_engine(settings.database_url, echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    exit_code = 0
    try:
        async with factory() as session:
            result = await run_otp_cleanup(session)
        logger.info("Final stats: %s", result)
    except CleanupError as exc:
        logger.error("OTP cleanup aborted: %s", exc.message)
        exit_code = 1
    finally:
        await engine.dispose()

    sys.exit(exit_code)


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
