"""Housekeeping commands: expire old run tokens and rebuild the rank index.

Usage::

    flapboard-maint cleanup-tokens
    flapboard-maint sync-leaderboard
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from flapboard.clock import utcnow
from flapboard.config import Settings, configure_logging, load_settings
from flapboard.models.tables import RunToken, UserBestScore
from flapboard.storage.database import create_engine, create_sessionmaker, init_models
from flapboard.storage.rank_store import RankStore
from flapboard.storage.redis import create_redis_client

logger = logging.getLogger(__name__)

USED_TOKEN_RETENTION = timedelta(hours=24)
SYNC_BATCH_SIZE = 1000


async def cleanup_tokens(session: AsyncSession, now: datetime | None = None) -> int:
    """Delete tokens past expiry, and used tokens older than the retention window."""
    now = now or utcnow()
    result = await session.execute(
        delete(RunToken).where(
            or_(
                RunToken.expires_at < now,
                and_(RunToken.used.is_(True), RunToken.created_at < now - USED_TOKEN_RETENTION),
            )
        )
    )
    await session.commit()
    return result.rowcount


async def sync_leaderboard(session: AsyncSession, rank_store: RankStore) -> int:
    """Rebuild the sorted set from ``user_best_scores``; returns its new size."""
    rows = (await session.execute(select(UserBestScore.user_id, UserBestScore.best_score))).all()
    logger.info("Found %s users with scores", len(rows))
    return await rank_store.replace_all(
        ((user_id, best_score) for user_id, best_score in rows),
        batch_size=SYNC_BATCH_SIZE,
    )


async def run_command(command: str, settings: Settings) -> int:
    engine = create_engine(settings.database_url)
    await init_models(engine)
    sessions = create_sessionmaker(engine)
    redis_client = create_redis_client(settings.redis_url)
    try:
        async with sessions() as session:
            if command == "cleanup-tokens":
                deleted = await cleanup_tokens(session)
                logger.info("Deleted %s expired/used tokens", deleted)
                return deleted
            total = await sync_leaderboard(session, RankStore(redis_client))
            logger.info("Sync complete. %s entries in leaderboard.", total)
            return total
    finally:
        await redis_client.aclose()
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="flapboard-maint", description=__doc__.splitlines()[0])
    parser.add_argument("command", choices=["cleanup-tokens", "sync-leaderboard"])
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings.log_level)
    asyncio.run(run_command(args.command, settings))


if __name__ == "__main__":
    main()
