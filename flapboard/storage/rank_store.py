"""Redis-backed rank index, short-lived caches, and rate-limit counters.

The sorted set is a derived index over ``user_best_scores``; it can always be
rebuilt from the relational store (see ``flapboard.maintenance``).
"""

from __future__ import annotations

import json
from typing import Any, Iterable

from redis.asyncio import Redis

LEADERBOARD_KEY = "leaderboard:best_scores"
LEADERBOARD_CACHE_KEY = "leaderboard:top100:cache"


def game_start_marker_key(user_id: str) -> str:
    return f"ratelimit:gamestart:{user_id}"


def user_runs_counter_key(user_id: str) -> str:
    return f"ratelimit:runs:user:{user_id}"


def ip_runs_counter_key(ip_hash: str) -> str:
    return f"ratelimit:runs:ip:{ip_hash}"


class RankStore:
    def __init__(self, redis_client: Redis):
        self.redis = redis_client

    async def upsert_best(self, user_id: str, score: int) -> None:
        # GT keeps an out-of-order writer from lowering a stored best.
        await self.redis.zadd(LEADERBOARD_KEY, {user_id: score}, gt=True)

    async def rank_of(self, user_id: str) -> int | None:
        rank = await self.redis.zrevrank(LEADERBOARD_KEY, user_id)
        # Redis returns zero-based rank; API contract is one-based.
        return None if rank is None else rank + 1

    async def score_of(self, user_id: str) -> int | None:
        score = await self.redis.zscore(LEADERBOARD_KEY, user_id)
        return None if score is None else int(score)

    async def range_by_rank(self, start: int, end: int) -> list[tuple[str, int]]:
        """Return ``(user_id, score)`` pairs for zero-based ranks ``start..end`` inclusive."""
        if end < start:
            return []
        rows = await self.redis.zrevrange(LEADERBOARD_KEY, start, end, withscores=True)
        return [(user_id, int(score)) for user_id, score in rows]

    async def cardinality(self) -> int:
        return int(await self.redis.zcard(LEADERBOARD_KEY))

    async def ranks_and_scores(
        self, user_ids: list[str]
    ) -> dict[str, tuple[int, int]]:
        """Look up one-based rank and score for each user in a single round trip.

        Users missing from the index are left out of the result.
        """
        if not user_ids:
            return {}
        pipe = self.redis.pipeline(transaction=False)
        for user_id in user_ids:
            pipe.zscore(LEADERBOARD_KEY, user_id)
            pipe.zrevrank(LEADERBOARD_KEY, user_id)
        replies = await pipe.execute()

        found: dict[str, tuple[int, int]] = {}
        for index, user_id in enumerate(user_ids):
            score, rank = replies[2 * index], replies[2 * index + 1]
            if score is None or rank is None:
                continue
            found[user_id] = (rank + 1, int(score))
        return found

    async def replace_all(
        self, entries: Iterable[tuple[str, int]], batch_size: int = 1000
    ) -> int:
        await self.redis.delete(LEADERBOARD_KEY)
        batch: dict[str, int] = {}
        for user_id, score in entries:
            batch[user_id] = score
            if len(batch) >= batch_size:
                await self.redis.zadd(LEADERBOARD_KEY, batch)
                batch = {}
        if batch:
            await self.redis.zadd(LEADERBOARD_KEY, batch)
        return await self.cardinality()

    async def get_cached_top(self) -> list[dict[str, Any]] | None:
        raw = await self.redis.get(LEADERBOARD_CACHE_KEY)
        if not raw:
            return None
        return json.loads(raw)

    async def set_cached_top(self, entries: list[dict[str, Any]], ttl_seconds: int) -> None:
        await self.redis.set(LEADERBOARD_CACHE_KEY, json.dumps(entries), ex=ttl_seconds)

    async def hit_counter(self, key: str, window_seconds: int) -> int:
        """Increment a fixed-window counter, arming its expiry on the first hit."""
        count = int(await self.redis.incr(key))
        if count == 1:
            await self.redis.expire(key, window_seconds)
        return count

    async def claim_marker(self, key: str, ttl_seconds: int) -> bool:
        """Set a short-lived marker; False when one is already live."""
        return bool(await self.redis.set(key, "1", ex=ttl_seconds, nx=True))

    async def ping(self) -> bool:
        return bool(await self.redis.ping())
