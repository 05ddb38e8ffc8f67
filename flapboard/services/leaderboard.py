"""Leaderboard reads: ranked pages, neighborhoods and name search.

Ranks and scores come from the Redis sorted set; display names are joined
from the relational store. Only the top-100 page is cached, for a few seconds.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flapboard.models.tables import User
from flapboard.storage.rank_store import RankStore

TOP_CACHE_SIZE = 100
NEIGHBORHOOD_WINDOW = 2
NEARBY_SIZE = 5
SEARCH_CANDIDATE_LIMIT = 50
UNKNOWN_DISPLAY_NAME = "Unknown"


@dataclass(slots=True)
class RankedPlayer:
    rank: int
    user_id: str
    display_name: str
    best_score: int


@dataclass(slots=True)
class LeaderboardPage:
    entries: list[RankedPlayer]
    total: int


@dataclass(slots=True)
class Neighborhood:
    rank: int
    best_score: int
    above: list[RankedPlayer]
    below: list[RankedPlayer]


@dataclass(slots=True)
class NearbyPlayers:
    players: list[RankedPlayer]
    total: int


class LeaderboardService:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        rank_store: RankStore,
        cache_ttl_seconds: int = 10,
    ):
        self.sessions = sessions
        self.rank_store = rank_store
        self.cache_ttl_seconds = cache_ttl_seconds

    async def display_names(self, user_ids: list[str]) -> dict[str, str]:
        if not user_ids:
            return {}
        async with self.sessions() as session:
            rows = await session.execute(
                select(User.id, User.display_name).where(User.id.in_(user_ids))
            )
            return {user_id: name for user_id, name in rows.all()}

    async def entries_for_range(self, start: int, end: int) -> list[RankedPlayer]:
        """Ranked players for zero-based positions ``start..end`` inclusive."""
        rows = await self.rank_store.range_by_rank(start, end)
        names = await self.display_names([user_id for user_id, _ in rows])
        return [
            RankedPlayer(
                rank=start + index + 1,
                user_id=user_id,
                display_name=names.get(user_id, UNKNOWN_DISPLAY_NAME),
                best_score=score,
            )
            for index, (user_id, score) in enumerate(rows)
        ]

    async def top_page(self, offset: int, limit: int) -> LeaderboardPage:
        if offset == 0 and limit <= TOP_CACHE_SIZE:
            cached = await self.rank_store.get_cached_top()
            if cached is not None:
                entries = [RankedPlayer(**row) for row in cached[:limit]]
                # The count is always live so pagination stays accurate.
                return LeaderboardPage(entries=entries, total=await self.rank_store.cardinality())

        entries = await self.entries_for_range(offset, offset + limit - 1)

        if offset == 0 and limit >= TOP_CACHE_SIZE:
            await self.rank_store.set_cached_top(
                [asdict(entry) for entry in entries[:TOP_CACHE_SIZE]],
                self.cache_ttl_seconds,
            )

        return LeaderboardPage(entries=entries, total=await self.rank_store.cardinality())

    async def neighborhood(self, user_id: str) -> Neighborhood | None:
        rank = await self.rank_store.rank_of(user_id)
        best_score = await self.rank_store.score_of(user_id)
        if rank is None or best_score is None:
            return None

        start = max(rank - 1 - NEIGHBORHOOD_WINDOW, 0)
        window = await self.entries_for_range(start, rank - 1 + NEIGHBORHOOD_WINDOW)
        return Neighborhood(
            rank=rank,
            best_score=best_score,
            above=[entry for entry in window if entry.rank < rank],
            below=[entry for entry in window if entry.rank > rank],
        )

    async def nearby(self, user_id: str, rank: int | None = None) -> NearbyPlayers:
        """Five consecutive ranks around ``rank`` (or the user's own rank).

        The window is pinned to ranks 1-5 near the top and to the last five
        near the bottom so it always shows as many players as exist.
        """
        total = await self.rank_store.cardinality()
        if total == 0:
            return NearbyPlayers(players=[], total=0)

        if rank is None:
            rank = await self.rank_store.rank_of(user_id)
            if rank is None:
                return NearbyPlayers(players=[], total=total)

        half = NEARBY_SIZE // 2
        if rank <= half:
            start_rank, end_rank = 1, min(NEARBY_SIZE, total)
        elif rank >= total - 1:
            start_rank, end_rank = max(1, total - NEARBY_SIZE + 1), total
        else:
            start_rank, end_rank = rank - half, rank + half

        players = await self.entries_for_range(start_rank - 1, end_rank - 1)
        return NearbyPlayers(players=players, total=total)

    async def search(self, query: str) -> list[RankedPlayer]:
        needle = query.strip().lower()
        async with self.sessions() as session:
            rows = await session.execute(
                select(User.id, User.display_name)
                .where(func.lower(User.display_name).contains(needle, autoescape=True))
                .limit(SEARCH_CANDIDATE_LIMIT)
            )
            candidates = rows.all()

        standings = await self.rank_store.ranks_and_scores([user_id for user_id, _ in candidates])
        results = [
            RankedPlayer(
                rank=standings[user_id][0],
                user_id=user_id,
                display_name=display_name,
                best_score=standings[user_id][1],
            )
            for user_id, display_name in candidates
            if user_id in standings
        ]
        results.sort(key=lambda entry: (-entry.best_score, entry.rank))
        return results

    async def ping(self) -> bool:
        return await self.rank_store.ping()
