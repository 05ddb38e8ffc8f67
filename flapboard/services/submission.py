"""Run submission: rate limits, token redemption, anti-cheat and the ledger commit.

The relational commit is the authority. The rank index is updated afterwards
on a best-effort basis, and so are the rank reads for the response. A write
failure there is logged and healed by the next accepted run for the same user
(or by ``flapboard-maint sync-leaderboard``).
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flapboard.clock import utcnow
from flapboard.models.tables import (
    PointReason,
    PointTransaction,
    Run,
    RunToken,
    User,
    UserBestScore,
)
from flapboard.services.errors import (
    InvalidRun,
    InvalidToken,
    RateLimited,
    TokenExpired,
    TokenForbidden,
    TokenUsed,
    UserNotFoundError,
)
from flapboard.services.leaderboard import LeaderboardService, RankedPlayer
from flapboard.services.validator import ValidationResult, validate_run
from flapboard.storage.rank_store import (
    RankStore,
    ip_runs_counter_key,
    user_runs_counter_key,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 3600
TOP_LIST_SIZE = 10

UPSERT_BY_DIALECT = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def hash_ip(ip: str, secret: str) -> str:
    return hashlib.sha256((ip + secret).encode("utf-8")).hexdigest()[:16]


@dataclass(slots=True)
class CommitOutcome:
    best_score: int
    is_new_best: bool
    points_balance: int


@dataclass(slots=True)
class SubmissionResult:
    top10: list[RankedPlayer]
    rank: int | None
    best_score: int
    is_new_best: bool
    points_earned: int
    points_balance: int


class RunSubmissionCoordinator:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        rank_store: RankStore,
        leaderboard: LeaderboardService,
        ip_hash_secret: str,
        runs_per_hour_user: int = 100,
        runs_per_hour_ip: int = 500,
    ):
        self.sessions = sessions
        self.rank_store = rank_store
        self.leaderboard = leaderboard
        self.ip_hash_secret = ip_hash_secret
        self.runs_per_hour_user = runs_per_hour_user
        self.runs_per_hour_ip = runs_per_hour_ip

    async def submit(
        self,
        user_id: str,
        request_ip: str,
        token: str,
        score: int,
        duration_ms: int,
    ) -> SubmissionResult:
        ip_hash = hash_ip(request_ip, self.ip_hash_secret)
        await self._check_rate_limits(user_id, ip_hash)

        token_id = await self._check_token(user_id, token)

        verdict = validate_run(score, duration_ms)
        if not verdict.valid:
            await self._reject(token_id, user_id, token, score, duration_ms, ip_hash, verdict)
            reason = verdict.flag_reason.value if verdict.flag_reason else None
            logger.warning(
                "Rejected run for user %s: score=%s duration_ms=%s reason=%s",
                user_id,
                score,
                duration_ms,
                reason,
            )
            raise InvalidRun("Run validation failed", reason)

        outcome = await self._commit(token_id, user_id, token, score, duration_ms, ip_hash, verdict)
        logger.info(
            "Accepted run for user %s: score=%s new_best=%s flag=%s",
            user_id,
            score,
            outcome.is_new_best,
            verdict.flag_reason.value if verdict.flag_reason else None,
        )

        await self._propagate_best(user_id, outcome.best_score)
        rank, top10 = await self._read_standing(user_id)
        return SubmissionResult(
            top10=top10,
            rank=rank,
            best_score=outcome.best_score,
            is_new_best=outcome.is_new_best,
            points_earned=score,
            points_balance=outcome.points_balance,
        )

    async def _check_rate_limits(self, user_id: str, ip_hash: str) -> None:
        user_runs = await self.rank_store.hit_counter(
            user_runs_counter_key(user_id), RATE_LIMIT_WINDOW_SECONDS
        )
        ip_runs = await self.rank_store.hit_counter(
            ip_runs_counter_key(ip_hash), RATE_LIMIT_WINDOW_SECONDS
        )
        if user_runs > self.runs_per_hour_user:
            raise RateLimited("Too many runs. Please try again later.")
        if ip_runs > self.runs_per_hour_ip:
            raise RateLimited("Too many requests from this network.")

    async def _check_token(self, user_id: str, token: str) -> int:
        """Read-only redemption checks; nothing is marked used here."""
        async with self.sessions() as session:
            record = await session.scalar(select(RunToken).where(RunToken.token == token))

        if record is None:
            raise InvalidToken("Invalid or expired run token")
        if record.user_id != user_id:
            raise TokenForbidden("Token does not belong to this user")
        if record.used:
            raise TokenUsed("Run token has already been used")
        if record.expires_at <= utcnow():
            raise TokenExpired("Run token has expired")
        return record.id

    async def _consume_token(self, session: AsyncSession, token_id: int) -> None:
        # Only one transaction can flip used from false to true; the loser sees zero rows.
        result = await session.execute(
            update(RunToken)
            .where(RunToken.id == token_id, RunToken.used.is_(False))
            .values(used=True)
        )
        if result.rowcount != 1:
            raise TokenUsed("Run token has already been used")

    async def _reject(
        self,
        token_id: int,
        user_id: str,
        token: str,
        score: int,
        duration_ms: int,
        ip_hash: str,
        verdict: ValidationResult,
    ) -> None:
        async with self.sessions.begin() as session:
            await self._consume_token(session, token_id)
            session.add(
                Run(
                    user_id=user_id,
                    score=score,
                    duration_ms=duration_ms,
                    run_token=token,
                    ip_hash=ip_hash,
                    flagged=True,
                    flag_reason=verdict.flag_reason,
                )
            )

    async def _commit(
        self,
        token_id: int,
        user_id: str,
        token: str,
        score: int,
        duration_ms: int,
        ip_hash: str,
        verdict: ValidationResult,
    ) -> CommitOutcome:
        now = utcnow()
        async with self.sessions.begin() as session:
            await self._consume_token(session, token_id)

            run = Run(
                user_id=user_id,
                score=score,
                duration_ms=duration_ms,
                run_token=token,
                ip_hash=ip_hash,
                flagged=verdict.flagged,
                flag_reason=verdict.flag_reason,
                created_at=now,
            )
            session.add(run)
            await session.flush()

            credited = await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(points_balance=User.points_balance + score)
            )
            if credited.rowcount != 1:
                raise UserNotFoundError(user_id)
            balance = await session.scalar(
                select(User.points_balance).where(User.id == user_id)
            )

            session.add(
                PointTransaction(
                    user_id=user_id,
                    delta=score,
                    reason=PointReason.RUN,
                    ref_id=str(run.id),
                    created_at=now,
                )
            )

            # Insert the first best or raise a lower one in a single statement; concurrent
            # first runs for one user cannot both take the insert path.
            insert = UPSERT_BY_DIALECT[session.bind.dialect.name]
            stmt = insert(UserBestScore).values(user_id=user_id, best_score=score, achieved_at=now)
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id"],
                set_={"best_score": stmt.excluded.best_score, "achieved_at": stmt.excluded.achieved_at},
                where=UserBestScore.best_score < stmt.excluded.best_score,
            )
            written = await session.execute(stmt)
            if written.rowcount == 1:
                best_score, is_new_best = score, True
            else:
                current = await session.scalar(
                    select(UserBestScore.best_score).where(UserBestScore.user_id == user_id)
                )
                best_score, is_new_best = current, False

        return CommitOutcome(
            best_score=best_score,
            is_new_best=is_new_best,
            points_balance=int(balance),
        )

    async def _propagate_best(self, user_id: str, best_score: int) -> None:
        try:
            await self.rank_store.upsert_best(user_id, best_score)
        except RedisError:
            logger.warning(
                "Rank store update failed for user %s (best=%s); relational store stays authoritative",
                user_id,
                best_score,
                exc_info=True,
            )

    async def _read_standing(self, user_id: str) -> tuple[int | None, list[RankedPlayer]]:
        """Rank and top list after a commit; an unreachable rank store yields neither."""
        try:
            # The rank may lag a concurrent writer by a moment; that is acceptable.
            rank = await self.rank_store.rank_of(user_id)
            top10 = await self.leaderboard.entries_for_range(0, TOP_LIST_SIZE - 1)
        except RedisError:
            logger.warning(
                "Rank store read failed for user %s after commit; returning standing without rank",
                user_id,
                exc_info=True,
            )
            return None, []
        return rank, top10
