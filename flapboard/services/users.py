"""Player accounts as seen by gameplay: profile, display name and run history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flapboard.models.tables import Run, User, UserBestScore
from flapboard.services.errors import DisplayNameTaken, UserNotFoundError


@dataclass(slots=True)
class Profile:
    user: User
    best_score: int | None
    best_achieved_at: datetime | None


@dataclass(slots=True)
class RunHistoryPage:
    runs: list[Run]
    next_cursor: int | None
    has_more: bool


class UserRepository:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self.sessions = sessions

    async def exists(self, user_id: str) -> bool:
        async with self.sessions() as session:
            return await session.get(User, user_id) is not None

    async def create_user(self, user_id: str, display_name: str, is_guest: bool = False) -> User:
        """Provision the gameplay row for an identity the provider already knows."""
        user = User(id=user_id, display_name=display_name, points_balance=0, is_guest=is_guest)
        try:
            async with self.sessions.begin() as session:
                session.add(user)
        except IntegrityError as exc:
            raise DisplayNameTaken(display_name) from exc
        return user

    async def get_profile(self, user_id: str) -> Profile:
        async with self.sessions() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            best = await session.get(UserBestScore, user_id)
        return Profile(
            user=user,
            best_score=best.best_score if best else None,
            best_achieved_at=best.achieved_at if best else None,
        )

    async def rename(self, user_id: str, display_name: str) -> User:
        try:
            async with self.sessions.begin() as session:
                taken = await session.scalar(
                    select(User.id).where(
                        func.lower(User.display_name) == display_name.lower(),
                        User.id != user_id,
                    )
                )
                if taken is not None:
                    raise DisplayNameTaken(display_name)

                user = await session.get(User, user_id)
                if user is None:
                    raise UserNotFoundError(user_id)
                user.display_name = display_name
        except IntegrityError as exc:
            # Lost a race with another rename to the same name.
            raise DisplayNameTaken(display_name) from exc
        return user

    async def run_history(
        self, user_id: str, limit: int, cursor: int | None = None
    ) -> RunHistoryPage:
        query = select(Run).where(Run.user_id == user_id)
        if cursor is not None:
            query = query.where(Run.id < cursor)
        # One extra row tells us whether another page exists.
        query = query.order_by(Run.id.desc()).limit(limit + 1)

        async with self.sessions() as session:
            runs = list((await session.scalars(query)).all())

        has_more = len(runs) > limit
        runs = runs[:limit]
        return RunHistoryPage(
            runs=runs,
            next_cursor=runs[-1].id if has_more else None,
            has_more=has_more,
        )
