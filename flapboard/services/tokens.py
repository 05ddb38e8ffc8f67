"""Issuance of single-use run tokens."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flapboard.clock import utcnow
from flapboard.models.tables import RunToken
from flapboard.services.errors import RateLimited
from flapboard.storage.rank_store import RankStore, game_start_marker_key

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IssuedToken:
    token: str
    expires_at: datetime


class TokenIssuer:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        rank_store: RankStore,
        cooldown_seconds: int = 3,
        validity_seconds: int = 600,
    ):
        self.sessions = sessions
        self.rank_store = rank_store
        self.cooldown_seconds = cooldown_seconds
        self.validity_seconds = validity_seconds

    async def issue_token(self, user_id: str) -> IssuedToken:
        # A stray marker left by a failed insert only delays the next start.
        claimed = await self.rank_store.claim_marker(
            game_start_marker_key(user_id), self.cooldown_seconds
        )
        if not claimed:
            raise RateLimited("Please wait before starting another game")

        token = secrets.token_urlsafe(32)
        expires_at = utcnow() + timedelta(seconds=self.validity_seconds)
        async with self.sessions.begin() as session:
            session.add(RunToken(token=token, user_id=user_id, expires_at=expires_at, used=False))

        logger.debug("Issued run token for user %s expiring %s", user_id, expires_at)
        return IssuedToken(token=token, expires_at=expires_at)
