from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from flapboard.config import Settings
from flapboard.main import create_app
from flapboard.models.tables import PointTransaction, Run, RunToken, User, UserBestScore
from flapboard.storage.rank_store import LEADERBOARD_KEY, game_start_marker_key


@dataclass
class Harness:
    api: TestClient
    redis: fakeredis.FakeRedis
    db: Engine

    def headers(self, user_id: str) -> dict[str, str]:
        return {"X-User-Id": user_id}

    def add_user(self, user_id: str, display_name: str, points: int = 0) -> None:
        with Session(self.db) as session:
            session.add(User(id=user_id, display_name=display_name, points_balance=points))
            session.commit()

    def add_token(self, user_id: str, token: str, expires_at: datetime, used: bool = False) -> None:
        with Session(self.db) as session:
            session.add(RunToken(token=token, user_id=user_id, expires_at=expires_at, used=used))
            session.commit()

    def set_best(self, user_id: str, score: int) -> None:
        """Seed a best score in both stores, as an earlier accepted run would."""
        with Session(self.db) as session:
            session.add(UserBestScore(user_id=user_id, best_score=score))
            session.commit()
        self.redis.zadd(LEADERBOARD_KEY, {user_id: score})

    def start_run(self, user_id: str) -> str:
        response = self.api.post("/v1/game/start", headers=self.headers(user_id))
        assert response.status_code == 200, response.text
        # Lift the start cooldown so tests can play back-to-back runs.
        self.redis.delete(game_start_marker_key(user_id))
        return response.json()["runToken"]

    def submit(self, user_id: str, token: str, score: int, duration_ms: int, **headers: str):
        return self.api.post(
            "/v1/runs/submit",
            json={"runToken": token, "score": score, "durationMs": duration_ms},
            headers={**self.headers(user_id), **headers},
        )

    def token_row(self, token: str) -> RunToken | None:
        with Session(self.db) as session:
            return session.scalar(select(RunToken).where(RunToken.token == token))

    def user_row(self, user_id: str) -> User:
        with Session(self.db) as session:
            return session.get(User, user_id)

    def best_row(self, user_id: str) -> UserBestScore | None:
        with Session(self.db) as session:
            return session.get(UserBestScore, user_id)

    def runs_for(self, user_id: str) -> list[Run]:
        with Session(self.db) as session:
            return list(session.scalars(select(Run).where(Run.user_id == user_id).order_by(Run.id)))

    def transactions_for(self, user_id: str) -> list[PointTransaction]:
        with Session(self.db) as session:
            return list(
                session.scalars(
                    select(PointTransaction).where(PointTransaction.user_id == user_id)
                )
            )


@pytest.fixture()
def make_client(tmp_path):
    @contextmanager
    def build(**overrides):
        db_path = tmp_path / "flapboard-test.db"
        settings = replace(
            Settings(database_url=f"sqlite+aiosqlite:///{db_path}", log_level="WARNING"),
            **overrides,
        )
        server = fakeredis.FakeServer()
        app = create_app(
            settings,
            redis_factory=lambda: fakeredis.FakeAsyncRedis(server=server, decode_responses=True),
        )
        sync_redis = fakeredis.FakeRedis(server=server, decode_responses=True)
        db = create_engine(f"sqlite:///{db_path}")

        with TestClient(app) as test_client:
            yield Harness(api=test_client, redis=sync_redis, db=db)

        db.dispose()

    return build


@pytest.fixture()
def client(make_client):
    with make_client() as harness:
        yield harness
