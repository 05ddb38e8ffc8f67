"""FastAPI application wiring for routes, error handlers, and lifespan."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from flapboard.api.errors import APIError
from flapboard.api.routes import router
from flapboard.config import Settings, configure_logging, load_settings
from flapboard.models.schemas import ErrorBody, ErrorResponse
from flapboard.services.leaderboard import LeaderboardService
from flapboard.services.submission import RunSubmissionCoordinator
from flapboard.services.tokens import TokenIssuer
from flapboard.services.users import UserRepository
from flapboard.storage.database import create_engine, create_sessionmaker, init_models
from flapboard.storage.rank_store import RankStore
from flapboard.storage.redis import create_redis_client

logger = logging.getLogger(__name__)


def error_response(
    status_code: int, code: str, message: str, details: dict | None = None
) -> JSONResponse:
    payload = ErrorResponse(error=ErrorBody(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=payload.model_dump(exclude_none=True))


def create_app(
    settings: Settings | None = None,
    redis_factory: Callable[[], Redis] | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        redis_client = redis_factory() if redis_factory else create_redis_client(settings.redis_url)
        engine = create_engine(settings.database_url)
        await init_models(engine, reset=settings.db_reset)
        sessions = create_sessionmaker(engine)
        rank_store = RankStore(redis_client)
        leaderboard_service = LeaderboardService(
            sessions, rank_store, cache_ttl_seconds=settings.leaderboard_cache_ttl_seconds
        )

        app.state.redis = redis_client
        app.state.engine = engine
        app.state.users = UserRepository(sessions)
        app.state.leaderboard_service = leaderboard_service
        app.state.token_issuer = TokenIssuer(
            sessions,
            rank_store,
            cooldown_seconds=settings.run_start_cooldown_seconds,
            validity_seconds=settings.run_token_ttl_seconds,
        )
        app.state.submission_coordinator = RunSubmissionCoordinator(
            sessions,
            rank_store,
            leaderboard_service,
            ip_hash_secret=settings.ip_hash_secret,
            runs_per_hour_user=settings.runs_per_hour_user,
            runs_per_hour_ip=settings.runs_per_hour_ip,
        )
        try:
            yield
        finally:
            await redis_client.aclose()
            await engine.dispose()

    app = FastAPI(title="Flapboard API", version="1.0.0", lifespan=app_lifespan)
    app.state.settings = settings

    @app.exception_handler(APIError)
    async def api_error_handler(_: Request, exc: APIError) -> JSONResponse:
        return error_response(exc.status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(
            400,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": jsonable_errors(exc)},
        )

    @app.exception_handler(SQLAlchemyError)
    @app.exception_handler(RedisError)
    async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Store failure while handling %s %s", request.method, request.url.path)
        return error_response(
            500,
            "SERVER_ERROR",
            "Temporary server error, please retry",
            {"retryable": True},
        )

    app.include_router(router)
    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ``ctx`` may hold exception instances that JSON cannot encode.
    return [
        {key: value for key, value in error.items() if key in {"loc", "msg", "type"}}
        for error in exc.errors()
    ]


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("flapboard.main:app", host="127.0.0.1", port=8000)
