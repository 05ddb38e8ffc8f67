"""HTTP route handlers for the run pipeline, leaderboards, profiles and health checks."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request

from flapboard.api.errors import APIError, from_pipeline_error
from flapboard.api.identity import client_ip, get_current_user_id, get_users
from flapboard.clock import isoformat_utc
from flapboard.models.schemas import (
    BestScore,
    HealthResponse,
    LeaderboardResponse,
    LeaderboardRow,
    MyRankResponse,
    NearbyResponse,
    NearbyRow,
    Neighborhood,
    NeighborhoodSelf,
    ProfileUpdate,
    ReadyResponse,
    RunHistoryResponse,
    RunHistoryRow,
    RunStartResponse,
    RunSubmission,
    SubmissionResponse,
    UserProfile,
    UserProfileResponse,
    YourStanding,
)
from flapboard.services.errors import DisplayNameTaken, RunPipelineError, UserNotFoundError
from flapboard.services.leaderboard import LeaderboardService, RankedPlayer
from flapboard.services.submission import RunSubmissionCoordinator
from flapboard.services.tokens import TokenIssuer
from flapboard.services.users import Profile, UserRepository
from flapboard.storage import database

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

SEARCH_MIN_LENGTH = 2
SEARCH_MAX_LENGTH = 50


def get_leaderboard(request: Request) -> LeaderboardService:
    return request.app.state.leaderboard_service


def get_issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer


def get_coordinator(request: Request) -> RunSubmissionCoordinator:
    return request.app.state.submission_coordinator


def to_row(entry: RankedPlayer) -> LeaderboardRow:
    return LeaderboardRow(rank=entry.rank, display_name=entry.display_name, best_score=entry.best_score)


def to_profile(profile: Profile) -> UserProfile:
    best = None
    if profile.best_score is not None:
        best = BestScore(
            best_score=profile.best_score,
            achieved_at=isoformat_utc(profile.best_achieved_at),
        )
    return UserProfile(
        id=profile.user.id,
        display_name=profile.user.display_name,
        points_balance=profile.user.points_balance,
        is_guest=profile.user.is_guest,
        best_score=best,
    )


@router.post("/game/start", response_model=RunStartResponse)
async def start_game(
    user_id: str = Depends(get_current_user_id),
    issuer: TokenIssuer = Depends(get_issuer),
) -> RunStartResponse:
    try:
        issued = await issuer.issue_token(user_id)
    except RunPipelineError as exc:
        raise from_pipeline_error(exc) from exc
    return RunStartResponse(run_token=issued.token, expires_at=isoformat_utc(issued.expires_at))


@router.post("/runs/submit", response_model=SubmissionResponse)
async def submit_run(
    payload: RunSubmission,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    coordinator: RunSubmissionCoordinator = Depends(get_coordinator),
) -> SubmissionResponse:
    try:
        result = await coordinator.submit(
            user_id=user_id,
            request_ip=client_ip(request),
            token=payload.run_token,
            score=payload.score,
            duration_ms=payload.duration_ms,
        )
    except RunPipelineError as exc:
        raise from_pipeline_error(exc) from exc

    return SubmissionResponse(
        top10=[to_row(entry) for entry in result.top10],
        you=YourStanding(
            rank=result.rank,
            best_score=result.best_score,
            is_new_best=result.is_new_best,
        ),
        points_earned=result.points_earned,
        points_balance=result.points_balance,
    )


@router.get("/runs/history", response_model=RunHistoryResponse)
async def run_history(
    limit: int = Query(default=20),
    cursor: int | None = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    users: UserRepository = Depends(get_users),
) -> RunHistoryResponse:
    page = await users.run_history(user_id, limit=min(100, max(1, limit)), cursor=cursor)
    return RunHistoryResponse(
        runs=[
            RunHistoryRow(
                id=run.id,
                score=run.score,
                duration_ms=run.duration_ms,
                flagged=run.flagged,
                flag_reason=run.flag_reason.value if run.flag_reason else None,
                created_at=isoformat_utc(run.created_at),
            )
            for run in page.runs
        ],
        next_cursor=page.next_cursor,
        has_more=page.has_more,
    )


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    offset: int = Query(default=0),
    limit: int = Query(default=50),
    search: str | None = Query(default=None),
    service: LeaderboardService = Depends(get_leaderboard),
) -> LeaderboardResponse:
    offset = max(0, offset)
    limit = min(100, max(1, limit))

    needle = (search or "").strip()[:SEARCH_MAX_LENGTH]
    if len(needle) >= SEARCH_MIN_LENGTH:
        matches = await service.search(needle)
        return LeaderboardResponse(
            leaderboard=[to_row(entry) for entry in matches],
            total=len(matches),
            offset=0,
            limit=limit,
        )

    page = await service.top_page(offset, limit)
    return LeaderboardResponse(
        leaderboard=[to_row(entry) for entry in page.entries],
        total=page.total,
        offset=offset,
        limit=limit,
    )


@router.get("/leaderboard/me", response_model=MyRankResponse)
async def my_rank(
    user_id: str = Depends(get_current_user_id),
    service: LeaderboardService = Depends(get_leaderboard),
) -> MyRankResponse:
    found = await service.neighborhood(user_id)
    if found is None:
        # Not an error: the user simply has not played yet.
        return MyRankResponse()
    return MyRankResponse(
        rank=found.rank,
        best_score=found.best_score,
        neighborhood=Neighborhood(
            above=[to_row(entry) for entry in found.above],
            you=NeighborhoodSelf(rank=found.rank, best_score=found.best_score),
            below=[to_row(entry) for entry in found.below],
        ),
    )


@router.get("/leaderboard/nearby", response_model=NearbyResponse)
async def nearby(
    rank: int | None = Query(default=None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: LeaderboardService = Depends(get_leaderboard),
) -> NearbyResponse:
    result = await service.nearby(user_id, rank)
    return NearbyResponse(
        nearby_players=[
            NearbyRow(
                rank=entry.rank,
                display_name=entry.display_name,
                best_score=entry.best_score,
                is_player=entry.user_id == user_id,
            )
            for entry in result.players
        ],
        total_players=result.total,
    )


@router.get("/users/me", response_model=UserProfileResponse)
async def get_me(
    user_id: str = Depends(get_current_user_id),
    users: UserRepository = Depends(get_users),
) -> UserProfileResponse:
    try:
        profile = await users.get_profile(user_id)
    except UserNotFoundError as exc:
        raise APIError(code="NOT_FOUND", message="User not found", status_code=404) from exc
    return UserProfileResponse(user=to_profile(profile))


@router.patch("/users/me", response_model=UserProfileResponse)
async def update_me(
    payload: ProfileUpdate,
    user_id: str = Depends(get_current_user_id),
    users: UserRepository = Depends(get_users),
) -> UserProfileResponse:
    try:
        await users.rename(user_id, payload.display_name)
        profile = await users.get_profile(user_id)
    except DisplayNameTaken as exc:
        raise APIError(
            code="DISPLAY_NAME_TAKEN",
            message="Display name is already taken",
            status_code=409,
        ) from exc
    except UserNotFoundError as exc:
        raise APIError(code="NOT_FOUND", message="User not found", status_code=404) from exc
    return UserProfileResponse(user=to_profile(profile))


# These probes are intended for infrastructure and do not need to appear in API docs.
@router.get("/healthz", response_model=HealthResponse, include_in_schema=False)
async def healthz() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get("/readyz", response_model=ReadyResponse, include_in_schema=False)
async def readyz(
    request: Request,
    service: LeaderboardService = Depends(get_leaderboard),
) -> ReadyResponse:
    services = {"redis": "down", "database": "down"}
    # Readiness verifies both backing stores, not just process liveness.
    try:
        if await service.ping():
            services["redis"] = "up"
    except Exception:
        logger.warning("Redis readiness ping failed", exc_info=True)
    try:
        if await database.ping(request.app.state.engine):
            services["database"] = "up"
    except Exception:
        logger.warning("Database readiness ping failed", exc_info=True)

    if "down" in services.values():
        raise APIError(
            code="SERVICE_UNAVAILABLE",
            message="Readiness check failed",
            status_code=503,
            details={"services": services},
        )
    return ReadyResponse(status="ok", services=services)
