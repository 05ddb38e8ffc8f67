"""Pydantic request/response schemas for the public game API.

Wire keys are camelCase (``runToken``, ``pointsBalance``); models accept either
the alias or the field name when constructed in Python.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DISPLAY_NAME_PATTERN = r"^[A-Za-z0-9_-]{3,20}$"
INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ErrorBody


class RunStartResponse(CamelModel):
    run_token: str
    expires_at: str


class RunSubmission(CamelModel):
    run_token: str = Field(min_length=1, max_length=128)
    # Range checks belong to the anti-cheat validator; only reject absurd integers here.
    # Strict mode keeps JSON booleans and numeric strings from coercing to int.
    score: int = Field(strict=True, ge=INT32_MIN, le=INT32_MAX)
    duration_ms: int = Field(strict=True, ge=INT32_MIN, le=INT32_MAX)


class LeaderboardRow(CamelModel):
    rank: int
    display_name: str
    best_score: int


class YourStanding(CamelModel):
    rank: int | None
    best_score: int
    is_new_best: bool


class SubmissionResponse(CamelModel):
    top10: list[LeaderboardRow]
    you: YourStanding
    points_earned: int
    points_balance: int


class LeaderboardResponse(CamelModel):
    leaderboard: list[LeaderboardRow]
    total: int
    offset: int
    limit: int


class NeighborhoodSelf(CamelModel):
    rank: int
    best_score: int


class Neighborhood(CamelModel):
    above: list[LeaderboardRow]
    you: NeighborhoodSelf
    below: list[LeaderboardRow]


class MyRankResponse(CamelModel):
    rank: int | None = None
    best_score: int | None = None
    neighborhood: Neighborhood | None = None


class NearbyRow(LeaderboardRow):
    is_player: bool


class NearbyResponse(CamelModel):
    nearby_players: list[NearbyRow]
    total_players: int


class BestScore(CamelModel):
    best_score: int
    achieved_at: str | None


class UserProfile(CamelModel):
    id: str
    display_name: str
    points_balance: int
    is_guest: bool
    best_score: BestScore | None


class UserProfileResponse(CamelModel):
    user: UserProfile


class ProfileUpdate(CamelModel):
    display_name: str = Field(pattern=DISPLAY_NAME_PATTERN)


class RunHistoryRow(CamelModel):
    id: int
    score: int
    duration_ms: int
    flagged: bool
    flag_reason: str | None
    created_at: str | None


class RunHistoryResponse(CamelModel):
    runs: list[RunHistoryRow]
    next_cursor: int | None
    has_more: bool


class HealthResponse(BaseModel):
    status: Literal["ok"]


class ReadyResponse(BaseModel):
    status: Literal["ok"]
    services: dict[str, Literal["up", "down"]]
