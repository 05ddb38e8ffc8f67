"""Relational schema: the source of truth for balances, runs and best scores."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from flapboard.clock import utcnow


class Base(DeclarativeBase):
    pass


class FlagReason(str, enum.Enum):
    SCORE_OUT_OF_BOUNDS = "score_out_of_bounds"
    DURATION_OUT_OF_BOUNDS = "duration_out_of_bounds"
    IMPOSSIBLE_TIMING = "impossible_timing"
    SUSPICIOUSLY_FAST = "suspiciously_fast"


class PointReason(str, enum.Enum):
    RUN = "run"
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("points_balance >= 0", name="ck_users_points_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(50))
    points_balance: Mapped[int] = mapped_column(Integer, default=0)
    is_guest: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# Display names are unique regardless of case.
Index("ix_users_display_name_lower", func.lower(User.display_name), unique=True)


class RunToken(Base):
    __tablename__ = "run_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    used: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Run(Base):
    __tablename__ = "runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    score: Mapped[int] = mapped_column(Integer)
    duration_ms: Mapped[int] = mapped_column(Integer)
    # One run per token, even if two transactions both got past the token check.
    run_token: Mapped[str] = mapped_column(String(128), unique=True)
    ip_hash: Mapped[str] = mapped_column(String(32))
    flagged: Mapped[bool] = mapped_column(Boolean, default=False)
    flag_reason: Mapped[FlagReason | None] = mapped_column(
        Enum(FlagReason, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserBestScore(Base):
    __tablename__ = "user_best_scores"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), primary_key=True)
    best_score: Mapped[int] = mapped_column(Integer)
    achieved_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class PointTransaction(Base):
    __tablename__ = "point_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    delta: Mapped[int] = mapped_column(Integer)
    reason: Mapped[PointReason] = mapped_column(
        Enum(PointReason, native_enum=False, values_callable=lambda e: [m.value for m in e])
    )
    ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
