"""Published leaderboards: one row per window per recomputation pass."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LeaderboardRow(SQLModel, table=True):
    __tablename__ = "leaderboards"

    id: str = Field(primary_key=True)
    generation: int = Field(index=True)
    window: str = Field(index=True)
    reference_at: datetime
    created_at: datetime = Field(default_factory=utc_now, index=True)

    entries_jsonb: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSONB),
    )
    meta_jsonb: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSONB),
    )

    __table_args__ = (
        Index("idx_leaderboards_generation_window", "generation", "window", unique=True),
    )
