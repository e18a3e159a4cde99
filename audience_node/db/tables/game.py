"""Game tables: player profiles, programs with their real audience, predictions."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProfileRow(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(primary_key=True)
    username: str = Field(index=True)
    avatar_url: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now, index=True)


class ProgramRow(SQLModel, table=True):
    __tablename__ = "programs"

    id: str = Field(primary_key=True)
    title: str
    channel: str = Field(index=True)
    air_date: datetime = Field(index=True)
    genre: Optional[str] = Field(default=None)
    image_url: Optional[str] = Field(default=None)

    # millions of viewers, NULL until published
    real_audience: Optional[float] = Field(default=None)
    resolved_at: Optional[datetime] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utc_now, index=True)


class PredictionRow(SQLModel, table=True):
    __tablename__ = "predictions"

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True, foreign_key="profiles.id")
    program_id: str = Field(index=True, foreign_key="programs.id")
    predicted_audience: float
    submitted_at: datetime = Field(default_factory=utc_now, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "program_id", name="uq_predictions_user_program"),
    )
