from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class LeaderboardEntryEnvelope(BaseModel):
    """One ranked player as served to the ranking page."""

    user_id: str
    username: str
    avatar_url: str | None = None
    total_score: int = 0
    mean_precision: float = Field(default=0.0, ge=0, le=100)
    prediction_count: int = Field(default=0, ge=0)
    rank: int = Field(ge=1)

    model_config = ConfigDict(extra="ignore")


class LeaderboardStatsEnvelope(BaseModel):
    top_score: int = 0
    top_scorer: str | None = None
    top_precision: float = 0.0
    top_precision_user: str | None = None
    active_players: int = 0
    registered_users: int = 0


class LeaderboardWindowEnvelope(BaseModel):
    window: str
    generation: int
    reference: datetime
    entries: list[LeaderboardEntryEnvelope] = Field(default_factory=list)


class LeaderboardSetEnvelope(BaseModel):
    generation: int
    reference: datetime
    all_time: list[LeaderboardEntryEnvelope] = Field(default_factory=list)
    month: list[LeaderboardEntryEnvelope] = Field(default_factory=list)
    week: list[LeaderboardEntryEnvelope] = Field(default_factory=list)
    stats: LeaderboardStatsEnvelope = Field(default_factory=LeaderboardStatsEnvelope)


class PredictionScoreEnvelope(BaseModel):
    """A player's prediction, with accuracy and points once the audience is known."""

    id: str
    program_id: str
    program_title: str | None = None
    channel: str | None = None
    predicted_audience: float
    submitted_at: datetime
    real_audience: float | None = None
    accuracy: float | None = None
    score: int | None = None


class UserSummaryEnvelope(BaseModel):
    user_id: str
    total_predictions: int = 0
    resolved_predictions: int = 0
    average_precision: float = 0.0
    total_points: int = 0
