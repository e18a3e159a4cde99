"""AudienceConfig: single source of truth for scoring tiers and leaderboard windows."""
from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ScoreTier(BaseModel):
    """Points awarded when the absolute error (millions of viewers) is at most `max_error`."""

    max_error: float = Field(ge=0)
    points: int = Field(ge=0)


def default_tiers() -> list[ScoreTier]:
    return [
        ScoreTier(max_error=0.05, points=100),
        ScoreTier(max_error=0.1, points=75),
        ScoreTier(max_error=0.25, points=50),
        ScoreTier(max_error=0.5, points=25),
        ScoreTier(max_error=1.0, points=10),
    ]


class ScoringRules(BaseModel):
    """How a (predicted, actual) pair turns into accuracy and points."""

    tiers: list[ScoreTier] = Field(default_factory=default_tiers, min_length=1)
    epsilon: float = Field(default=1e-9, gt=0)
    accuracy_decimals: int = Field(default=1, ge=0)

    @model_validator(mode="after")
    def _check_tiers(self) -> "ScoringRules":
        for previous, current in zip(self.tiers, self.tiers[1:]):
            if current.max_error <= previous.max_error:
                raise ValueError("score tiers must be sorted by strictly increasing max_error")
            if current.points > previous.points:
                raise ValueError("score tiers must not award more points for a larger error")
        return self

    @property
    def max_score(self) -> int:
        return self.tiers[0].points


class AudienceConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    scoring: ScoringRules = Field(default_factory=ScoringRules)
    timezone: str = Field(default="Europe/Paris", description="IANA zone anchoring weeks and months")

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)
