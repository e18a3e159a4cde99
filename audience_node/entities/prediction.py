from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from audience_node.entities.user import UserProfile


@dataclass(frozen=True)
class Prediction:
    """A player's forecast of a program's audience, in millions of viewers."""
    id: str
    user_id: str
    program_id: str
    predicted_audience: float
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Program:
    """A broadcast open for predictions."""
    id: str
    title: str
    channel: str
    air_date: datetime
    genre: str | None = None
    image_url: str | None = None


@dataclass(frozen=True)
class ProgramOutcome:
    """Real audience of a program. `real_audience is None` until it is published."""
    program_id: str
    real_audience: float | None = None
    resolved_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        return self.real_audience is not None


@dataclass(frozen=True)
class ScoreResult:
    accuracy: float
    score: int


@dataclass(frozen=True)
class ScoredPrediction:
    """Prediction with its score attached. Derived, never stored by the engine."""
    prediction: Prediction
    real_audience: float
    accuracy: float
    score: int

    @property
    def user_id(self) -> str:
        return self.prediction.user_id

    @property
    def submitted_at(self) -> datetime:
        return self.prediction.submitted_at


@dataclass(frozen=True)
class RejectedPrediction:
    """A malformed record excluded from aggregation."""
    prediction_id: str
    user_id: str
    reason: str


@dataclass(frozen=True)
class ScoringBatch:
    scored: tuple[ScoredPrediction, ...] = ()
    rejected: tuple[RejectedPrediction, ...] = ()


@dataclass(frozen=True)
class DataSnapshot:
    """One consistent read of predictions, outcomes and the user roster."""
    predictions: tuple[Prediction, ...] = ()
    outcomes: dict[str, ProgramOutcome] = field(default_factory=dict)  # program_id → outcome
    users: tuple[UserProfile, ...] = ()
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
