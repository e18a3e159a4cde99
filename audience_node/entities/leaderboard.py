from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from audience_node.entities.prediction import RejectedPrediction


class TimeWindowKind(StrEnum):
    ALL_TIME = "all_time"
    MONTH = "month"
    WEEK = "week"


@dataclass(frozen=True)
class WindowBounds:
    """Half-open interval [start, end). `None` means unbounded on that side."""
    kind: TimeWindowKind
    start: datetime | None = None
    end: datetime | None = None

    def contains(self, instant: datetime) -> bool:
        if self.start is not None and instant < self.start:
            return False
        if self.end is not None and instant >= self.end:
            return False
        return True


@dataclass(frozen=True)
class UserAggregate:
    user_id: str
    total_score: int = 0
    mean_precision: float = 0.0
    prediction_count: int = 0


@dataclass(frozen=True)
class UserPredictionSummary:
    """Personal statistics shown next to a player's prediction history."""
    user_id: str
    total_predictions: int = 0
    resolved_predictions: int = 0
    average_precision: float = 0.0
    total_points: int = 0


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    username: str
    avatar_url: str | None
    total_score: int
    mean_precision: float
    prediction_count: int
    rank: int


@dataclass(frozen=True)
class LeaderboardStats:
    top_score: int = 0
    top_scorer: str | None = None
    top_precision: float = 0.0
    top_precision_user: str | None = None
    active_players: int = 0
    registered_users: int = 0


@dataclass(frozen=True)
class LeaderboardSet:
    """The three leaderboards of one recomputation pass, published together."""
    generation: int
    reference: datetime
    all_time: tuple[LeaderboardEntry, ...] = ()
    month: tuple[LeaderboardEntry, ...] = ()
    week: tuple[LeaderboardEntry, ...] = ()
    stats: LeaderboardStats = field(default_factory=LeaderboardStats)
    rejected: tuple[RejectedPrediction, ...] = ()

    def window(self, kind: TimeWindowKind | str) -> tuple[LeaderboardEntry, ...]:
        kind = TimeWindowKind(kind)
        if kind is TimeWindowKind.ALL_TIME:
            return self.all_time
        if kind is TimeWindowKind.MONTH:
            return self.month
        return self.week

    def to_dict(self) -> dict[str, Any]:
        """Canonical payload. The generation counter is left out so that two passes
        over the same snapshot serialize identically."""
        return {
            "reference": self.reference.isoformat(),
            "windows": {
                kind.value: [asdict(entry) for entry in self.window(kind)]
                for kind in TimeWindowKind
            },
            "stats": asdict(self.stats),
            "rejected": [asdict(r) for r in self.rejected],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
