"""Per-user reduction of scored predictions."""
from __future__ import annotations

import logging
from typing import Iterable

from audience_node.entities.leaderboard import UserAggregate, UserPredictionSummary
from audience_node.entities.prediction import Prediction, ScoredPrediction
from audience_node.entities.user import UserProfile

logger = logging.getLogger(__name__)

PRECISION_DECIMALS = 1


def _mean_precision(accuracies: list[float]) -> float:
    if not accuracies:
        return 0.0
    return round(sum(accuracies) / len(accuracies), PRECISION_DECIMALS)


def aggregate(scored: Iterable[ScoredPrediction], users: Iterable[UserProfile]) -> dict[str, UserAggregate]:
    """Sum score, average accuracy and count predictions for every roster user.

    Users without any scored prediction get a zero aggregate. Records are
    reduced in prediction-id order so the float mean never depends on the
    order the caller passed them in.
    """
    roster = {user.id for user in users}

    by_user: dict[str, list[ScoredPrediction]] = {user_id: [] for user_id in roster}
    orphans = 0
    for record in scored:
        bucket = by_user.get(record.user_id)
        if bucket is None:
            orphans += 1
            continue
        bucket.append(record)

    if orphans:
        logger.info("Ignored %d scored predictions from users missing from the roster", orphans)

    aggregates: dict[str, UserAggregate] = {}
    for user_id in sorted(by_user):
        records = sorted(by_user[user_id], key=lambda s: s.prediction.id)
        aggregates[user_id] = UserAggregate(
            user_id=user_id,
            total_score=sum(r.score for r in records),
            mean_precision=_mean_precision([r.accuracy for r in records]),
            prediction_count=len(records),
        )
    return aggregates


def summarize_user(
    user_id: str,
    predictions: Iterable[Prediction],
    scored: Iterable[ScoredPrediction],
) -> UserPredictionSummary:
    """Personal stats: every prediction counts toward the total, only resolved ones toward points."""
    total = sum(1 for p in predictions if p.user_id == user_id)
    mine = sorted((s for s in scored if s.user_id == user_id), key=lambda s: s.prediction.id)
    return UserPredictionSummary(
        user_id=user_id,
        total_predictions=total,
        resolved_predictions=len(mine),
        average_precision=_mean_precision([s.accuracy for s in mine]),
        total_points=sum(s.score for s in mine),
    )
