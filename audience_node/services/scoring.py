"""Scoring rule: (predicted, actual) audience → accuracy percentage and points."""
from __future__ import annotations

import logging
import math
from typing import Iterable, Mapping

from audience_node.audience_config import ScoringRules
from audience_node.entities.prediction import (
    Prediction, ProgramOutcome, RejectedPrediction, ScoredPrediction, ScoreResult, ScoringBatch,
)

logger = logging.getLogger(__name__)

# tier edges are compared on the error rounded to this many decimals
ERROR_DECIMALS = 9


class InvalidAudienceError(ValueError):
    """Raised for a negative or non-finite audience figure."""


def _check_audience(name: str, value: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidAudienceError(f"{name} audience is not a number: {value!r}") from exc
    if not math.isfinite(value):
        raise InvalidAudienceError(f"{name} audience is not finite: {value!r}")
    if value < 0:
        raise InvalidAudienceError(f"{name} audience is negative: {value!r}")
    return value


def accuracy_for(predicted: float, actual: float, rules: ScoringRules) -> float:
    if actual == 0:
        accuracy = 100.0 if predicted == 0 else 0.0
    else:
        accuracy = 100.0 * (1.0 - abs(predicted - actual) / max(actual, rules.epsilon))
    accuracy = min(100.0, max(0.0, accuracy))
    return round(accuracy, rules.accuracy_decimals)


def points_for(error: float, rules: ScoringRules) -> int:
    error = round(error, ERROR_DECIMALS)
    for tier in rules.tiers:
        if error <= tier.max_error:
            return tier.points
    return 0


def score_prediction(predicted: float, actual: float, rules: ScoringRules | None = None) -> ScoreResult:
    """Score one resolved prediction.

    Raises InvalidAudienceError when either figure is negative or non-finite.
    """
    rules = rules or ScoringRules()
    predicted = _check_audience("predicted", predicted)
    actual = _check_audience("real", actual)

    return ScoreResult(
        accuracy=accuracy_for(predicted, actual, rules),
        score=points_for(abs(predicted - actual), rules),
    )


def score_predictions(
    predictions: Iterable[Prediction],
    outcomes: Mapping[str, ProgramOutcome],
    rules: ScoringRules | None = None,
) -> ScoringBatch:
    """Score every prediction whose program has a published audience.

    Predictions on unresolved programs are skipped. A malformed record is
    rejected on its own and never aborts the batch.
    """
    rules = rules or ScoringRules()
    scored: list[ScoredPrediction] = []
    rejected: list[RejectedPrediction] = []

    for prediction in sorted(predictions, key=lambda p: p.id):
        outcome = outcomes.get(prediction.program_id)
        if outcome is None or not outcome.is_resolved:
            continue

        try:
            result = score_prediction(prediction.predicted_audience, outcome.real_audience, rules)
        except InvalidAudienceError as exc:
            logger.warning("Rejected prediction %s (user=%s): %s", prediction.id, prediction.user_id, exc)
            rejected.append(RejectedPrediction(
                prediction_id=prediction.id,
                user_id=prediction.user_id,
                reason=str(exc),
            ))
            continue

        scored.append(ScoredPrediction(
            prediction=prediction,
            real_audience=float(outcome.real_audience),
            accuracy=result.accuracy,
            score=result.score,
        ))

    return ScoringBatch(scored=tuple(scored), rejected=tuple(rejected))
