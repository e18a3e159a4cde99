from __future__ import annotations

import logging
from typing import Annotated, Any, Generator

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session

from audience_node.config.runtime import RuntimeSettings
from audience_node.config_loader import load_config
from audience_node.entities.leaderboard import TimeWindowKind
from audience_node.schemas import (
    LeaderboardEntryEnvelope,
    LeaderboardSetEnvelope,
    LeaderboardStatsEnvelope,
    LeaderboardWindowEnvelope,
    PredictionScoreEnvelope,
    UserSummaryEnvelope,
)
from audience_node.db import (
    DBLeaderboardRepository,
    DBPredictionRepository,
    DBProgramRepository,
    create_session,
)
from audience_node.services.aggregation import summarize_user
from audience_node.services.scoring import score_predictions

app = FastAPI(title="Audience Masters Report Worker")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

CONTRACT = load_config()
SETTINGS = RuntimeSettings.from_env()


def get_db_session() -> Generator[Session, Any, None]:
    with create_session() as session:
        yield session


def get_leaderboard_repository(
    session_db: Annotated[Session, Depends(get_db_session)]
) -> DBLeaderboardRepository:
    return DBLeaderboardRepository(session_db)


def get_prediction_repository(
    session_db: Annotated[Session, Depends(get_db_session)]
) -> DBPredictionRepository:
    return DBPredictionRepository(session_db)


def get_program_repository(
    session_db: Annotated[Session, Depends(get_db_session)]
) -> DBProgramRepository:
    return DBProgramRepository(session_db)


def _latest_or_404(leaderboard_repo: DBLeaderboardRepository) -> dict[str, Any]:
    latest = leaderboard_repo.get_latest_set()
    if latest is None:
        raise HTTPException(status_code=404, detail="No leaderboards published yet")
    return latest


def _entries(raw: list[dict[str, Any]], limit: int | None = None) -> list[LeaderboardEntryEnvelope]:
    entries = [LeaderboardEntryEnvelope.model_validate(e) for e in raw]
    entries.sort(key=lambda e: (e.rank, e.user_id))
    return entries[:limit] if limit is not None else entries


@app.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/reports/leaderboards")
def get_leaderboards(
    leaderboard_repo: Annotated[DBLeaderboardRepository, Depends(get_leaderboard_repository)],
) -> LeaderboardSetEnvelope:
    latest = _latest_or_404(leaderboard_repo)
    windows = latest["windows"]
    return LeaderboardSetEnvelope(
        generation=latest["generation"],
        reference=latest["reference"],
        all_time=_entries(windows.get(TimeWindowKind.ALL_TIME.value, [])),
        month=_entries(windows.get(TimeWindowKind.MONTH.value, [])),
        week=_entries(windows.get(TimeWindowKind.WEEK.value, [])),
        stats=LeaderboardStatsEnvelope.model_validate(latest.get("stats") or {}),
    )


@app.get("/reports/leaderboards/stats")
def get_leaderboard_stats(
    leaderboard_repo: Annotated[DBLeaderboardRepository, Depends(get_leaderboard_repository)],
) -> LeaderboardStatsEnvelope:
    latest = _latest_or_404(leaderboard_repo)
    return LeaderboardStatsEnvelope.model_validate(latest.get("stats") or {})


@app.get("/reports/leaderboards/{window}")
def get_leaderboard_window(
    window: str,
    leaderboard_repo: Annotated[DBLeaderboardRepository, Depends(get_leaderboard_repository)],
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> LeaderboardWindowEnvelope:
    try:
        kind = TimeWindowKind(window)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown leaderboard window '{window}'")

    latest = _latest_or_404(leaderboard_repo)
    return LeaderboardWindowEnvelope(
        window=kind.value,
        generation=latest["generation"],
        reference=latest["reference"],
        entries=_entries(latest["windows"].get(kind.value, []), limit),
    )


@app.get("/reports/users/{user_id}/predictions")
def get_user_predictions(
    user_id: str,
    prediction_repo: Annotated[DBPredictionRepository, Depends(get_prediction_repository)],
    program_repo: Annotated[DBProgramRepository, Depends(get_program_repository)],
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> list[PredictionScoreEnvelope]:
    predictions = prediction_repo.find(user_id=user_id, limit=limit)
    program_ids = sorted({p.program_id for p in predictions})
    programs = program_repo.fetch_by_ids(program_ids)
    outcomes = program_repo.fetch_outcomes(program_ids)
    scored = {s.prediction.id: s for s in score_predictions(predictions, outcomes, CONTRACT.scoring).scored}

    results: list[PredictionScoreEnvelope] = []
    for prediction in predictions:
        score = scored.get(prediction.id)
        program = programs.get(prediction.program_id)
        results.append(PredictionScoreEnvelope(
            id=prediction.id,
            program_id=prediction.program_id,
            program_title=program.title if program else None,
            channel=program.channel if program else None,
            predicted_audience=prediction.predicted_audience,
            submitted_at=prediction.submitted_at,
            real_audience=score.real_audience if score else None,
            accuracy=score.accuracy if score else None,
            score=score.score if score else None,
        ))
    return results


@app.get("/reports/users/{user_id}/summary")
def get_user_summary(
    user_id: str,
    prediction_repo: Annotated[DBPredictionRepository, Depends(get_prediction_repository)],
    program_repo: Annotated[DBProgramRepository, Depends(get_program_repository)],
) -> UserSummaryEnvelope:
    predictions = prediction_repo.find(user_id=user_id)
    outcomes = program_repo.fetch_outcomes(sorted({p.program_id for p in predictions}))
    batch = score_predictions(predictions, outcomes, CONTRACT.scoring)
    summary = summarize_user(user_id, predictions, batch.scored)
    return UserSummaryEnvelope(
        user_id=summary.user_id,
        total_predictions=summary.total_predictions,
        resolved_predictions=summary.resolved_predictions,
        average_precision=summary.average_precision,
        total_points=summary.total_points,
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )
    logging.getLogger(__name__).info("audience report worker bootstrap")
    uvicorn.run(app, host=SETTINGS.report_host, port=SETTINGS.report_port)
