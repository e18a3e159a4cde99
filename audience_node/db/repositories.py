from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from audience_node.entities.leaderboard import LeaderboardSet, TimeWindowKind
from audience_node.entities.prediction import DataSnapshot, Prediction, Program, ProgramOutcome
from audience_node.entities.user import UserProfile
from audience_node.db.tables import LeaderboardRow, PredictionRow, ProfileRow, ProgramRow
from audience_node.services.recompute import SnapshotUnavailableError


def _ensure_utc(dt: datetime | None) -> datetime | None:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class DBProfileRepository:
    def __init__(self, session: Session):
        self._session = session

    def rollback(self) -> None:
        self._session.rollback()

    def fetch_all(self) -> list[UserProfile]:
        rows = self._session.exec(select(ProfileRow).order_by(ProfileRow.id.asc())).all()
        return [self._row_to_domain(row) for row in rows]

    @staticmethod
    def _row_to_domain(row: ProfileRow) -> UserProfile:
        return UserProfile(id=row.id, username=row.username, avatar_url=row.avatar_url)


class DBProgramRepository:
    def __init__(self, session: Session):
        self._session = session

    def rollback(self) -> None:
        self._session.rollback()

    def fetch_by_ids(self, ids: list[str]) -> dict[str, Program]:
        if not ids:
            return {}
        rows = self._session.exec(select(ProgramRow).where(ProgramRow.id.in_(ids))).all()
        return {r.id: Program(
            id=r.id, title=r.title, channel=r.channel, air_date=_ensure_utc(r.air_date),
            genre=r.genre, image_url=r.image_url,
        ) for r in rows}

    def fetch_outcomes(self, program_ids: list[str] | None = None) -> dict[str, ProgramOutcome]:
        stmt = select(ProgramRow)
        if program_ids is not None:
            if not program_ids:
                return {}
            stmt = stmt.where(ProgramRow.id.in_(program_ids))
        rows = self._session.exec(stmt).all()
        return {
            r.id: ProgramOutcome(
                program_id=r.id, real_audience=r.real_audience, resolved_at=_ensure_utc(r.resolved_at),
            )
            for r in rows
        }


class DBPredictionRepository:
    def __init__(self, session: Session):
        self._session = session

    def rollback(self) -> None:
        self._session.rollback()

    def find(self, *, user_id: str | None = None, limit: int | None = None) -> list[Prediction]:
        """Newest first. Without `user_id` every prediction is returned."""
        stmt = select(PredictionRow)
        if user_id is not None:
            stmt = stmt.where(PredictionRow.user_id == user_id)
        stmt = stmt.order_by(PredictionRow.submitted_at.desc())
        if limit is not None:
            stmt = stmt.limit(max(1, int(limit)))
        rows = self._session.exec(stmt).all()
        return [self._row_to_domain(row) for row in rows]

    @staticmethod
    def _row_to_domain(row: PredictionRow) -> Prediction:
        return Prediction(
            id=row.id,
            user_id=row.user_id,
            program_id=row.program_id,
            predicted_audience=row.predicted_audience,
            submitted_at=_ensure_utc(row.submitted_at),
        )


class DBSnapshotRepository:
    """Reads predictions, outcomes and profiles inside a single transaction."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def fetch_snapshot(self) -> DataSnapshot:
        try:
            with self._session_factory() as session:
                with session.begin():
                    predictions = DBPredictionRepository(session).find()
                    outcomes = DBProgramRepository(session).fetch_outcomes()
                    users = DBProfileRepository(session).fetch_all()
                    taken_at = datetime.now(timezone.utc)
        except SQLAlchemyError as exc:
            raise SnapshotUnavailableError(str(exc)) from exc

        return DataSnapshot(
            predictions=tuple(predictions),
            outcomes=outcomes,
            users=tuple(users),
            taken_at=taken_at,
        )


class DBLeaderboardRepository:
    def __init__(self, session: Session):
        self._session = session

    def rollback(self) -> None:
        self._session.rollback()

    def save_set(self, leaderboard_set: LeaderboardSet) -> None:
        """Write the three windows of one pass in a single commit."""
        payload = leaderboard_set.to_dict()
        meta = {
            "generated_by": "audience_node.recompute",
            "stats": payload["stats"],
            "rejected": payload["rejected"],
        }
        try:
            for kind in TimeWindowKind:
                self._session.add(LeaderboardRow(
                    id=f"LBR_{leaderboard_set.generation}_{kind.value}",
                    generation=leaderboard_set.generation,
                    window=kind.value,
                    reference_at=leaderboard_set.reference,
                    entries_jsonb=[asdict(e) for e in leaderboard_set.window(kind)],
                    meta_jsonb=meta,
                ))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def get_latest_generation(self) -> int:
        latest = self._session.exec(select(func.max(LeaderboardRow.generation))).one()
        return int(latest or 0)

    def get_latest_set(self) -> dict[str, Any] | None:
        generation = self.get_latest_generation()
        if generation == 0:
            return None

        rows = self._session.exec(
            select(LeaderboardRow).where(LeaderboardRow.generation == generation)
        ).all()
        if not rows:
            return None

        by_window = {row.window: row for row in rows}
        first = rows[0]
        return {
            "generation": generation,
            "reference": first.reference_at,
            "created_at": first.created_at,
            "windows": {kind.value: list(by_window[kind.value].entries_jsonb) if kind.value in by_window else []
                        for kind in TimeWindowKind},
            "stats": (first.meta_jsonb or {}).get("stats", {}),
            "rejected": (first.meta_jsonb or {}).get("rejected", []),
        }

