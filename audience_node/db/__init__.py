from .repositories import (
    DBLeaderboardRepository, DBPredictionRepository, DBProfileRepository,
    DBProgramRepository, DBSnapshotRepository,
)
from .session import engine, create_session, create_snapshot_session, database_url
