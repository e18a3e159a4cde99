from audience_node.db.tables.game import PredictionRow, ProfileRow, ProgramRow
from audience_node.db.tables.leaderboards import LeaderboardRow

__all__ = [
    "ProfileRow", "ProgramRow", "PredictionRow",
    "LeaderboardRow",
]
