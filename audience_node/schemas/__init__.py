from audience_node.schemas.payload_contracts import (
    LeaderboardEntryEnvelope,
    LeaderboardSetEnvelope,
    LeaderboardStatsEnvelope,
    LeaderboardWindowEnvelope,
    PredictionScoreEnvelope,
    UserSummaryEnvelope,
)

__all__ = [
    "LeaderboardEntryEnvelope",
    "LeaderboardSetEnvelope",
    "LeaderboardStatsEnvelope",
    "LeaderboardWindowEnvelope",
    "PredictionScoreEnvelope",
    "UserSummaryEnvelope",
]
