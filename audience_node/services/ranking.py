"""Leaderboard ordering and rank assignment, shared by every time window."""
from __future__ import annotations

from typing import Iterable, Mapping

from audience_node.entities.leaderboard import LeaderboardEntry, LeaderboardStats, UserAggregate
from audience_node.entities.user import UserProfile


def ranking_key(aggregate: UserAggregate) -> tuple[int, float, str]:
    """Ascending sort key: highest score first, then best precision, then user id."""
    return (-aggregate.total_score, -aggregate.mean_precision, aggregate.user_id)


def rank(aggregates: Mapping[str, UserAggregate], users: Iterable[UserProfile]) -> list[LeaderboardEntry]:
    """Order aggregates and assign standard competition ranks.

    rank = 1 + number of entries strictly ahead. Entries comparing equal on
    the whole key share a rank and the next distinct entry skips ahead.
    """
    profiles = {user.id: user for user in users}
    ordered = sorted(aggregates.values(), key=ranking_key)

    entries: list[LeaderboardEntry] = []
    previous_key: tuple[int, float, str] | None = None
    current_rank = 0
    for position, aggregate in enumerate(ordered, start=1):
        key = ranking_key(aggregate)
        if key != previous_key:
            current_rank = position
            previous_key = key

        profile = profiles.get(aggregate.user_id)
        entries.append(LeaderboardEntry(
            user_id=aggregate.user_id,
            username=profile.username if profile else aggregate.user_id,
            avatar_url=profile.avatar_url if profile else None,
            total_score=aggregate.total_score,
            mean_precision=aggregate.mean_precision,
            prediction_count=aggregate.prediction_count,
            rank=current_rank,
        ))
    return entries


def compute_stats(entries: Iterable[LeaderboardEntry], registered_users: int) -> LeaderboardStats:
    """Headline numbers for the ranking page.

    Entries are scanned in leaderboard order and a tie goes to the later entry,
    as on the ranking page header.
    """
    entries = list(entries)
    if not entries:
        return LeaderboardStats(registered_users=registered_users)

    top_scorer = top_precision = entries[0]
    for entry in entries[1:]:
        if entry.total_score >= top_scorer.total_score:
            top_scorer = entry
        if entry.mean_precision >= top_precision.mean_precision:
            top_precision = entry

    return LeaderboardStats(
        top_score=top_scorer.total_score,
        top_scorer=top_scorer.username,
        top_precision=top_precision.mean_precision,
        top_precision_user=top_precision.username,
        active_players=sum(1 for e in entries if e.total_score > 0),
        registered_users=registered_users,
    )
