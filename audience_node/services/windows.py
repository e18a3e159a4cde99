"""Calendar windows (all-time, current month, current week) around a reference instant."""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Iterable

from audience_node.entities.leaderboard import TimeWindowKind, WindowBounds
from audience_node.entities.prediction import ScoredPrediction


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (assume UTC if naive)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _local_midnight(day, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def bounds_for(kind: TimeWindowKind | str, reference: datetime, tz: tzinfo) -> WindowBounds:
    """Return the [start, end) bounds of the window containing `reference` in `tz`.

    Weeks start on Monday. All bounds are wall-clock midnights in `tz`, so a
    week that crosses a DST change is 167 or 169 hours long.
    """
    kind = TimeWindowKind(kind)
    if kind is TimeWindowKind.ALL_TIME:
        return WindowBounds(kind=kind)

    local = ensure_utc(reference).astimezone(tz)

    if kind is TimeWindowKind.MONTH:
        first = local.date().replace(day=1)
        if first.month == 12:
            following = first.replace(year=first.year + 1, month=1)
        else:
            following = first.replace(month=first.month + 1)
        return WindowBounds(kind=kind, start=_local_midnight(first, tz), end=_local_midnight(following, tz))

    monday = local.date() - timedelta(days=local.weekday())
    return WindowBounds(
        kind=kind,
        start=_local_midnight(monday, tz),
        end=_local_midnight(monday + timedelta(days=7), tz),
    )


def select_window(scored: Iterable[ScoredPrediction], bounds: WindowBounds) -> list[ScoredPrediction]:
    """Keep predictions submitted inside the window; resolution time plays no part."""
    return [s for s in scored if bounds.contains(ensure_utc(s.submitted_at))]
