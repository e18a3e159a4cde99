"""Recompute service: snapshot → score → window → aggregate → rank → publish.

All three leaderboards come out of one snapshot and one reference instant and
are published together. Change signals are coalesced: while a pass is running,
any number of triggers collapse into a single follow-up pass.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from datetime import datetime
from typing import Any, AsyncIterator, Protocol

from audience_node.audience_config import AudienceConfig
from audience_node.entities.leaderboard import LeaderboardSet, TimeWindowKind
from audience_node.entities.prediction import DataSnapshot
from audience_node.services.aggregation import aggregate
from audience_node.services.ranking import compute_stats, rank
from audience_node.services.scoring import score_predictions
from audience_node.services.windows import bounds_for, ensure_utc, select_window

logger = logging.getLogger(__name__)


class SnapshotUnavailableError(RuntimeError):
    """The persistence collaborator could not deliver a consistent snapshot."""


class SnapshotSource(Protocol):
    def fetch_snapshot(self) -> DataSnapshot:
        ...


class LeaderboardRepository(Protocol):
    def save_set(self, leaderboard_set: LeaderboardSet) -> None:
        ...


def compute_leaderboards(
    snapshot: DataSnapshot,
    reference: datetime,
    config: AudienceConfig | None = None,
    generation: int = 0,
) -> LeaderboardSet:
    """Pure recomputation pass. Predictions are scored once and shared by every window."""
    config = config or AudienceConfig()
    reference = ensure_utc(reference)
    batch = score_predictions(snapshot.predictions, snapshot.outcomes, config.scoring)

    boards = {}
    for kind in TimeWindowKind:
        bounds = bounds_for(kind, reference, config.tzinfo)
        in_window = select_window(batch.scored, bounds)
        boards[kind] = tuple(rank(aggregate(in_window, snapshot.users), snapshot.users))

    registered = len({user.id for user in snapshot.users})
    return LeaderboardSet(
        generation=generation,
        reference=reference,
        all_time=boards[TimeWindowKind.ALL_TIME],
        month=boards[TimeWindowKind.MONTH],
        week=boards[TimeWindowKind.WEEK],
        stats=compute_stats(boards[TimeWindowKind.ALL_TIME], registered),
        rejected=batch.rejected,
    )


class LeaderboardPublisher:
    """Holds the last published LeaderboardSet; readers never see a partial triple."""

    def __init__(self, repository: LeaderboardRepository | None = None):
        self.repository = repository
        self._lock = threading.Lock()
        self._current: LeaderboardSet | None = None

    def current(self) -> LeaderboardSet | None:
        return self._current

    def publish(self, leaderboard_set: LeaderboardSet) -> bool:
        """Swap in a newer set. Returns False when a newer generation is already published.

        When a repository is configured the set is persisted first; if that
        fails nothing is swapped and the error propagates.
        """
        with self._lock:
            current = self._current
            if current is not None and leaderboard_set.generation <= current.generation:
                logger.info(
                    "Dropping superseded leaderboards (generation=%d, published=%d)",
                    leaderboard_set.generation, current.generation,
                )
                return False
            if self.repository is not None:
                self.repository.save_set(leaderboard_set)
            self._current = leaderboard_set
            return True


class RecomputeCoordinator:
    def __init__(
        self,
        snapshot_source: SnapshotSource,
        publisher: LeaderboardPublisher | None = None,
        contract: AudienceConfig | None = None,
        interval_seconds: float = 300,
        debounce_seconds: float = 1.0,
        repositories: dict[str, Any] | None = None,
        first_generation: int = 1,
    ):
        self.snapshot_source = snapshot_source
        self.publisher = publisher or LeaderboardPublisher()
        self.contract = contract or AudienceConfig()
        self.interval_seconds = interval_seconds
        self.debounce_seconds = debounce_seconds
        self.repositories = repositories or {}

        self._generations = itertools.count(first_generation)
        self._pass_lock = threading.Lock()
        self._rerun_requested = False

        self.logger = logging.getLogger(__name__)
        self.stop_event = asyncio.Event()
        self.dirty_event = asyncio.Event()

    # ── triggers ──

    def trigger(self) -> None:
        """Signal that predictions, outcomes or the roster changed."""
        self.dirty_event.set()

    async def listen(self, notifications: AsyncIterator[tuple[str, str]]) -> None:
        """Turn every (channel, payload) notification into a trigger. The payload is ignored."""
        async for channel, _payload in notifications:
            self.logger.debug("change notification on %s", channel)
            self.trigger()

    # ── loop ──

    async def run(self) -> None:
        self.logger.info(
            "recompute service started (interval=%ss, debounce=%ss)",
            self.interval_seconds, self.debounce_seconds,
        )
        self.trigger()
        while not self.stop_event.is_set():
            await self._wait_for_work()
            if self.stop_event.is_set():
                break

            if self.debounce_seconds > 0:
                await asyncio.sleep(self.debounce_seconds)
            self.dirty_event.clear()

            try:
                await asyncio.to_thread(self.run_once)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.logger.exception("recompute loop error: %s", exc)
                self._rollback_repositories()

            if self._rerun_requested:
                self._rerun_requested = False
                self.trigger()

    async def _wait_for_work(self) -> None:
        """Return on a trigger, on shutdown or when the periodic tick elapses."""
        waiters = [
            asyncio.ensure_future(self.dirty_event.wait()),
            asyncio.ensure_future(self.stop_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=self.interval_seconds, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def shutdown(self) -> None:
        self.stop_event.set()

    # ── one pass ──

    def run_once(self, reference: datetime | None = None) -> LeaderboardSet | None:
        """Run one full pass and publish it.

        Returns None when another pass is in flight (a follow-up is queued) or
        when the snapshot could not be taken (the previous set stays published).
        `reference` defaults to the snapshot's own timestamp.
        """
        if not self._pass_lock.acquire(blocking=False):
            self._rerun_requested = True
            self.logger.info("Recompute already running, follow-up pass queued")
            return None

        try:
            generation = next(self._generations)
            try:
                snapshot = self.snapshot_source.fetch_snapshot()
            except SnapshotUnavailableError as exc:
                self.logger.error("Snapshot unavailable, keeping previous leaderboards: %s", exc)
                self._rollback_repositories()
                return None

            leaderboard_set = compute_leaderboards(
                snapshot,
                reference=reference or snapshot.taken_at,
                config=self.contract,
                generation=generation,
            )
            if not self.publisher.publish(leaderboard_set):
                return None

            self.logger.info(
                "Published leaderboards generation=%d (users=%d, predictions=%d, rejected=%d)",
                generation, len(snapshot.users), len(snapshot.predictions), len(leaderboard_set.rejected),
            )
            return leaderboard_set
        finally:
            self._pass_lock.release()

    def _rollback_repositories(self) -> None:
        for name, repo in self.repositories.items():
            rollback = getattr(repo, "rollback", None)
            if callable(rollback):
                try:
                    rollback()
                except Exception as exc:
                    self.logger.warning("Rollback failed for %s: %s", name, exc)
