from __future__ import annotations

import asyncio
import json
import threading
import unittest
from datetime import datetime, timezone

from audience_node.audience_config import AudienceConfig
from audience_node.entities.leaderboard import LeaderboardSet, TimeWindowKind
from audience_node.entities.prediction import DataSnapshot, Prediction, ProgramOutcome
from audience_node.entities.user import UserProfile
from audience_node.services.recompute import (
    LeaderboardPublisher,
    RecomputeCoordinator,
    SnapshotUnavailableError,
    compute_leaderboards,
)

UTC = timezone.utc
REFERENCE = datetime(2024, 3, 14, 12, 0, tzinfo=UTC)  # Thursday


def _prediction(pid, user_id, program_id, predicted, submitted_at):
    return Prediction(
        id=pid, user_id=user_id, program_id=program_id,
        predicted_audience=predicted, submitted_at=submitted_at,
    )


def _snapshot(taken_at: datetime = REFERENCE) -> DataSnapshot:
    return DataSnapshot(
        predictions=(
            _prediction("p1", "A", "prog-1", 3.2, datetime(2024, 3, 12, 19, 0, tzinfo=UTC)),
            _prediction("p2", "B", "prog-1", 3.0, datetime(2024, 3, 13, 8, 0, tzinfo=UTC)),
            _prediction("p3", "A", "prog-2", 4.1, datetime(2024, 3, 2, 10, 0, tzinfo=UTC)),
            _prediction("p4", "B", "prog-3", 1.0, datetime(2024, 1, 10, 10, 0, tzinfo=UTC)),
            _prediction("p5", "C", "prog-4", 2.0, datetime(2024, 3, 13, 9, 0, tzinfo=UTC)),
            _prediction("p6", "C", "prog-1", -1.0, datetime(2024, 3, 13, 9, 0, tzinfo=UTC)),
        ),
        outcomes={
            "prog-1": ProgramOutcome(program_id="prog-1", real_audience=3.0),
            "prog-2": ProgramOutcome(program_id="prog-2", real_audience=4.0),
            "prog-3": ProgramOutcome(program_id="prog-3", real_audience=2.0),
            "prog-4": ProgramOutcome(program_id="prog-4", real_audience=None),
        },
        users=(
            UserProfile(id="A", username="alice"),
            UserProfile(id="B", username="bruno"),
            UserProfile(id="C", username="chloe"),
        ),
        taken_at=taken_at,
    )


def _rows(entries):
    return [(e.rank, e.user_id, e.total_score, e.mean_precision, e.prediction_count) for e in entries]


class InMemorySnapshotSource:
    def __init__(self, snapshot: DataSnapshot | None = None):
        self.snapshot = snapshot or _snapshot()
        self.calls = 0
        self.fail_with: Exception | None = None

    def fetch_snapshot(self) -> DataSnapshot:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self.snapshot


class InMemoryLeaderboardRepository:
    def __init__(self):
        self.saved: list[LeaderboardSet] = []
        self.fail = False
        self.rollbacks = 0

    def save_set(self, leaderboard_set: LeaderboardSet) -> None:
        if self.fail:
            raise RuntimeError("disk full")
        self.saved.append(leaderboard_set)

    def rollback(self) -> None:
        self.rollbacks += 1


class TestComputeLeaderboards(unittest.TestCase):
    def test_three_windows_from_one_snapshot(self):
        result = compute_leaderboards(_snapshot(), REFERENCE, AudienceConfig(), generation=7)

        self.assertEqual(result.generation, 7)
        self.assertEqual(result.reference, REFERENCE)
        self.assertEqual(_rows(result.all_time), [
            (1, "A", 125, 95.4, 2),
            (2, "B", 110, 75.0, 2),
            (3, "C", 0, 0.0, 0),
        ])
        self.assertEqual(_rows(result.month), [
            (1, "A", 125, 95.4, 2),
            (2, "B", 100, 100.0, 1),
            (3, "C", 0, 0.0, 0),
        ])
        self.assertEqual(_rows(result.week), [
            (1, "B", 100, 100.0, 1),
            (2, "A", 50, 93.3, 1),
            (3, "C", 0, 0.0, 0),
        ])

    def test_rejected_records_are_reported_not_ranked(self):
        result = compute_leaderboards(_snapshot(), REFERENCE)
        self.assertEqual([r.prediction_id for r in result.rejected], ["p6"])
        self.assertEqual(result.window("week")[2].prediction_count, 0)

    def test_stats_come_from_all_time_board(self):
        stats = compute_leaderboards(_snapshot(), REFERENCE).stats
        self.assertEqual(stats.top_score, 125)
        self.assertEqual(stats.top_scorer, "alice")
        self.assertEqual(stats.top_precision, 95.4)
        self.assertEqual(stats.active_players, 2)
        self.assertEqual(stats.registered_users, 3)

    def test_window_membership_is_nested(self):
        result = compute_leaderboards(_snapshot(), REFERENCE)
        counts = {kind: sum(e.prediction_count for e in result.window(kind)) for kind in TimeWindowKind}
        self.assertLessEqual(counts[TimeWindowKind.WEEK], counts[TimeWindowKind.MONTH])
        self.assertLessEqual(counts[TimeWindowKind.MONTH], counts[TimeWindowKind.ALL_TIME])

    def test_empty_roster(self):
        result = compute_leaderboards(DataSnapshot(taken_at=REFERENCE), REFERENCE)
        self.assertEqual((result.all_time, result.month, result.week), ((), (), ()))
        self.assertEqual(result.stats.registered_users, 0)

    def test_serialization_ignores_generation(self):
        first = compute_leaderboards(_snapshot(), REFERENCE, generation=1)
        second = compute_leaderboards(_snapshot(), REFERENCE, generation=2)
        self.assertEqual(first.to_json(), second.to_json())
        payload = json.loads(first.to_json())
        self.assertNotIn("generation", payload)
        self.assertEqual(sorted(payload["windows"]), ["all_time", "month", "week"])


class TestLeaderboardPublisher(unittest.TestCase):
    def test_publishes_and_persists(self):
        repo = InMemoryLeaderboardRepository()
        publisher = LeaderboardPublisher(repo)
        leaderboard_set = compute_leaderboards(_snapshot(), REFERENCE, generation=1)

        self.assertTrue(publisher.publish(leaderboard_set))
        self.assertIs(publisher.current(), leaderboard_set)
        self.assertEqual(repo.saved, [leaderboard_set])

    def test_older_generation_is_dropped(self):
        publisher = LeaderboardPublisher()
        newer = compute_leaderboards(_snapshot(), REFERENCE, generation=5)
        older = compute_leaderboards(_snapshot(), REFERENCE, generation=4)
        publisher.publish(newer)

        with self.assertLogs("audience_node.services.recompute", level="INFO"):
            self.assertFalse(publisher.publish(older))
        self.assertIs(publisher.current(), newer)

    def test_failed_persistence_keeps_previous_set(self):
        repo = InMemoryLeaderboardRepository()
        publisher = LeaderboardPublisher(repo)
        first = compute_leaderboards(_snapshot(), REFERENCE, generation=1)
        publisher.publish(first)

        repo.fail = True
        with self.assertRaises(RuntimeError):
            publisher.publish(compute_leaderboards(_snapshot(), REFERENCE, generation=2))
        self.assertIs(publisher.current(), first)


class TestRunOnce(unittest.TestCase):
    def test_passes_over_same_data_are_idempotent(self):
        coordinator = RecomputeCoordinator(InMemorySnapshotSource())
        first = coordinator.run_once()
        second = coordinator.run_once()

        self.assertEqual((first.generation, second.generation), (1, 2))
        self.assertEqual(first.to_json(), second.to_json())
        self.assertIs(coordinator.publisher.current(), second)

    def test_reference_defaults_to_snapshot_time(self):
        taken_at = datetime(2024, 3, 20, 9, 0, tzinfo=UTC)  # following week
        coordinator = RecomputeCoordinator(InMemorySnapshotSource(_snapshot(taken_at)))
        result = coordinator.run_once()
        self.assertEqual(result.reference, taken_at)
        self.assertTrue(all(e.total_score == 0 for e in result.week))

    def test_explicit_reference_wins(self):
        coordinator = RecomputeCoordinator(InMemorySnapshotSource(_snapshot(datetime(2024, 5, 1, tzinfo=UTC))))
        result = coordinator.run_once(reference=REFERENCE)
        self.assertEqual(result.week[0].user_id, "B")

    def test_first_generation_is_configurable(self):
        coordinator = RecomputeCoordinator(InMemorySnapshotSource(), first_generation=42)
        self.assertEqual(coordinator.run_once().generation, 42)

    def test_unavailable_snapshot_keeps_previous_leaderboards(self):
        source = InMemorySnapshotSource()
        repo = InMemoryLeaderboardRepository()
        coordinator = RecomputeCoordinator(
            source, publisher=LeaderboardPublisher(repo), repositories={"leaderboards": repo},
        )
        published = coordinator.run_once()

        source.fail_with = SnapshotUnavailableError("connection refused")
        with self.assertLogs("audience_node.services.recompute", level="ERROR") as logs:
            self.assertIsNone(coordinator.run_once())

        self.assertIs(coordinator.publisher.current(), published)
        self.assertEqual(repo.saved, [published])
        self.assertEqual(repo.rollbacks, 1)
        self.assertTrue(any("keeping previous leaderboards" in line for line in logs.output))

    def test_concurrent_call_queues_a_follow_up(self):
        source = InMemorySnapshotSource()
        coordinator = RecomputeCoordinator(source)
        coordinator._pass_lock.acquire()
        try:
            self.assertIsNone(coordinator.run_once())
        finally:
            coordinator._pass_lock.release()
        self.assertTrue(coordinator._rerun_requested)
        self.assertEqual(source.calls, 0)


class BlockingSnapshotSource(InMemorySnapshotSource):
    """Holds the first fetch until released so triggers can arrive mid-pass."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch_snapshot(self) -> DataSnapshot:
        if self.calls == 0:
            self.entered.set()
            self.release.wait(5)
        return super().fetch_snapshot()


async def _wait_until(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestRecomputeLoop(unittest.IsolatedAsyncioTestCase):
    async def test_burst_of_triggers_runs_one_pass(self):
        source = InMemorySnapshotSource()
        coordinator = RecomputeCoordinator(source, interval_seconds=60, debounce_seconds=0.05)
        for _ in range(5):
            coordinator.trigger()

        task = asyncio.create_task(coordinator.run())
        await _wait_until(lambda: source.calls >= 1)
        await asyncio.sleep(0.2)
        await coordinator.shutdown()
        await asyncio.wait_for(task, timeout=5)

        self.assertEqual(source.calls, 1)
        self.assertEqual(coordinator.publisher.current().generation, 1)

    async def test_triggers_during_a_pass_cause_one_follow_up(self):
        source = BlockingSnapshotSource()
        coordinator = RecomputeCoordinator(source, interval_seconds=60, debounce_seconds=0.01)

        task = asyncio.create_task(coordinator.run())
        await asyncio.to_thread(source.entered.wait, 5)
        for _ in range(3):
            coordinator.trigger()
        source.release.set()

        await _wait_until(lambda: source.calls >= 2)
        await asyncio.sleep(0.2)
        await coordinator.shutdown()
        await asyncio.wait_for(task, timeout=5)

        self.assertEqual(source.calls, 2)
        self.assertEqual(coordinator.publisher.current().generation, 2)

    async def test_periodic_tick_runs_without_triggers(self):
        source = InMemorySnapshotSource()
        coordinator = RecomputeCoordinator(source, interval_seconds=0.05, debounce_seconds=0)

        task = asyncio.create_task(coordinator.run())
        await _wait_until(lambda: source.calls >= 3)
        await coordinator.shutdown()
        await asyncio.wait_for(task, timeout=5)

    async def test_unexpected_error_is_logged_and_loop_survives(self):
        source = InMemorySnapshotSource()
        source.fail_with = RuntimeError("boom")
        repo = InMemoryLeaderboardRepository()
        coordinator = RecomputeCoordinator(
            source, interval_seconds=60, debounce_seconds=0, repositories={"leaderboards": repo},
        )

        with self.assertLogs("audience_node.services.recompute", level="ERROR") as logs:
            task = asyncio.create_task(coordinator.run())
            await _wait_until(lambda: repo.rollbacks >= 1)
            source.fail_with = None
            coordinator.trigger()
            await _wait_until(lambda: coordinator.publisher.current() is not None)
            await coordinator.shutdown()
            await asyncio.wait_for(task, timeout=5)

        self.assertTrue(any("recompute loop error" in line for line in logs.output))
        self.assertEqual(repo.rollbacks, 1)

    async def test_notifications_mark_leaderboards_dirty(self):
        coordinator = RecomputeCoordinator(InMemorySnapshotSource())

        async def notifications():
            yield ("predictions_changed", "")
            yield ("programs_changed", '{"program_id": "prog-1"}')

        await coordinator.listen(notifications())
        self.assertTrue(coordinator.dirty_event.is_set())


if __name__ == "__main__":
    unittest.main()
