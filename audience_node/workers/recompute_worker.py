from __future__ import annotations

import asyncio
import logging

from audience_node.config.runtime import RuntimeSettings
from audience_node.config_loader import load_config
from audience_node.db import (
    DBLeaderboardRepository,
    DBSnapshotRepository,
    create_session,
    create_snapshot_session,
)
from audience_node.db import pg_notify
from audience_node.services.recompute import LeaderboardPublisher, RecomputeCoordinator

LISTEN_RETRY_SECONDS = 5.0


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        force=True,
    )


def build_service() -> RecomputeCoordinator:
    runtime_settings = RuntimeSettings.from_env()

    session = create_session()
    leaderboard_repository = DBLeaderboardRepository(session)

    return RecomputeCoordinator(
        snapshot_source=DBSnapshotRepository(create_snapshot_session),
        publisher=LeaderboardPublisher(repository=leaderboard_repository),
        contract=load_config(),
        interval_seconds=runtime_settings.recompute_interval_seconds,
        debounce_seconds=runtime_settings.recompute_debounce_seconds,
        repositories={"leaderboard": leaderboard_repository},
        first_generation=leaderboard_repository.get_latest_generation() + 1,
    )


async def listen_for_changes(service: RecomputeCoordinator, channels: tuple[str, ...]) -> None:
    """Forward notifications to the service; reconnect when the listener drops."""
    logger = logging.getLogger(__name__)
    while not service.stop_event.is_set():
        try:
            await service.listen(pg_notify.listen(*channels))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("change listener failed, retrying in %.0fs: %s", LISTEN_RETRY_SECONDS, exc)
            await asyncio.sleep(LISTEN_RETRY_SECONDS)


async def main() -> None:
    configure_logging()
    logger = logging.getLogger(__name__)
    logger.info("recompute worker bootstrap")

    from audience_node.db.init_db import init_db
    init_db()

    runtime_settings = RuntimeSettings.from_env()
    service = build_service()

    listener = asyncio.create_task(listen_for_changes(service, runtime_settings.notify_channels))
    try:
        await service.run()
    finally:
        listener.cancel()


if __name__ == "__main__":
    asyncio.run(main())
