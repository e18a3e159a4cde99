"""LISTEN side of the change channels fed by the NOTIFY triggers in init_db.

    async for channel, payload in listen("predictions_changed", "programs_changed"):
        coordinator.trigger()
"""
from __future__ import annotations

import asyncio
import logging
import select as _select
from typing import Any, AsyncIterator

import psycopg2
from psycopg2 import sql

from audience_node.db.session import database_url

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "predictions_changed"


async def listen(*channels: str, timeout: float = 30.0) -> AsyncIterator[tuple[str, str]]:
    """Yield (channel, payload) as notifications arrive, until cancelled.

    `timeout` bounds each poll so cancellation is noticed. Payloads are the
    trigger's TG_OP; an empty payload comes through as "".
    """
    if not channels:
        channels = (DEFAULT_CHANNEL,)

    conn = _raw_connection()
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            for channel in channels:
                cur.execute(sql.SQL("LISTEN {}").format(sql.Identifier(channel)))
        logger.info("listening on %s", ", ".join(channels))

        loop = asyncio.get_running_loop()
        while True:
            notified = await loop.run_in_executor(None, _poll_notify, conn, timeout)
            if not notified:
                continue
            while conn.notifies:
                notification = conn.notifies.pop(0)
                yield (notification.channel, notification.payload or "")
    finally:
        conn.close()


def _poll_notify(conn: Any, timeout: float) -> bool:
    if _select.select([conn], [], [], timeout) == ([], [], []):
        return False
    conn.poll()
    return bool(conn.notifies)


def _raw_connection():
    # psycopg2 takes a libpq DSN, not the SQLAlchemy dialect URL
    return psycopg2.connect(database_url().replace("+psycopg2", ""))
