from __future__ import annotations

import logging

from sqlalchemy import text
from sqlmodel import SQLModel

import audience_node.db.tables  # noqa: F401  (registers table metadata)
from audience_node.db.session import engine

logger = logging.getLogger(__name__)

# table → NOTIFY channel fired on every insert/update/delete
NOTIFY_TRIGGERS: dict[str, str] = {
    "predictions": "predictions_changed",
    "programs": "programs_changed",
    "profiles": "profiles_changed",
}


def tables_to_reset() -> list[str]:
    return ["leaderboards", "predictions", "programs", "profiles"]


def notify_trigger_statements(table: str, channel: str) -> list[str]:
    function = f"notify_{table}_changed"
    return [
        f"""
        CREATE OR REPLACE FUNCTION {function}() RETURNS trigger AS $$
        BEGIN
            PERFORM pg_notify('{channel}', TG_OP);
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql
        """,
        f"DROP TRIGGER IF EXISTS {function}_trigger ON {table}",
        f"""
        CREATE TRIGGER {function}_trigger
        AFTER INSERT OR UPDATE OR DELETE ON {table}
        FOR EACH STATEMENT EXECUTE FUNCTION {function}()
        """,
    ]


def install_notify_triggers() -> None:
    with engine.begin() as conn:
        for table, channel in NOTIFY_TRIGGERS.items():
            for statement in notify_trigger_statements(table, channel):
                conn.execute(text(statement))
    logger.info("Installed change triggers on %s", ", ".join(NOTIFY_TRIGGERS))


def init_db(reset: bool = False) -> None:
    if reset:
        with engine.begin() as conn:
            for table in tables_to_reset():
                conn.execute(text(f"DROP TABLE IF EXISTS {table} CASCADE"))
        logger.info("Dropped tables: %s", ", ".join(tables_to_reset()))

    SQLModel.metadata.create_all(engine)
    install_notify_triggers()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )
    init_db()
