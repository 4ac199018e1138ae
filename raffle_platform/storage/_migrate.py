import logging
import time

import aiosqlite

from ._schema import SCHEMA_SQL, SCHEMA_VERSION

logger = logging.getLogger("storage")


async def run_migrations(db, logger_override=None):
    log = logger_override or logger
    current_version = 0
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cursor:
            row = await cursor.fetchone()
            if row and row[0] is not None:
                current_version = row[0]
    except aiosqlite.OperationalError:
        pass

    if current_version < SCHEMA_VERSION:
        log.info("Migrating database from v%d to v%d", current_version, SCHEMA_VERSION)
        await db.executescript(SCHEMA_SQL)

        if current_version < 2:
            for idx_sql in [
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_rounds_raffle_active "
                "ON rounds(raffle_id) WHERE status = 'active'",
                "CREATE INDEX IF NOT EXISTS idx_entries_round_status "
                "ON entries(round_id, status)",
            ]:
                try:
                    await db.execute(idx_sql)
                except aiosqlite.Error:
                    log.exception("V2 migration index failed: %s", idx_sql)

        await db.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION, time.time()),
        )
        await db.commit()
        log.info("Migration complete (v%d)", SCHEMA_VERSION)
    else:
        log.debug("Database schema up to date (v%d)", current_version)
