import logging
from typing import Optional

import aiosqlite

from ._migrate import run_migrations
from .draws import DrawRepo
from .entries import EntryRepo
from .rounds import RoundRepo

logger = logging.getLogger("storage")


class StorageManager:
    """Top-level manager: opens the database, runs migrations, exposes repos."""

    def __init__(self, db_path: str = "raffles.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self.rounds: Optional[RoundRepo] = None
        self.entries: Optional[EntryRepo] = None
        self.draws: Optional[DrawRepo] = None

    async def initialize(self):
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await run_migrations(self._db, logger)

        self.rounds = RoundRepo(self._db)
        self.entries = EntryRepo(self._db)
        self.draws = DrawRepo(self._db)

        logger.info("Storage initialized: %s", self.db_path)

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Storage closed")
