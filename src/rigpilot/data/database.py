"""Async SQLite database manager for per-rig state persistence.

Uses aiosqlite for non-blocking database operations with WAL mode
so that dashboard reads never stall a rig tick's write.
"""

import os
from typing import Self

import aiosqlite

from rigpilot.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS rig_state (
    rig_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    autopilot_enabled INTEGER NOT NULL DEFAULT 0,
    min_profitability TEXT NOT NULL DEFAULT '0',
    learned_tariff_limit TEXT,
    last_mined_at INTEGER,
    energy_kwh TEXT NOT NULL DEFAULT '0',
    revenue_mbtc TEXT NOT NULL DEFAULT '0',
    cost_mbtc TEXT NOT NULL DEFAULT '0',
    revenue_local TEXT NOT NULL DEFAULT '0',
    cost_local TEXT NOT NULL DEFAULT '0',
    updated_at INTEGER NOT NULL
);
"""


class StateDatabase:
    """Async SQLite connection manager for rig state.

    Usage:
        async with StateDatabase("data/rigpilot.db") as database:
            store = RigStateStore(database)
    """

    def __init__(self, db_path: str = "data/rigpilot.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, configure pragmas and create the schema.

        Creates the parent directory if it does not exist.
        """
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        await self._connection.commit()

        logger.info("state_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("state_db_closed", db_path=self._db_path)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
