"""
SQLite storage for notification receivers.

Provides async database operations to persist the subscription
registry so receivers survive restarts.
"""

import json
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

# (platform, self_id, channel_id, guild_id)
ReceiverKeyRow = tuple[str, str, str, str | None]

# (platform, self_id, channel_id, guild_id, plugins)
ReceiverRow = tuple[str, str, str, str | None, list[str]]


class Storage:
    """
    Async SQLite storage for notification receivers.

    Receivers are stored in registration order together with their
    package interest list.
    """

    def __init__(self, database_path: str | Path):
        """
        Initialize storage with database path.

        Parameters
        ----------
        database_path : str | Path
            Path to the SQLite database file.
        """
        self.database_path = Path(database_path)
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """
        Initialize the database connection and create tables.

        Creates the database file and parent directories if they don't exist.
        """
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Initializing database at %s", self.database_path)

        self._connection = await aiosqlite.connect(self.database_path)
        await self._create_tables()

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        # guild_id is stored as '' when absent so the UNIQUE constraint holds
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS receivers (
                position INTEGER NOT NULL,
                platform TEXT NOT NULL,
                self_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                guild_id TEXT NOT NULL DEFAULT '',
                plugins TEXT NOT NULL DEFAULT '[]',
                updated_at TEXT NOT NULL,
                UNIQUE(platform, self_id, channel_id, guild_id)
            )
        """)

        # Configured rules seeded at least once
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS seeded_rules (
                platform TEXT NOT NULL,
                self_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                guild_id TEXT NOT NULL DEFAULT '',
                seeded_at TEXT NOT NULL,
                PRIMARY KEY (platform, self_id, channel_id, guild_id)
            )
        """)

        await self._connection.commit()
        logger.debug("Database tables created/verified")

    async def load_receivers(self) -> list[ReceiverRow]:
        """
        Load all receivers in registration order.

        Returns
        -------
        list[ReceiverRow]
            List of (platform, self_id, channel_id, guild_id, plugins) tuples.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        cursor = await self._connection.execute(
            """
            SELECT platform, self_id, channel_id, guild_id, plugins
            FROM receivers ORDER BY position
            """
        )
        rows = await cursor.fetchall()

        return [
            (platform, self_id, channel_id, guild_id or None, json.loads(plugins))
            for platform, self_id, channel_id, guild_id, plugins in rows
        ]

    async def load_seeded_keys(self) -> set[ReceiverKeyRow]:
        """
        Load the identities of configured rules that were already seeded.

        Returns
        -------
        set[ReceiverKeyRow]
            Set of (platform, self_id, channel_id, guild_id) tuples.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        cursor = await self._connection.execute(
            "SELECT platform, self_id, channel_id, guild_id FROM seeded_rules"
        )
        rows = await cursor.fetchall()

        return {
            (platform, self_id, channel_id, guild_id or None)
            for platform, self_id, channel_id, guild_id in rows
        }

    async def save_receivers(
        self,
        receivers: list[ReceiverRow],
        seeded: Iterable[ReceiverKeyRow] = (),
    ) -> None:
        """
        Replace the stored receivers in a single transaction.

        Parameters
        ----------
        receivers : list[ReceiverRow]
            List of (platform, self_id, channel_id, guild_id, plugins) tuples.
        seeded : Iterable[ReceiverKeyRow]
            Configured rule identities to record as seeded in the same
            transaction.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        now = datetime.now(timezone.utc).isoformat()

        try:
            await self._connection.execute("DELETE FROM receivers")
            await self._connection.executemany(
                """
                INSERT INTO receivers
                    (position, platform, self_id, channel_id, guild_id, plugins, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        position,
                        platform,
                        self_id,
                        channel_id,
                        guild_id or "",
                        json.dumps(plugins),
                        now,
                    )
                    for position, (platform, self_id, channel_id, guild_id, plugins) in enumerate(
                        receivers
                    )
                ],
            )
            await self._connection.executemany(
                """
                INSERT OR IGNORE INTO seeded_rules
                    (platform, self_id, channel_id, guild_id, seeded_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (platform, self_id, channel_id, guild_id or "", now)
                    for platform, self_id, channel_id, guild_id in seeded
                ],
            )
            await self._connection.commit()
        except aiosqlite.Error:
            await self._connection.rollback()
            raise

        logger.debug("Saved %d receiver(s)", len(receivers))

    async def get_receiver_count(self) -> int:
        """
        Get the number of stored receivers.

        Returns
        -------
        int
            Number of receivers.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        cursor = await self._connection.execute("SELECT COUNT(*) FROM receivers")
        result = await cursor.fetchone()
        return result[0] if result else 0

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.debug("Database connection closed")

    async def __aenter__(self) -> "Storage":
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
