"""Applies versioned SQL files and records them in a tracking table."""

from __future__ import annotations

import logging
from pathlib import Path

import asyncpg

logger = logging.getLogger(__name__)

VERSIONS_DIR = Path(__file__).resolve().parent / "versions"

# Arbitrary key; serialises runners started by several workers at once
_ADVISORY_LOCK_KEY = 7_341_902


class MigrationRunner:
    """Run pending ``versions/NNN_description.sql`` files in filename order.

    Each file is applied in its own transaction together with its row in
    ``schema_migrations``, so a failed migration leaves no trace.
    """

    TRACKING_TABLE = "schema_migrations"

    def __init__(self, pool: asyncpg.Pool, versions_dir: Path | None = None) -> None:
        self.pool = pool
        self.versions_dir = versions_dir or VERSIONS_DIR

    async def ensure_table(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.TRACKING_TABLE} (
                version    TEXT PRIMARY KEY,
                name       TEXT NOT NULL,
                applied_at TIMESTAMPTZ DEFAULT NOW()
            )
            """
        )

    async def get_applied(self, conn: asyncpg.Connection) -> set[str]:
        rows = await conn.fetch(f"SELECT version FROM {self.TRACKING_TABLE}")  # noqa: S608
        return {row["version"] for row in rows}

    def pending_files(self, applied: set[str]) -> list[Path]:
        return [p for p in sorted(self.versions_dir.glob("*.sql")) if p.stem not in applied]

    async def run_pending(self) -> list[str]:
        """Apply every migration not yet recorded. Returns the new versions."""
        async with self.pool.acquire() as conn:
            await conn.execute("SELECT pg_advisory_lock($1)", _ADVISORY_LOCK_KEY)
            try:
                await self.ensure_table(conn)
                pending = self.pending_files(await self.get_applied(conn))
                for sql_path in pending:
                    await self._apply_one(conn, sql_path)
            finally:
                await conn.execute("SELECT pg_advisory_unlock($1)", _ADVISORY_LOCK_KEY)

        versions = [p.stem for p in pending]
        if versions:
            logger.info(f"Applied {len(versions)} migration(s): {', '.join(versions)}")
        else:
            logger.info("Database schema is up to date")
        return versions

    async def _apply_one(self, conn: asyncpg.Connection, sql_path: Path) -> None:
        logger.info(f"Applying migration {sql_path.stem}")
        sql = sql_path.read_text(encoding="utf-8")
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                f"INSERT INTO {self.TRACKING_TABLE} (version, name) VALUES ($1, $2)",
                sql_path.stem,
                sql_path.name,
            )
