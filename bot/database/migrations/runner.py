from __future__ import annotations

import logging
from pathlib import Path

from database.base import Database

LOGGER = logging.getLogger(__name__)

KNOWN_DRIVERS = ("sqlite", "postgresql")

MIGRATION_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    id TEXT PRIMARY KEY,
    applied_at TEXT
);
"""


def migration_id(path: Path) -> tuple[str, str | None]:
    """Split ``001_name.sqlite.sql`` into (``001_name``, ``sqlite``)."""
    stem = path.name.removesuffix(".sql")
    base, _, suffix = stem.rpartition(".")
    if base and suffix in KNOWN_DRIVERS:
        return base, suffix
    return stem, None


def pending_migrations(migrations_path: Path, driver: str, applied_ids: set[str]) -> list[tuple[str, Path]]:
    selected: dict[str, Path] = {}
    for path in sorted(migrations_path.glob("*.sql")):
        ident, target = migration_id(path)
        if target is not None and target != driver:
            continue
        if ident in applied_ids:
            continue
        if ident in selected and target is None:
            # A driver-specific file wins over a shared one with the same id.
            continue
        selected[ident] = path
    return sorted(selected.items())


async def run_migrations(database: Database, migrations_path: Path) -> list[str]:
    await database.executescript(MIGRATION_TABLE_SQL)
    applied = await database.fetchall("SELECT id FROM schema_migrations;")
    applied_ids = {row["id"] for row in applied}

    newly_applied: list[str] = []
    for ident, path in pending_migrations(migrations_path, database.driver, applied_ids):
        LOGGER.info("Applying migration %s (%s)", ident, path.name)
        await database.executescript(path.read_text(encoding="utf-8"))
        await database.execute(
            "INSERT INTO schema_migrations(id, applied_at) VALUES (?, CURRENT_TIMESTAMP);",
            [ident],
        )
        newly_applied.append(ident)
    if not newly_applied:
        LOGGER.debug("Schema up to date (%s migrations applied)", len(applied_ids))
    return newly_applied
