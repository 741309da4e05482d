"""Changelog of schema changes: migrations, functions, extensions and seeders.

Database access goes through a pool whose ``acquire()`` returns an async
context manager yielding a connection with ``execute`` and ``fetch``
coroutines taking ``$n`` placeholders and positional arguments.
"""

from __future__ import annotations

import enum
import json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .errors import ConnectionFailedError, MigrationFailedError

logger = logging.getLogger(__name__)

_CHANGELOG_TABLE = "_stonescriptdb_gateway_changelog"

_CREATE_TABLE = f"""
    CREATE TABLE IF NOT EXISTS {_CHANGELOG_TABLE} (
        id SERIAL PRIMARY KEY,
        change_type TEXT NOT NULL,
        object_name TEXT NOT NULL,
        change_detail JSONB,
        forced BOOLEAN DEFAULT FALSE,
        executed_at TIMESTAMPTZ DEFAULT NOW()
    )
"""

_CREATE_INDEXES = (
    f"""
    CREATE INDEX IF NOT EXISTS idx_changelog_change_type
    ON {_CHANGELOG_TABLE} (change_type)
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_changelog_object_name
    ON {_CHANGELOG_TABLE} (object_name)
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_changelog_executed_at
    ON {_CHANGELOG_TABLE} (executed_at DESC)
    """,
)

_INSERT_ENTRY = f"""
    INSERT INTO {_CHANGELOG_TABLE}
        (change_type, object_name, change_detail, forced)
    VALUES ($1, $2, $3::jsonb, $4)
"""

_SELECT_RECENT = f"""
    SELECT id, change_type, object_name, change_detail, forced, executed_at
    FROM {_CHANGELOG_TABLE}
    ORDER BY executed_at DESC
    LIMIT $1
"""

_SELECT_BY_TYPE = f"""
    SELECT id, change_type, object_name, change_detail, forced, executed_at
    FROM {_CHANGELOG_TABLE}
    WHERE change_type = $1
    ORDER BY executed_at DESC
    LIMIT $2
"""


class ChangeType(str, enum.Enum):
    """Kinds of schema change recorded in the changelog."""

    MIGRATION_APPLIED = "migration_applied"
    FUNCTION_DEPLOYED = "function_deployed"
    FUNCTION_DROPPED = "function_dropped"
    FUNCTION_SKIPPED = "function_skipped"
    EXTENSION_INSTALLED = "extension_installed"
    EXTENSION_SKIPPED = "extension_skipped"
    SEEDER_RUN = "seeder_run"
    SEEDER_SKIPPED = "seeder_skipped"
    SEEDER_VALIDATED = "seeder_validated"

    def __str__(self) -> str:
        return self.value


@dataclass
class ChangelogEntry:
    """A change to be written to the changelog."""

    change_type: ChangeType
    object_name: str
    details: Any = None
    forced: bool = False

    def to_dict(self) -> dict:
        return {
            "change_type": str(self.change_type),
            "object_name": self.object_name,
            "details": self.details,
            "forced": self.forced,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass
class ChangelogRecord:
    """A row read back from the changelog table."""

    id: int
    change_type: str
    object_name: str
    change_detail: Any
    forced: bool
    executed_at: datetime


def _detail_json(details: Any) -> str | None:
    if details is None:
        return None
    return json.dumps(details, separators=(",", ":"), sort_keys=True)


def _parse_detail(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, bytes, bytearray)):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def _record_from_row(row) -> ChangelogRecord:
    return ChangelogRecord(
        id=row[0],
        change_type=row[1],
        object_name=row[2],
        change_detail=_parse_detail(row[3]),
        forced=row[4],
        executed_at=row[5],
    )


class ChangelogManager:
    """Writes and reads the changelog table of a database."""

    @staticmethod
    async def _acquire(stack: AsyncExitStack, pool, database: str):
        try:
            return await stack.enter_async_context(pool.acquire())
        except Exception as exc:
            raise ConnectionFailedError(database, str(exc)) from exc

    async def ensure_changelog_table(self, pool, database: str) -> None:
        """Create the changelog table; index creation failures are ignored."""
        async with AsyncExitStack() as stack:
            conn = await self._acquire(stack, pool, database)
            try:
                await conn.execute(_CREATE_TABLE)
            except Exception as exc:
                raise MigrationFailedError(
                    database, f"{_CHANGELOG_TABLE} table creation", str(exc)
                ) from exc
            for statement in _CREATE_INDEXES:
                try:
                    await conn.execute(statement)
                except Exception:
                    pass
        logger.debug("Changelog table ensured for database %s", database)

    async def log_change(self, pool, database: str, entry: ChangelogEntry) -> None:
        """Write one entry to the changelog."""
        change_type = str(entry.change_type)
        async with AsyncExitStack() as stack:
            conn = await self._acquire(stack, pool, database)
            try:
                await conn.execute(
                    _INSERT_ENTRY,
                    change_type,
                    entry.object_name,
                    _detail_json(entry.details),
                    entry.forced,
                )
            except Exception as exc:
                raise MigrationFailedError(
                    database, "changelog entry", f"Failed to log changelog entry: {exc}"
                ) from exc
        logger.debug(
            "Logged changelog: %s - %s (forced: %s)",
            change_type,
            entry.object_name,
            entry.forced,
        )

    async def _log(self, pool, database, change_type, object_name, details=None) -> None:
        await self.log_change(
            pool, database, ChangelogEntry(change_type, object_name, details, False)
        )

    async def log_migration(self, pool, database, migration_name, checksum) -> None:
        await self._log(
            pool, database, ChangeType.MIGRATION_APPLIED, migration_name, {"checksum": checksum}
        )

    async def log_function_deployed(
        self, pool, database, function_name, signature, checksum, source_file
    ) -> None:
        await self._log(
            pool,
            database,
            ChangeType.FUNCTION_DEPLOYED,
            function_name,
            {"signature": signature, "checksum": checksum, "source_file": source_file},
        )

    async def log_function_dropped(
        self, pool, database, function_name, old_signature, reason
    ) -> None:
        await self._log(
            pool,
            database,
            ChangeType.FUNCTION_DROPPED,
            function_name,
            {"old_signature": old_signature, "reason": reason},
        )

    async def log_function_skipped(self, pool, database, function_name) -> None:
        await self._log(pool, database, ChangeType.FUNCTION_SKIPPED, function_name)

    async def log_extension_installed(
        self, pool, database, extension_name, version=None, schema=None
    ) -> None:
        await self._log(
            pool,
            database,
            ChangeType.EXTENSION_INSTALLED,
            extension_name,
            {"version": version, "schema": schema},
        )

    async def log_extension_skipped(self, pool, database, extension_name) -> None:
        await self._log(pool, database, ChangeType.EXTENSION_SKIPPED, extension_name)

    async def log_seeder_run(self, pool, database, table_name, inserted, skipped) -> None:
        await self._log(
            pool,
            database,
            ChangeType.SEEDER_RUN,
            table_name,
            {"inserted": inserted, "skipped": skipped},
        )

    async def log_seeder_skipped(self, pool, database, table_name, reason) -> None:
        await self._log(
            pool, database, ChangeType.SEEDER_SKIPPED, table_name, {"reason": reason}
        )

    async def log_seeder_validated(self, pool, database, table_name, expected, found) -> None:
        await self._log(
            pool,
            database,
            ChangeType.SEEDER_VALIDATED,
            table_name,
            {"expected": expected, "found": found},
        )

    async def _query(self, pool, database, migration, sql, *args) -> list[ChangelogRecord]:
        async with AsyncExitStack() as stack:
            conn = await self._acquire(stack, pool, database)
            try:
                rows = await conn.fetch(sql, *args)
            except Exception as exc:
                raise MigrationFailedError(database, migration, str(exc)) from exc
        return [_record_from_row(row) for row in rows]

    async def get_recent_entries(self, pool, database, limit) -> list[ChangelogRecord]:
        """The most recent entries, newest first."""
        return await self._query(pool, database, "query changelog", _SELECT_RECENT, limit)

    async def get_entries_by_type(
        self, pool, database, change_type, limit
    ) -> list[ChangelogRecord]:
        """The most recent entries of one change type, newest first."""
        return await self._query(
            pool,
            database,
            "query changelog by type",
            _SELECT_BY_TYPE,
            str(change_type),
            limit,
        )