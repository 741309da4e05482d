"""Deployment of custom PostgreSQL types: enums, composites and domains.

Types live one per file in a schema's ``types/`` folder. They are installed
after extensions and before migrations, so migrations can use them.

Database access goes through a pool whose ``acquire()`` returns an async
context manager yielding a connection with ``execute``, ``fetch`` and
``fetchrow`` coroutines taking ``$n`` placeholders and positional arguments.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import re
from contextlib import AsyncExitStack
from dataclasses import dataclass
from pathlib import Path

from .errors import (
    ConnectionFailedError,
    MigrationFailedError,
    QueryFailedError,
    SchemaExtractionError,
)

logger = logging.getLogger(__name__)

_TYPE_SUFFIXES = {".pssql", ".pgsql", ".sql"}

_SINGLE_LINE_COMMENT = re.compile(r"--[^\n]*")
_MULTI_LINE_COMMENT = re.compile(r"/\*[\s\S]*?\*/")
_WHITESPACE = re.compile(r"\s+")
_DOMAIN_NAME = re.compile(r"CREATE\s+DOMAIN\s+([a-zA-Z_][a-zA-Z0-9_]*)", re.IGNORECASE)
_TYPE_NAME = re.compile(r"CREATE\s+TYPE\s+([a-zA-Z_][a-zA-Z0-9_]*)", re.IGNORECASE)

_TRACKING_TABLE = "_stonescriptdb_gateway_types"

_CREATE_TRACKING_TABLE = f"""
    CREATE TABLE IF NOT EXISTS {_TRACKING_TABLE} (
        id SERIAL PRIMARY KEY,
        type_name TEXT NOT NULL UNIQUE,
        type_kind TEXT NOT NULL,
        checksum TEXT NOT NULL,
        source_file TEXT,
        deployed_at TIMESTAMPTZ DEFAULT NOW()
    )
"""

_SELECT_DEPLOYED = f"SELECT type_name, checksum FROM {_TRACKING_TABLE}"

_UPSERT_TRACKING = f"""
    INSERT INTO {_TRACKING_TABLE} (type_name, type_kind, checksum, source_file, deployed_at)
    VALUES ($1, $2, $3, $4, NOW())
    ON CONFLICT (type_name) DO UPDATE SET
        type_kind = EXCLUDED.type_kind,
        checksum = EXCLUDED.checksum,
        source_file = EXCLUDED.source_file,
        deployed_at = NOW()
"""

_TYPE_EXISTS = """
    SELECT 1 FROM pg_type t
    JOIN pg_namespace n ON t.typnamespace = n.oid
    WHERE t.typname = $1
    AND n.nspname = 'public'
"""

_LIST_TYPES = """
    SELECT t.typname
    FROM pg_type t
    JOIN pg_namespace n ON t.typnamespace = n.oid
    WHERE n.nspname = 'public'
    AND t.typtype IN ('e', 'c', 'd')
    ORDER BY t.typname
"""


class TypeKind(str, enum.Enum):
    """The kind of a custom PostgreSQL type."""

    ENUM = "ENUM"
    COMPOSITE = "COMPOSITE"
    DOMAIN = "DOMAIN"
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:
        return self.value


@dataclass
class CustomType:
    """A type definition read from a file."""

    name: str
    type_kind: TypeKind
    sql: str
    checksum: str


@dataclass
class DeployedType:
    """A type recorded in the tracking table."""

    name: str
    checksum: str


def _remove_comments(sql: str) -> str:
    return _MULTI_LINE_COMMENT.sub("", _SINGLE_LINE_COMMENT.sub("", sql))


def _detect_kind(sql: str) -> TypeKind:
    upper = sql.upper()
    if "AS ENUM" in upper:
        return TypeKind.ENUM
    if "CREATE DOMAIN" in upper:
        return TypeKind.DOMAIN
    if "CREATE TYPE" in upper and " AS (" in upper:
        return TypeKind.COMPOSITE
    return TypeKind.UNKNOWN


def _extract_type_name(sql: str, kind: TypeKind) -> str:
    pattern = _DOMAIN_NAME if kind is TypeKind.DOMAIN else _TYPE_NAME
    match = pattern.search(sql)
    if match is None:
        raise SchemaExtractionError("Could not extract type name from SQL")
    return match.group(1).lower()


class CustomTypeManager:
    """Finds, parses and deploys custom type definition files."""

    def find_type_files(self, types_dir) -> list[Path]:
        """Type files in the directory, sorted; an absent directory yields none."""
        types_dir = Path(types_dir)
        if not types_dir.exists():
            logger.debug("Types directory %s does not exist, returning empty list", types_dir)
            return []
        try:
            entries = list(types_dir.iterdir())
        except OSError as exc:
            raise SchemaExtractionError(f"Failed to read types directory: {exc}") from exc
        return sorted(
            entry for entry in entries if entry.is_file() and entry.suffix in _TYPE_SUFFIXES
        )

    def parse_type(self, file_path) -> CustomType:
        """Read a type definition; its checksum ignores comments, case and spacing."""
        file_path = Path(file_path)
        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SchemaExtractionError(
                f"Failed to read type file {file_path}: {exc}"
            ) from exc

        sql = _remove_comments(content)
        kind = _detect_kind(sql)
        return CustomType(
            name=_extract_type_name(sql, kind),
            type_kind=kind,
            sql=content.strip(),
            checksum=self.compute_checksum(sql),
        )

    def compute_checksum(self, sql: str) -> str:
        """SHA-256 of the SQL with whitespace collapsed and letters lowered."""
        normalized = _WHITESPACE.sub(" ", sql).strip().lower()
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    async def deploy_types(self, pool, database: str, types_dir) -> int:
        """Create missing types and track them; return created plus updated."""
        files = self.find_type_files(types_dir)
        if not files:
            logger.debug("No custom types to deploy for database %s", database)
            return 0

        logger.debug("Found %d type files in %s", len(files), types_dir)
        created = updated = skipped = 0

        async with AsyncExitStack() as stack:
            try:
                conn = await stack.enter_async_context(pool.acquire())
            except Exception as exc:
                raise ConnectionFailedError(database, str(exc)) from exc

            await self._ensure_tracking_table(conn)
            deployed = await self._get_deployed_types(conn)

            for path in files:
                custom_type = self.parse_type(path)
                source_file = path.name or "unknown"

                previous = deployed.get(custom_type.name)
                if previous is not None:
                    if previous.checksum == custom_type.checksum:
                        logger.debug(
                            "Type %s unchanged (checksum match), skipping", custom_type.name
                        )
                        skipped += 1
                        continue
                    if await self._type_exists(conn, custom_type.name):
                        logger.warning(
                            "Type %s already exists with different definition. "
                            "Manual migration required.",
                            custom_type.name,
                        )
                        await self._update_tracking(conn, custom_type, source_file)
                        updated += 1
                        continue

                if await self._type_exists(conn, custom_type.name):
                    logger.debug(
                        "Type %s already exists in database, adding to tracking",
                        custom_type.name,
                    )
                    await self._update_tracking(conn, custom_type, source_file)
                    skipped += 1
                    continue

                logger.debug(
                    "Creating %s type %s in %s", custom_type.type_kind, custom_type.name, database
                )
                try:
                    await conn.execute(custom_type.sql)
                except Exception as exc:
                    raise MigrationFailedError(
                        database, f"type:{custom_type.name}", str(exc)
                    ) from exc
                logger.info(
                    "Created %s type %s in database %s",
                    custom_type.type_kind,
                    custom_type.name,
                    database,
                )
                await self._update_tracking(conn, custom_type, source_file)
                created += 1

        logger.info(
            "Type deployment complete for %s: %d created, %d updated, %d skipped",
            database,
            created,
            updated,
            skipped,
        )
        return created + updated

    @staticmethod
    async def _ensure_tracking_table(conn) -> None:
        try:
            await conn.execute(_CREATE_TRACKING_TABLE)
        except Exception as exc:
            raise MigrationFailedError("unknown", _TRACKING_TABLE, str(exc)) from exc

    @staticmethod
    async def _get_deployed_types(conn) -> dict[str, DeployedType]:
        try:
            rows = await conn.fetch(_SELECT_DEPLOYED)
        except Exception:
            return {}
        return {row[0]: DeployedType(name=row[0], checksum=row[1]) for row in rows}

    @staticmethod
    async def _type_exists(conn, type_name: str) -> bool:
        try:
            row = await conn.fetchrow(_TYPE_EXISTS, type_name)
        except Exception:
            return False
        return row is not None

    @staticmethod
    async def _update_tracking(conn, custom_type: CustomType, source_file: str) -> None:
        try:
            await conn.execute(
                _UPSERT_TRACKING,
                custom_type.name,
                str(custom_type.type_kind),
                custom_type.checksum,
                source_file,
            )
        except Exception as exc:
            raise MigrationFailedError(
                "unknown", f"tracking:{custom_type.name}", str(exc)
            ) from exc

    async def list_types(self, pool, database: str) -> list[str]:
        """Names of enum, composite and domain types in the public schema."""
        async with AsyncExitStack() as stack:
            try:
                conn = await stack.enter_async_context(pool.acquire())
            except Exception as exc:
                raise ConnectionFailedError(database, str(exc)) from exc
            try:
                rows = await conn.fetch(_LIST_TYPES)
            except Exception as exc:
                raise QueryFailedError(database, "list_types", str(exc)) from exc
        return [row[0] for row in rows]