"""Installation of PostgreSQL extensions listed in a schema's extensions folder.

Database access goes through a pool whose ``acquire()`` returns an async
context manager yielding a connection with ``execute``, ``fetch`` and
``fetchrow`` coroutines taking ``$n`` placeholders and positional arguments.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from pathlib import Path

from .errors import (
    ConnectionFailedError,
    ExtensionInstallError,
    ExtensionNotAvailableError,
    QueryFailedError,
    SchemaExtractionError,
)

logger = logging.getLogger(__name__)

_EXTENSION_SUFFIXES = {".pssql", ".pgsql", ".sql", ".txt"}


@dataclass
class Extension:
    """A PostgreSQL extension to install."""

    name: str
    version: str | None = None
    schema: str | None = None


def _strip_comment_marker(line: str) -> str:
    while line.startswith("--"):
        line = line[2:]
    return line.strip()


def _is_not_available(message: str) -> bool:
    return "could not open extension control file" in message or (
        "extension" in message and "is not available" in message
    )


class ExtensionManager:
    """Finds, parses and installs extension definition files."""

    def find_extension_files(self, extensions_dir) -> list[Path]:
        """Extension files in the directory, sorted; an absent directory yields none."""
        extensions_dir = Path(extensions_dir)
        if not extensions_dir.exists():
            logger.debug(
                "Extensions directory %s does not exist, returning empty list",
                extensions_dir,
            )
            return []
        try:
            entries = list(extensions_dir.iterdir())
        except OSError as exc:
            raise SchemaExtractionError(
                f"Failed to read extensions directory: {exc}"
            ) from exc
        return sorted(
            entry
            for entry in entries
            if entry.is_file() and entry.suffix in _EXTENSION_SUFFIXES
        )

    def parse_extension(self, file_path) -> Extension:
        """Read an extension from its file.

        The name is the file stem; ``-- version:`` and ``-- schema:`` comment
        lines in the content set the optional version and schema.
        """
        file_path = Path(file_path)
        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            content = ""

        extension = Extension(name=file_path.stem or "unknown")
        for line in content.splitlines():
            line = line.strip()
            if not line.startswith("--"):
                continue
            comment = _strip_comment_marker(line)
            if comment.startswith("version:"):
                extension.version = comment[len("version:"):].strip()
            elif comment.startswith("schema:"):
                extension.schema = comment[len("schema:"):].strip()
        return extension

    def build_create_extension_sql(self, extension: Extension) -> str:
        sql = f'CREATE EXTENSION IF NOT EXISTS "{extension.name}"'
        if extension.schema is not None:
            sql += f' SCHEMA "{extension.schema}"'
        if extension.version is not None:
            sql += f" VERSION '{extension.version}'"
        return sql

    async def install_extensions(self, pool, database: str, extensions_dir) -> int:
        """Install every extension not yet present; return how many were installed."""
        files = self.find_extension_files(extensions_dir)
        if not files:
            logger.debug("No extensions to install for database %s", database)
            return 0

        logger.debug("Found %d extension files in %s", len(files), extensions_dir)
        installed = 0
        skipped = 0

        async with AsyncExitStack() as stack:
            try:
                conn = await stack.enter_async_context(pool.acquire())
            except Exception as exc:
                raise ConnectionFailedError(database, str(exc)) from exc

            for path in files:
                extension = self.parse_extension(path)

                if await self._extension_exists(conn, extension.name):
                    logger.debug("Extension %s already installed, skipping", extension.name)
                    skipped += 1
                    continue

                sql = self.build_create_extension_sql(extension)
                logger.debug("Installing extension: %s in %s", extension.name, database)
                try:
                    await conn.execute(sql)
                except Exception as exc:
                    message = str(exc)
                    if _is_not_available(message):
                        logger.warning(
                            "Extension %s not available on this PostgreSQL server: %s",
                            extension.name,
                            message,
                        )
                        raise ExtensionNotAvailableError(extension.name, message) from exc
                    raise ExtensionInstallError(database, extension.name, message) from exc

                logger.info("Installed extension %s in database %s", extension.name, database)
                installed += 1

        logger.info(
            "Extension installation complete for %s: %d installed, %d skipped",
            database,
            installed,
            skipped,
        )
        return installed

    @staticmethod
    async def _extension_exists(conn, name: str) -> bool:
        try:
            row = await conn.fetchrow("SELECT 1 FROM pg_extension WHERE extname = $1", name)
        except Exception:
            return False
        return row is not None

    async def list_extensions(self, pool, database: str) -> list[str]:
        """Names of the extensions installed in the database, sorted by the server."""
        async with AsyncExitStack() as stack:
            try:
                conn = await stack.enter_async_context(pool.acquire())
            except Exception as exc:
                raise ConnectionFailedError(database, str(exc)) from exc
            try:
                rows = await conn.fetch("SELECT extname FROM pg_extension ORDER BY extname")
            except Exception as exc:
                raise QueryFailedError(database, "list_extensions", str(exc)) from exc
        return [row[0] for row in rows]