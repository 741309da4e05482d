"""On-disk storage of schema archives for registered platforms."""

from __future__ import annotations

import hashlib
import io
import logging
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .errors import InternalError, InvalidRequestError, SchemaExtractionError
from .platform import is_valid_identifier

logger = logging.getLogger(__name__)

_ROOT_PREFIX = "postgresql"


def compute_checksum(data: bytes) -> str:
    """Hex SHA-256 digest of the data."""
    return hashlib.sha256(data).hexdigest()


@dataclass
class StoredSchema:
    """A schema stored on disk and which of its components are present."""

    name: str
    path: Path
    checksum: str
    has_extensions: bool
    has_types: bool
    has_tables: bool
    has_functions: bool
    has_seeders: bool
    has_migrations: bool

    @classmethod
    def _from_dir(cls, name: str, path: Path, checksum: str) -> StoredSchema:
        return cls(
            name=name,
            path=path,
            checksum=checksum,
            has_extensions=(path / "extensions").exists(),
            has_types=(path / "types").exists(),
            has_tables=(path / "tables").exists(),
            has_functions=(path / "functions").exists(),
            has_seeders=(path / "seeders").exists(),
            has_migrations=(path / "migrations").exists(),
        )


def _relative_member_path(member_name: str) -> PurePosixPath | None:
    parts = [part for part in PurePosixPath(member_name).parts if part not in (".", "/")]
    if parts and parts[0] == _ROOT_PREFIX:
        parts = parts[1:]
    if not parts:
        return None
    if ".." in parts:
        raise SchemaExtractionError(f"Refusing to extract {member_name}: path leaves the schema")
    return PurePosixPath(*parts)


class SchemaStore:
    """Stores schema archives as directories under a data directory."""

    def __init__(self, data_dir) -> None:
        self.data_dir = Path(data_dir)

    def schema_dir(self, platform: str, schema_name: str) -> Path:
        return self.data_dir / platform / schema_name

    def schema_exists(self, platform: str, schema_name: str) -> bool:
        return self.schema_dir(platform, schema_name).exists()

    def store_schema(self, platform: str, schema_name: str, archive_data: bytes) -> StoredSchema:
        """Unpack a tar.gz schema archive, replacing any schema of that name.

        A leading ``postgresql/`` directory in the archive is dropped.
        """
        if not is_valid_identifier(schema_name):
            raise InvalidRequestError(
                f"Invalid schema name: {schema_name}. Must be alphanumeric with underscores."
            )

        schema_dir = self.schema_dir(platform, schema_name)
        if schema_dir.exists():
            try:
                shutil.rmtree(schema_dir)
            except OSError as exc:
                raise InternalError(f"Failed to remove existing schema: {exc}") from exc
        try:
            schema_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InternalError(f"Failed to create schema directory: {exc}") from exc

        checksum = compute_checksum(archive_data)
        self._extract(archive_data, schema_dir)

        schema = StoredSchema._from_dir(schema_name, schema_dir, checksum)
        logger.info(
            "Stored schema '%s' for platform '%s' (tables=%s, functions=%s, migrations=%s)",
            schema_name,
            platform,
            schema.has_tables,
            schema.has_functions,
            schema.has_migrations,
        )
        return schema

    @staticmethod
    def _extract(archive_data: bytes, schema_dir: Path) -> None:
        try:
            with tarfile.open(fileobj=io.BytesIO(archive_data), mode="r:gz") as archive:
                for member in archive:
                    relative = _relative_member_path(member.name)
                    if relative is None:
                        continue
                    target = schema_dir.joinpath(*relative.parts)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    if member.isfile():
                        source = archive.extractfile(member)
                        if source is None:
                            raise SchemaExtractionError(f"Failed to extract {relative}")
                        with source:
                            target.write_bytes(source.read())
                    elif member.isdir():
                        target.mkdir(parents=True, exist_ok=True)
        except SchemaExtractionError:
            raise
        except (tarfile.TarError, OSError, EOFError) as exc:
            raise SchemaExtractionError(f"Failed to read archive entries: {exc}") from exc

    def get_schema(self, platform: str, schema_name: str) -> StoredSchema:
        """Describe a stored schema; its checksum is reported as ``stored``."""
        schema_dir = self.schema_dir(platform, schema_name)
        if not schema_dir.exists():
            raise InvalidRequestError(
                f"Schema '{schema_name}' not found for platform '{platform}'"
            )
        return StoredSchema._from_dir(schema_name, schema_dir, "stored")

    def list_schemas(self, platform: str) -> list[str]:
        """Names of a platform's schema directories holding tables or functions, sorted."""
        platform_dir = self.data_dir / platform
        if not platform_dir.exists():
            return []
        try:
            entries = list(platform_dir.iterdir())
        except OSError as exc:
            raise InternalError(f"Failed to read platform directory: {exc}") from exc
        return sorted(
            entry.name
            for entry in entries
            if entry.is_dir()
            and entry.name != "platform.json"
            and ((entry / "tables").exists() or (entry / "functions").exists())
        )

    def extensions_dir(self, platform: str, schema_name: str) -> Path:
        return self.schema_dir(platform, schema_name) / "extensions"

    def types_dir(self, platform: str, schema_name: str) -> Path:
        return self.schema_dir(platform, schema_name) / "types"

    def tables_dir(self, platform: str, schema_name: str) -> Path:
        return self.schema_dir(platform, schema_name) / "tables"

    def functions_dir(self, platform: str, schema_name: str) -> Path:
        return self.schema_dir(platform, schema_name) / "functions"

    def seeders_dir(self, platform: str, schema_name: str) -> Path:
        return self.schema_dir(platform, schema_name) / "seeders"

    def migrations_dir(self, platform: str, schema_name: str) -> Path:
        return self.schema_dir(platform, schema_name) / "migrations"