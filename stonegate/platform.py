"""Registry of platforms and the databases created for them."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .errors import InternalError, InvalidRequestError

logger = logging.getLogger(__name__)

_PLATFORM_FILE = "platform.json"
_LONG_FRACTION = re.compile(r"(\.\d{6})\d+")


def is_valid_identifier(name: str) -> bool:
    """Return True if the name is non-empty and only letters, digits or underscores."""
    return bool(name) and all(ch.isalnum() or ch == "_" for ch in name)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_datetime(text: str) -> datetime:
    text = _LONG_FRACTION.sub(r"\1", text.strip())
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class DatabaseRecord:
    """A database that was created from one of a platform's schemas."""

    schema_name: str
    database_name: str
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "schema_name": self.schema_name,
            "database_name": self.database_name,
            "created_at": _format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> DatabaseRecord:
        return cls(
            schema_name=data["schema_name"],
            database_name=data["database_name"],
            created_at=_parse_datetime(data["created_at"]),
        )


@dataclass
class PlatformInfo:
    """Metadata kept in a platform's platform.json."""

    name: str
    registered_at: datetime = field(default_factory=_now)
    schemas: list[str] = field(default_factory=list)
    databases: dict[str, DatabaseRecord] = field(default_factory=dict)
    db_user: str | None = None
    db_password: str | None = None

    @classmethod
    def with_credentials(cls, name: str, db_user: str, db_password: str) -> PlatformInfo:
        """Create platform metadata carrying its own database credentials."""
        return cls(name=name, db_user=db_user, db_password=db_password)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "registered_at": _format_datetime(self.registered_at),
            "schemas": list(self.schemas),
            "databases": {key: record.to_dict() for key, record in self.databases.items()},
            "db_user": self.db_user,
            "db_password": self.db_password,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PlatformInfo:
        return cls(
            name=data["name"],
            registered_at=_parse_datetime(data["registered_at"]),
            schemas=list(data["schemas"]),
            databases={
                key: DatabaseRecord.from_dict(value)
                for key, value in data["databases"].items()
            },
            db_user=data.get("db_user"),
            db_password=data.get("db_password"),
        )


class PlatformRegistry:
    """Keeps platform registrations on disk under a data directory."""

    def __init__(self, data_dir) -> None:
        self.data_dir = Path(data_dir)

    def platform_dir(self, platform: str) -> Path:
        return self.data_dir / platform

    def _platform_json_path(self, platform: str) -> Path:
        return self.platform_dir(platform) / _PLATFORM_FILE

    def is_registered(self, platform: str) -> bool:
        return self._platform_json_path(platform).exists()

    def register_platform(self, platform: str) -> PlatformInfo:
        """Register a new platform and write its metadata file."""
        if not is_valid_identifier(platform):
            raise InvalidRequestError(
                f"Invalid platform name: {platform}. Must be alphanumeric with underscores."
            )
        if self.is_registered(platform):
            raise InvalidRequestError(f"Platform '{platform}' is already registered")

        try:
            self.platform_dir(platform).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InternalError(f"Failed to create platform directory: {exc}") from exc

        info = PlatformInfo(platform)
        self.save_platform_info(info)
        logger.info("Registered platform: %s", platform)
        return info

    def get_platform_info(self, platform: str) -> PlatformInfo:
        path = self._platform_json_path(platform)
        if not path.exists():
            raise InvalidRequestError(f"Platform '{platform}' is not registered")
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise InternalError(f"Failed to read platform.json: {exc}") from exc
        try:
            return PlatformInfo.from_dict(json.loads(content))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise InternalError(f"Failed to parse platform.json: {exc}") from exc

    def save_platform_info(self, info: PlatformInfo) -> None:
        content = json.dumps(info.to_dict(), indent=2)
        try:
            self._platform_json_path(info.name).write_text(content, encoding="utf-8")
        except OSError as exc:
            raise InternalError(f"Failed to write platform.json: {exc}") from exc

    def add_schema(self, platform: str, schema_name: str) -> None:
        """Add a schema name to the platform, once."""
        info = self.get_platform_info(platform)
        if schema_name not in info.schemas:
            info.schemas.append(schema_name)
            self.save_platform_info(info)

    def record_database(self, platform: str, schema_name: str, database_name: str) -> None:
        """Record that a database was created from a schema."""
        info = self.get_platform_info(platform)
        info.databases[database_name] = DatabaseRecord(
            schema_name=schema_name, database_name=database_name
        )
        self.save_platform_info(info)

    def list_platforms(self) -> list[str]:
        """Names of all registered platforms, sorted."""
        if not self.data_dir.exists():
            return []
        try:
            entries = list(self.data_dir.iterdir())
        except OSError as exc:
            raise InternalError(f"Failed to read data directory: {exc}") from exc
        return sorted(
            entry.name
            for entry in entries
            if entry.is_dir() and (entry / _PLATFORM_FILE).exists()
        )

    def list_databases(self, platform: str, schema_filter: str | None = None) -> list[DatabaseRecord]:
        """Databases of a platform sorted by name, optionally only those of one schema."""
        info = self.get_platform_info(platform)
        records = [
            record
            for record in info.databases.values()
            if schema_filter is None or record.schema_name == schema_filter
        ]
        return sorted(records, key=lambda record: record.database_name)