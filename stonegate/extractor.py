"""Unpacking of schema archives into a temporary working directory."""

from __future__ import annotations

import io
import logging
import tarfile
import tempfile
from pathlib import Path, PurePosixPath

from .errors import SchemaExtractionError

logger = logging.getLogger(__name__)

_ROOT_DIR = "postgresql"


def _check_member(member: tarfile.TarInfo) -> None:
    name = PurePosixPath(member.name)
    if name.is_absolute() or ".." in name.parts:
        raise SchemaExtractionError(
            f"Failed to extract tar.gz: unsafe path {member.name}"
        )
    if member.issym() or member.islnk():
        raise SchemaExtractionError(
            f"Failed to extract tar.gz: links are not allowed ({member.name})"
        )


def _unpack(data: bytes, target: Path) -> None:
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
        if hasattr(tarfile, "data_filter"):
            archive.extractall(target, filter="data")
        else:
            members = archive.getmembers()
            for member in members:
                _check_member(member)
            archive.extractall(target, members=members)


class SchemaExtractor:
    """A schema archive unpacked into a temporary directory.

    The directory is removed by :meth:`cleanup`, or on leaving a ``with`` block.
    """

    def __init__(self, temp_dir: tempfile.TemporaryDirectory) -> None:
        self._temp_dir = temp_dir
        self.path = Path(temp_dir.name)

    @classmethod
    def from_bytes(cls, data: bytes) -> SchemaExtractor:
        """Unpack a tar.gz archive held in memory."""
        try:
            temp_dir = tempfile.TemporaryDirectory()
        except OSError as exc:
            raise SchemaExtractionError(f"Failed to create temp directory: {exc}") from exc

        try:
            _unpack(data, Path(temp_dir.name))
        except SchemaExtractionError:
            temp_dir.cleanup()
            raise
        except (tarfile.TarError, OSError, EOFError) as exc:
            temp_dir.cleanup()
            raise SchemaExtractionError(f"Failed to extract tar.gz: {exc}") from exc

        logger.info("Extracted schema to %s", temp_dir.name)
        return cls(temp_dir)

    def functions_dir(self) -> Path:
        return self._find_postgresql_subdir("functions")

    def migrations_dir(self) -> Path:
        return self._find_postgresql_subdir("migrations")

    def tables_dir(self) -> Path:
        return self._find_postgresql_subdir("tables")

    def seeders_dir(self) -> Path:
        return self._find_postgresql_subdir("seeders")

    def extensions_dir(self) -> Path:
        return self._find_postgresql_subdir("extensions")

    def types_dir(self) -> Path:
        return self._find_postgresql_subdir("types")

    def _find_postgresql_subdir(self, subdir: str) -> Path:
        """Locate ``postgresql/<subdir>`` at the top level or one level down.

        The top-level path is returned when nothing is found, existing or not.
        """
        direct = self.path / _ROOT_DIR / subdir
        if direct.exists():
            return direct

        try:
            entries = list(self.path.iterdir())
        except OSError:
            return direct

        for entry in entries:
            if not entry.is_dir():
                continue
            nested = entry / _ROOT_DIR / subdir
            if nested.exists():
                return nested
            if entry.name == _ROOT_DIR and (entry / subdir).exists():
                return entry / subdir

        return direct

    def list_pssql_files(self, directory) -> list[Path]:
        """The .pssql files directly inside a directory, sorted by file name."""
        directory = Path(directory)
        if not directory.exists():
            logger.debug("Directory %s does not exist, returning empty list", directory)
            return []
        try:
            entries = list(directory.iterdir())
        except OSError as exc:
            raise SchemaExtractionError(
                f"Failed to read directory {directory}: {exc}"
            ) from exc
        files = [entry for entry in entries if entry.is_file() and entry.suffix == ".pssql"]
        return sorted(files, key=lambda path: path.name)

    def read_file(self, path) -> str:
        try:
            return Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SchemaExtractionError(f"Failed to read file {path}: {exc}") from exc

    def cleanup(self) -> None:
        """Remove the temporary directory and everything in it."""
        self._temp_dir.cleanup()

    def __enter__(self) -> SchemaExtractor:
        return self

    def __exit__(self, *args) -> None:
        self.cleanup()