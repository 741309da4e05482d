"""Exception hierarchy for gateway operations."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for every error raised by the gateway."""


class InvalidRequestError(GatewayError):
    """The caller asked for something that cannot be done."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid request: {message}")


class InternalError(GatewayError):
    """An unexpected failure inside the gateway."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Internal error: {message}")


class SchemaExtractionError(GatewayError):
    """A schema archive or schema file could not be read."""

    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"Schema extraction failed: {cause}")


class ConnectionFailedError(GatewayError):
    """No connection to the database could be obtained."""

    def __init__(self, database: str, cause: str) -> None:
        self.database = database
        self.cause = cause
        super().__init__(f"Connection to database '{database}' failed: {cause}")


class MigrationFailedError(GatewayError):
    """A migration or schema change could not be applied."""

    def __init__(self, database: str, migration: str, cause: str) -> None:
        self.database = database
        self.migration = migration
        self.cause = cause
        super().__init__(
            f"Migration '{migration}' failed on database '{database}': {cause}"
        )


class QueryFailedError(GatewayError):
    """A query against the database failed."""

    def __init__(self, database: str, function: str, cause: str) -> None:
        self.database = database
        self.function = function
        self.cause = cause
        super().__init__(
            f"Query '{function}' failed on database '{database}': {cause}"
        )


class ExtensionNotAvailableError(GatewayError):
    """The server does not provide the requested extension."""

    def __init__(self, extension: str, cause: str) -> None:
        self.extension = extension
        self.cause = cause
        super().__init__(f"Extension '{extension}' is not available: {cause}")


class ExtensionInstallError(GatewayError):
    """An extension could not be installed."""

    def __init__(self, database: str, extension: str, cause: str) -> None:
        self.database = database
        self.extension = extension
        self.cause = cause
        super().__init__(
            f"Failed to install extension '{extension}' in database '{database}': {cause}"
        )