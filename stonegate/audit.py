"""Audit logging of administrative actions.

The pool's ``acquire()`` returns an async context manager yielding a
connection with an ``execute(sql, *args)`` coroutine.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack

from .errors import ConnectionFailedError, QueryFailedError

logger = logging.getLogger(__name__)

_AUDIT_DATABASE = "postgres"
_TABLE = "_gateway_admin_audit_log"

# (column, definition) pairs of the audit table, in table order.
_COLUMNS = (
    ("id", "SERIAL PRIMARY KEY"),
    ("action", "VARCHAR(255) NOT NULL"),
    ("source_ip", "INET NOT NULL"),
    ("request_path", "VARCHAR(255) NOT NULL"),
    ("request_body", "TEXT"),
    ("response_status", "INTEGER NOT NULL"),
    ("timestamp", "TIMESTAMPTZ DEFAULT NOW()"),
)

_INDEXES = {
    "idx_admin_audit_timestamp": "timestamp DESC",
    "idx_admin_audit_source_ip": "source_ip",
}

_RECORDED = ("action", "source_ip", "request_path", "request_body", "response_status")


def _schema_statements() -> list[str]:
    body = ",\n    ".join(f"{name} {definition}" for name, definition in _COLUMNS)
    statements = [f"CREATE TABLE IF NOT EXISTS {_TABLE} (\n    {body}\n)"]
    statements.extend(
        f"CREATE INDEX IF NOT EXISTS {index} ON {_TABLE}({expression})"
        for index, expression in _INDEXES.items()
    )
    return statements


def _insert_statement() -> str:
    placeholders = ", ".join(f"${position}" for position in range(1, len(_RECORDED) + 1))
    return f"INSERT INTO {_TABLE} ({', '.join(_RECORDED)}) VALUES ({placeholders})"


async def log_admin_action(
    pool,
    action: str,
    source_ip,
    request_path: str,
    request_body: str | None,
    response_status: int,
) -> None:
    """Record an admin action. Failures are logged and never raised."""
    async with AsyncExitStack() as stack:
        try:
            conn = await stack.enter_async_context(pool.acquire())
        except Exception as exc:
            logger.warning("Failed to get pool connection for audit log: %s", exc)
            return
        values = (action, str(source_ip), request_path, request_body, int(response_status))
        try:
            await conn.execute(_insert_statement(), *values)
        except Exception as exc:
            logger.warning(
                "Failed to write audit log: %s (action: %s, ip: %s)", exc, action, source_ip
            )


async def ensure_audit_table(pool) -> None:
    """Create the audit table and its indexes if they do not exist."""
    async with AsyncExitStack() as stack:
        try:
            conn = await stack.enter_async_context(pool.acquire())
        except Exception as exc:
            raise ConnectionFailedError(_AUDIT_DATABASE, str(exc)) from exc
        for statement in _schema_statements():
            try:
                await conn.execute(statement)
            except Exception as exc:
                raise QueryFailedError(_AUDIT_DATABASE, "ensure_audit_table", str(exc)) from exc