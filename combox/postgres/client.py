"""Thin owner of a PostgreSQL connection pool and shared helpers.

The pool is any object with ``execute(sql, *args) -> str`` (command status),
``fetchrow``, ``fetchval``, ``fetch`` and a ``transaction()`` context manager
yielding a connection with the same query methods, plus ``close()``.
Queries use ``$1``-style positional placeholders.
"""

from __future__ import annotations

from typing import Any


class PostgresClient:
    """Holds the application's database pool."""

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    @property
    def pool(self) -> Any:
        return self._pool

    def ping(self) -> None:
        """Round-trip a trivial query; raises whatever the driver raises."""
        self._pool.fetchval("SELECT 1")

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()

    def __enter__(self) -> PostgresClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def rows_affected(status: str | int | None) -> int:
    """Number of rows from a command status such as 'UPDATE 3' or 'INSERT 0 1'."""
    if isinstance(status, int):
        return status
    if not status:
        return 0
    last = str(status).split()[-1]
    return int(last) if last.isdigit() else 0


def null_if_empty(value: str | None) -> str | None:
    """Trimmed value, or None when it is blank."""
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None