"""Login sessions stored in PostgreSQL."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from combox.postgres.client import PostgresClient, null_if_empty, rows_affected

_CREATE = """
    INSERT INTO sessions (id, user_id, refresh_token_hash, user_agent, ip_address, expires_at)
    VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6)
    RETURNING id::text, user_id::text, refresh_token_hash, expires_at
"""

_FIND_BY_ID = """
    SELECT id::text, user_id::text, refresh_token_hash, expires_at
    FROM sessions
    WHERE id = $1::uuid
    LIMIT 1
"""

_UPDATE_REFRESH = """
    UPDATE sessions
    SET refresh_token_hash = $2, expires_at = $3
    WHERE id = $1::uuid
"""

_DELETE_BY_ID = "DELETE FROM sessions WHERE id = $1::uuid"


class SessionNotFoundError(LookupError):
    """Raised when a session does not exist."""

    def __init__(self, message: str = "session not found") -> None:
        super().__init__(message)


@dataclass
class Session:
    id: str = ""
    user_id: str = ""
    refresh_token_hash: str = ""
    expires_at: datetime | None = None


@dataclass
class CreateSessionInput:
    id: str
    user_id: str
    refresh_token_hash: str
    expires_at: datetime
    user_agent: str = ""
    ip_address: str = ""


def _session_from_row(row: Any) -> Session:
    return Session(
        id=row[0],
        user_id=row[1],
        refresh_token_hash=row[2],
        expires_at=row[3],
    )


class AuthSessionRepository:
    """Create, look up, refresh and delete login sessions."""

    def __init__(self, client: PostgresClient) -> None:
        self._client = client

    @property
    def _pool(self) -> Any:
        return self._client.pool

    def create(self, data: CreateSessionInput) -> Session:
        row = self._pool.fetchrow(
            _CREATE,
            data.id,
            data.user_id,
            data.refresh_token_hash,
            null_if_empty(data.user_agent),
            null_if_empty(data.ip_address),
            data.expires_at,
        )
        if row is None:
            raise RuntimeError("insert session returned no row")
        return _session_from_row(row)

    def find_by_id(self, session_id: str) -> Session:
        row = self._pool.fetchrow(_FIND_BY_ID, session_id.strip())
        if row is None:
            raise SessionNotFoundError()
        return _session_from_row(row)

    def update_refresh(
        self, session_id: str, refresh_token_hash: str, expires_at: datetime
    ) -> None:
        status = self._pool.execute(
            _UPDATE_REFRESH, session_id.strip(), refresh_token_hash, expires_at
        )
        if rows_affected(status) == 0:
            raise SessionNotFoundError()

    def delete_by_id(self, session_id: str) -> None:
        status = self._pool.execute(_DELETE_BY_ID, session_id.strip())
        if rows_affected(status) == 0:
            raise SessionNotFoundError()