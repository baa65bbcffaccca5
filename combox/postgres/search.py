"""Search over users and public chats."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from combox.postgres.client import PostgresClient

DEFAULT_LIMIT = 20
MAX_LIMIT = 50

_USER_COLUMNS = """
    SELECT id::text,
           email,
           username,
           COALESCE(first_name, ''),
           last_name,
           birth_date::text,
           avatar_data_url,
           avatar_gradient
    FROM users
"""

_USERS_BY_HANDLE = _USER_COLUMNS + """
    WHERE LOWER(username) LIKE $1
    ORDER BY username ASC
    LIMIT $2
"""

_USERS_BY_TEXT = _USER_COLUMNS + """
    WHERE LOWER(username) LIKE $1
       OR LOWER(email) LIKE $1
       OR LOWER(COALESCE(first_name, '')) LIKE $1
       OR LOWER(COALESCE(last_name, '')) LIKE $1
    ORDER BY username ASC
    LIMIT $2
"""

_CHAT_COLUMNS = """
    SELECT id::text,
           title,
           chat_kind,
           public_slug,
           avatar_data_url,
           avatar_gradient
    FROM chats
    WHERE is_public = TRUE
      AND chat_kind IN ('group', 'channel', 'standalone_channel')
"""

_CHATS_BY_HANDLE = _CHAT_COLUMNS + """
      AND LOWER(COALESCE(public_slug, '')) LIKE $1
    ORDER BY created_at DESC
    LIMIT $2
"""

_CHATS_BY_TEXT = _CHAT_COLUMNS + """
      AND (
           LOWER(title) LIKE $1
           OR LOWER(COALESCE(public_slug, '')) LIKE $1
      )
    ORDER BY created_at DESC
    LIMIT $2
"""


@dataclass
class UserResult:
    id: str = ""
    email: str = ""
    username: str = ""
    first_name: str = ""
    last_name: str | None = None
    birth_date: str | None = None
    avatar_data_url: str | None = None
    avatar_gradient: str | None = None


@dataclass
class ChatResult:
    id: str = ""
    title: str = ""
    kind: str = ""
    public_slug: str | None = None
    avatar_data_url: str | None = None
    avatar_gradient: str | None = None


def _clamp(limit: int) -> int:
    if limit <= 0:
        return DEFAULT_LIMIT
    return min(limit, MAX_LIMIT)


def _plan(query: str) -> tuple[bool, str] | None:
    """(is_handle, LIKE pattern) for a query, or None when nothing is to be searched."""
    query = query.strip()
    if not query:
        return None
    if query.startswith("@"):
        handle = query[1:].strip()
        if not handle:
            return None
        return True, handle.lower() + "%"
    return False, "%" + query.lower() + "%"


class SearchRepository:
    """Find users by name, handle or e-mail, and public chats by title or slug.

    A query starting with '@' matches handles by prefix; anything else matches
    any of the text columns by substring.
    """

    def __init__(self, client: PostgresClient) -> None:
        self._client = client

    @property
    def _pool(self) -> Any:
        return self._client.pool

    def search_users(self, query: str, limit: int = DEFAULT_LIMIT) -> list[UserResult]:
        plan = _plan(query)
        if plan is None:
            return []
        is_handle, pattern = plan
        sql = _USERS_BY_HANDLE if is_handle else _USERS_BY_TEXT
        rows = self._pool.fetch(sql, pattern, _clamp(limit)) or []
        return [
            UserResult(
                id=row[0],
                email=row[1],
                username=row[2],
                first_name=row[3],
                last_name=row[4],
                birth_date=row[5],
                avatar_data_url=row[6],
                avatar_gradient=row[7],
            )
            for row in rows
        ]

    def search_public_chats(self, query: str, limit: int = DEFAULT_LIMIT) -> list[ChatResult]:
        plan = _plan(query)
        if plan is None:
            return []
        is_handle, pattern = plan
        sql = _CHATS_BY_HANDLE if is_handle else _CHATS_BY_TEXT
        rows = self._pool.fetch(sql, pattern, _clamp(limit)) or []
        return [
            ChatResult(
                id=row[0],
                title=row[1],
                kind=row[2],
                public_slug=row[3],
                avatar_data_url=row[4],
                avatar_gradient=row[5],
            )
            for row in rows
        ]