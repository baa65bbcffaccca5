"""Bots and their API tokens stored in PostgreSQL."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from combox.postgres.client import PostgresClient, null_if_empty

_ENSURE_USER_BOT = """
    INSERT INTO bots (owner_user_id, actor_user_id, kind, name, is_system)
    VALUES ($1::uuid, $1::uuid, 'user', NULLIF($2, ''), FALSE)
    ON CONFLICT (owner_user_id, kind)
    DO UPDATE SET
        name = COALESCE(NULLIF(EXCLUDED.name, ''), bots.name),
        updated_at = NOW()
    RETURNING id::text, owner_user_id::text, actor_user_id::text
"""

_CREATE = """
    INSERT INTO bot_tokens (bot_id, name, secret_hash, scopes, chat_ids, expires_at)
    VALUES ($1::uuid, $2, $3, $4, $5, $6)
    RETURNING id::text, bot_id::text, secret_hash, scopes, chat_ids, is_revoked, expires_at
"""

_FIND_ACTIVE_BY_ID = """
    SELECT bt.id::text,
           bt.bot_id::text,
           COALESCE(b.owner_user_id::text, ''),
           COALESCE(b.actor_user_id::text, ''),
           bt.secret_hash,
           bt.scopes,
           bt.chat_ids,
           bt.is_revoked,
           bt.expires_at
    FROM bot_tokens bt
    INNER JOIN bots b ON b.id = bt.bot_id
    WHERE bt.id = $1::uuid
      AND bt.is_revoked = FALSE
      AND (bt.expires_at IS NULL OR bt.expires_at > NOW())
    LIMIT 1
"""

_TOUCH_LAST_USED = """
    UPDATE bot_tokens
    SET last_used_at = $2
    WHERE id = $1::uuid
"""


class TokenNotFoundError(LookupError):
    """Raised when a token does not exist, is revoked or has expired."""

    def __init__(self, message: str = "bot token not found") -> None:
        super().__init__(message)


@dataclass
class Bot:
    id: str = ""
    owner_user_id: str = ""
    actor_user_id: str = ""


@dataclass
class StoredToken:
    id: str = ""
    bot_id: str = ""
    owner_user_id: str = ""
    actor_user_id: str = ""
    secret_hash: str = ""
    scopes: list[str] = field(default_factory=list)
    chat_ids: list[str] = field(default_factory=list)
    is_revoked: bool = False
    expires_at: datetime | None = None


@dataclass
class CreateTokenRecordInput:
    bot_id: str
    secret_hash: str
    name: str = ""
    scopes: list[str] = field(default_factory=list)
    chat_ids: list[str] = field(default_factory=list)
    expires_at: datetime | None = None


class BotTokenRepository:
    """Ensure user bots exist and store, find and touch their tokens."""

    def __init__(self, client: PostgresClient) -> None:
        self._client = client

    @property
    def _pool(self) -> Any:
        return self._client.pool

    def ensure_user_bot(self, owner_user_id: str, name: str) -> Bot:
        """Get or create the user's own bot, updating its name when one is given."""
        row = self._pool.fetchrow(_ENSURE_USER_BOT, owner_user_id.strip(), name.strip())
        if row is None:
            raise RuntimeError("upsert bot returned no row")
        return Bot(id=row[0], owner_user_id=row[1], actor_user_id=row[2])

    def create(self, data: CreateTokenRecordInput) -> StoredToken:
        row = self._pool.fetchrow(
            _CREATE,
            data.bot_id.strip(),
            null_if_empty(data.name),
            data.secret_hash.strip(),
            data.scopes,
            data.chat_ids,
            data.expires_at,
        )
        if row is None:
            raise RuntimeError("insert bot token returned no row")
        return StoredToken(
            id=row[0],
            bot_id=row[1],
            secret_hash=row[2],
            scopes=list(row[3] or []),
            chat_ids=list(row[4] or []),
            is_revoked=bool(row[5]),
            expires_at=row[6],
        )

    def find_active_by_id(self, token_id: str) -> StoredToken:
        row = self._pool.fetchrow(_FIND_ACTIVE_BY_ID, token_id.strip())
        if row is None:
            raise TokenNotFoundError()
        return StoredToken(
            id=row[0],
            bot_id=row[1],
            owner_user_id=row[2],
            actor_user_id=row[3],
            secret_hash=row[4],
            scopes=list(row[5] or []),
            chat_ids=list(row[6] or []),
            is_revoked=bool(row[7]),
            expires_at=row[8],
        )

    def touch_last_used(self, token_id: str, at: datetime) -> None:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        self._pool.execute(_TOUCH_LAST_USED, token_id.strip(), at.astimezone(timezone.utc))