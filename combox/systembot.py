"""Deliver login codes through a system bot chat to users already signed in."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

SYSTEM_FIRST_NAME = "Combox"
SYSTEM_CHAT_TITLE = "Combox Service Notifications"

_FIND_USER = "SELECT id::text FROM users WHERE email = $1 LIMIT 1"

_HAS_ACTIVE_SESSIONS = """
    SELECT EXISTS(
        SELECT 1
        FROM sessions
        WHERE user_id = $1::uuid
          AND expires_at > $2::timestamptz
        LIMIT 1
    )
"""

_ENSURE_SYSTEM_USER = """
    INSERT INTO bots (owner_user_id, actor_user_id, kind, name, is_system)
    VALUES (NULL, NULL, 'system', $1, TRUE)
    ON CONFLICT (is_system) WHERE is_system = TRUE
    DO UPDATE SET name = EXCLUDED.name, updated_at = NOW()
    RETURNING id::text
"""

_FIND_CHAT = """
    SELECT c.id::text
    FROM chats c
    INNER JOIN chat_members m1 ON m1.chat_id = c.id AND m1.user_id = $1::uuid
    WHERE c.is_direct = FALSE
      AND c.title = $2
      AND c.created_by = $1::uuid
    ORDER BY c.created_at ASC
    LIMIT 1
"""

_INSERT_CHAT = """
    INSERT INTO chats (title, is_direct, created_by, chat_type, chat_kind, bot_id)
    VALUES ($1, FALSE, $2::uuid, 'standard', 'bot', $3::uuid)
    RETURNING id::text
"""

_INSERT_MEMBER = """
    INSERT INTO chat_members (chat_id, user_id, role)
    VALUES ($1::uuid, $2::uuid, 'member')
    ON CONFLICT (chat_id, user_id) DO NOTHING
"""


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def build_code_message(locale: str, code: str, expires_at: datetime) -> str:
    """Text of the login-code message, in Russian for ru locales, else English."""
    until = _utc(expires_at).strftime("%H:%M")
    if locale.strip().lower().startswith("ru"):
        return (
            f"Код входа: {code}\nНикому не сообщайте этот код.\n"
            f"Действителен до {until} UTC."
        )
    return f"Login code: {code}\nDo not share this code.\nValid until {until} UTC."


def _ensure_system_user(tx: Any) -> str:
    row = tx.fetchrow(_ENSURE_SYSTEM_USER, SYSTEM_FIRST_NAME)
    if row is None:
        raise RuntimeError("upsert system bot returned no row")
    return row[0]


def _ensure_direct_chat(tx: Any, system_id: str, user_id: str) -> str:
    row = tx.fetchrow(_FIND_CHAT, user_id, SYSTEM_CHAT_TITLE)
    if row is not None:
        return row[0]
    row = tx.fetchrow(_INSERT_CHAT, SYSTEM_CHAT_TITLE, user_id, system_id)
    if row is None:
        raise RuntimeError("insert system chat returned no row")
    chat_id = row[0]
    tx.execute(_INSERT_MEMBER, chat_id, user_id)
    return chat_id


class SystemBotNotifier:
    """Post login codes into a user's system notification chat.

    ``messages`` must offer ``create_message(bot_id=..., chat_id=..., content=...)``.
    """

    def __init__(self, pool: Any, messages: Any) -> None:
        self._pool = pool
        self._messages = messages

    def notify_login_code(
        self, email: str, code: str, expires_at: datetime, locale: str
    ) -> bool:
        """Send the code if the user exists and has an active session; report whether it was sent."""
        if self._pool is None or self._messages is None:
            return False
        email = email.strip().lower()
        if not email or not code.strip():
            return False

        with self._pool.transaction() as tx:
            user_row = tx.fetchrow(_FIND_USER, email)
            if user_row is None:
                return False
            user_id = user_row[0]
            if not tx.fetchval(_HAS_ACTIVE_SESSIONS, user_id, datetime.now(timezone.utc)):
                return False
            system_id = _ensure_system_user(tx)
            chat_id = _ensure_direct_chat(tx, system_id, user_id)

        self._messages.create_message(
            bot_id=system_id,
            chat_id=chat_id,
            content=build_code_message(locale, code, expires_at),
        )
        return True