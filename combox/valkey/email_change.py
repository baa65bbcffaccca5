"""Two-step e-mail change state kept in a Valkey hash."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from combox.valkey.client import ValkeyClient


@dataclass
class EmailChangeState:
    user_id: str = ""
    old_email: str = ""
    new_email: str = ""
    old_verified: bool = False


def _email_change_key(user_id: str) -> str:
    return "profile:email_change:" + user_id.strip()


class EmailChangeRepository:
    """Track verification of the old address and the requested new one."""

    def __init__(self, client: ValkeyClient | None = None) -> None:
        self._client = client

    def get(self, user_id: str) -> EmailChangeState:
        state = EmailChangeState(user_id=user_id.strip())
        if self._client is None:
            return state
        values = self._client.rdb.hgetall(_email_change_key(user_id)) or {}
        state.old_email = (values.get("old_email") or "").strip()
        state.new_email = (values.get("new_email") or "").strip()
        state.old_verified = (values.get("old_verified") or "").strip() == "1"
        return state

    def mark_old_verified(self, user_id: str, old_email: str, ttl: timedelta | None) -> None:
        if self._client is None or not user_id.strip():
            return
        key = _email_change_key(user_id)
        pipe = self._client.rdb.pipeline(transaction=False)
        pipe.hset(key, mapping={"old_verified": "1", "old_email": old_email.strip().lower()})
        pipe.hdel(key, "new_email")
        if ttl is not None and ttl > timedelta(0):
            pipe.expire(key, ttl)
        pipe.execute()

    def set_new_email(self, user_id: str, new_email: str, ttl: timedelta | None) -> None:
        if self._client is None or not user_id.strip():
            return
        key = _email_change_key(user_id)
        pipe = self._client.rdb.pipeline(transaction=False)
        pipe.hset(key, "new_email", new_email.strip().lower())
        if ttl is not None and ttl > timedelta(0):
            pipe.expire(key, ttl)
        pipe.execute()

    def clear(self, user_id: str) -> None:
        if self._client is None or not user_id.strip():
            return
        self._client.rdb.delete(_email_change_key(user_id))