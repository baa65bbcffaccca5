"""Online presence and last-seen times kept in Valkey hashes."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from combox.valkey.client import ValkeyClient


@dataclass
class PresenceStatus:
    user_id: str = ""
    online: bool = False
    last_seen: datetime | None = None


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return str(value)


def _presence_key(user_id: str) -> str:
    return "presence:user:" + user_id.strip()


def _unix(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return math.floor(value.timestamp())


class PresenceRepository:
    """Record and read whether users are online."""

    def __init__(self, client: ValkeyClient | None) -> None:
        self._rdb = client.rdb if client is not None else None

    def _set(self, user_id: str, online: bool, now: datetime, ttl: timedelta) -> None:
        if self._rdb is None or not user_id.strip():
            return
        key = _presence_key(user_id)
        pipe = self._rdb.pipeline(transaction=False)
        pipe.hset(
            key,
            mapping={"online": "1" if online else "0", "last_seen": str(_unix(now))},
        )
        pipe.expire(key, ttl)
        pipe.execute()

    def set_online(self, user_id: str, now: datetime, ttl: timedelta) -> None:
        self._set(user_id, True, now, ttl)

    def set_offline(self, user_id: str, now: datetime, ttl: timedelta) -> None:
        self._set(user_id, False, now, ttl)

    def get_presence(self, user_ids: Iterable[str]) -> dict[str, PresenceStatus]:
        """Presence per non-blank user id; users with no record are offline."""
        if self._rdb is None:
            return {}
        ids = list(dict.fromkeys(i for i in (raw.strip() for raw in user_ids) if i))
        if not ids:
            return {}
        pipe = self._rdb.pipeline(transaction=False)
        for user_id in ids:
            pipe.hgetall(_presence_key(user_id))
        results = pipe.execute()

        out: dict[str, PresenceStatus] = {}
        for user_id, raw_values in zip(ids, results):
            if not raw_values:
                out[user_id] = PresenceStatus(user_id=user_id, online=False)
                continue
            values = {_text(k): _text(v) for k, v in raw_values.items()}
            last_seen = None
            raw_seen = values.get("last_seen", "").strip()
            if raw_seen:
                try:
                    unix = int(raw_seen)
                except ValueError:
                    unix = 0
                if unix > 0:
                    last_seen = datetime.fromtimestamp(unix, tz=timezone.utc)
            out[user_id] = PresenceStatus(
                user_id=user_id,
                online=values.get("online", "").strip() == "1",
                last_seen=last_seen,
            )
        return out