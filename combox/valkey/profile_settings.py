"""Per-user profile settings, recent GIFs, muted chats and unread counters."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import timedelta

import redis

from combox.valkey.client import ValkeyClient

SETTINGS_TTL = timedelta(days=365)
MAX_RECENT_GIFS = 400
DEFAULT_RECENT_GIFS_LIST = 30


@dataclass
class ProfileSettings:
    show_last_seen: bool = True


@dataclass
class ChatNotifications:
    muted_chat_ids: list[str] = field(default_factory=list)
    unread_by_chat: dict[str, int] = field(default_factory=dict)


@dataclass
class RecentGIF:
    id: str = ""
    title: str = ""
    preview_url: str = ""
    url: str = ""
    width: int = 0
    height: int = 0

    def to_json(self) -> str:
        data: dict[str, object] = {
            "id": self.id,
            "title": self.title,
            "preview_url": self.preview_url,
            "url": self.url,
        }
        if self.width:
            data["width"] = self.width
        if self.height:
            data["height"] = self.height
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes) -> RecentGIF:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("recent gif is not a JSON object")
        item = cls(
            id=data.get("id") or "",
            title=data.get("title") or "",
            preview_url=data.get("preview_url") or "",
            url=data.get("url") or "",
            width=data.get("width") or 0,
            height=data.get("height") or 0,
        )
        if not all(isinstance(v, str) for v in (item.id, item.title, item.preview_url, item.url)):
            raise ValueError("recent gif has non-string fields")
        if not all(type(v) is int for v in (item.width, item.height)):
            raise ValueError("recent gif has non-integer size")
        return item


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return str(value)


def _settings_key(user_id: str) -> str:
    return "profile:settings:" + user_id.strip()


def _recent_gifs_key(user_id: str) -> str:
    return "profile:gifs:recent:" + user_id.strip()


def _muted_chats_key(user_id: str) -> str:
    return "profile:chats:muted:" + user_id.strip()


def _unread_chats_key(user_id: str) -> str:
    return "profile:chats:unread:" + user_id.strip()


class ProfileSettingsRepository:
    """Read and write user preferences and chat notification state."""

    def __init__(self, client: ValkeyClient | None) -> None:
        self._client = client

    @property
    def _rdb(self):
        return self._client.rdb

    def get(self, user_id: str) -> ProfileSettings:
        if self._client is None or not user_id.strip():
            return ProfileSettings()
        try:
            value = self._rdb.hget(_settings_key(user_id), "show_last_seen")
        except redis.RedisError:
            return ProfileSettings()
        if value is None:
            return ProfileSettings()
        return ProfileSettings(show_last_seen=_text(value).strip() != "0")

    def set(self, user_id: str, show_last_seen: bool) -> None:
        if self._client is None or not user_id.strip():
            return
        key = _settings_key(user_id)
        pipe = self._rdb.pipeline(transaction=False)
        pipe.hset(key, "show_last_seen", "1" if show_last_seen else "0")
        pipe.expire(key, SETTINGS_TTL)
        pipe.execute()

    def add_recent_gif(self, user_id: str, item: RecentGIF, limit: int = MAX_RECENT_GIFS) -> None:
        """Put a GIF at the head of the recent list, dropping older copies of it."""
        if self._client is None or not user_id.strip():
            return
        gif_id = item.id.strip()
        url = item.url.strip()
        if not gif_id or not url:
            return
        if limit <= 0 or limit > MAX_RECENT_GIFS:
            limit = MAX_RECENT_GIFS
        raw = item.to_json()

        key = _recent_gifs_key(user_id)
        try:
            rows = self._rdb.lrange(key, 0, limit * 2) or []
        except redis.RedisError:
            rows = []
        for row in rows:
            try:
                existing = RecentGIF.from_json(row)
            except ValueError:
                continue
            if existing.id.strip() == gif_id or existing.url.strip() == url:
                try:
                    self._rdb.lrem(key, 0, row)
                except redis.RedisError:
                    pass

        pipe = self._rdb.pipeline(transaction=False)
        pipe.lpush(key, raw)
        pipe.ltrim(key, 0, limit - 1)
        pipe.expire(key, SETTINGS_TTL)
        pipe.execute()

    def list_recent_gifs(self, user_id: str, limit: int = DEFAULT_RECENT_GIFS_LIST) -> list[RecentGIF]:
        if self._client is None or not user_id.strip():
            return []
        if limit <= 0:
            limit = DEFAULT_RECENT_GIFS_LIST
        limit = min(limit, MAX_RECENT_GIFS)
        try:
            rows = self._rdb.lrange(_recent_gifs_key(user_id), 0, limit - 1) or []
        except redis.RedisError:
            return []
        out: list[RecentGIF] = []
        for row in rows:
            try:
                item = RecentGIF.from_json(row)
            except ValueError:
                continue
            if item.id.strip() and item.url.strip():
                out.append(item)
        return out

    def set_chat_muted(self, user_id: str, chat_id: str, muted: bool) -> None:
        if self._client is None:
            return
        user_id, chat_id = user_id.strip(), chat_id.strip()
        if not user_id or not chat_id:
            return
        key = _muted_chats_key(user_id)
        if muted:
            pipe = self._rdb.pipeline(transaction=False)
            pipe.sadd(key, chat_id)
            pipe.expire(key, SETTINGS_TTL)
            pipe.execute()
        else:
            self._rdb.srem(key, chat_id)

    def is_chat_muted(self, user_id: str, chat_id: str) -> bool:
        if self._client is None:
            return False
        user_id, chat_id = user_id.strip(), chat_id.strip()
        if not user_id or not chat_id:
            return False
        return bool(self._rdb.sismember(_muted_chats_key(user_id), chat_id))

    def list_muted_chat_ids(self, user_id: str) -> list[str]:
        if self._client is None or not user_id.strip():
            return []
        try:
            members = self._rdb.smembers(_muted_chats_key(user_id)) or set()
        except redis.RedisError:
            return []
        return sorted(m for m in (_text(raw).strip() for raw in members) if m)

    def increment_chat_unread(self, user_id: str, chat_id: str, delta: int) -> int:
        """Add delta to a chat's unread count; a negative total resets it to zero."""
        if self._client is None:
            return 0
        user_id, chat_id = user_id.strip(), chat_id.strip()
        if not user_id or not chat_id or delta == 0:
            return 0
        key = _unread_chats_key(user_id)
        value = int(self._rdb.hincrby(key, chat_id, delta))
        if value < 0:
            try:
                self._rdb.hset(key, chat_id, 0)
            except redis.RedisError:
                pass
            return 0
        try:
            self._rdb.expire(key, SETTINGS_TTL)
        except redis.RedisError:
            pass
        return value

    def reset_chat_unread(self, user_id: str, chat_id: str) -> None:
        if self._client is None:
            return
        user_id, chat_id = user_id.strip(), chat_id.strip()
        if not user_id or not chat_id:
            return
        self._rdb.hdel(_unread_chats_key(user_id), chat_id)

    def get_chat_notifications(self, user_id: str) -> ChatNotifications:
        out = ChatNotifications()
        if self._client is None or not user_id.strip():
            return out
        out.muted_chat_ids = self.list_muted_chat_ids(user_id)
        try:
            raw = self._rdb.hgetall(_unread_chats_key(user_id)) or {}
        except redis.RedisError:
            return out
        for raw_chat, raw_value in raw.items():
            chat_id = _text(raw_chat).strip()
            if not chat_id:
                continue
            try:
                count = int(_text(raw_value).strip())
            except ValueError:
                continue
            if count > 0:
                out.unread_by_chat[chat_id] = count
        return out