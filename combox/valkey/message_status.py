"""Per-user message delivery status tracked in Valkey."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

import redis

from combox.valkey.client import ValkeyClient

_STATUS_RANKS = {"read": 2, "delivered": 1}


@dataclass
class MessageStatus:
    message_id: str = ""
    chat_id: str = ""
    user_id: str = ""
    status: str = ""
    updated_at: datetime | None = None


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return str(value)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _unix(value: datetime) -> int:
    return math.floor(value.timestamp())


def status_rank(status: str | None) -> int:
    """Order of statuses: read beats delivered beats anything else."""
    return _STATUS_RANKS.get(_text(status).strip().lower(), 0)


def _status_key(message_id: str, user_id: str) -> str:
    return f"msgstatus:{message_id}:{user_id}"


def _user_index_key(user_id: str) -> str:
    return "msgstatus:user:" + user_id


def _latest_status_key(message_id: str) -> str:
    return "msgstatus:latest:" + message_id


class MessageStatusRepository:
    """Store per-recipient statuses that never move backwards in rank."""

    def __init__(self, client: ValkeyClient | None) -> None:
        self._client = client

    def _hget(self, key: str, field: str) -> str:
        try:
            return _text(self._client.rdb.hget(key, field))
        except redis.RedisError:
            return ""

    def upsert_message_status(
        self, chat_id: str, message_id: str, user_id: str, status: str, at: datetime
    ) -> MessageStatus:
        at = _utc(at)
        if self._client is None:
            return MessageStatus(
                message_id=message_id.strip(),
                chat_id=chat_id.strip(),
                user_id=user_id.strip(),
                status=status.strip().lower(),
                updated_at=at,
            )
        message_id = message_id.strip()
        user_id = user_id.strip()
        chat_id = chat_id.strip()
        status = status.strip().lower()
        if not message_id or not user_id or not status:
            return MessageStatus()

        key = _status_key(message_id, user_id)
        existing = self._hget(key, "status")
        if status_rank(existing) > status_rank(status):
            status = existing.strip().lower()

        latest_key = _latest_status_key(message_id)
        should_update_latest = status_rank(self._hget(latest_key, "status")) <= status_rank(status)

        stamp = str(_unix(at))
        pipe = self._client.rdb.pipeline(transaction=False)
        pipe.hset(key, mapping={"status": status, "chat_id": chat_id, "updated_at": stamp})
        if should_update_latest:
            pipe.hset(
                latest_key,
                mapping={
                    "status": status,
                    "chat_id": chat_id,
                    "user_id": user_id,
                    "updated_at": stamp,
                },
            )
        pipe.zadd(
            _user_index_key(user_id),
            {f"{message_id}:{chat_id}:{status}": float(_unix(at))},
        )
        pipe.execute()
        return MessageStatus(
            message_id=message_id,
            chat_id=chat_id,
            user_id=user_id,
            status=status,
            updated_at=at,
        )

    def list_latest_message_statuses(self, message_ids: Iterable[str]) -> list[MessageStatus]:
        """Latest known status of each distinct message; unknown messages are skipped."""
        if self._client is None:
            return []
        ids = list(dict.fromkeys(i for i in (raw.strip() for raw in message_ids) if i))
        if not ids:
            return []

        pipe = self._client.rdb.pipeline(transaction=False)
        for message_id in ids:
            pipe.hgetall(_latest_status_key(message_id))
        results = pipe.execute()

        out: list[MessageStatus] = []
        for message_id, raw_values in zip(ids, results):
            if not raw_values:
                continue
            values = {_text(k): _text(v) for k, v in raw_values.items()}
            status = values.get("status", "").strip().lower()
            chat_id = values.get("chat_id", "").strip()
            if not status or not chat_id:
                continue
            updated_at = None
            updated_raw = values.get("updated_at", "").strip()
            if updated_raw:
                try:
                    updated_at = datetime.fromtimestamp(int(updated_raw), tz=timezone.utc)
                except (ValueError, OverflowError, OSError):
                    updated_at = None
            out.append(
                MessageStatus(
                    message_id=message_id,
                    chat_id=chat_id,
                    user_id=values.get("user_id", "").strip(),
                    status=status,
                    updated_at=updated_at,
                )
            )
        return out