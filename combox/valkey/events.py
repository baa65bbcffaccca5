"""Real-time events published over Valkey pub/sub channels."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, is_dataclass, replace
from datetime import datetime, timezone
from typing import Any, ClassVar

from combox.valkey.client import ValkeyClient

EVENT_TYPE_DEVICE_MESSAGE_CREATED = "message.created"
EVENT_TYPE_USER_MESSAGE_CREATED = "message.created"
EVENT_TYPE_MESSAGE_STATUS = "message.status"
EVENT_TYPE_MESSAGE_UPDATED = "message.updated"
EVENT_TYPE_MESSAGE_DELETED = "message.deleted"
EVENT_TYPE_MESSAGE_REACTION = "message.reaction"
EVENT_TYPE_PRESENCE = "presence.update"
EVENT_TYPE_NOTIFICATION = "notification"

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


@dataclass
class DeviceMessageCreatedEvent:
    type: str = ""
    message_id: str = ""
    chat_id: str = ""
    sender_user_id: str = ""
    sender_device_id: str = ""
    recipient_device_id: str = ""
    alg: str = ""
    header: str = ""
    ciphertext: str = ""
    created_at: datetime = _ZERO_TIME


@dataclass
class UserMessageCreatedEvent:
    type: str = ""
    message_id: str = ""
    chat_id: str = ""
    sender_user_id: str = ""
    recipient_user_id: str = ""
    created_at: datetime = _ZERO_TIME


@dataclass
class MessageStatusEvent:
    _omit_empty: ClassVar[frozenset[str]] = frozenset({"recipient_user_id", "device_id"})

    type: str = ""
    message_id: str = ""
    chat_id: str = ""
    user_id: str = ""
    recipient_user_id: str = ""
    device_id: str = ""
    status: str = ""
    at: datetime = _ZERO_TIME


@dataclass
class MessageUpdatedEvent:
    type: str = ""
    message_id: str = ""
    chat_id: str = ""
    editor_user_id: str = ""
    recipient_user_id: str = ""
    content: str = ""
    edited_at: datetime = _ZERO_TIME


@dataclass
class MessageDeletedEvent:
    type: str = ""
    message_id: str = ""
    chat_id: str = ""
    actor_user_id: str = ""
    recipient_user_id: str = ""
    at: datetime = _ZERO_TIME


@dataclass
class MessageReaction:
    emoji: str = ""
    user_ids: list[str] = field(default_factory=list)


@dataclass
class MessageReactionEvent:
    type: str = ""
    message_id: str = ""
    chat_id: str = ""
    actor_user_id: str = ""
    recipient_user_id: str = ""
    emoji: str = ""
    action: str = ""
    reactions: list[MessageReaction] = field(default_factory=list)
    at: datetime = _ZERO_TIME


@dataclass
class PresenceEvent:
    type: str = ""
    user_id: str = ""
    online: bool = False
    last_seen: datetime = _ZERO_TIME
    updated_at: datetime = _ZERO_TIME


@dataclass
class NotificationEvent:
    _omit_empty: ClassVar[frozenset[str]] = frozenset({"muted"})

    type: str = ""
    user_id: str = ""
    kind: str = ""
    muted: bool = False
    payload: Any = None
    created_at: datetime = _ZERO_TIME


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if not offset:
        return text + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    total = abs(total)
    return f"{text}{sign}{total // 3600:02d}:{total % 3600 // 60:02d}"


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return _format_time(value)
    if is_dataclass(value) and not isinstance(value, type):
        return _to_dict(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    return value


def _to_dict(obj: Any) -> dict[str, Any]:
    omit = getattr(obj, "_omit_empty", frozenset())
    out: dict[str, Any] = {}
    for item in fields(obj):
        value = getattr(obj, item.name)
        if item.name in omit and not value:
            continue
        out[item.name] = _jsonable(value)
    return out


def _encode(event: Any) -> bytes:
    try:
        return json.dumps(_to_dict(event), separators=(",", ":"), ensure_ascii=False).encode()
    except (TypeError, ValueError) as exc:
        raise ValueError(f"marshal event: {exc}") from exc


class EventPublisher:
    """Publishes chat events to per-device, per-user and presence channels."""

    def __init__(self, client: ValkeyClient | None) -> None:
        self._client = client

    def _publish(self, channel: str, event: Any, default_type: str) -> None:
        if self._client is None:
            return
        if not event.type:
            event = replace(event, type=default_type)
        self._client.rdb.publish(channel, _encode(event))

    def publish_device_message_created(self, event: DeviceMessageCreatedEvent) -> None:
        self._publish(
            "device:" + event.recipient_device_id, event, EVENT_TYPE_DEVICE_MESSAGE_CREATED
        )

    def publish_user_message_created(self, event: UserMessageCreatedEvent) -> None:
        self._publish("user:" + event.recipient_user_id, event, EVENT_TYPE_USER_MESSAGE_CREATED)

    def publish_message_status(self, event: MessageStatusEvent) -> None:
        recipient = event.recipient_user_id or event.user_id
        self._publish("user:" + recipient, event, EVENT_TYPE_MESSAGE_STATUS)

    def publish_message_updated(self, event: MessageUpdatedEvent) -> None:
        self._publish("user:" + event.recipient_user_id, event, EVENT_TYPE_MESSAGE_UPDATED)

    def publish_message_deleted(self, event: MessageDeletedEvent) -> None:
        self._publish("user:" + event.recipient_user_id, event, EVENT_TYPE_MESSAGE_DELETED)

    def publish_message_reaction(self, event: MessageReactionEvent) -> None:
        self._publish("user:" + event.recipient_user_id, event, EVENT_TYPE_MESSAGE_REACTION)

    def publish_presence(self, event: PresenceEvent) -> None:
        self._publish("presence:" + event.user_id, event, EVENT_TYPE_PRESENCE)

    def publish_notification(self, event: NotificationEvent) -> None:
        self._publish("user:" + event.user_id, event, EVENT_TYPE_NOTIFICATION)