"""Single-use chat invitations stored in Valkey with an expiry."""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import redis

from combox.valkey.client import ValkeyClient

DEFAULT_INVITE_TTL = timedelta(days=7)

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_TIME_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)


@dataclass
class ChatInvite:
    token: str = ""
    chat_id: str = ""
    inviter_id: str = ""
    invitee_id: str = ""
    created_at: datetime = _ZERO_TIME
    expires_at: datetime = _ZERO_TIME


def _invite_key(token: str) -> str:
    return "chat:invite:" + token.strip()


def _format_time(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    return text + "Z"


def _parse_time(value: str | None) -> datetime:
    if not value:
        return _ZERO_TIME
    match = _TIME_RE.match(value)
    if not match:
        raise ValueError(f"invalid timestamp: {value!r}")
    base, fraction, zone = match.groups()
    parsed = datetime.strptime(base, "%Y-%m-%dT%H:%M:%S")
    micro = int((fraction or "0")[:6].ljust(6, "0"))
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    return parsed.replace(microsecond=micro, tzinfo=tz)


def _encode(invite: ChatInvite) -> str:
    return json.dumps(
        {
            "token": invite.token,
            "chat_id": invite.chat_id,
            "inviter_user_id": invite.inviter_id,
            "invitee_user_id": invite.invitee_id,
            "created_at": _format_time(invite.created_at),
            "expires_at": _format_time(invite.expires_at),
        },
        separators=(",", ":"),
    )


def _decode(raw: str | bytes) -> ChatInvite:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("chat invite is not a JSON object")
    return ChatInvite(
        token=data.get("token") or "",
        chat_id=data.get("chat_id") or "",
        inviter_id=data.get("inviter_user_id") or "",
        invitee_id=data.get("invitee_user_id") or "",
        created_at=_parse_time(data.get("created_at")),
        expires_at=_parse_time(data.get("expires_at")),
    )


class ChatInviteRepository:
    """Create and redeem invitations; each can be consumed once."""

    def __init__(self, client: ValkeyClient | None) -> None:
        self._client = client

    def create(
        self,
        chat_id: str,
        inviter_id: str,
        invitee_id: str,
        ttl: timedelta | None = None,
    ) -> ChatInvite:
        if ttl is None or ttl <= timedelta(0):
            ttl = DEFAULT_INVITE_TTL
        now = datetime.now(timezone.utc)
        invite = ChatInvite(
            token=str(uuid.uuid4()),
            chat_id=chat_id.strip(),
            inviter_id=inviter_id.strip(),
            invitee_id=invitee_id.strip(),
            created_at=now,
            expires_at=now + ttl,
        )
        key = _invite_key(invite.token)
        if ttl < timedelta(seconds=1) or ttl % timedelta(seconds=1):
            self._client.rdb.set(key, _encode(invite), px=ttl // timedelta(milliseconds=1))
        else:
            self._client.rdb.set(key, _encode(invite), ex=int(ttl.total_seconds()))
        return invite

    def consume(self, token: str) -> ChatInvite | None:
        """Fetch and delete an invitation; None when it is missing or expired."""
        clean = token.strip()
        if self._client is None or not clean:
            return None
        try:
            raw = self._client.rdb.getdel(_invite_key(clean))
        except redis.RedisError:
            return None
        if raw is None:
            return None
        invite = _decode(raw)
        if not invite.token.strip():
            invite.token = clean
        return invite