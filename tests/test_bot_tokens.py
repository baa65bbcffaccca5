from datetime import datetime, timedelta, timezone

import pytest

from combox.postgres.bot_tokens import (
    Bot,
    BotTokenRepository,
    CreateTokenRecordInput,
    StoredToken,
    TokenNotFoundError,
)
from combox.postgres.client import PostgresClient

EXPIRES = datetime(2030, 1, 1, tzinfo=timezone.utc)


class FakePool:
    def __init__(self, rows=None, status="UPDATE 1"):
        self.rows = list(rows or [])
        self.status = status
        self.calls = []

    def fetchrow(self, sql, *args):
        self.calls.append((sql, args))
        return self.rows.pop(0) if self.rows else None

    def execute(self, sql, *args):
        self.calls.append((sql, args))
        return self.status


def make_repo(**kwargs):
    pool = FakePool(**kwargs)
    return BotTokenRepository(PostgresClient(pool)), pool


def test_ensure_user_bot_strips_and_maps():
    repo, pool = make_repo(rows=[("b1", "u1", "u1")])
    bot = repo.ensure_user_bot(" u1 ", " helper ")
    assert bot == Bot(id="b1", owner_user_id="u1", actor_user_id="u1")
    assert pool.calls[0][1] == ("u1", "helper")


def test_create_blank_name_becomes_null():
    repo, pool = make_repo(rows=[("t1", "b1", "secret", ["read"], ["c1"], False, EXPIRES)])
    record = repo.create(
        CreateTokenRecordInput(
            bot_id=" b1 ",
            secret_hash="secret",
            name="  ",
            scopes=["read"],
            chat_ids=["c1"],
            expires_at=EXPIRES,
        )
    )
    assert record == StoredToken(
        id="t1",
        bot_id="b1",
        secret_hash="secret",
        scopes=["read"],
        chat_ids=["c1"],
        is_revoked=False,
        expires_at=EXPIRES,
    )
    assert pool.calls[0][1] == ("b1", None, "secret", ["read"], ["c1"], EXPIRES)


def test_create_null_arrays_become_empty():
    repo, _ = make_repo(rows=[("t1", "b1", "secret", None, None, False, None)])
    record = repo.create(CreateTokenRecordInput(bot_id="b1", secret_hash="secret"))
    assert record.scopes == []
    assert record.chat_ids == []
    assert record.expires_at is None


def test_find_active_by_id_maps_owner_and_actor():
    repo, pool = make_repo(rows=[("t1", "b1", "u1", "u2", "secret", ["send"], [], False, None)])
    record = repo.find_active_by_id(" t1 ")
    assert record.owner_user_id == "u1"
    assert record.actor_user_id == "u2"
    assert record.scopes == ["send"]
    assert pool.calls[0][1] == ("t1",)


def test_find_active_by_id_missing_raises():
    repo, _ = make_repo()
    with pytest.raises(TokenNotFoundError):
        repo.find_active_by_id("t1")


def test_touch_last_used_converts_to_utc():
    repo, pool = make_repo()
    local = datetime(2030, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=3)))
    repo.touch_last_used(" t1 ", local)
    record_id, at = pool.calls[0][1]
    assert record_id == "t1"
    assert at == local
    assert at.utcoffset() == timedelta(0)


def test_touch_last_used_naive_is_utc():
    repo, pool = make_repo()
    naive = datetime(2030, 1, 1, 12, 0)
    repo.touch_last_used("t1", naive)
    at = pool.calls[0][1][1]
    assert at == naive.replace(tzinfo=timezone.utc)