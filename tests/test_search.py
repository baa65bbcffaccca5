import pytest

from combox.postgres.client import PostgresClient
from combox.postgres.search import ChatResult, SearchRepository, UserResult


class FakePool:
    def __init__(self, rows=None):
        self.rows = rows or []
        self.calls = []

    def fetch(self, sql, *args):
        self.calls.append((sql, args))
        return self.rows


def make_repo(rows=None):
    pool = FakePool(rows)
    return SearchRepository(PostgresClient(pool)), pool


@pytest.mark.parametrize("query", ["", "   ", "@", "@   "])
def test_blank_queries_do_not_hit_database(query):
    repo, pool = make_repo()
    assert repo.search_users(query, 10) == []
    assert repo.search_public_chats(query, 10) == []
    assert pool.calls == []


def test_user_handle_search_uses_prefix_pattern():
    row = ("u1", "alice@example.com", "alice", "Alice", None, None, None, None)
    repo, pool = make_repo([row])
    results = repo.search_users(" @ Alice ", 0)
    assert results == [
        UserResult(id="u1", email="alice@example.com", username="alice", first_name="Alice")
    ]
    sql, args = pool.calls[0]
    assert args == ("alice%", 20)
    assert "OR LOWER(email)" not in sql


def test_user_text_search_uses_substring_pattern_and_clamps_limit():
    repo, pool = make_repo()
    assert repo.search_users("Bob", 500) == []
    sql, args = pool.calls[0]
    assert args == ("%bob%", 50)
    assert "LOWER(email) LIKE $1" in sql


def test_user_limit_within_range_is_kept():
    repo, pool = make_repo()
    repo.search_users("bob", 7)
    assert pool.calls[0][1][1] == 7


def test_chat_handle_search():
    row = ("c1", "News", "standalone_channel", "news", None, "g")
    repo, pool = make_repo([row])
    results = repo.search_public_chats("@NEWS", -3)
    assert results == [
        ChatResult(id="c1", title="News", kind="standalone_channel", public_slug="news", avatar_gradient="g")
    ]
    sql, args = pool.calls[0]
    assert args == ("news%", 20)
    assert "LOWER(title)" not in sql


def test_chat_text_search():
    repo, pool = make_repo()
    repo.search_public_chats("  Tech Talk ", 51)
    sql, args = pool.calls[0]
    assert args == ("%tech talk%", 50)
    assert "LOWER(title) LIKE $1" in sql
    assert "is_public = TRUE" in sql