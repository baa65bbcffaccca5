from datetime import timedelta

import pytest

from combox.valkey.client import ValkeyClient
from combox.valkey.email_change import EmailChangeRepository, EmailChangeState


class _Pipe:
    def __init__(self, target):
        self._target = target
        self._ops = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self._ops.append((name, args, kwargs))
            return self

        return queue

    def execute(self):
        return [getattr(self._target, name)(*args, **kwargs) for name, args, kwargs in self._ops]


class _FakeRedis:
    def __init__(self):
        self.hashes = {}
        self.ttls = {}

    def pipeline(self, transaction=True):
        return _Pipe(self)

    def hset(self, name, key=None, value=None, mapping=None):
        target = self.hashes.setdefault(name, {})
        if key is not None:
            target[key] = str(value)
        for k, v in (mapping or {}).items():
            target[k] = str(v)
        return 1

    def hdel(self, name, *keys):
        target = self.hashes.get(name, {})
        return sum(1 for k in keys if target.pop(k, None) is not None)

    def hgetall(self, name):
        return dict(self.hashes.get(name, {}))

    def expire(self, name, ttl):
        self.ttls[name] = ttl
        return True

    def delete(self, *names):
        for name in names:
            self.hashes.pop(name, None)
        return len(names)


@pytest.fixture
def fake():
    return _FakeRedis()


@pytest.fixture
def repo(fake):
    return EmailChangeRepository(ValkeyClient.from_redis(fake))


def test_get_empty_state(repo):
    assert repo.get(" u1 ") == EmailChangeState(user_id="u1")


def test_mark_old_verified(repo, fake):
    ttl = timedelta(minutes=10)
    repo.mark_old_verified("u1", "  Old@Example.com ", ttl)
    state = repo.get("u1")
    assert state.old_verified is True
    assert state.old_email == "old@example.com"
    assert state.new_email == ""
    assert fake.ttls["profile:email_change:u1"] == ttl


def test_new_email_then_reverify_clears_it(repo):
    repo.mark_old_verified("u1", "old@example.com", None)
    repo.set_new_email("u1", " New@Example.com", None)
    assert repo.get("u1").new_email == "new@example.com"
    repo.mark_old_verified("u1", "old@example.com", None)
    assert repo.get("u1").new_email == ""


def test_no_ttl_means_no_expire(repo, fake):
    repo.set_new_email("u1", "new@example.com", timedelta(0))
    assert repo.get("u1").new_email == "new@example.com"
    assert fake.ttls == {}


def test_clear(repo):
    repo.mark_old_verified("u1", "old@example.com", None)
    repo.clear("u1")
    assert repo.get("u1").old_verified is False


def test_blank_user_does_not_write(repo, fake):
    repo.mark_old_verified("  ", "old@example.com", None)
    repo.set_new_email("", "new@example.com", None)
    assert repo.get("  ") == EmailChangeState(user_id="")
    assert fake.hashes == {}


def test_without_client():
    repository = EmailChangeRepository(None)
    repository.mark_old_verified("u1", "old@example.com", None)
    assert repository.get("u1") == EmailChangeState(user_id="u1")