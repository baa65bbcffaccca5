from contextlib import contextmanager
from datetime import datetime, timezone

import pytest

from combox.postgres.client import PostgresClient
from combox.postgres.e2e import (
    DeviceSummary,
    E2EError,
    E2ERepository,
    OneTimePreKey,
    SignedPreKey,
    UpsertDeviceKeysInput,
    UpsertUserKeyBackupInput,
)

NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class FakePool:
    def __init__(self, fetchrow_results=(), fetch_result=None):
        self.fetchrow_results = list(fetchrow_results)
        self.fetch_result = fetch_result or []
        self.calls = []
        self.committed = 0
        self.rolled_back = 0

    def fetchrow(self, sql, *args):
        self.calls.append(("fetchrow", sql, args))
        result = self.fetchrow_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def fetch(self, sql, *args):
        self.calls.append(("fetch", sql, args))
        return self.fetch_result

    def execute(self, sql, *args):
        self.calls.append(("execute", sql, args))
        return "INSERT 0 1"

    @contextmanager
    def transaction(self):
        try:
            yield self
        except Exception:
            self.rolled_back += 1
            raise
        else:
            self.committed += 1

    def executes(self, fragment):
        return [c for c in self.calls if c[0] == "execute" and fragment in c[1]]


def make_repo(pool):
    return E2ERepository(PostgresClient(pool))


def test_upsert_device_keys_skips_invalid_prekeys():
    pool = FakePool([("dev-1", "user-1", "ik", NOW)])
    repo = make_repo(pool)
    device = repo.upsert_device_keys(
        UpsertDeviceKeysInput(
            device_id="dev-1",
            user_id="user-1",
            identity_key="  ik  ",
            signed_pre_key=SignedPreKey(key_id=7, public_key=" spk ", signature=" sig "),
            one_time_pre_keys=[
                OneTimePreKey(key_id=1, public_key=" a "),
                OneTimePreKey(key_id=0, public_key="b"),
                OneTimePreKey(key_id=2, public_key="   "),
                OneTimePreKey(key_id=3, public_key="c"),
            ],
        )
    )
    assert device.device_id == "dev-1"
    assert device.updated_at == NOW
    assert pool.calls[0][2] == ("dev-1", "user-1", "ik")
    signed = pool.executes("e2e_signed_prekeys")
    assert signed[0][2] == ("dev-1", 7, "spk", "sig")
    inserted = [c[2] for c in pool.executes("e2e_one_time_prekeys")]
    assert inserted == [("dev-1", 1, "a"), ("dev-1", 3, "c")]
    assert pool.committed == 1


def test_upsert_device_failure_is_wrapped_and_rolled_back():
    pool = FakePool([RuntimeError("boom")])
    repo = make_repo(pool)
    with pytest.raises(E2EError, match="upsert device: boom"):
        repo.upsert_device_keys(
            UpsertDeviceKeysInput("dev", "user", "ik", SignedPreKey(1, "p", "s"))
        )
    assert pool.rolled_back == 1
    assert pool.committed == 0


def test_list_user_devices():
    pool = FakePool(fetch_result=[("d1", "k1"), ("d2", "k2")])
    devices = make_repo(pool).list_user_devices("user-1")
    assert devices == [DeviceSummary("d1", "k1"), DeviceSummary("d2", "k2")]
    assert pool.calls[0][2] == ("user-1",)


def test_claim_bundle_missing_device_returns_none():
    pool = FakePool([None])
    assert make_repo(pool).claim_pre_key_bundle("user-1", "dev-1") is None


def test_claim_bundle_missing_signed_prekey():
    pool = FakePool([("user-1", "dev-1", "ik"), None])
    with pytest.raises(E2EError, match="missing signed prekey"):
        make_repo(pool).claim_pre_key_bundle("user-1", "dev-1")
    assert pool.rolled_back == 1


def test_claim_bundle_consumes_one_time_prekey():
    pool = FakePool([("user-1", "dev-1", "ik"), (5, "spk", "sig"), (9, "otk")])
    bundle = make_repo(pool).claim_pre_key_bundle("user-1", "dev-1")
    assert bundle.identity_key == "ik"
    assert bundle.signed_pre_key == SignedPreKey(5, "spk", "sig")
    assert bundle.one_time_pre_key == OneTimePreKey(9, "otk")
    consumed = pool.executes("consumed_at")
    assert len(consumed) == 1
    assert consumed[0][2][:2] == ("dev-1", 9)
    assert consumed[0][2][2].tzinfo is not None
    assert pool.committed == 1


def test_claim_bundle_without_one_time_prekey():
    pool = FakePool([("user-1", "dev-1", "ik"), (5, "spk", "sig"), None])
    bundle = make_repo(pool).claim_pre_key_bundle("user-1", "dev-1")
    assert bundle.one_time_pre_key is None
    assert pool.executes("consumed_at") == []


def test_upsert_user_key_backup_round_trip():
    pool = FakePool([("user-1", "alg", "kdf", "salt", '{"n":1}', "ct", NOW)])
    backup = make_repo(pool).upsert_user_key_backup(
        UpsertUserKeyBackupInput(" user-1 ", " alg ", " kdf ", " salt ", b'{"n":1}', " ct ")
    )
    assert pool.calls[0][2] == ("user-1", "alg", "kdf", "salt", '{"n":1}', "ct")
    assert backup.params == '{"n":1}'
    assert backup.updated_at == NOW


def test_get_user_key_backup_missing():
    pool = FakePool([None])
    assert make_repo(pool).get_user_key_backup("user-1") is None


def test_get_user_key_backup_found():
    pool = FakePool([("user-1", "alg", "kdf", "salt", "{}", "ct", NOW)])
    backup = make_repo(pool).get_user_key_backup(" user-1 ")
    assert backup.user_id == "user-1"
    assert backup.ciphertext == "ct"
    assert pool.calls[0][2] == ("user-1",)