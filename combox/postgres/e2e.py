"""End-to-end encryption device keys, prekey bundles and key backups."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from combox.postgres.client import PostgresClient

R = TypeVar("R")

_UPSERT_DEVICE = """
    INSERT INTO e2e_devices (device_id, user_id, identity_key, updated_at)
    VALUES ($1::uuid, $2::uuid, $3, NOW())
    ON CONFLICT (device_id) DO UPDATE
    SET user_id = EXCLUDED.user_id,
        identity_key = EXCLUDED.identity_key,
        updated_at = NOW()
    RETURNING device_id::text, user_id::text, identity_key, updated_at
"""

_UPSERT_SIGNED_PREKEY = """
    INSERT INTO e2e_signed_prekeys (device_id, key_id, public_key, signature)
    VALUES ($1::uuid, $2, $3, $4)
    ON CONFLICT (device_id, key_id) DO UPDATE
    SET public_key = EXCLUDED.public_key,
        signature = EXCLUDED.signature,
        created_at = NOW()
"""

_INSERT_PREKEY = """
    INSERT INTO e2e_one_time_prekeys (device_id, key_id, public_key)
    VALUES ($1::uuid, $2, $3)
    ON CONFLICT (device_id, key_id) DO NOTHING
"""

_LIST_USER_DEVICES = """
    SELECT device_id::text, identity_key
    FROM e2e_devices
    WHERE user_id = $1::uuid
    ORDER BY updated_at DESC
"""

_SELECT_DEVICE = """
    SELECT user_id::text, device_id::text, identity_key
    FROM e2e_devices
    WHERE user_id = $1::uuid AND device_id = $2::uuid
    LIMIT 1
"""

_SELECT_SIGNED = """
    SELECT key_id, public_key, signature
    FROM e2e_signed_prekeys
    WHERE device_id = $1::uuid
    ORDER BY created_at DESC
    LIMIT 1
"""

_SELECT_ONE_TIME = """
    SELECT key_id, public_key
    FROM e2e_one_time_prekeys
    WHERE device_id = $1::uuid AND consumed_at IS NULL
    ORDER BY created_at ASC
    FOR UPDATE SKIP LOCKED
    LIMIT 1
"""

_MARK_CONSUMED = """
    UPDATE e2e_one_time_prekeys
    SET consumed_at = $3
    WHERE device_id = $1::uuid AND key_id = $2
"""

_UPSERT_BACKUP = """
    INSERT INTO e2e_user_key_backups (user_id, alg, kdf, salt, params, ciphertext, updated_at)
    VALUES ($1::uuid, $2, $3, $4, $5::jsonb, $6, NOW())
    ON CONFLICT (user_id) DO UPDATE
    SET alg = EXCLUDED.alg,
        kdf = EXCLUDED.kdf,
        salt = EXCLUDED.salt,
        params = EXCLUDED.params,
        ciphertext = EXCLUDED.ciphertext,
        updated_at = NOW()
    RETURNING user_id::text, alg, kdf, salt, params::text, ciphertext, updated_at
"""

_GET_BACKUP = """
    SELECT user_id::text, alg, kdf, salt, params::text, ciphertext, updated_at
    FROM e2e_user_key_backups
    WHERE user_id = $1::uuid
    LIMIT 1
"""


class E2EError(Exception):
    """Raised when a key operation fails inside its transaction."""


@dataclass
class Device:
    device_id: str = ""
    user_id: str = ""
    identity_key: str = ""
    updated_at: datetime | None = None


@dataclass
class DeviceSummary:
    device_id: str = ""
    identity_key: str = ""


@dataclass
class SignedPreKey:
    key_id: int = 0
    public_key: str = ""
    signature: str = ""


@dataclass
class OneTimePreKey:
    key_id: int = 0
    public_key: str = ""


@dataclass
class PreKeyBundle:
    user_id: str = ""
    device_id: str = ""
    identity_key: str = ""
    signed_pre_key: SignedPreKey = field(default_factory=SignedPreKey)
    one_time_pre_key: OneTimePreKey | None = None


@dataclass
class UserKeyBackup:
    user_id: str = ""
    alg: str = ""
    kdf: str = ""
    salt: str = ""
    params: str = ""
    ciphertext: str = ""
    updated_at: datetime | None = None


@dataclass
class UpsertDeviceKeysInput:
    device_id: str
    user_id: str
    identity_key: str
    signed_pre_key: SignedPreKey
    one_time_pre_keys: list[OneTimePreKey] = field(default_factory=list)


@dataclass
class UpsertUserKeyBackupInput:
    user_id: str
    alg: str
    kdf: str
    salt: str
    params: str | bytes
    ciphertext: str


def _step(label: str, action: Callable[[], R]) -> R:
    try:
        return action()
    except E2EError:
        raise
    except Exception as exc:
        raise E2EError(f"{label}: {exc}") from exc


def _backup_from_row(row: Any) -> UserKeyBackup:
    return UserKeyBackup(
        user_id=row[0],
        alg=row[1],
        kdf=row[2],
        salt=row[3],
        params=row[4] or "",
        ciphertext=row[5],
        updated_at=row[6],
    )


class E2ERepository:
    """Store device identity keys and prekeys, hand out prekey bundles and key backups."""

    def __init__(self, client: PostgresClient) -> None:
        self._client = client

    @property
    def _pool(self) -> Any:
        return self._client.pool

    def _in_transaction(self, work: Callable[[Any], R]) -> R:
        try:
            with self._pool.transaction() as tx:
                return work(tx)
        except E2EError:
            raise
        except Exception as exc:
            raise E2EError(f"commit tx: {exc}") from exc

    def upsert_device_keys(self, data: UpsertDeviceKeysInput) -> Device:
        """Register a device's identity and signed prekey and add its one-time prekeys."""

        def work(tx: Any) -> Device:
            row = _step(
                "upsert device",
                lambda: tx.fetchrow(
                    _UPSERT_DEVICE, data.device_id, data.user_id, data.identity_key.strip()
                ),
            )
            if row is None:
                raise E2EError("upsert device: no row returned")
            device = Device(
                device_id=row[0], user_id=row[1], identity_key=row[2], updated_at=row[3]
            )
            signed = data.signed_pre_key
            _step(
                "upsert signed prekey",
                lambda: tx.execute(
                    _UPSERT_SIGNED_PREKEY,
                    data.device_id,
                    signed.key_id,
                    signed.public_key.strip(),
                    signed.signature.strip(),
                ),
            )
            for prekey in data.one_time_pre_keys:
                public_key = prekey.public_key.strip()
                if prekey.key_id <= 0 or not public_key:
                    continue
                _step(
                    "insert one-time prekey",
                    lambda: tx.execute(_INSERT_PREKEY, data.device_id, prekey.key_id, public_key),
                )
            return device

        return self._in_transaction(work)

    def list_user_devices(self, user_id: str) -> list[DeviceSummary]:
        rows = self._pool.fetch(_LIST_USER_DEVICES, user_id) or []
        return [DeviceSummary(device_id=row[0], identity_key=row[1]) for row in rows]

    def claim_pre_key_bundle(self, user_id: str, device_id: str) -> PreKeyBundle | None:
        """Build a bundle for a device, consuming one one-time prekey if any is left.

        Returns None when the device is not registered for the user.
        """

        def work(tx: Any) -> PreKeyBundle | None:
            row = _step("select device", lambda: tx.fetchrow(_SELECT_DEVICE, user_id, device_id))
            if row is None:
                return None
            bundle = PreKeyBundle(user_id=row[0], device_id=row[1], identity_key=row[2])

            signed = _step("select signed prekey", lambda: tx.fetchrow(_SELECT_SIGNED, device_id))
            if signed is None:
                raise E2EError("missing signed prekey")
            bundle.signed_pre_key = SignedPreKey(
                key_id=signed[0], public_key=signed[1], signature=signed[2]
            )

            one_time = _step(
                "select one-time prekey", lambda: tx.fetchrow(_SELECT_ONE_TIME, device_id)
            )
            if one_time is not None:
                prekey = OneTimePreKey(key_id=one_time[0], public_key=one_time[1])
                now = datetime.now(timezone.utc)
                _step(
                    "consume one-time prekey",
                    lambda: tx.execute(_MARK_CONSUMED, device_id, prekey.key_id, now),
                )
                bundle.one_time_pre_key = prekey
            return bundle

        return self._in_transaction(work)

    def upsert_user_key_backup(self, data: UpsertUserKeyBackupInput) -> UserKeyBackup:
        params = data.params.decode("utf-8") if isinstance(data.params, bytes) else data.params
        row = self._pool.fetchrow(
            _UPSERT_BACKUP,
            data.user_id.strip(),
            data.alg.strip(),
            data.kdf.strip(),
            data.salt.strip(),
            params,
            data.ciphertext.strip(),
        )
        if row is None:
            raise RuntimeError("upsert key backup returned no row")
        return _backup_from_row(row)

    def get_user_key_backup(self, user_id: str) -> UserKeyBackup | None:
        """The user's key backup, or None if none is stored."""
        row = self._pool.fetchrow(_GET_BACKUP, user_id.strip())
        if row is None:
            return None
        return _backup_from_row(row)