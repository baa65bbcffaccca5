"""Connection wrapper for the Valkey (Redis-compatible) store."""

from __future__ import annotations

from dataclasses import dataclass

import redis

_DEFAULT_HOST = "localhost"
_DEFAULT_PORT = 6379


@dataclass(frozen=True)
class ValkeyConfig:
    addr: str = ""
    password: str = ""
    db: int = 0


def _split_addr(addr: str) -> tuple[str, int]:
    addr = addr.strip()
    if not addr:
        return _DEFAULT_HOST, _DEFAULT_PORT
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, _DEFAULT_PORT
    return host or _DEFAULT_HOST, int(port)


class ValkeyClient:
    """Owns a redis client configured for the application's Valkey server."""

    def __init__(self, config: ValkeyConfig) -> None:
        host, port = _split_addr(config.addr)
        self._rdb = redis.Redis(
            host=host,
            port=port,
            password=config.password or None,
            db=config.db,
            decode_responses=True,
        )

    @classmethod
    def from_redis(cls, rdb) -> ValkeyClient:
        """Wrap an existing redis client."""
        client = cls.__new__(cls)
        client._rdb = rdb
        return client

    @property
    def rdb(self):
        """The underlying redis client."""
        return self._rdb

    def ping(self) -> None:
        """Check the connection; raise ConnectionError if the server is unreachable."""
        try:
            self._rdb.ping()
        except redis.RedisError as exc:
            raise ConnectionError(f"ping valkey: {exc}") from exc

    def close(self) -> None:
        if self._rdb is None:
            return
        self._rdb.close()

    def __enter__(self) -> ValkeyClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()