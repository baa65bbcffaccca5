"""Apply pending *.up.sql migrations in file-name order."""

from __future__ import annotations

import logging
import os
from typing import Any

_CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version TEXT PRIMARY KEY,
        applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
"""
_IS_APPLIED = "SELECT EXISTS(SELECT 1 FROM schema_migrations WHERE version = $1)"
_TRACK = "INSERT INTO schema_migrations(version) VALUES($1)"


class MigrationError(Exception):
    """Raised when a migration cannot be read, applied or recorded."""


def _ensure_migrations_table(pool: Any) -> None:
    try:
        pool.execute(_CREATE_TABLE)
    except Exception as exc:
        raise MigrationError(f"ensure schema_migrations table: {exc}") from exc


def _is_applied(pool: Any, version: str) -> bool:
    try:
        return bool(pool.fetchval(_IS_APPLIED, version))
    except Exception as exc:
        raise MigrationError(f"check migration state {version}: {exc}") from exc


def _apply(pool: Any, filename: str, sql: str) -> None:
    try:
        with pool.transaction() as tx:
            try:
                tx.execute(sql)
            except Exception as exc:
                raise MigrationError(f"exec migration {filename}: {exc}") from exc
            try:
                tx.execute(_TRACK, filename)
            except Exception as exc:
                raise MigrationError(f"track migration {filename}: {exc}") from exc
    except MigrationError:
        raise
    except Exception as exc:
        raise MigrationError(f"commit migration {filename}: {exc}") from exc


def run_migrations(logger: logging.Logger, pool: Any, path: str | os.PathLike) -> None:
    """Run every not yet applied migration in path, each in its own transaction."""
    _ensure_migrations_table(pool)

    try:
        with os.scandir(path) as entries:
            filenames = sorted(
                entry.name
                for entry in entries
                if not entry.is_dir() and entry.name.endswith(".up.sql")
            )
    except FileNotFoundError:
        logger.warning("migration path does not exist", extra={"path": str(path)})
        return
    except OSError as exc:
        raise MigrationError(f"read migration dir: {exc}") from exc

    for filename in filenames:
        if _is_applied(pool, filename):
            continue
        try:
            with open(os.path.join(path, filename), encoding="utf-8") as handle:
                sql = handle.read()
        except OSError as exc:
            raise MigrationError(f"read migration {filename}: {exc}") from exc
        _apply(pool, filename, sql)
        logger.info("migration applied", extra={"version": filename})