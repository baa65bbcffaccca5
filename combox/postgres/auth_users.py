"""User accounts stored in PostgreSQL."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from combox.postgres.client import PostgresClient, rows_affected

T = TypeVar("T")

_USER_COLUMNS = (
    "id::text, email, username, password_hash, COALESCE(first_name, ''), last_name, "
    "birth_date::text, avatar_data_url, avatar_gradient, session_idle_ttl_seconds"
)

_CREATE = f"""
    INSERT INTO users (email, username, password_hash, first_name, last_name, birth_date, avatar_data_url, avatar_gradient)
    VALUES ($1, $2, $3, $4, $5, $6::date, $7, $8)
    RETURNING {_USER_COLUMNS}
"""

_FIND_BY_ID = f"""
    SELECT {_USER_COLUMNS}
    FROM users
    WHERE id = $1::uuid
    LIMIT 1
"""

_FIND_BY_LOGIN = f"""
    SELECT {_USER_COLUMNS}
    FROM users
    WHERE email = $1 OR username = $1
    LIMIT 1
"""

_UPDATE_IDLE_TTL = """
    UPDATE users
    SET session_idle_ttl_seconds = $2, updated_at = NOW()
    WHERE id = $1::uuid
"""

_UPDATE_LOGIN_DIGEST = (
    "UPDATE users SET password_hash = $2, updated_at = NOW() WHERE id = $1::uuid"
)

_UPDATE_EMAIL = f"""
    UPDATE users
    SET email = $2, updated_at = NOW()
    WHERE id = $1::uuid
    RETURNING {_USER_COLUMNS}
"""

_UNIQUE_VIOLATION = "23505"


class UserNotFoundError(LookupError):
    """Raised when a user does not exist."""

    def __init__(self, message: str = "user not found") -> None:
        super().__init__(message)


class EmailTakenError(ValueError):
    """Raised when the e-mail address belongs to another user."""

    def __init__(self, message: str = "email already taken") -> None:
        super().__init__(message)


class UsernameTakenError(ValueError):
    """Raised when the username belongs to another user."""

    def __init__(self, message: str = "username already taken") -> None:
        super().__init__(message)


@dataclass
class User:
    id: str = ""
    email: str = ""
    username: str = ""
    password_hash: str = ""
    first_name: str = ""
    last_name: str | None = None
    birth_date: str | None = None
    avatar_data_url: str | None = None
    avatar_gradient: str | None = None
    session_idle_ttl_seconds: int | None = None


@dataclass
class CreateUserInput:
    email: str
    username: str
    password_hash: str
    first_name: str = ""
    last_name: str | None = None
    birth_date: str | None = None
    avatar_data_url: str | None = None
    avatar_gradient: str | None = None


@dataclass(frozen=True)
class Optional(Generic[T]):
    """A field that is either left alone or set, possibly to None."""

    set: bool = False
    value: T | None = None

    @classmethod
    def of(cls, value: T | None) -> Optional[T]:
        return cls(set=True, value=value)


@dataclass
class UpdateProfileInput:
    user_id: str
    username: Optional[str] = field(default_factory=Optional)
    first_name: Optional[str] = field(default_factory=Optional)
    last_name: Optional[str] = field(default_factory=Optional)
    birth_date: Optional[str] = field(default_factory=Optional)
    avatar_data_url: Optional[str] = field(default_factory=Optional)
    avatar_gradient: Optional[str] = field(default_factory=Optional)


def _user_from_row(row: Any) -> User:
    return User(
        id=row[0],
        email=row[1],
        username=row[2],
        password_hash=row[3],
        first_name=row[4],
        last_name=row[5],
        birth_date=row[6],
        avatar_data_url=row[7],
        avatar_gradient=row[8],
        session_idle_ttl_seconds=row[9],
    )


def _unique_violation_constraint(exc: BaseException) -> str | None:
    """Constraint name of a unique violation, '' if unnamed; None if not one."""
    code = getattr(exc, "sqlstate", None) or getattr(exc, "pgcode", None)
    if code != _UNIQUE_VIOLATION:
        return None
    name = getattr(exc, "constraint_name", None)
    if name is None:
        diag = getattr(exc, "diag", None)
        name = getattr(diag, "constraint_name", None)
    return name or ""


_PROFILE_FIELDS = (
    ("username", "username = ${}"),
    ("first_name", "first_name = ${}"),
    ("last_name", "last_name = ${}"),
    ("birth_date", "birth_date = ${}::date"),
    ("avatar_data_url", "avatar_data_url = ${}"),
    ("avatar_gradient", "avatar_gradient = ${}"),
)


class AuthUserRepository:
    """Create, find and update user accounts."""

    def __init__(self, client: PostgresClient) -> None:
        self._client = client

    @property
    def _pool(self) -> Any:
        return self._client.pool

    def create(self, data: CreateUserInput) -> User:
        try:
            row = self._pool.fetchrow(
                _CREATE,
                data.email,
                data.username,
                data.password_hash,
                data.first_name,
                data.last_name,
                data.birth_date,
                data.avatar_data_url,
                data.avatar_gradient,
            )
        except Exception as exc:
            constraint = _unique_violation_constraint(exc)
            if constraint is None:
                raise
            if "email" in constraint:
                raise EmailTakenError() from exc
            if "username" in constraint:
                raise UsernameTakenError() from exc
            raise EmailTakenError() from exc
        if row is None:
            raise RuntimeError("insert user returned no row")
        return _user_from_row(row)

    def _find(self, query: str, value: str) -> User:
        row = self._pool.fetchrow(query, value)
        if row is None:
            raise UserNotFoundError()
        return _user_from_row(row)

    def find_by_id(self, user_id: str) -> User:
        return self._find(_FIND_BY_ID, user_id.strip())

    def find_by_login(self, login: str) -> User:
        return self._find(_FIND_BY_LOGIN, login.lower().strip())

    def update_session_idle_ttl(self, user_id: str, session_idle_ttl_seconds: int | None) -> None:
        status = self._pool.execute(_UPDATE_IDLE_TTL, user_id.strip(), session_idle_ttl_seconds)
        if rows_affected(status) == 0:
            raise UserNotFoundError()

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        status = self._pool.execute(_UPDATE_LOGIN_DIGEST, user_id.strip(), password_hash.strip())
        if rows_affected(status) == 0:
            raise UserNotFoundError()

    def update_profile(self, data: UpdateProfileInput) -> User:
        """Update only the fields that are set; raise UserNotFoundError if none are."""
        clauses: list[str] = []
        args: list[Any] = []
        for name, template in _PROFILE_FIELDS:
            option: Optional[Any] = getattr(data, name)
            if option.set:
                args.append(option.value)
                clauses.append(template.format(len(args)))
        if not clauses:
            raise UserNotFoundError()

        args.append(data.user_id.strip())
        query = f"""
            UPDATE users
            SET {", ".join(clauses)}, updated_at = NOW()
            WHERE id = ${len(args)}::uuid
            RETURNING {_USER_COLUMNS}
        """
        try:
            row = self._pool.fetchrow(query, *args)
        except Exception as exc:
            if _unique_violation_constraint(exc) is None:
                raise
            raise UsernameTakenError() from exc
        if row is None:
            raise UserNotFoundError()
        return _user_from_row(row)

    def update_email(self, user_id: str, email: str) -> User:
        try:
            row = self._pool.fetchrow(_UPDATE_EMAIL, user_id.strip(), email.lower().strip())
        except Exception as exc:
            if _unique_violation_constraint(exc) is None:
                raise
            raise EmailTakenError() from exc
        if row is None:
            raise UserNotFoundError()
        return _user_from_row(row)