# combox

Server-side building blocks for the Combox chat service. The package holds
the pieces a chat backend needs around its HTTP layer:

- **Localisation** (`combox.i18n`): a catalog of JSON string tables, one file
  per locale, with locale negotiation from `Accept-Language`-style values and
  fallback to a default locale.
- **Logging** (`combox.observability`): a JSON log formatter and a logger on
  standard output, at debug level for the `local` and `dev` environments and
  info level elsewhere.
- **E-mail delivery** (`combox.resend`): a small client that sends
  transactional mail through the Resend HTTP API.
- **Valkey state and events** (`combox.valkey`): publishing of real-time
  message, presence and notification events, plus short-lived state: chat
  invites, e-mail change flows, message delivery statuses, presence and
  per-user profile settings.
- **PostgreSQL repositories** (`combox.postgres`): sessions, users, bot
  tokens, end-to-end encryption keys, search and media attachments.
- **Migrations** (`combox.migrations`): applies `*.up.sql` files in name order
  and records each one in a `schema_migrations` table.
- **System notifications** (`combox.systembot`): posts login codes into a
  service chat for users who already have an active session.

Requires Python 3.10 or later. The runtime dependencies are `redis` and
`httpx`; the `test` extra adds `pytest` and `respx`.

## Localisation

Put one JSON object of string keys and values per locale in a directory,
for example `strings/en.json` and `strings/ru.json`:

```python
from combox.i18n import load_dir

catalog = load_dir("strings", "en")

catalog.resolve_locale("ru-RU,ru;q=0.9")   # "ru" when ru.json is present
catalog.translate("ru-RU", "status.ok")     # Russian text, else English, else the key
```

`normalize_locale` reduces a value to its two-letter code. A missing
directory, an unreadable or malformed file, or a missing default locale file
raises `CatalogError`.

## Logging

```python
from combox.observability import new_logger

logger = new_logger("dev")
logger.info("starting", extra={"env": "dev"})
```

Each record is written as one JSON object with `time`, `level`, `msg` and any
extra fields. `JsonFormatter` can also be attached to handlers of your own.

## Sending e-mail

```python
from combox.resend import ResendSender, ResendError

with ResendSender(api_key="placeholder", from_address="noreply@example.com") as sender:
    try:
        sender.send("someone@example.com", "Your code", "<p>123456</p>", "123456")
    except ResendError as exc:
        logger.error("mail not sent: %s", exc)
```

An empty API key or sender address raises `ResendError`, as does any
response outside the 2xx range. The base URL defaults to the public Resend
API and the request timeout to ten seconds.

## Valkey

```python
from combox.valkey.client import ValkeyClient, ValkeyConfig
from combox.valkey.events import EventPublisher, PresenceEvent
from combox.valkey.presence import PresenceRepository

client = ValkeyClient(ValkeyConfig(addr="127.0.0.1:6379"))
client.ping()

publisher = EventPublisher(client)
presence = PresenceRepository(client)
```

`ValkeyClient.from_redis` wraps an existing `redis.Redis` client.

- `combox.valkey.events`: `EventPublisher` sends event dataclasses as JSON to
  `user:<id>`, `device:<id>` and `presence:<id>` channels, filling in the
  `type` field when it is empty.
- `combox.valkey.chat_invites`: `ChatInviteRepository.create` stores an
  invite for seven days by default; `consume` returns it once and then
  deletes it, or returns `None`.
- `combox.valkey.email_change`: `EmailChangeRepository` keeps the old and
  new address of a pending e-mail change.
- `combox.valkey.message_status`: `MessageStatusRepository` records
  per-recipient statuses that never move back from `read` to `delivered`,
  and lists the latest status per message.
- `combox.valkey.presence`: `PresenceRepository` marks users online or
  offline with a last-seen time; users without a record are offline.
- `combox.valkey.profile_settings`: `ProfileSettingsRepository` stores the
  last-seen visibility setting, a list of recent GIFs, muted chats and
  unread counters per chat.

## PostgreSQL

The repositories share a `PostgresClient` wrapping a connection pool. The
pool is any object offering `execute(sql, *args)` returning a command status
such as `"UPDATE 1"`, `fetchrow`, `fetchval`, `fetch`, a `transaction()`
context manager that yields a connection with the same query methods, and
`close()`. Queries use `$1`-style placeholders.

```python
from combox.postgres.client import PostgresClient
from combox.postgres.auth_users import AuthUserRepository, UserNotFoundError

db = PostgresClient(pool)
users = AuthUserRepository(db)
try:
    user = users.find_by_login("someone@example.com")
except UserNotFoundError:
    user = None
```

- `auth_sessions.AuthSessionRepository`: create, find, refresh and delete
  login sessions.
- `auth_users.AuthUserRepository`: create, find and update users;
  `update_profile` changes only the fields wrapped in `Optional.of(...)`.
- `bot_tokens.BotTokenRepository`: ensure a user's bot exists, store its
  tokens and find active (not revoked, not expired) ones.
- `e2e.E2ERepository`: device identity keys, signed and one-time prekeys,
  prekey bundles (each claim consumes one one-time prekey) and key backups.
- `search.SearchRepository`: users and public chats; a query starting with
  `@` matches handles by prefix, anything else matches by substring. Limits
  default to 20 and are capped at 50.
- `media.MediaRepository`: attachments, their processing state and upload
  sessions.

Lookups that find nothing raise the repository's own error
(`SessionNotFoundError`, `UserNotFoundError`, `TokenNotFoundError`,
`AttachmentNotFoundError`, `MediaSessionNotFoundError`); unique-constraint
conflicts on users raise `EmailTakenError` or `UsernameTakenError`. Failures
inside key transactions raise `E2EError`.

## Migrations

```python
from combox.migrations import run_migrations

run_migrations(logger, pool, "migrations")
```

Each pending file runs in its own transaction; a failure raises
`MigrationError` and leaves later files unapplied. A missing directory only
logs a warning.

## System notifications

`SystemBotNotifier(pool, messages)` takes the pool and any object with
`create_message(bot_id=..., chat_id=..., content=...)`.
`notify_login_code(email, code, expires_at, locale)` returns `True` when it
posted the code, in Russian for `ru` locales and English otherwise, and
`False` when the user is unknown or has no active session.
`build_code_message` gives the text alone.

## What this package does not do

It has no HTTP or WebSocket server, no command-line program, and no
configuration loading. It ships no PostgreSQL driver: you supply a pool with
the interface described above. It does not contain the chat, authentication
or media services themselves, nor object storage; the system notifier relies
on a message-creating object you pass in.