"""Media attachments and upload sessions stored in PostgreSQL."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from combox.postgres.client import PostgresClient

DEFAULT_MISSING_META_LIMIT = 200
MAX_MISSING_META_LIMIT = 5000

_ATTACHMENT_COLUMNS = """
    id::text, user_id::text, filename, mime_type, kind, variant, is_client_compressed,
    size_bytes, width, height, duration_ms,
    bucket, object_key, upload_type, upload_id,
    processing_status, processing_error, preview_object_key, hls_master_object_key, processed_at,
    created_at, updated_at
"""

_CREATE_ATTACHMENT = f"""
    INSERT INTO attachments (
        id, user_id, filename, mime_type, kind, variant, is_client_compressed,
        size_bytes, width, height, duration_ms,
        bucket, object_key, upload_type, upload_id
    )
    VALUES (
        $1::uuid, $2::uuid, $3, $4, $5, $6, $7,
        $8, $9, $10, $11,
        $12, $13, $14, $15
    )
    RETURNING {_ATTACHMENT_COLUMNS}
"""

_GET_ATTACHMENT = f"""
    SELECT {_ATTACHMENT_COLUMNS}
    FROM attachments
    WHERE id = $1::uuid
    LIMIT 1
"""

_LIST_MISSING_META = f"""
    SELECT {_ATTACHMENT_COLUMNS}
    FROM attachments
    WHERE (width IS NULL OR height IS NULL)
       OR ((kind = 'video' OR kind = 'audio') AND duration_ms IS NULL)
    ORDER BY created_at ASC
    LIMIT $1
"""

_CAN_ACCESS = """
    SELECT EXISTS (
        SELECT 1
        FROM attachments a
        INNER JOIN messages m
            ON m.content LIKE ('%[[att:' || a.id::text || '|%')
        INNER JOIN chat_members cm
            ON cm.chat_id = m.chat_id
        WHERE a.id = $1::uuid
          AND cm.user_id = $2::uuid
    )
"""

_SET_UPLOAD_ID = """
    UPDATE attachments
    SET upload_id = $2, updated_at = NOW()
    WHERE id = $1::uuid
"""

_SET_META = """
    UPDATE attachments
    SET width = $2,
        height = $3,
        duration_ms = $4,
        updated_at = NOW()
    WHERE id = $1::uuid
"""

_SET_PROCESSING = """
    UPDATE attachments
    SET processing_status = $2,
        processing_error = $3,
        preview_object_key = $4,
        hls_master_object_key = $5,
        processed_at = $6,
        updated_at = NOW()
    WHERE id = $1::uuid
"""

_SESSION_COLUMNS = """
    id::text, user_id::text, attachment_id::text, filename, mime_type, kind, status,
    parts_total, parts_uploaded, bytes_total, bytes_uploaded, playlist_path, error_code, error_message,
    created_at, updated_at, finalized_at
"""

_CREATE_SESSION = f"""
    INSERT INTO media_sessions (
        id, user_id, attachment_id, filename, mime_type, kind, status,
        parts_total, parts_uploaded, bytes_total, bytes_uploaded, playlist_path, error_code, error_message, finalized_at
    )
    VALUES (
        $1::uuid, $2::uuid, $3::uuid, $4, $5, $6, $7,
        $8, $9, $10, $11, $12, $13, $14, $15
    )
    RETURNING {_SESSION_COLUMNS}
"""

_GET_SESSION = f"""
    SELECT {_SESSION_COLUMNS}
    FROM media_sessions
    WHERE id = $1::uuid
    LIMIT 1
"""

_UPDATE_PROGRESS = """
    UPDATE media_sessions
    SET parts_uploaded = GREATEST(parts_uploaded, $2),
        bytes_uploaded = GREATEST(bytes_uploaded, $3),
        updated_at = NOW()
    WHERE id = $1::uuid
"""

_MARK_FINALIZED = """
    UPDATE media_sessions
    SET status = $2,
        finalized_at = $3,
        updated_at = NOW()
    WHERE id = $1::uuid
"""

_FINALIZE_BY_ATTACHMENT = """
    UPDATE media_sessions
    SET status = $2,
        playlist_path = COALESCE($3, playlist_path),
        error_code = $4,
        error_message = $5,
        finalized_at = $6,
        updated_at = NOW()
    WHERE attachment_id = $1::uuid
"""


class AttachmentNotFoundError(LookupError):
    """Raised when an attachment does not exist."""

    def __init__(self, message: str = "attachment not found") -> None:
        super().__init__(message)


class MediaSessionNotFoundError(LookupError):
    """Raised when a media upload session does not exist."""

    def __init__(self, message: str = "media session not found") -> None:
        super().__init__(message)


@dataclass
class Attachment:
    id: str = ""
    user_id: str = ""
    filename: str = ""
    mime_type: str = ""
    kind: str = ""
    variant: str = ""
    is_client_compressed: bool = False
    size_bytes: int = 0
    width: int | None = None
    height: int | None = None
    duration_ms: int | None = None
    bucket: str = ""
    object_key: str = ""
    upload_type: str = ""
    upload_id: str | None = None
    processing_status: str = ""
    processing_error: str | None = None
    preview_object_key: str | None = None
    hls_master_object_key: str | None = None
    processed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class MediaSession:
    id: str = ""
    user_id: str = ""
    attachment_id: str = ""
    filename: str = ""
    mime_type: str = ""
    kind: str = ""
    status: str = ""
    parts_total: int = 0
    parts_uploaded: int = 0
    bytes_total: int = 0
    bytes_uploaded: int = 0
    playlist_path: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    finalized_at: datetime | None = None


def _attachment_from_row(row: Any) -> Attachment:
    return Attachment(*tuple(row))


def _session_from_row(row: Any) -> MediaSession:
    return MediaSession(*tuple(row))


def _clamp_missing_meta_limit(limit: int) -> int:
    if limit <= 0:
        return DEFAULT_MISSING_META_LIMIT
    return min(limit, MAX_MISSING_META_LIMIT)


class MediaRepository:
    """Persist attachments, their processing state and upload sessions."""

    def __init__(self, client: PostgresClient) -> None:
        self._client = client

    @property
    def _pool(self) -> Any:
        return self._client.pool

    def create_attachment(self, attachment: Attachment) -> Attachment:
        """Insert an attachment; the upload id is kept only for multipart uploads."""
        a = attachment
        upload_id = a.upload_id if a.upload_type.strip() == "multipart" else None
        row = self._pool.fetchrow(
            _CREATE_ATTACHMENT,
            a.id.strip(),
            a.user_id.strip(),
            a.filename.strip(),
            a.mime_type.strip(),
            a.kind.strip(),
            a.variant.strip(),
            a.is_client_compressed,
            a.size_bytes,
            a.width,
            a.height,
            a.duration_ms,
            a.bucket.strip(),
            a.object_key.strip(),
            a.upload_type.strip(),
            upload_id,
        )
        if row is None:
            raise RuntimeError("insert attachment returned no row")
        return _attachment_from_row(row)

    def get_attachment(self, attachment_id: str) -> Attachment:
        row = self._pool.fetchrow(_GET_ATTACHMENT, attachment_id.strip())
        if row is None:
            raise AttachmentNotFoundError()
        return _attachment_from_row(row)

    def list_attachments_missing_meta(
        self, limit: int = DEFAULT_MISSING_META_LIMIT
    ) -> list[Attachment]:
        """Oldest attachments lacking dimensions, or duration for audio and video."""
        rows = self._pool.fetch(_LIST_MISSING_META, _clamp_missing_meta_limit(limit)) or []
        return [_attachment_from_row(row) for row in rows]

    def can_user_access_attachment(self, user_id: str, attachment_id: str) -> bool:
        """Whether the attachment appears in a message of a chat the user belongs to."""
        return bool(self._pool.fetchval(_CAN_ACCESS, attachment_id.strip(), user_id.strip()))

    def set_attachment_upload_id(self, attachment_id: str, upload_id: str) -> None:
        self._pool.execute(_SET_UPLOAD_ID, attachment_id.strip(), upload_id.strip())

    def set_attachment_meta(
        self,
        attachment_id: str,
        width: int | None,
        height: int | None,
        duration_ms: int | None,
    ) -> None:
        self._pool.execute(_SET_META, attachment_id.strip(), width, height, duration_ms)

    def set_processing(
        self,
        attachment_id: str,
        status: str,
        processing_error: str | None,
        preview_object_key: str | None,
        hls_master_object_key: str | None,
        processed_at: datetime | None,
    ) -> None:
        self._pool.execute(
            _SET_PROCESSING,
            attachment_id.strip(),
            status.strip(),
            processing_error,
            preview_object_key,
            hls_master_object_key,
            processed_at,
        )

    def create_session(self, session: MediaSession) -> MediaSession:
        s = session
        row = self._pool.fetchrow(
            _CREATE_SESSION,
            s.id.strip(),
            s.user_id.strip(),
            s.attachment_id.strip(),
            s.filename.strip(),
            s.mime_type.strip(),
            s.kind.strip(),
            s.status.strip(),
            s.parts_total,
            s.parts_uploaded,
            s.bytes_total,
            s.bytes_uploaded,
            s.playlist_path,
            s.error_code,
            s.error_message,
            s.finalized_at,
        )
        if row is None:
            raise RuntimeError("insert media session returned no row")
        return _session_from_row(row)

    def get_session(self, session_id: str) -> MediaSession:
        row = self._pool.fetchrow(_GET_SESSION, session_id.strip())
        if row is None:
            raise MediaSessionNotFoundError()
        return _session_from_row(row)

    def update_session_progress(
        self, session_id: str, parts_uploaded: int, bytes_uploaded: int
    ) -> None:
        """Raise the recorded progress; it never goes down."""
        self._pool.execute(_UPDATE_PROGRESS, session_id.strip(), parts_uploaded, bytes_uploaded)

    def mark_session_finalized(self, session_id: str, status: str, finalized_at: datetime) -> None:
        self._pool.execute(_MARK_FINALIZED, session_id.strip(), status.strip(), finalized_at)

    def finalize_session_by_attachment(
        self,
        attachment_id: str,
        status: str,
        playlist_path: str | None,
        error_code: str | None,
        error_message: str | None,
        finalized_at: datetime,
    ) -> None:
        """Finalize the sessions of an attachment; a None playlist path keeps the old one."""
        self._pool.execute(
            _FINALIZE_BY_ATTACHMENT,
            attachment_id.strip(),
            status.strip(),
            playlist_path,
            error_code,
            error_message,
            finalized_at,
        )