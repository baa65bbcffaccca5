from dataclasses import astuple
from datetime import datetime, timezone

import pytest

from combox.postgres.client import PostgresClient
from combox.postgres.media import (
    Attachment,
    AttachmentNotFoundError,
    MediaRepository,
    MediaSession,
    MediaSessionNotFoundError,
)


class FakePool:
    def __init__(self, row=None, rows=None, value=None):
        self.row = row
        self.rows = rows or []
        self.value = value
        self.calls = []

    def fetchrow(self, sql, *args):
        self.calls.append(("fetchrow", sql, args))
        return self.row

    def fetch(self, sql, *args):
        self.calls.append(("fetch", sql, args))
        return self.rows

    def fetchval(self, sql, *args):
        self.calls.append(("fetchval", sql, args))
        return self.value

    def execute(self, sql, *args):
        self.calls.append(("execute", sql, args))
        return "UPDATE 1"


def repo_with(pool):
    return MediaRepository(PostgresClient(pool))


NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def sample_attachment(**overrides):
    values = dict(
        id=" att-1 ",
        user_id=" user-1 ",
        filename=" cat.png ",
        mime_type="image/png",
        kind="image",
        variant="original",
        size_bytes=10,
        bucket="chat-media",
        object_key=" obj/key ",
        upload_type="single",
        upload_id="upload-9",
    )
    values.update(overrides)
    return Attachment(**values)


def stored_attachment():
    return Attachment(
        id="att-1",
        user_id="user-1",
        filename="cat.png",
        mime_type="image/png",
        kind="image",
        variant="original",
        size_bytes=10,
        width=4,
        height=3,
        bucket="chat-media",
        object_key="obj/key",
        upload_type="single",
        processing_status="pending",
        created_at=NOW,
        updated_at=NOW,
    )


def test_create_attachment_drops_upload_id_for_single_upload():
    pool = FakePool(row=astuple(stored_attachment()))
    result = repo_with(pool).create_attachment(sample_attachment())
    args = pool.calls[0][2]
    assert args[0] == "att-1"
    assert args[2] == "cat.png"
    assert args[12] == "obj/key"
    assert args[14] is None
    assert result == stored_attachment()


def test_create_attachment_keeps_upload_id_for_multipart():
    pool = FakePool(row=astuple(stored_attachment()))
    repo_with(pool).create_attachment(sample_attachment(upload_type=" multipart "))
    args = pool.calls[0][2]
    assert args[13] == "multipart"
    assert args[14] == "upload-9"


def test_get_attachment_round_trip_and_missing():
    pool = FakePool(row=astuple(stored_attachment()))
    assert repo_with(pool).get_attachment(" att-1 ") == stored_attachment()
    assert pool.calls[0][2] == ("att-1",)
    with pytest.raises(AttachmentNotFoundError):
        repo_with(FakePool(row=None)).get_attachment("missing")


@pytest.mark.parametrize("requested, used", [(0, 200), (-5, 200), (10, 10), (9999, 5000)])
def test_list_missing_meta_clamps_limit(requested, used):
    pool = FakePool(rows=[astuple(stored_attachment())])
    items = repo_with(pool).list_attachments_missing_meta(requested)
    assert pool.calls[0][2] == (used,)
    assert items == [stored_attachment()]


def test_can_user_access_attachment():
    pool = FakePool(value=True)
    assert repo_with(pool).can_user_access_attachment(" user-1 ", " att-1 ") is True
    assert pool.calls[0][2] == ("att-1", "user-1")
    assert repo_with(FakePool(value=False)).can_user_access_attachment("u", "a") is False


def test_updates_trim_identifiers():
    pool = FakePool()
    repo = repo_with(pool)
    repo.set_attachment_upload_id(" att-1 ", " up ")
    repo.set_attachment_meta(" att-1 ", 4, None, 1000)
    repo.set_processing(" att-1 ", " ready ", None, "prev", "hls", NOW)
    assert pool.calls[0][2] == ("att-1", "up")
    assert pool.calls[1][2] == ("att-1", 4, None, 1000)
    assert pool.calls[2][2] == ("att-1", "ready", None, "prev", "hls", NOW)
    assert all(call[0] == "execute" for call in pool.calls)


def test_session_round_trip_and_missing():
    stored = MediaSession(
        id="s-1",
        user_id="user-1",
        attachment_id="att-1",
        filename="clip.mp4",
        mime_type="video/mp4",
        kind="video",
        status="uploading",
        parts_total=3,
        created_at=NOW,
        updated_at=NOW,
    )
    pool = FakePool(row=astuple(stored))
    repo = repo_with(pool)
    created = repo.create_session(
        MediaSession(id=" s-1 ", user_id="user-1", attachment_id="att-1", status=" uploading ")
    )
    assert created == stored
    assert pool.calls[0][2][0] == "s-1"
    assert pool.calls[0][2][6] == "uploading"
    assert repo.get_session("s-1") == stored
    with pytest.raises(MediaSessionNotFoundError):
        repo_with(FakePool(row=None)).get_session("s-1")


def test_session_progress_and_finalize_arguments():
    pool = FakePool()
    repo = repo_with(pool)
    repo.update_session_progress(" s-1 ", 2, 2048)
    repo.mark_session_finalized(" s-1 ", " done ", NOW)
    repo.finalize_session_by_attachment(" att-1 ", " failed ", None, "E", "boom", NOW)
    assert pool.calls[0][2] == ("s-1", 2, 2048)
    assert pool.calls[1][2] == ("s-1", "done", NOW)
    assert pool.calls[2][2] == ("att-1", "failed", None, "E", "boom", NOW)
    assert "COALESCE($3, playlist_path)" in pool.calls[2][1]