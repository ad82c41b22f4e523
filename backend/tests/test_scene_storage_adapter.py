"""
GridFS object store against a mocked bucket and files collection.

- put_object writes content type, sha256 and private access level into metadata.
- make_public flips access_level and reports unknown keys.
- get_public_object only returns files marked public.
"""
import hashlib

import pytest
from unittest.mock import AsyncMock, MagicMock

from scenespawner.services.storage_adapter import (
    ACCESS_PRIVATE,
    ACCESS_PUBLIC,
    GridFSObjectStore,
    ObjectNotFoundError,
)

pytestmark = pytest.mark.asyncio

BUCKET = "generated_scenes"
KEY = "generated-scenes/u1/1700000000000-abc.mp4"
DATA = b"\x00\x00\x00\x18ftypmp42"


def _store():
    files = MagicMock()
    files.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    files.find_one = AsyncMock(return_value=None)
    bucket = MagicMock()
    bucket.upload_from_stream = AsyncMock()
    bucket.download_to_stream = AsyncMock()

    store = GridFSObjectStore(BUCKET, "https://api.example.com/", db={f"{BUCKET}.files": files})
    store._bucket = bucket
    return store, bucket, files


async def test_put_object_writes_private_metadata():
    store, bucket, _ = _store()

    stored = await store.put_object(KEY, DATA, "video/mp4", metadata={"user_id": "u1"})

    args, kwargs = bucket.upload_from_stream.call_args
    assert args[0] == KEY
    assert args[1].getvalue() == DATA
    meta = kwargs["metadata"]
    assert meta["content_type"] == "video/mp4"
    assert meta["sha256_hash"] == hashlib.sha256(DATA).hexdigest()
    assert meta["access_level"] == ACCESS_PRIVATE
    assert meta["custom_metadata"] == {"user_id": "u1"}

    assert stored.key == KEY
    assert stored.size_bytes == len(DATA)
    assert stored.access_level == ACCESS_PRIVATE


async def test_make_public_updates_access_level():
    store, _, files = _store()

    await store.make_public(KEY)

    filter_, update = files.update_one.call_args[0]
    assert filter_ == {"filename": KEY}
    assert update == {"$set": {"metadata.access_level": ACCESS_PUBLIC}}


async def test_make_public_unknown_key():
    store, _, files = _store()
    files.update_one = AsyncMock(return_value=MagicMock(matched_count=0))

    with pytest.raises(ObjectNotFoundError):
        await store.make_public(KEY)


async def test_public_url_quotes_key_and_keeps_slashes():
    store, _, _ = _store()

    assert store.public_url(KEY) == f"https://api.example.com/api/scenes/artifacts/{KEY}"
    assert store.public_url("generated-scenes/u 1/a#b.mp4") == (
        "https://api.example.com/api/scenes/artifacts/generated-scenes/u%201/a%23b.mp4"
    )


async def test_get_public_object_reads_only_public_files():
    store, bucket, files = _store()
    files.find_one = AsyncMock(return_value={
        "_id": "file-1",
        "filename": KEY,
        "length": len(DATA),
        "metadata": {
            "content_type": "video/mp4",
            "sha256_hash": "abc",
            "access_level": ACCESS_PUBLIC,
            "upload_timestamp": "2026-01-01T00:00:00+00:00",
        },
    })

    async def download(file_id, stream):
        stream.write(DATA)

    bucket.download_to_stream = AsyncMock(side_effect=download)

    content, stored = await store.get_public_object(KEY)

    assert files.find_one.call_args[0][0] == {"filename": KEY, "metadata.access_level": ACCESS_PUBLIC}
    assert bucket.download_to_stream.call_args[0][0] == "file-1"
    assert content == DATA
    assert stored.content_type == "video/mp4"
    assert stored.access_level == ACCESS_PUBLIC


async def test_get_public_object_private_or_missing():
    store, bucket, files = _store()

    with pytest.raises(ObjectNotFoundError):
        await store.get_public_object(KEY)
    bucket.download_to_stream.assert_not_called()
