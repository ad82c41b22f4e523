"""
Generation records: server-assigned created_at, write failures, rate-limit lookup.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from pymongo.errors import PyMongoError

from scenespawner.errors import PersistenceError
from scenespawner.models.generations import ArtifactRef, SceneStyle
from scenespawner.services.generation_record_service import GenerationRecordService

pytestmark = pytest.mark.asyncio

ARTIFACT = ArtifactRef(
    key="generated-scenes/u1/1-abc.mp4",
    url="https://scenes.test/api/scenes/artifacts/generated-scenes/u1/1-abc.mp4",
    content_type="video/mp4",
    size_bytes=10,
    sha256="deadbeef",
)


def _db():
    coll = MagicMock()
    coll.update_one = AsyncMock()
    coll.find_one = AsyncMock(return_value=None)
    return {"scene_generations": coll}, coll


async def test_record_uses_server_timestamp():
    db, coll = _db()
    svc = GenerationRecordService(db=db)

    generation_id = await svc.record("u1", "a cat", SceneStyle.ANIME, ARTIFACT, reservation_id="CRS-1")

    assert generation_id.startswith("GEN-")
    filter_, update = coll.update_one.call_args[0]
    assert filter_ == {"generation_id": generation_id}
    assert update["$currentDate"] == {"created_at": True}
    doc = update["$setOnInsert"]
    assert "created_at" not in doc
    assert doc["user_id"] == "u1"
    assert doc["prompt"] == "a cat"
    assert doc["style"] == "Anime"
    assert doc["video_url"] == ARTIFACT.url
    assert doc["artifact_key"] == ARTIFACT.key
    assert doc["reservation_id"] == "CRS-1"
    assert coll.update_one.call_args[1]["upsert"] is True


async def test_record_ids_are_unique():
    db, _ = _db()
    svc = GenerationRecordService(db=db)
    ids = {await svc.record("u1", "p", SceneStyle.REALISTIC, ARTIFACT) for _ in range(20)}
    assert len(ids) == 20


async def test_store_failure_raises_persistence_error():
    db, coll = _db()
    coll.update_one = AsyncMock(side_effect=PyMongoError("not primary"))
    svc = GenerationRecordService(db=db)

    with pytest.raises(PersistenceError) as exc:
        await svc.record("u1", "p", SceneStyle.ANIME, ARTIFACT)
    assert "not primary" in exc.value.detail


async def test_has_recent_generation():
    db, coll = _db()
    svc = GenerationRecordService(db=db)

    assert await svc.has_recent_generation("u1", 30) is False

    coll.find_one = AsyncMock(return_value={"generation_id": "GEN-1"})
    assert await svc.has_recent_generation("u1", 30) is True
    query = coll.find_one.call_args[0][0]
    assert query["user_id"] == "u1"
    assert "$gt" in query["created_at"]
