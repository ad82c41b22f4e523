"""Scene Spawner Generation Record Service

One immutable record per successful generation. created_at is assigned by
the database ($currentDate) on insert.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, List
import logging

from pymongo.errors import PyMongoError

from database import database
from scenespawner.errors import PersistenceError
from scenespawner.models.generations import ArtifactRef, SceneGenerationRecord, SceneStyle

logger = logging.getLogger(__name__)


class GenerationRecordService:
    """Generation record writer and history reader."""

    COLLECTION = "scene_generations"

    def __init__(self, db=None):
        self.db = db

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def record(
        self,
        user_id: str,
        prompt: str,
        style: SceneStyle,
        artifact: ArtifactRef,
        reservation_id: Optional[str] = None,
    ) -> str:
        """Insert the generation record and return its id.

        Raises PersistenceError if the store rejects the write.
        """
        db = self._get_db()
        record = SceneGenerationRecord(
            user_id=user_id,
            prompt=prompt,
            style=style,
            video_url=artifact.url,
            artifact_key=artifact.key,
            reservation_id=reservation_id,
        )
        document = record.model_dump(mode="json", exclude={"created_at"})

        try:
            # Upsert on a fresh id is a plain insert that lets the server stamp created_at
            await db[self.COLLECTION].update_one(
                {"generation_id": record.generation_id},
                {
                    "$setOnInsert": document,
                    "$currentDate": {"created_at": True},
                },
                upsert=True,
            )
        except PyMongoError as e:
            logger.error(f"Failed to save generation record for user {user_id}: {e}")
            raise PersistenceError(detail=str(e)) from e

        logger.info(f"Recorded generation {record.generation_id} for user {user_id}")
        return record.generation_id

    async def list_generations(self, user_id: str, limit: int = 50) -> List[SceneGenerationRecord]:
        """Get a user's generations, newest first."""
        db = self._get_db()
        cursor = db[self.COLLECTION].find(
            {"user_id": user_id},
            {"_id": 0}
        ).sort("created_at", -1).limit(limit)
        return [SceneGenerationRecord(**doc) async for doc in cursor]

    async def has_recent_generation(self, user_id: str, seconds: int) -> bool:
        """True if the user has a generation newer than `seconds` ago."""
        db = self._get_db()
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=seconds)
        recent = await db[self.COLLECTION].find_one(
            {"user_id": user_id, "created_at": {"$gt": cutoff}},
            {"_id": 0, "generation_id": 1}
        )
        return recent is not None

    async def find_by_reservation(self, reservation_id: str) -> Optional[Dict[str, Any]]:
        db = self._get_db()
        return await db[self.COLLECTION].find_one({"reservation_id": reservation_id}, {"_id": 0})


# Global service instance
generation_record_service = GenerationRecordService()
