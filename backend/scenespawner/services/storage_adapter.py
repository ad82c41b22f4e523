"""
Object Store - GridFS-based artifact storage behind a pluggable interface.

Generated clips are written once under a caller-chosen key, flipped to public,
and served back through the public artifacts route. The workflow never deletes
objects.
"""
import hashlib
import io
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Tuple
from urllib.parse import quote

from motor.motor_asyncio import AsyncIOMotorGridFSBucket

from database import database

logger = logging.getLogger(__name__)

ACCESS_PRIVATE = "private"
ACCESS_PUBLIC = "public"


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ObjectNotFoundError(StorageError):
    """Object not found (or not public) in storage."""
    pass


class StoredObject:
    """Stored object metadata."""
    def __init__(
        self,
        key: str,
        content_type: str,
        size_bytes: int,
        sha256_hash: str,
        upload_timestamp: datetime,
        access_level: str = ACCESS_PRIVATE,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.key = key
        self.content_type = content_type
        self.size_bytes = size_bytes
        self.sha256_hash = sha256_hash
        self.upload_timestamp = upload_timestamp
        self.access_level = access_level
        self.metadata = metadata or {}


class ObjectStore(ABC):
    """Abstract base class for artifact storage."""

    @abstractmethod
    async def put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredObject:
        """Write bytes under key with an explicit content type."""
        pass

    @abstractmethod
    async def make_public(self, key: str) -> None:
        """Mark the object publicly readable."""
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Stable public URL for a key."""
        pass

    @abstractmethod
    async def get_public_object(self, key: str) -> Tuple[bytes, StoredObject]:
        """Read a public object. Raises ObjectNotFoundError otherwise."""
        pass


class GridFSObjectStore(ObjectStore):
    """
    GridFS-based object store.
    The key is stored as the GridFS filename; content type, hash and access
    level live in the file metadata.
    """

    def __init__(self, bucket_name: str, public_base_url: str, db=None):
        self.bucket_name = bucket_name
        self.public_base_url = public_base_url.rstrip("/")
        self._db = db
        self._bucket = None

    def _get_db(self):
        if self._db is None:
            self._db = database.get_db()
        return self._db

    def _get_bucket(self) -> AsyncIOMotorGridFSBucket:
        """Get or create GridFS bucket."""
        if self._bucket is None:
            self._bucket = AsyncIOMotorGridFSBucket(self._get_db(), bucket_name=self.bucket_name)
        return self._bucket

    def _files(self):
        return self._get_db()[f"{self.bucket_name}.files"]

    async def put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredObject:
        bucket = self._get_bucket()
        sha256_hash = hashlib.sha256(data).hexdigest()
        uploaded_at = datetime.now(timezone.utc)

        await bucket.upload_from_stream(
            key,
            io.BytesIO(data),
            metadata={
                "content_type": content_type,
                "sha256_hash": sha256_hash,
                "access_level": ACCESS_PRIVATE,
                "upload_timestamp": uploaded_at.isoformat(),
                "custom_metadata": metadata or {},
            },
        )

        logger.info(f"Object stored in GridFS: {key} ({len(data)} bytes)")
        return StoredObject(
            key=key,
            content_type=content_type,
            size_bytes=len(data),
            sha256_hash=sha256_hash,
            upload_timestamp=uploaded_at,
            metadata=metadata,
        )

    async def make_public(self, key: str) -> None:
        result = await self._files().update_one(
            {"filename": key},
            {"$set": {"metadata.access_level": ACCESS_PUBLIC}},
        )
        if result.matched_count == 0:
            raise ObjectNotFoundError(f"Object not found: {key}")

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/api/scenes/artifacts/{quote(key)}"

    async def get_public_object(self, key: str) -> Tuple[bytes, StoredObject]:
        file_doc = await self._files().find_one(
            {"filename": key, "metadata.access_level": ACCESS_PUBLIC}
        )
        if not file_doc:
            raise ObjectNotFoundError(f"Object not found: {key}")

        stream = io.BytesIO()
        await self._get_bucket().download_to_stream(file_doc["_id"], stream)

        meta = file_doc.get("metadata", {})
        return stream.getvalue(), StoredObject(
            key=file_doc["filename"],
            content_type=meta.get("content_type", "application/octet-stream"),
            size_bytes=file_doc["length"],
            sha256_hash=meta.get("sha256_hash", ""),
            upload_timestamp=datetime.fromisoformat(meta["upload_timestamp"]) if meta.get("upload_timestamp") else None,
            access_level=meta.get("access_level", ACCESS_PRIVATE),
            metadata=meta.get("custom_metadata", {}),
        )
