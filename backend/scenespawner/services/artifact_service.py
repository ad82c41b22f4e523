"""Artifact Materializer

Moves a finished clip from the provider's time-limited URL into durable
storage under generated-scenes/{user_id}/{epoch_ms}-{uuid4}.{ext} and returns
its public reference.
"""

import logging
import time
import uuid
from typing import Optional

import httpx
from pymongo.errors import PyMongoError

from scenespawner.config import ARTIFACT_PREFIX
from scenespawner.errors import DownloadFailed, MissingArtifact, UploadFailed
from scenespawner.models.generations import ArtifactRef, ProviderOperation
from scenespawner.services.storage_adapter import ObjectStore, StorageError

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
}
DEFAULT_CONTENT_TYPE = "video/mp4"


def is_safe_key_segment(value: str) -> bool:
    """True if value can be used as one path segment of an artifact key."""
    if not isinstance(value, str) or value in ("", ".", ".."):
        return False
    return not any(ch in value for ch in "/\\") and value.isprintable()


def build_artifact_key(user_id: str, content_type: str = DEFAULT_CONTENT_TYPE, now_ms: Optional[int] = None) -> str:
    """Per-user key; timestamp plus uuid4 keeps keys unique within a namespace."""
    if not is_safe_key_segment(user_id):
        raise ValueError(f"Unsafe user id for artifact key: {user_id!r}")
    ext = CONTENT_TYPE_EXTENSIONS.get(content_type, "mp4")
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{ARTIFACT_PREFIX}/{user_id}/{timestamp}-{uuid.uuid4()}.{ext}"


class ArtifactMaterializer:
    def __init__(
        self,
        object_store: ObjectStore,
        api_key: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        self.object_store = object_store
        self.api_key = api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def materialize(self, operation: ProviderOperation, user_id: str) -> ArtifactRef:
        """Download the operation's media and persist it. Returns the public ref.

        Raises MissingArtifact, DownloadFailed or UploadFailed.
        """
        output = operation.output
        if output is None or not output.media_url:
            raise MissingArtifact(detail=f"operation {operation.name} has no media url")

        content_type = output.content_type or DEFAULT_CONTENT_TYPE
        data = await self._download(output.media_url, operation.name)

        key = build_artifact_key(user_id, content_type)
        try:
            stored = await self.object_store.put_object(
                key,
                data,
                content_type,
                metadata={"user_id": user_id, "operation": operation.name},
            )
            await self.object_store.make_public(key)
            url = self.object_store.public_url(key)
        except (StorageError, PyMongoError) as e:
            logger.error(f"Failed to store artifact {key} for user {user_id}: {e}")
            raise UploadFailed(detail=str(e)) from e

        logger.info(f"Stored generated video for user {user_id} at {key}")
        return ArtifactRef(
            key=key,
            url=url,
            content_type=content_type,
            size_bytes=stored.size_bytes,
            sha256=stored.sha256_hash,
        )

    async def _download(self, media_url: str, operation_name: str) -> bytes:
        params = {"key": self.api_key} if self.api_key else None
        try:
            response = await self._client.get(media_url, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Video download failed for {operation_name}: {e}")
            raise DownloadFailed(detail=str(e)) from e

        if not response.is_success or not response.content:
            logger.error(
                f"Failed to fetch generated video for {operation_name}. Status: {response.status_code}"
            )
            raise DownloadFailed(detail=f"Status: {response.status_code}")
        return response.content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
