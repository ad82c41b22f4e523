"""
Pytest configuration and shared test helpers for backend tests.

In-memory collaborators for the scene workflow live here so the orchestrator
can be exercised end to end without MongoDB or the provider API.
"""
import asyncio
import itertools
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

# Skip MongoDB connection when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import httpx
import pytest

from scenespawner.config import PollPolicy
from scenespawner.errors import InsufficientCredits, TransientStoreError, UserNotFound, PersistenceError
from scenespawner.models.credits import CreditReservation
from scenespawner.models.generations import (
    ArtifactRef,
    GenerationConfig,
    OperationError,
    OperationOutput,
    ProviderOperation,
    SceneGenerationRecord,
)
from scenespawner.services.artifact_service import ArtifactMaterializer
from scenespawner.services.provider_client import GenerativeProvider
from scenespawner.services.scene_service import SceneGenerationService
from scenespawner.services.storage_adapter import ObjectNotFoundError, ObjectStore, StorageError, StoredObject

MEDIA_URL = "https://generativelanguage.googleapis.com/v1beta/files/abc:download?alt=media"
VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42fake-video"

FAST_POLICY = PollPolicy(interval=0.001, backoff=1.0, max_interval=0.01, max_wait=5.0, max_attempts=5,
                         max_transient_errors=2)


class InMemoryCreditLedger:
    """Same contract as CreditService, backed by a dict."""

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self.balances = dict(balances or {})
        self.reservations: List[CreditReservation] = []
        self.refunds: List[str] = []
        self.fail_refunds = False
        self.reserve_delay = 0.0
        self.refund_delay = 0.0
        self.reserve_calls = 0
        self.refund_calls = 0

    async def reserve_credit(self, user_id: str) -> CreditReservation:
        self.reserve_calls += 1
        await asyncio.sleep(self.reserve_delay)  # Let concurrent callers interleave before the atomic section
        if user_id not in self.balances:
            raise UserNotFound()
        if self.balances[user_id] <= 0:
            raise InsufficientCredits()
        self.balances[user_id] -= 1
        reservation = CreditReservation(user_id=user_id, remaining_credits=self.balances[user_id])
        self.reservations.append(reservation)
        return reservation

    async def refund_credit(self, reservation: CreditReservation, reason: str = "", **kwargs) -> int:
        self.refund_calls += 1
        await asyncio.sleep(self.refund_delay)
        if self.fail_refunds:
            raise TransientStoreError("Refund write failed: store unavailable")
        self.balances[reservation.user_id] += reservation.amount
        reservation.refunded = True
        self.refunds.append(reservation.reservation_id)
        return self.balances[reservation.user_id]

    async def get_balance(self, user_id: str) -> int:
        if user_id not in self.balances:
            raise UserNotFound()
        return self.balances[user_id]

    async def get_transaction_history(self, user_id: str, limit: int = 50, offset: int = 0):
        return []


class ScriptedProvider(GenerativeProvider):
    """Provider whose operations follow a script of poll results.

    script items: "pending", "done", ("failed", message), or an exception instance.
    """

    def __init__(self, script=None, media_url: Optional[str] = MEDIA_URL, submit_error: Optional[Exception] = None):
        self.script = list(script or ["done"])
        self.media_url = media_url
        self.submit_error = submit_error
        self.submitted: List[Tuple[str, GenerationConfig]] = []
        self.check_calls = 0
        self._ids = itertools.count(1)
        self._progress: Dict[str, int] = {}

    async def submit(self, prompt: str, config: GenerationConfig) -> ProviderOperation:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append((prompt, config))
        name = f"models/veo-2.0-generate-001/operations/op-{next(self._ids)}"
        self._progress[name] = 0
        return ProviderOperation(name=name)

    async def check_operation(self, operation: ProviderOperation) -> ProviderOperation:
        if operation.is_terminal:
            return operation
        self.check_calls += 1
        index = self._progress[operation.name]
        self._progress[operation.name] = index + 1
        step = self.script[min(index, len(self.script) - 1)]
        if isinstance(step, Exception):
            raise step
        if step == "pending":
            return ProviderOperation(name=operation.name)
        if isinstance(step, tuple) and step[0] == "failed":
            return ProviderOperation(name=operation.name, done=True, error=OperationError(code=429, message=step[1]))
        return ProviderOperation(
            name=operation.name,
            done=True,
            output=OperationOutput(media_url=self.media_url) if self.media_url else OperationOutput(),
        )


class InMemoryObjectStore(ObjectStore):
    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.public: set = set()
        self.fail_put = False

    async def put_object(self, key, data, content_type, metadata=None) -> StoredObject:
        if self.fail_put:
            raise StorageError("bucket unavailable")
        self.objects[key] = (data, content_type)
        return StoredObject(
            key=key,
            content_type=content_type,
            size_bytes=len(data),
            sha256_hash="sha",
            upload_timestamp=None,
            metadata=metadata,
        )

    async def make_public(self, key: str) -> None:
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        self.public.add(key)

    def public_url(self, key: str) -> str:
        return f"https://scenes.test/api/scenes/artifacts/{key}"

    async def get_public_object(self, key: str):
        if key not in self.public:
            raise ObjectNotFoundError(key)
        data, content_type = self.objects[key]
        return data, StoredObject(key, content_type, len(data), "sha", None, access_level="public")


class InMemoryRecordWriter:
    def __init__(self):
        self.records: Dict[str, SceneGenerationRecord] = {}
        self.fail = False
        self.recent_users: set = set()
        self._ids = itertools.count(1)

    async def record(self, user_id, prompt, style, artifact: ArtifactRef, reservation_id=None) -> str:
        await asyncio.sleep(0)
        if self.fail:
            raise PersistenceError(detail="write concern timeout")
        generation_id = f"GEN-{next(self._ids):04d}"
        self.records[generation_id] = SceneGenerationRecord(
            generation_id=generation_id,
            user_id=user_id,
            prompt=prompt,
            style=style,
            video_url=artifact.url,
            artifact_key=artifact.key,
            reservation_id=reservation_id,
        )
        return generation_id

    async def list_generations(self, user_id: str, limit: int = 50):
        return [r for r in self.records.values() if r.user_id == user_id][:limit]

    async def has_recent_generation(self, user_id: str, seconds: int) -> bool:
        return user_id in self.recent_users


def download_transport(status_code: int = 200, content: bytes = VIDEO_BYTES, seen: Optional[list] = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, content=content)
    return httpx.MockTransport(handler)


class SceneHarness:
    """Wires SceneGenerationService against the in-memory collaborators."""

    def __init__(
        self,
        balances=None,
        script=None,
        download_status: int = 200,
        policy: PollPolicy = FAST_POLICY,
        rate_limit_seconds: int = 0,
        media_url: Optional[str] = MEDIA_URL,
    ):
        self.ledger = InMemoryCreditLedger(balances)
        self.provider = ScriptedProvider(script, media_url=media_url)
        self.store = InMemoryObjectStore()
        self.records = InMemoryRecordWriter()
        self.downloads: list = []
        self.http_client = httpx.AsyncClient(transport=download_transport(download_status, seen=self.downloads))
        self.materializer = ArtifactMaterializer(self.store, api_key="test-gemini-key", http_client=self.http_client)
        self.service = SceneGenerationService(
            credit_service=self.ledger,
            provider=self.provider,
            materializer=self.materializer,
            record_writer=self.records,
            poll_policy=policy,
            rate_limit_seconds=rate_limit_seconds,
        )


@pytest.fixture
def make_harness():
    return SceneHarness
