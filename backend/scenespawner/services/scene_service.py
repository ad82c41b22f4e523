"""Scene Spawner Workflow Service

Orchestrates one generate-scene run:

    IDLE -> CREDIT_RESERVED -> SUBMITTED -> POLLING -> MATERIALIZING -> RECORDING -> COMPLETED

Any failure after CREDIT_RESERVED goes REFUNDING -> FAILED and gives the
credit back exactly once; precondition failures go straight to FAILED with
nothing to refund. This service is the only caller of refund_credit.

Collaborators are injected. get_scene_service() builds them once per process;
close_scene_service() releases their HTTP clients on shutdown.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pymongo.errors import PyMongoError

from scenespawner.config import PollPolicy, SceneSpawnerConfig
from scenespawner.errors import (
    GenerationFailed,
    GenerationRateLimited,
    InvalidSceneRequest,
    SceneGenerationError,
    TransientStoreError,
)
from scenespawner.models.credits import CreditReservation
from scenespawner.models.generations import (
    GenerationConfig,
    SceneGenerationRecord,
    SceneGenerationResult,
    SceneStyle,
    WorkflowState,
    MAX_PROMPT_LENGTH,
)
from scenespawner.services.artifact_service import ArtifactMaterializer, is_safe_key_segment
from scenespawner.services.credit_service import credit_service
from scenespawner.services.generation_record_service import generation_record_service
from scenespawner.services.operation_poller import OperationPoller
from scenespawner.services.provider_client import VeoProviderClient, build_scene_prompt
from scenespawner.services.storage_adapter import GridFSObjectStore

logger = logging.getLogger(__name__)


async def _wait_settled(future: asyncio.Future) -> bool:
    """Wait until future is done without ever cancelling it.

    Returns True if the waiting task was cancelled in the meantime.
    """
    cancelled = False
    while not future.done():
        try:
            await asyncio.wait({future})
        except asyncio.CancelledError:
            cancelled = True
    return cancelled


@dataclass
class SceneWorkflowRun:
    """State of a single generate-scene invocation. Lives for one call only."""
    user_id: str
    prompt: str
    style: SceneStyle
    state: WorkflowState = WorkflowState.IDLE
    reservation: Optional[CreditReservation] = None
    operation_name: Optional[str] = None
    refund_attempted: bool = False

    @property
    def correlation_id(self) -> str:
        return self.reservation.reservation_id if self.reservation else "-"


class SceneGenerationService:
    """Credit-gated, poll-based video generation workflow."""

    def __init__(
        self,
        credit_service,
        provider,
        materializer: ArtifactMaterializer,
        record_writer,
        poll_policy: PollPolicy,
        generation_config: Optional[GenerationConfig] = None,
        rate_limit_seconds: int = 0,
        poller: Optional[OperationPoller] = None,
    ):
        self.credit_service = credit_service
        self.provider = provider
        self.materializer = materializer
        self.record_writer = record_writer
        self.generation_config = generation_config or GenerationConfig()
        self.rate_limit_seconds = rate_limit_seconds
        self.poller = poller or OperationPoller(provider, poll_policy)

    @property
    def object_store(self):
        return self.materializer.object_store

    async def generate_scene(
        self,
        user_id: str,
        prompt: str,
        style: Union[SceneStyle, str],
    ) -> SceneGenerationResult:
        """Run the full workflow. Returns the result or raises a SceneGenerationError."""
        if not is_safe_key_segment(user_id):
            raise InvalidSceneRequest("Invalid user id.")
        prompt, style = self._validate(prompt, style)
        run = SceneWorkflowRun(user_id=user_id, prompt=prompt, style=style)

        try:
            await self._check_rate_limit(user_id)
            run.reservation = await self._reserve(run)
        except SceneGenerationError as e:
            # Nothing reserved, nothing to refund
            e.failed_state = run.state
            self._transition(run, WorkflowState.FAILED)
            raise
        self._transition(run, WorkflowState.CREDIT_RESERVED)

        try:
            return await self._run_reserved(run)
        except SceneGenerationError as e:
            await self._fail_with_refund(run, e)
            raise
        except asyncio.CancelledError:
            logger.warning(f"[reservation={run.correlation_id}] scene generation cancelled in {run.state.value}")
            await self._fail_with_refund(run, None)
            raise
        except Exception as e:
            logger.exception(f"[reservation={run.correlation_id}] unexpected error in {run.state.value}")
            error = GenerationFailed(detail=str(e))
            await self._fail_with_refund(run, error)
            raise error from e

    async def _reserve(self, run: SceneWorkflowRun) -> CreditReservation:
        task = asyncio.ensure_future(self.credit_service.reserve_credit(run.user_id))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # The debit may already be committed; wait for it and give it back
            await _wait_settled(task)
            if task.cancelled() or task.exception() is not None:
                raise
            run.reservation = task.result()
            self._transition(run, WorkflowState.CREDIT_RESERVED)
            await self._fail_with_refund(run, None)
            raise

    async def _run_reserved(self, run: SceneWorkflowRun) -> SceneGenerationResult:
        provider_prompt = build_scene_prompt(run.prompt, run.style)
        logger.info(
            f"[reservation={run.correlation_id}] Starting video generation for user {run.user_id} "
            f'with prompt: "{provider_prompt}"'
        )
        operation = await self.poller.submit(provider_prompt, self.generation_config)
        run.operation_name = operation.name
        self._transition(run, WorkflowState.SUBMITTED)

        self._transition(run, WorkflowState.POLLING)
        operation = await self.poller.wait_for_completion(operation)

        self._transition(run, WorkflowState.MATERIALIZING)
        artifact = await self.materializer.materialize(operation, run.user_id)

        # From here on a failure leaves an orphaned artifact; the credit is still refunded
        self._transition(run, WorkflowState.RECORDING)
        generation_id = await self.record_writer.record(
            run.user_id,
            run.prompt,
            run.style,
            artifact,
            reservation_id=run.reservation.reservation_id,
        )

        self._transition(run, WorkflowState.COMPLETED)
        logger.info(
            f"[reservation={run.correlation_id}] Successfully generated and stored video "
            f"for user {run.user_id}: {artifact.url}"
        )
        return SceneGenerationResult(
            video_url=artifact.url,
            generation_id=generation_id,
            remaining_credits=run.reservation.remaining_credits,
        )

    async def _fail_with_refund(self, run: SceneWorkflowRun, error: Optional[SceneGenerationError]) -> None:
        failed_state = run.state
        if error is not None:
            if error.failed_state is None:
                error.failed_state = failed_state
            if error.detail:
                logger.error(
                    f"[reservation={run.correlation_id}] {type(error).__name__} in {failed_state.value}: {error.detail}"
                )
        self._transition(run, WorkflowState.REFUNDING)
        reason = type(error).__name__ if error is not None else "Cancelled"
        try:
            await self._refund(run, reason, failed_state)
        finally:
            self._transition(run, WorkflowState.FAILED)

    async def _refund(self, run: SceneWorkflowRun, reason: str, failed_state: WorkflowState) -> None:
        """Give the reserved credit back once.

        The refund write runs in its own task and is awaited to completion even
        if the caller is cancelled meanwhile; the cancellation is re-raised after.
        """
        if run.refund_attempted or run.reservation is None or run.reservation.refunded:
            return
        run.refund_attempted = True
        refund = asyncio.ensure_future(self.credit_service.refund_credit(
            run.reservation,
            reason=f"Refund for failed scene generation ({reason} in {failed_state.value})",
        ))
        cancelled = await _wait_settled(refund)

        if refund.cancelled():
            refund_error = "refund write was cancelled"
        else:
            refund_error = refund.exception()
        if refund_error is not None:
            # The caller still gets the original failure
            logger.critical(
                f"CRITICAL: Failed to refund credit to user {run.user_id} "
                f"[reservation={run.correlation_id}] after {reason} in {failed_state.value}: "
                f"{refund_error}. Manual reconciliation required."
            )
        if cancelled:
            raise asyncio.CancelledError()

    async def _check_rate_limit(self, user_id: str) -> None:
        """Best-effort throttle. Check-then-act: concurrent first requests can both pass."""
        if self.rate_limit_seconds <= 0:
            return
        try:
            recent = await self.record_writer.has_recent_generation(user_id, self.rate_limit_seconds)
        except PyMongoError as e:
            raise TransientStoreError() from e
        if recent:
            raise GenerationRateLimited(
                f"Please wait at least {self.rate_limit_seconds} seconds between generations."
            )

    @staticmethod
    def _validate(prompt: Any, style: Any):
        if not isinstance(prompt, str) or not prompt.strip() or not style:
            raise InvalidSceneRequest()
        prompt = prompt.strip()
        if len(prompt) > MAX_PROMPT_LENGTH:
            raise InvalidSceneRequest(f"Prompt must be at most {MAX_PROMPT_LENGTH} characters.")
        try:
            style = SceneStyle(style)
        except ValueError:
            options = ", ".join(s.value for s in SceneStyle)
            raise InvalidSceneRequest(f"Invalid style. Must be one of: {options}")
        return prompt, style

    @staticmethod
    def _transition(run: SceneWorkflowRun, new_state: WorkflowState) -> None:
        logger.info(f"[reservation={run.correlation_id}] scene workflow {run.state.value} -> {new_state.value}")
        run.state = new_state

    # ------------------------------------------------------------------
    # Read side used by the routes
    # ------------------------------------------------------------------

    async def list_history(self, user_id: str, limit: int = 50) -> List[SceneGenerationRecord]:
        return await self.record_writer.list_generations(user_id, limit=limit)

    async def get_credit_summary(self, user_id: str, limit: int = 20) -> Dict[str, Any]:
        credits = await self.credit_service.get_balance(user_id)
        transactions = await self.credit_service.get_transaction_history(user_id, limit=limit)
        return {
            "user_id": user_id,
            "credits": credits,
            "recent_transactions": transactions,
            "checked_at": datetime.now(timezone.utc),
        }

    async def aclose(self) -> None:
        await self.provider.aclose()
        await self.materializer.aclose()


# ============================================================================
# Process-wide instance
# ============================================================================

_scene_service: Optional[SceneGenerationService] = None


def build_scene_service(config: Optional[SceneSpawnerConfig] = None) -> SceneGenerationService:
    """Wire the workflow against Mongo, GridFS and the Veo REST API."""
    config = config or SceneSpawnerConfig.from_env()
    if not config.api_key:
        logger.error("GEMINI_API_KEY is not set. Scene generation will fail.")

    provider = VeoProviderClient(
        api_key=config.api_key,
        model=config.model,
        api_base=config.api_base,
        timeout=config.request_timeout_seconds,
    )
    object_store = GridFSObjectStore(config.storage_bucket, config.public_api_url)
    materializer = ArtifactMaterializer(
        object_store,
        api_key=config.api_key,
        timeout=config.request_timeout_seconds,
    )
    return SceneGenerationService(
        credit_service=credit_service,
        provider=provider,
        materializer=materializer,
        record_writer=generation_record_service,
        poll_policy=config.poll_policy,
        generation_config=GenerationConfig(
            duration_seconds=config.duration_seconds,
            aspect_ratio=config.aspect_ratio,
        ),
        rate_limit_seconds=config.rate_limit_seconds,
    )


def get_scene_service() -> SceneGenerationService:
    global _scene_service
    if _scene_service is None:
        _scene_service = build_scene_service()
    return _scene_service


async def close_scene_service() -> None:
    global _scene_service
    if _scene_service is not None:
        await _scene_service.aclose()
        _scene_service = None


async def generate_scene(user_id: str, prompt: str, style: Union[SceneStyle, str]) -> SceneGenerationResult:
    """In-process entry point (same workflow as POST /api/scenes/generate)."""
    return await get_scene_service().generate_scene(user_id, prompt, style)
