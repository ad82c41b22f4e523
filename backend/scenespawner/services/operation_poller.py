"""
Generation Operation Poller.

Submits a generation to the provider, then re-checks the operation on an
interval until it is terminal. The wait is bounded by PollPolicy: after
max_attempts polls or max_wait seconds the run fails with GenerationTimeout.
Each wait is an asyncio.sleep, so only the calling task is suspended.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable

from scenespawner.config import PollPolicy
from scenespawner.errors import GenerationFailed, GenerationTimeout, ProviderTransientError
from scenespawner.models.generations import GenerationConfig, OperationStatus, ProviderOperation
from scenespawner.services.provider_client import GenerativeProvider

logger = logging.getLogger(__name__)

# A lost response to any other failure may still have started billable work
RETRYABLE_SUBMIT_STATUSES = {429, 503}


class OperationPoller:
    def __init__(
        self,
        provider: GenerativeProvider,
        policy: PollPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.policy = policy
        self._sleep = sleep
        self._clock = clock

    async def submit(self, prompt: str, config: GenerationConfig) -> ProviderOperation:
        """Submit with bounded retry on explicit throttling/unavailable responses."""
        interval = self.policy.interval
        failures = 0
        while True:
            try:
                return await self.provider.submit(prompt, config)
            except ProviderTransientError as e:
                if e.status_code not in RETRYABLE_SUBMIT_STATUSES:
                    raise GenerationFailed(detail=str(e)) from e
                failures += 1
                if failures > self.policy.max_transient_errors:
                    raise GenerationFailed(detail=f"Submit failed after {failures} attempts: {e}") from e
                logger.warning(f"Provider busy on submit (attempt {failures}), retrying in {interval:.1f}s: {e}")
                await self._sleep(interval)
                interval = self.policy.next_interval(interval)

    async def poll(self, operation: ProviderOperation) -> ProviderOperation:
        """Check an operation once. Terminal operations come back unchanged."""
        if operation.is_terminal:
            return operation
        return await self.provider.check_operation(operation)

    async def wait_for_completion(self, operation: ProviderOperation) -> ProviderOperation:
        """Poll until done. Returns a DONE operation or raises.

        Raises GenerationFailed for a provider error (message logged verbatim)
        or too many consecutive transient errors, GenerationTimeout when the
        policy bound is reached first.
        """
        deadline = self._clock() + self.policy.max_wait
        interval = self.policy.interval
        attempts = 0
        consecutive_transient = 0

        while not operation.is_terminal:
            remaining = deadline - self._clock()
            if attempts >= self.policy.max_attempts or remaining <= 0:
                logger.error(
                    f"Operation {operation.name} not done after {attempts} polls "
                    f"(max_attempts={self.policy.max_attempts}, max_wait={self.policy.max_wait}s)"
                )
                raise GenerationTimeout(detail=f"operation {operation.name} still pending")

            await self._sleep(min(interval, remaining))
            attempts += 1
            try:
                operation = await self.poll(operation)
                consecutive_transient = 0
            except ProviderTransientError as e:
                consecutive_transient += 1
                logger.warning(
                    f"Transient error polling {operation.name} "
                    f"({consecutive_transient}/{self.policy.max_transient_errors}): {e}"
                )
                if consecutive_transient > self.policy.max_transient_errors:
                    raise GenerationFailed(detail=str(e)) from e
            interval = self.policy.next_interval(interval)

        if operation.status == OperationStatus.FAILED:
            logger.error(f"Provider operation {operation.name} failed: {operation.error.message}")
            raise GenerationFailed(detail=operation.error.message)

        logger.info(f"Operation {operation.name} done after {attempts} polls")
        return operation
