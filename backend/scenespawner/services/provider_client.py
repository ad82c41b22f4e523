"""
Generative provider client for video generation (Veo via the Gemini REST API).

Long-running flow:
  POST {base}/models/{model}:predictLongRunning  -> {"name": "<operation>"}
  GET  {base}/{operation}                        -> {"done": ..., "response"|"error": ...}

Transport errors, HTTP 429 and 5xx are reported as ProviderTransientError so the
poller can retry them; any other non-2xx is a GenerationFailed.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from scenespawner.errors import GenerationFailed, ProviderTransientError
from scenespawner.models.generations import (
    GenerationConfig,
    OperationError,
    OperationOutput,
    ProviderOperation,
    SceneStyle,
)

logger = logging.getLogger(__name__)


def build_scene_prompt(prompt: str, style: SceneStyle) -> str:
    """Compose the provider prompt from the user's prompt and style."""
    style_value = style.value if isinstance(style, SceneStyle) else str(style)
    return f"A {style_value} style video of: {prompt}"


class GenerativeProvider(ABC):
    """Abstract long-running generation provider."""

    @abstractmethod
    async def submit(self, prompt: str, config: GenerationConfig) -> ProviderOperation:
        """Start a generation and return its operation handle."""
        pass

    @abstractmethod
    async def check_operation(self, operation: ProviderOperation) -> ProviderOperation:
        """Re-read the operation. Must return terminal operations unchanged."""
        pass

    async def aclose(self) -> None:
        pass


class VeoProviderClient(GenerativeProvider):
    """Veo video generation over the Gemini REST API."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        api_base: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise GenerationFailed(detail="GEMINI_API_KEY not configured")
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    async def submit(self, prompt: str, config: GenerationConfig) -> ProviderOperation:
        url = f"{self.api_base}/models/{self.model}:predictLongRunning"
        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "durationSeconds": config.duration_seconds,
                "aspectRatio": config.aspect_ratio,
            },
        }
        data = await self._request("POST", url, json=payload)
        name = data.get("name")
        if not name:
            raise GenerationFailed(detail="Expected the model to return an operation")
        operation = self._parse_operation(data)
        logger.info(f"Submitted video generation to {self.model}: operation={name}")
        return operation

    async def check_operation(self, operation: ProviderOperation) -> ProviderOperation:
        if operation.is_terminal:
            return operation
        data = await self._request("GET", f"{self.api_base}/{operation.name}")
        if not data.get("name"):
            data["name"] = operation.name
        return self._parse_operation(data)

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        headers = self._headers()
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise ProviderTransientError(f"Provider transport error: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderTransientError(
                f"Provider returned {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise GenerationFailed(detail=f"Provider returned {response.status_code}: {response.text[:500]}")
        try:
            return response.json()
        except ValueError as e:
            raise ProviderTransientError(f"Provider returned invalid JSON: {e}") from e

    @staticmethod
    def _parse_operation(data: Dict[str, Any]) -> ProviderOperation:
        error = None
        output = None
        if data.get("error"):
            raw_error = data["error"]
            error = OperationError(
                code=raw_error.get("code"),
                message=raw_error.get("message") or "Unknown provider error",
            )
        elif data.get("done"):
            video_response = (data.get("response") or {}).get("generateVideoResponse") or {}
            samples = video_response.get("generatedSamples") or []
            video = (samples[0].get("video") or {}) if samples else {}
            output = OperationOutput(
                media_url=video.get("uri"),
                content_type=video.get("mimeType") or "video/mp4",
            )
            if not samples and video_response.get("raiMediaFilteredReasons"):
                logger.warning(
                    "Provider filtered generated media: %s",
                    video_response.get("raiMediaFilteredReasons"),
                )
        return ProviderOperation(
            name=data["name"],
            done=bool(data.get("done")) or error is not None,
            error=error,
            output=output,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
