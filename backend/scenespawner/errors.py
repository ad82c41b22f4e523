"""Scene Spawner error taxonomy.

Every failure the workflow can surface to a caller is a SceneGenerationError
subclass carrying an HTTP status and a human-readable message.
Provider diagnostics are logged, never placed in the message.
"""

from typing import Optional


class SceneGenerationError(Exception):
    """Base exception for the scene generation workflow."""
    status_code = 500
    default_message = "Scene generation failed."

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail
        self.failed_state = None
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Precondition failures - no credit was spent
# ---------------------------------------------------------------------------

class InvalidSceneRequest(SceneGenerationError):
    status_code = 400
    default_message = "The request requires a non-empty 'prompt' and a valid 'style'."


class UserNotFound(SceneGenerationError):
    status_code = 404
    default_message = "User account not found."


class InsufficientCredits(SceneGenerationError):
    status_code = 402
    default_message = "Insufficient credits. You need at least 1 credit to generate a scene."


class GenerationRateLimited(SceneGenerationError):
    status_code = 429
    default_message = "Please wait before starting another generation."


class TransientStoreError(SceneGenerationError):
    status_code = 503
    default_message = "Failed to process user credits. Please try again."


# ---------------------------------------------------------------------------
# Failures after the credit was reserved - always refunded first
# ---------------------------------------------------------------------------

class GenerationFailed(SceneGenerationError):
    status_code = 502
    default_message = "Failed to generate the video. Your credit has been refunded."


class MissingArtifact(GenerationFailed):
    default_message = "The provider did not return a video. Your credit has been refunded."


class GenerationTimeout(SceneGenerationError):
    status_code = 504
    default_message = "Video generation took too long. Your credit has been refunded."


class DownloadFailed(SceneGenerationError):
    status_code = 500
    default_message = "Failed to retrieve the generated video. Your credit has been refunded."


class UploadFailed(SceneGenerationError):
    status_code = 500
    default_message = "Failed to save the generated video. Your credit has been refunded."


class PersistenceError(SceneGenerationError):
    status_code = 500
    default_message = "Failed to record the generation. Your credit has been refunded."


class ProviderTransientError(Exception):
    """Retryable provider failure (transport error, 429, 5xx). Never reaches callers."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
