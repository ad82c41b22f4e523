"""Scene Spawner Generation Models

Request/response shapes for the generate-scene workflow, the provider
operation it polls, and the records it persists.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum
import uuid


MAX_PROMPT_LENGTH = 2000


class SceneStyle(str, Enum):
    """Closed set of artistic styles accepted by the generator."""
    ANIME = "Anime"
    RENDER_3D = "3D Render"
    REALISTIC = "Realistic"
    CLAYMATION = "Claymation"


class WorkflowState(str, Enum):
    """States of one generate-scene run."""
    IDLE = "IDLE"
    CREDIT_RESERVED = "CREDIT_RESERVED"
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    MATERIALIZING = "MATERIALIZING"
    RECORDING = "RECORDING"
    COMPLETED = "COMPLETED"
    REFUNDING = "REFUNDING"
    FAILED = "FAILED"


class SceneGenerationRequest(BaseModel):
    """Inbound generation request. user_id comes from the authenticated caller."""
    prompt: str = Field(..., max_length=MAX_PROMPT_LENGTH)
    style: SceneStyle

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("prompt must not be empty")
        return value


class GenerationConfig(BaseModel):
    """Provider-side generation parameters."""
    duration_seconds: int = 5
    aspect_ratio: str = "16:9"


# ============================================================================
# Provider operation
# ============================================================================

class OperationStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


class OperationError(BaseModel):
    code: Optional[int] = None
    message: str = "Unknown provider error"


class OperationOutput(BaseModel):
    media_url: Optional[str] = None  # Time-limited, needs the API key to download
    content_type: str = "video/mp4"


class ProviderOperation(BaseModel):
    """Handle to in-flight provider work. Never persisted."""
    name: str
    done: bool = False
    error: Optional[OperationError] = None
    output: Optional[OperationOutput] = None

    @property
    def status(self) -> OperationStatus:
        if not self.done:
            return OperationStatus.PENDING
        if self.error is not None:
            return OperationStatus.FAILED
        return OperationStatus.DONE

    @property
    def is_terminal(self) -> bool:
        return self.done


# ============================================================================
# Stored artifact and generation record
# ============================================================================

class ArtifactRef(BaseModel):
    key: str
    url: str
    content_type: str
    size_bytes: int
    sha256: str


class SceneGenerationRecord(BaseModel):
    """Immutable audit entry linking a user, their request and the stored clip."""
    generation_id: str = Field(default_factory=lambda: f"GEN-{uuid.uuid4().hex[:16].upper()}")
    user_id: str
    prompt: str
    style: SceneStyle
    video_url: str
    artifact_key: str
    reservation_id: Optional[str] = None
    created_at: Optional[datetime] = None  # Assigned by the database on insert

    model_config = {"extra": "ignore"}


class SceneGenerationResult(BaseModel):
    video_url: str
    generation_id: str
    remaining_credits: int


class SceneHistoryResponse(BaseModel):
    items: List[SceneGenerationRecord]
    total: int
