"""Scene Spawner Data Models"""

from .credits import (
    CreditReservation,
    CreditTransaction,
    CreditTransactionType,
    CreditBalanceResponse,
    SCENE_CREDIT_COST,
)
from .generations import (
    SceneStyle,
    WorkflowState,
    SceneGenerationRequest,
    GenerationConfig,
    OperationStatus,
    OperationError,
    OperationOutput,
    ProviderOperation,
    ArtifactRef,
    SceneGenerationRecord,
    SceneGenerationResult,
    SceneHistoryResponse,
)

__all__ = [
    # Credits
    "CreditReservation",
    "CreditTransaction",
    "CreditTransactionType",
    "CreditBalanceResponse",
    "SCENE_CREDIT_COST",
    # Generations
    "SceneStyle",
    "WorkflowState",
    "SceneGenerationRequest",
    "GenerationConfig",
    "OperationStatus",
    "OperationError",
    "OperationOutput",
    "ProviderOperation",
    "ArtifactRef",
    "SceneGenerationRecord",
    "SceneGenerationResult",
    "SceneHistoryResponse",
]
