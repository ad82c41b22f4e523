"""Scene Spawner Services"""

from .credit_service import credit_service, CreditService
from .generation_record_service import generation_record_service, GenerationRecordService
from .scene_service import (
    SceneGenerationService,
    get_scene_service,
    close_scene_service,
    generate_scene,
)

__all__ = [
    "credit_service",
    "CreditService",
    "generation_record_service",
    "GenerationRecordService",
    "SceneGenerationService",
    "get_scene_service",
    "close_scene_service",
    "generate_scene",
]
