"""Scene Spawner API Routes"""

from .scenes import router as scenes_router

__all__ = ["scenes_router"]
