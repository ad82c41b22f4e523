"""Scene Spawner Routes

Endpoints:
- GET  /api/scenes/styles - Available styles
- POST /api/scenes/generate - Spend one credit and generate a video
- GET  /api/scenes/history - Caller's generations, newest first
- GET  /api/scenes/credits - Credit balance and recent ledger entries
- GET  /api/scenes/artifacts/{key} - Public generated video
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from fastapi.responses import Response
from typing import List
import logging

from scenespawner.errors import SceneGenerationError
from scenespawner.models.generations import (
    SceneStyle,
    SceneGenerationRequest,
    SceneGenerationResult,
    SceneHistoryResponse,
)
from scenespawner.models.credits import CreditBalanceResponse
from scenespawner.routes.auth import SceneUser, get_current_scene_user
from scenespawner.services.scene_service import SceneGenerationService, get_scene_service
from scenespawner.services.storage_adapter import ObjectNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scenes", tags=["Scene Spawner"])


@router.get("/styles", response_model=List[str])
async def get_styles():
    """Get the closed set of generation styles. No auth required."""
    return [style.value for style in SceneStyle]


@router.post("/generate", response_model=SceneGenerationResult)
async def generate_scene(
    request: SceneGenerationRequest,
    user: SceneUser = Depends(get_current_scene_user),
    service: SceneGenerationService = Depends(get_scene_service),
):
    """Generate a short video clip.

    Blocks until the clip is stored (typically one to several minutes).
    On any failure after the credit was taken, the credit is refunded
    before the error is returned.
    """
    try:
        return await service.generate_scene(user.user_id, request.prompt, request.style)
    except SceneGenerationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Scene generation failed for user {user.user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate or save the video.")


@router.get("/history", response_model=SceneHistoryResponse)
async def get_history(
    limit: int = Query(50, ge=1, le=100),
    user: SceneUser = Depends(get_current_scene_user),
    service: SceneGenerationService = Depends(get_scene_service),
):
    """Get the caller's generation history."""
    try:
        items = await service.list_history(user.user_id, limit=limit)
        return SceneHistoryResponse(items=items, total=len(items))
    except Exception as e:
        logger.error(f"Failed to get generation history: {e}")
        raise HTTPException(status_code=500, detail="Could not load generation history.")


@router.get("/credits", response_model=CreditBalanceResponse)
async def get_credits(
    limit: int = Query(20, ge=1, le=100),
    user: SceneUser = Depends(get_current_scene_user),
    service: SceneGenerationService = Depends(get_scene_service),
):
    """Get credit balance and recent credit movements."""
    try:
        summary = await service.get_credit_summary(user.user_id, limit=limit)
    except SceneGenerationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Failed to get credits: {e}")
        raise HTTPException(status_code=500, detail="Failed to get credits")
    return CreditBalanceResponse(
        user_id=summary["user_id"],
        credits=summary["credits"],
        recent_transactions=summary["recent_transactions"],
    )


@router.get("/artifacts/{key:path}")
async def get_artifact(
    key: str,
    service: SceneGenerationService = Depends(get_scene_service),
):
    """Serve a public generated video. No auth: the URL is the share link."""
    try:
        content, stored = await service.object_store.get_public_object(key)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="Video not found")

    return Response(
        content=content,
        media_type=stored.content_type,
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
