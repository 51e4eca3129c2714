"""
AI 图片生成 API
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from api.deps import get_current_user
from models.schemas import BatchGenerateImageRequest, GenerateImageRequest, RegenerateImageRequest
from services.ai_image_service import get_ai_image_service

logger = logging.getLogger(__name__)
router = APIRouter()

ai_image_service = get_ai_image_service()


@router.post("/generate")
async def generate_image(request: GenerateImageRequest, user: dict = Depends(get_current_user)):
    try:
        options = request.model_dump(exclude={"prompt"})
        return ai_image_service.generate_image(request.prompt, user["id"], options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"AI 图片生成失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"AI 图片生成失败: {str(e)}")


@router.post("/batch-generate")
async def batch_generate(request: BatchGenerateImageRequest, user: dict = Depends(get_current_user)):
    try:
        options = request.model_dump(exclude={"prompts"})
        results = ai_image_service.batch_generate(request.prompts, user["id"], options)
        return {
            "results": results,
            "total": len(results),
            "succeeded": sum(1 for r in results if r["status"] == "completed"),
        }
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/regenerate")
async def regenerate(request: RegenerateImageRequest, user: dict = Depends(get_current_user)):
    try:
        options = request.model_dump(exclude={"original_prompt"})
        return ai_image_service.regenerate(request.original_prompt, user["id"], options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/history")
async def get_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: dict = Depends(get_current_user)
):
    return ai_image_service.get_history(user["id"], limit=limit, offset=offset)


@router.get("/popular-prompts")
async def get_popular_prompts(limit: int = Query(10, ge=1, le=50), user: dict = Depends(get_current_user)):
    return ai_image_service.get_popular_prompts(limit)


@router.get("/{image_id}")
async def get_image(image_id: str, user: dict = Depends(get_current_user)):
    image = ai_image_service.get_image(image_id, user["id"])
    if not image:
        raise HTTPException(status_code=404, detail=f"AI image not found: {image_id}")
    return image


@router.delete("/{image_id}", status_code=204)
async def delete_image(image_id: str, user: dict = Depends(get_current_user)):
    if not ai_image_service.delete_image(image_id, user["id"]):
        raise HTTPException(status_code=404, detail=f"AI image not found: {image_id}")
    return Response(status_code=204)
