"""
内容任务 API

所有响应使用 {statusCode, message, data} 格式
"""

from typing import Any, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import get_current_user
from models.schemas import (
    ContentJobInfo,
    CreateBatchJobRequest,
    CreateContentJobRequest,
    JobProgress,
    JobStatus,
)
from services.content_job_service import get_content_job_service

logger = logging.getLogger(__name__)
router = APIRouter()

job_service = get_content_job_service()

JOB_NOT_FOUND = "Job not found or access denied"


def envelope(status_code: int, message: str, data: Any) -> dict:
    return {"statusCode": status_code, "message": message, "data": data}


@router.post("/create-single", status_code=201)
async def create_single_job(request: CreateContentJobRequest, user: dict = Depends(get_current_user)):
    try:
        job = job_service.create_single_job(request, user["id"])
        return envelope(201, "Content job created successfully", ContentJobInfo(**job).model_dump(mode="json"))
    except Exception as e:
        logger.error(f"创建内容任务失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"创建内容任务失败: {str(e)}")


@router.post("/create-batch", status_code=201)
async def create_batch_jobs(request: CreateBatchJobRequest, user: dict = Depends(get_current_user)):
    """批量创建任务，concurrency 控制同一批次同时处理的任务数（1-10）"""
    try:
        jobs = job_service.create_batch_jobs(request, user["id"])
        return envelope(
            201,
            f"{len(jobs)} content jobs created successfully",
            [ContentJobInfo(**job).model_dump(mode="json") for job in jobs]
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"批量创建内容任务失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"批量创建内容任务失败: {str(e)}")


@router.get("")
async def list_jobs(
    status: Optional[JobStatus] = Query(None, description="状态筛选"),
    project_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(get_current_user)
):
    result = job_service.get_jobs(
        user["id"],
        status=status.value if status else None,
        project_id=project_id,
        page=page,
        limit=limit
    )
    result["data"] = [ContentJobInfo(**job).model_dump(mode="json") for job in result["data"]]
    return envelope(200, "Content jobs retrieved successfully", result)


@router.get("/{job_id}")
async def get_job(job_id: str, user: dict = Depends(get_current_user)):
    job = job_service.get_job(job_id, user["id"])
    if not job:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND)
    return envelope(200, "Content job retrieved successfully", ContentJobInfo(**job).model_dump(mode="json"))


@router.get("/{job_id}/progress")
async def get_job_progress(job_id: str, user: dict = Depends(get_current_user)):
    progress = job_service.get_job_progress(job_id, user["id"])
    if not progress:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND)
    return envelope(200, "Job progress retrieved successfully", JobProgress(**progress).model_dump(mode="json"))


@router.post("/{job_id}/retry")
async def retry_job(job_id: str, user: dict = Depends(get_current_user)):
    try:
        job = job_service.retry_job(job_id, user["id"])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not job:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND)
    return envelope(200, "Job queued for retry", ContentJobInfo(**job).model_dump(mode="json"))
