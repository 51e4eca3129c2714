"""
内容任务服务 - 管理内容生产任务的生命周期
"""

from typing import Any, Dict, List, Optional, Union
import logging

from database.content_job_db import ContentJobDatabase
from models.schemas import (
    CreateBatchJobRequest,
    CreateContentJobRequest,
    JobStatus,
    JobType,
)
from services.job_runner import JobRunner
from services.media_processing_service import MediaProcessingService

logger = logging.getLogger(__name__)


class ContentJobService:
    """
    内容任务服务

    任务创建后立即进入 queued 状态并提交到 JobRunner。
    """

    def __init__(self, runner: JobRunner = None, processor=None):
        self.db = ContentJobDatabase()
        self.runner = runner or JobRunner(self, processor or MediaProcessingService())

    def create_single_job(self, request: CreateContentJobRequest, user_id: str) -> Dict[str, Any]:
        job = self.db.create_jobs(user_id, [self._job_data(request, JobType.SINGLE)])[0]
        logger.info(f"Created single content job {job['id']} for user {user_id}")

        self.runner.submit(job["id"])
        return job

    def create_batch_jobs(self, request: CreateBatchJobRequest, user_id: str) -> List[Dict[str, Any]]:
        """批量创建（同一事务），按 concurrency 限制并发执行"""
        if not request.jobs:
            raise ValueError("jobs must not be empty")

        jobs = self.db.create_jobs(user_id, [self._job_data(j, JobType.BATCH) for j in request.jobs])
        logger.info(f"Created batch of {len(jobs)} content jobs for user {user_id} (concurrency={request.concurrency})")

        self.runner.submit_batch([job["id"] for job in jobs], request.concurrency)
        return jobs

    def get_jobs(
        self,
        user_id: str,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        return self.db.list_jobs(user_id, status=status, project_id=project_id, page=page, limit=limit)

    def get_job(self, job_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """获取任务；不存在或不属于该用户时返回 None"""
        return self.db.get_job(job_id, user_id)

    def get_job_by_id(self, job_id: str) -> Optional[Dict[str, Any]]:
        return self.db.get_job(job_id)

    def get_job_progress(self, job_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        job = self.db.get_job(job_id, user_id)
        if not job:
            return None

        return {
            "id": job["id"],
            "status": job["status"],
            "progress": job["progress"],
            "started_at": job["started_at"],
            "completed_at": job["completed_at"],
            "processing_time": job["processing_time"],
            "error_message": job["error_message"],
        }

    def retry_job(self, job_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """
        重试失败的任务

        Raises:
            ValueError: 任务不是 failed 状态
        """
        job = self.db.get_job(job_id, user_id)
        if not job:
            return None
        if job["status"] != JobStatus.FAILED.value:
            raise ValueError("Only failed jobs can be retried")

        job = self.db.reset_for_retry(job_id)
        logger.info(f"Retrying content job {job_id}")
        self.runner.submit(job_id)
        return job

    def update_job_status(
        self,
        job_id: str,
        status: Union[JobStatus, str],
        progress: Optional[int] = None,
        error_message: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        status = status.value if isinstance(status, JobStatus) else status
        return self.db.update_status(job_id, status, progress=progress, error_message=error_message)

    def update_job_progress(self, job_id: str, progress: int) -> None:
        self.db.update_progress(job_id, progress)

    def record_attempt(self, job_id: str) -> int:
        return self.db.increment_attempts(job_id)

    def set_job_output(self, job_id: str, output_path: str) -> bool:
        return self.db.set_output(job_id, output_path)

    @staticmethod
    def _job_data(request: CreateContentJobRequest, job_type: JobType) -> Dict[str, Any]:
        return {
            "project_id": request.project_id,
            "template_id": request.template_id,
            "job_type": job_type.value,
            "input_assets": [m.model_dump(exclude_none=True) for m in request.input_assets],
        }


# 全局实例
_content_job_service = None


def get_content_job_service() -> ContentJobService:
    global _content_job_service
    if _content_job_service is None:
        _content_job_service = ContentJobService()
    return _content_job_service
