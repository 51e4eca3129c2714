"""
内容任务数据库管理器
提供内容任务的 CRUD 操作及状态流转
"""

from typing import Optional, Dict, Any, List
from datetime import datetime
from sqlalchemy import desc
import logging

from .models import ContentJob, init_db, get_db_session

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed")


class ContentJobDatabase:
    """内容任务数据库管理器"""

    def __init__(self):
        init_db()

    def create_jobs(self, user_id: str, jobs_data: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        在同一事务中创建一个或多个任务

        Args:
            user_id: 所属用户
            jobs_data: 每项包含 template_id, job_type, input_assets, project_id

        Returns:
            新建任务的字典列表（状态均为 queued）
        """
        with get_db_session() as db:
            jobs = []
            for data in jobs_data:
                job = ContentJob(
                    user_id=user_id,
                    project_id=data.get("project_id"),
                    template_id=data["template_id"],
                    job_type=data["job_type"],
                    status="queued",
                    input_assets=data.get("input_assets", []),
                    progress=0,
                    attempts=0,
                )
                db.add(job)
                jobs.append(job)

            db.flush()
            logger.info(f"Created {len(jobs)} content job(s) for user {user_id}")
            return [self._job_to_dict(job) for job in jobs]

    def get_job(self, job_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """获取任务；提供 user_id 时只返回该用户的任务"""
        with get_db_session() as db:
            query = db.query(ContentJob).filter(ContentJob.id == job_id)
            if user_id is not None:
                query = query.filter(ContentJob.user_id == user_id)
            job = query.first()
            return self._job_to_dict(job) if job else None

    def list_jobs(
        self,
        user_id: str,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        with get_db_session() as db:
            query = db.query(ContentJob).filter(ContentJob.user_id == user_id)
            if status:
                query = query.filter(ContentJob.status == status)
            if project_id:
                query = query.filter(ContentJob.project_id == project_id)

            total = query.count()
            jobs = query.order_by(desc(ContentJob.created_at)).offset((page - 1) * limit).limit(limit).all()

            return {
                "data": [self._job_to_dict(j) for j in jobs],
                "total": total,
                "page": page,
                "limit": limit
            }

    def update_status(
        self,
        job_id: str,
        status: str,
        progress: Optional[int] = None,
        error_message: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        更新任务状态

        首次进入 processing 时记录 started_at；
        进入 completed/failed 时记录 completed_at 与 processing_time（毫秒）。
        """
        with get_db_session() as db:
            job = db.query(ContentJob).filter(ContentJob.id == job_id).first()
            if not job:
                logger.warning(f"Content job not found: {job_id}")
                return None

            now = datetime.now()
            job.status = status
            if progress is not None:
                job.progress = max(0, min(100, int(progress)))
            if error_message is not None:
                job.error_message = error_message

            if status == "processing" and job.started_at is None:
                job.started_at = now

            if status in TERMINAL_STATUSES:
                job.completed_at = now
                if job.started_at is not None:
                    job.processing_time = int((now - job.started_at).total_seconds() * 1000)

            db.flush()
            return self._job_to_dict(job)

    def update_progress(self, job_id: str, progress: int) -> None:
        with get_db_session() as db:
            job = db.query(ContentJob).filter(ContentJob.id == job_id).first()
            if job:
                job.progress = max(0, min(100, int(progress)))

    def increment_attempts(self, job_id: str) -> int:
        with get_db_session() as db:
            job = db.query(ContentJob).filter(ContentJob.id == job_id).first()
            if not job:
                return 0
            job.attempts = (job.attempts or 0) + 1
            return job.attempts

    def set_output(self, job_id: str, output_path: str) -> bool:
        with get_db_session() as db:
            job = db.query(ContentJob).filter(ContentJob.id == job_id).first()
            if not job:
                return False
            job.output_path = output_path
            return True

    def reset_for_retry(self, job_id: str) -> Optional[Dict[str, Any]]:
        """将失败任务重置为 queued"""
        with get_db_session() as db:
            job = db.query(ContentJob).filter(ContentJob.id == job_id).first()
            if not job:
                return None

            job.status = "queued"
            job.progress = 0
            job.error_message = None
            job.started_at = None
            job.completed_at = None
            job.processing_time = None
            job.attempts = 0

            db.flush()
            logger.info(f"Reset content job for retry: {job_id}")
            return self._job_to_dict(job)

    def _job_to_dict(self, job: ContentJob) -> Dict[str, Any]:
        return {
            "id": job.id,
            "user_id": job.user_id,
            "project_id": job.project_id,
            "template_id": job.template_id,
            "job_type": job.job_type,
            "status": job.status,
            "input_assets": job.input_assets or [],
            "output_path": job.output_path,
            "progress": job.progress,
            "error_message": job.error_message,
            "processing_time": job.processing_time,
            "attempts": job.attempts,
            "started_at": job.started_at.isoformat() if job.started_at else None,
            "completed_at": job.completed_at.isoformat() if job.completed_at else None,
            "created_at": job.created_at.isoformat() if job.created_at else None,
            "updated_at": job.updated_at.isoformat() if job.updated_at else None,
        }
