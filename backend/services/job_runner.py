"""
内容任务执行器

- 单个任务提交到共享线程池（大小为 MAX_CONCURRENT_JOBS）
- 批量任务使用独立线程池，同一批次最多 concurrency 个任务同时处理
- 每个任务最多尝试 JOB_MAX_ATTEMPTS 次，指数退避
"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import List, Optional, Tuple
import logging
import threading
import time

from config import JOB_BACKOFF_SECONDS, JOB_MAX_ATTEMPTS, MAX_CONCURRENT_JOBS
from models.schemas import JobStatus

logger = logging.getLogger(__name__)


class JobRunner:
    """在线程池中执行内容任务"""

    def __init__(
        self,
        job_service,
        processor,
        max_workers: int = MAX_CONCURRENT_JOBS,
        max_attempts: int = JOB_MAX_ATTEMPTS,
        backoff_seconds: float = JOB_BACKOFF_SECONDS
    ):
        """
        Args:
            job_service: 提供 get_job_by_id / record_attempt / update_job_status / update_job_progress / set_job_output
            processor: 提供 process_job(job, progress_callback) -> output_path
        """
        self.job_service = job_service
        self.processor = processor
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="content-job")
        self._lock = threading.Lock()
        self._running = set()
        self._pending = set()

    def submit(self, job_id: str) -> Future:
        logger.info(f"Enqueued content job {job_id}")
        return self._track(self.executor.submit(self.run_job, job_id))

    def submit_batch(self, job_ids: List[str], concurrency: int) -> List[Future]:
        """批量提交；批次线程池在所有任务完成后自动回收"""
        batch_executor = ThreadPoolExecutor(
            max_workers=max(1, concurrency),
            thread_name_prefix="content-batch"
        )
        futures = [self._track(batch_executor.submit(self.run_job, job_id)) for job_id in job_ids]
        batch_executor.shutdown(wait=False)

        logger.info(f"Enqueued batch of {len(job_ids)} content jobs (concurrency={concurrency})")
        return futures

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** (attempt - 1))

    def run_job(self, job_id: str) -> bool:
        """
        执行单个任务（含重试）

        终态（completed / failed）在释放运行标记之后才写入，
        看到终态的重试请求总能重新执行该任务。

        Returns:
            是否成功完成
        """
        with self._lock:
            if job_id in self._running:
                logger.warning(f"Content job {job_id} is already running")
                return False
            self._running.add(job_id)

        try:
            outcome = self._run_with_retries(job_id)
        finally:
            with self._lock:
                self._running.discard(job_id)

        if outcome is None:
            return False
        return self._finish(job_id, *outcome)

    def _run_with_retries(self, job_id: str) -> Optional[Tuple[Optional[str], Optional[Exception]]]:
        """
        Returns:
            (output_path, None) 成功；(None, 最后一次异常) 失败；任务不存在时返回 None
        """
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            job = self.job_service.get_job_by_id(job_id)
            if job is None:
                logger.error(f"Content job {job_id} not found")
                return None

            self.job_service.record_attempt(job_id)
            self.job_service.update_job_status(job_id, JobStatus.PROCESSING, progress=0)
            logger.info(f"Processing content job {job_id} (attempt {attempt}/{self.max_attempts})")

            try:
                output_path = self.processor.process_job(
                    job,
                    lambda progress: self.job_service.update_job_progress(job_id, progress)
                )
            except Exception as e:
                last_error = e
                logger.warning(f"Content job {job_id} attempt {attempt} failed: {e}")
                if attempt < self.max_attempts:
                    time.sleep(self.backoff_delay(attempt))
                continue

            return output_path, None

        return None, last_error

    def _finish(self, job_id: str, output_path: Optional[str], error: Optional[Exception]) -> bool:
        if error is None:
            self.job_service.set_job_output(job_id, output_path)
            self.job_service.update_job_status(job_id, JobStatus.COMPLETED, progress=100)
            logger.info(f"Content job {job_id} completed: {output_path}")
            return True

        logger.error(f"Content job {job_id} failed after {self.max_attempts} attempts: {error}")
        self.job_service.update_job_status(
            job_id,
            JobStatus.FAILED,
            error_message=f"Job failed after maximum retry attempts: {error}"
        )
        return False

    def _track(self, future: Future) -> Future:
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._untrack)
        return future

    def _untrack(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def wait_all(self, timeout: float = None) -> None:
        """等待所有已提交（含批量）的任务结束"""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self, wait: bool = True):
        if wait:
            self.wait_all()
        self.executor.shutdown(wait=wait)
