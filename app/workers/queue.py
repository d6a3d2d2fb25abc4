"""
Queue Management Utilities
RQ queue wrapper for generation jobs, and the dispatcher that hands a newly
created job to either the RQ worker pool or the in-process background runner.
"""

import logging
from typing import Any, Dict, Optional
from datetime import datetime

from rq import Queue
from rq.job import Job, JobStatus as RQJobStatus

from app.core.redis import get_redis, Queues
from app.core.config import settings

logger = logging.getLogger(__name__)

# RQ states in which a worker still holds or will pick up the job
LIVE_RQ_STATUSES = (
    RQJobStatus.QUEUED,
    RQJobStatus.STARTED,
    RQJobStatus.DEFERRED,
    RQJobStatus.SCHEDULED,
)


class DispatchConflict(Exception):
    """A live executor already exists for this job id."""


def rq_job_id(job_id: str) -> str:
    """RQ job id for a generation job."""
    return f"gen_{job_id}"


class QueueManager:
    """
    Manages the RQ queues used for generation.

    A generation job is enqueued at most once while live, under a
    deterministic RQ id, so there is never more than one executor per row.
    """

    def __init__(self, redis=None):
        self._queues: Dict[str, Queue] = {}
        self._redis = redis

    @property
    def redis(self):
        """Lazy Redis connection."""
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    def get_queue(self, queue_name: str = Queues.GENERATION) -> Queue:
        """
        Get or create a queue by name.

        Args:
            queue_name: Name of the queue

        Returns:
            RQ Queue instance
        """
        if queue_name not in self._queues:
            self._queues[queue_name] = Queue(
                name=queue_name,
                connection=self.redis,
                default_timeout=settings.JOB_TIMEOUT_GENERATION
            )
            logger.debug(f"Created queue: {queue_name}")

        return self._queues[queue_name]

    def enqueue_generation(self, job_id: str, business_id: Optional[str] = None) -> Job:
        """
        Enqueue an image generation job.

        No RQ retry is configured: a retried job would call the model
        (and bill) a second time.

        Raises:
            DispatchConflict: the job is already queued or running
        """
        from app.workers.tasks import run_image_generation_task

        rq_id = rq_job_id(job_id)
        if self.is_live(rq_id):
            raise DispatchConflict(f"Job {job_id} is already dispatched")

        job = self.get_queue(Queues.GENERATION).enqueue(
            run_image_generation_task,
            job_id,
            job_id=rq_id,
            job_timeout=settings.JOB_TIMEOUT_GENERATION,
            meta={
                "type": "image_generation",
                "business_id": business_id,
                "created_at": datetime.utcnow().isoformat(),
            }
        )

        logger.info(f"Enqueued generation job: {job_id} (rq id: {rq_id})")
        return job

    def get_job(self, rq_id: str) -> Optional[Job]:
        """
        Get an RQ job by id.

        Returns:
            Job instance or None
        """
        try:
            return Job.fetch(rq_id, connection=self.redis)
        except Exception as e:
            logger.debug(f"Job not found: {rq_id} - {e}")
            return None

    def is_live(self, rq_id: str) -> bool:
        job = self.get_job(rq_id)
        return job is not None and job.get_status() in LIVE_RQ_STATUSES

    def cancel_job(self, rq_id: str) -> bool:
        """
        Cancel a job that no worker has picked up yet.

        Returns:
            True if cancelled, False if not found or already running
        """
        job = self.get_job(rq_id)

        if not job:
            return False

        status = job.get_status()
        if status in (RQJobStatus.QUEUED, RQJobStatus.DEFERRED, RQJobStatus.SCHEDULED):
            job.cancel()
            logger.info(f"Cancelled job: {rq_id}")
            return True

        logger.warning(f"Cannot cancel job {rq_id} with status: {status}")
        return False

    def get_queue_stats(self) -> Dict[str, Dict[str, int]]:
        """
        Get statistics for the generation queues.

        Returns:
            Dict mapping queue names to their stats
        """
        stats = {}

        for name in (Queues.DEFAULT, Queues.GENERATION):
            try:
                queue = self.get_queue(name)
                stats[name] = {
                    "queued": len(queue),
                    "started": queue.started_job_registry.count,
                    "finished": queue.finished_job_registry.count,
                    "failed": queue.failed_job_registry.count,
                    "deferred": queue.deferred_job_registry.count
                }
            except Exception as e:
                stats[name] = {"error": str(e)}

        return stats


# Singleton instance
_queue_manager: Optional[QueueManager] = None


def get_queue_manager() -> QueueManager:
    """Get singleton QueueManager instance."""
    global _queue_manager
    if _queue_manager is None:
        _queue_manager = QueueManager()
    return _queue_manager


class JobDispatcher:
    """
    Hands a created job to its executor.

    `inline`: the executor runs on the FastAPI background task runner after
    the response is sent. `rq`: the job id is enqueued for the worker pool.
    """

    def __init__(self, backend: Optional[str] = None, queue_manager: Optional[QueueManager] = None):
        self.backend = backend or settings.JOB_QUEUE_BACKEND
        self._queue_manager = queue_manager

    @property
    def queue_manager(self) -> QueueManager:
        if self._queue_manager is None:
            self._queue_manager = get_queue_manager()
        return self._queue_manager

    def dispatch(self, job_id: str, business_id: Optional[str] = None, background_tasks=None) -> str:
        """
        Start executing a job.

        Returns:
            Dispatch handle: the RQ job id, or "inline"
        """
        if self.backend == "rq":
            return self.queue_manager.enqueue_generation(job_id, business_id=business_id).id

        if background_tasks is None:
            raise ValueError("Inline dispatch needs a background task runner")

        from app.workers.executor import run_generation_job

        background_tasks.add_task(run_generation_job, job_id)
        logger.info(f"Scheduled inline generation job: {job_id}")
        return "inline"

    def cancel(self, job_id: str) -> bool:
        """Cancel a job that has not started. Inline jobs cannot be cancelled."""
        if self.backend != "rq":
            return False
        return self.queue_manager.cancel_job(rq_job_id(job_id))


def get_dispatcher() -> JobDispatcher:
    """FastAPI dependency for the configured dispatcher."""
    return JobDispatcher()


__all__ = [
    "LIVE_RQ_STATUSES",
    "DispatchConflict",
    "rq_job_id",
    "QueueManager",
    "get_queue_manager",
    "JobDispatcher",
    "get_dispatcher",
]
