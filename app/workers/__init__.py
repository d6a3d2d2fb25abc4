# Workers package - job execution, dispatch and recovery

from app.workers.base import (
    WorkerException,
    NonRetryableError,
    RetryableError,
    AssemblyFailure,
    GenerationFailure,
    NoImageInResponse,
    GenerationTransportError,
    PersistenceFailure,
    with_retry,
    BaseWorker
)
from app.workers.queue import (
    DispatchConflict,
    QueueManager,
    JobDispatcher,
    get_queue_manager,
    get_dispatcher,
    rq_job_id
)
from app.workers.tasks import run_image_generation_task

__all__ = [
    # Base
    "WorkerException",
    "NonRetryableError",
    "RetryableError",
    "AssemblyFailure",
    "GenerationFailure",
    "NoImageInResponse",
    "GenerationTransportError",
    "PersistenceFailure",
    "with_retry",
    "BaseWorker",
    # Queue
    "DispatchConflict",
    "QueueManager",
    "JobDispatcher",
    "get_queue_manager",
    "get_dispatcher",
    "rq_job_id",
    # Tasks
    "run_image_generation_task",
]
