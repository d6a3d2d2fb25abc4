"""
Base Worker Classes
Provides the worker error taxonomy, retry logic, and the base class that
generation workers build on.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, TypeVar
from datetime import datetime
from functools import wraps
from enum import Enum

from rq import get_current_job
from rq.job import Job

logger = logging.getLogger(__name__)

T = TypeVar('T')


class WorkerStatus(str, Enum):
    """Worker status written to the RQ job meta."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class WorkerException(Exception):
    """Base exception for worker errors."""

    def __init__(self, message: str, retryable: bool = True, details: Optional[dict] = None):
        super().__init__(message)
        self.retryable = retryable
        self.details = details or {}


class NonRetryableError(WorkerException):
    """Error that should NOT be retried (e.g., invalid input)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=False, details=details)


class RetryableError(WorkerException):
    """Error that SHOULD be retried (e.g., reference fetch timeout)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=True, details=details)


class AssemblyFailure(NonRetryableError):
    """No usable request could be assembled from the prompt and references."""


class GenerationFailure(NonRetryableError):
    """The external model call did not produce a usable image."""


class NoImageInResponse(GenerationFailure):
    """The model answered, but without an image part."""


class GenerationTransportError(GenerationFailure):
    """The model call itself failed (network, auth, quota, timeout)."""


class PersistenceFailure(NonRetryableError):
    """Upload or asset write failed after a successful generation."""


def with_retry(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    exponential_backoff: bool = True,
    retryable_exceptions: tuple = (RetryableError, TimeoutError, ConnectionError)
):
    """
    Decorator adding retry logic to async worker steps.

    Args:
        max_retries: Maximum number of retry attempts
        retry_delay: Base delay between retries (seconds)
        exponential_backoff: Whether to use exponential backoff
        retryable_exceptions: Tuple of exception types that should trigger retry
    """
    def _delay(attempt: int) -> float:
        return retry_delay * (2 ** attempt if exponential_backoff else 1)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except retryable_exceptions as e:
                    last_exception = e

                    if attempt < max_retries:
                        delay = _delay(attempt)
                        logger.warning(
                            f"[Retry {attempt + 1}/{max_retries}] {func.__name__} failed: {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"[Failed] {func.__name__} exhausted all {max_retries} retries: {e}"
                        )

                except NonRetryableError as e:
                    logger.error(f"[Non-Retryable] {func.__name__}: {e}")
                    raise

            raise last_exception

        return async_wrapper

    return decorator


class BaseWorker(ABC):
    """
    Abstract base class for workers.

    Runs both inside an RQ worker process and inline in the API process; the
    RQ job meta is only touched when there is a current RQ job.
    """

    def __init__(self):
        self.start_time: Optional[datetime] = None

    def _get_current_job(self) -> Optional[Job]:
        """Get the current RQ job context."""
        try:
            return get_current_job()
        except Exception:
            return None

    def _set_status(self, status: WorkerStatus, details: Optional[dict] = None):
        """Set worker status on the RQ job meta."""
        job = self._get_current_job()
        if job:
            job.meta["worker_status"] = status.value
            job.meta["status_details"] = details or {}
            job.meta["updated_at"] = datetime.utcnow().isoformat()
            job.save_meta()

    def _elapsed(self) -> float:
        return (datetime.utcnow() - self.start_time).total_seconds() if self.start_time else 0

    def _log_start(self, task_name: str, **context):
        """Log task start with context."""
        self.start_time = datetime.utcnow()
        self._set_status(WorkerStatus.RUNNING)
        logger.info(f"[START] {task_name} | Context: {context}")

    def _log_complete(self, task_name: str, result_summary: str = ""):
        """Log task completion with timing."""
        self._set_status(WorkerStatus.SUCCESS)
        logger.info(f"[COMPLETE] {task_name} | Duration: {self._elapsed():.2f}s | {result_summary}")

    def _log_error(self, task_name: str, error: Exception):
        """Log task error with details."""
        self._set_status(WorkerStatus.FAILED, {"error": str(error)})
        logger.error(f"[ERROR] {task_name} | Duration: {self._elapsed():.2f}s | Error: {error}")

    @abstractmethod
    async def execute(self, *args, **kwargs) -> Any:
        """
        Execute the worker task. Must be implemented by subclasses.

        Returns:
            Task result
        """


__all__ = [
    "WorkerStatus",
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
]
