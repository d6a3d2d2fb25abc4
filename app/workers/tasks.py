"""
RQ Task Definitions
Defines the task functions that are executed by RQ workers.
"""

import logging
import asyncio
from typing import Any, Dict

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Helper to run async code in sync context (for RQ)."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def run_image_generation_task(job_id: str) -> Dict[str, Any]:
    """
    RQ task for one image generation job.

    The job row carries everything the executor needs, so only the id
    travels through Redis. Job errors are resolved on the row (failed +
    refund) rather than raised, so RQ never sees them as task failures.

    Args:
        job_id: Generation job id

    Returns:
        Dict with the execution outcome
    """
    logger.info(f"[Task] Starting image generation: {job_id}")

    from app.workers.executor import GenerationExecutor

    result = _run_async(GenerationExecutor().execute(job_id))

    logger.info(f"[Task] Finished image generation: {job_id} ({result.get('outcome')})")
    return result


__all__ = ["run_image_generation_task"]
