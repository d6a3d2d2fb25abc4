"""
Job Poller
Polls a job's status on a fixed interval until it is terminal, with a
safety timeout so an abandoned job never keeps a loop alive.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from app.client.api import ClientError, JobNotFound, JobsApiClient
from app.schemas.job import JobStatusResponse

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2.0
MAX_POLL_TIME = 300.0


@dataclass
class PollResult:
    """How a polling loop ended."""
    job_id: str
    last_status: Optional[JobStatusResponse] = None
    timed_out: bool = False
    not_found: bool = False

    @property
    def status(self) -> Optional[str]:
        return self.last_status.status.value if self.last_status else None


class JobPoller:
    """Fixed-interval status polling. Read-only: never mutates server state."""

    def __init__(
        self,
        api: JobsApiClient,
        interval: float = POLL_INTERVAL,
        timeout: float = MAX_POLL_TIME,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable = asyncio.sleep,
    ):
        self.api = api
        self.interval = interval
        self.timeout = timeout
        self.clock = clock
        self.sleep = sleep

    async def poll(
        self,
        job_id: str,
        on_update: Optional[Callable[[JobStatusResponse], None]] = None,
    ) -> PollResult:
        """
        Poll until completed/failed, the job disappears, or the timeout hits.

        The first check happens immediately, so resuming an already finished
        job returns on the first call. Transient errors are logged and the
        next tick retries.
        """
        started = self.clock()
        result = PollResult(job_id=job_id)

        while True:
            try:
                status = await self.api.get_status(job_id)
            except JobNotFound:
                logger.info(f"[Poller] Job {job_id} no longer exists, stopping")
                result.not_found = True
                return result
            except (httpx.HTTPError, ClientError) as e:
                logger.warning(f"[Poller] Status check for {job_id} failed: {e}")
                status = None

            if status is not None:
                result.last_status = status
                if on_update:
                    on_update(status)
                if status.status.is_terminal:
                    return result

            if self.clock() - started >= self.timeout:
                logger.warning(f"[Poller] Gave up on {job_id} after {self.timeout:.0f}s")
                result.timed_out = True
                return result

            await self.sleep(self.interval)


__all__ = ["POLL_INTERVAL", "MAX_POLL_TIME", "PollResult", "JobPoller"]
