"""
Boot Recovery
Finds `processing` jobs whose executor is gone and resolves them to failed
with a refund, so restarts never leave jobs (or credits) stranded.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.job import GenerationJob, GenerationJobStatus
from app.services.credits import CreditLedger
from app.workers.queue import QueueManager, rq_job_id

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Generation was interrupted by a server restart. Credits have been refunded."


def find_orphaned_jobs(
    db: Session,
    backend: str,
    queue_manager: Optional[QueueManager] = None,
    now: Optional[datetime] = None,
) -> List[GenerationJob]:
    """
    Processing jobs that no executor will ever finish.

    rq: the RQ job is missing or no longer queued/started.
    inline: the row is older than the stale threshold, since inline
    executors die with their process.
    """
    processing = (
        db.query(GenerationJob)
        .filter(GenerationJob.status == GenerationJobStatus.PROCESSING)
        .all()
    )

    if backend == "rq":
        return [job for job in processing if not queue_manager.is_live(rq_job_id(job.id))]

    cutoff = (now or datetime.utcnow()) - timedelta(seconds=settings.JOB_STALE_AFTER_SECONDS)
    return [job for job in processing if job.created_at and job.created_at < cutoff]


def recover_interrupted_jobs(
    session_factory: Callable[[], Session] = None,
    backend: Optional[str] = None,
    queue_manager: Optional[QueueManager] = None,
    ledger: Optional[CreditLedger] = None,
    now: Optional[datetime] = None,
) -> List[str]:
    """
    Fail and refund orphaned jobs.

    Returns:
        Ids of the jobs that were recovered
    """
    from app.core.database import SessionLocal
    from app.workers.queue import get_queue_manager

    backend = backend or settings.JOB_QUEUE_BACKEND
    ledger = ledger or CreditLedger()
    if backend == "rq" and queue_manager is None:
        queue_manager = get_queue_manager()

    db = (session_factory or SessionLocal)()
    recovered = []
    try:
        orphans = find_orphaned_jobs(db, backend, queue_manager=queue_manager, now=now)
        tickets = [(job.id, job.business_id, job.credit_cost or 0) for job in orphans]

        for job_id, business_id, credit_cost in tickets:
            stamp = datetime.utcnow()
            result = db.execute(
                update(GenerationJob)
                .where(
                    GenerationJob.id == job_id,
                    GenerationJob.status == GenerationJobStatus.PROCESSING,
                )
                .values(
                    status=GenerationJobStatus.FAILED,
                    error_message=INTERRUPTED_MESSAGE,
                    completed_at=stamp,
                    updated_at=stamp,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount != 1:
                continue

            ledger.refund(db, business_id, credit_cost, job_id, note="interrupted")
            recovered.append(job_id)
            logger.warning(f"[Recovery] Failed and refunded interrupted job {job_id}")

        if recovered:
            logger.warning(f"[Recovery] Recovered {len(recovered)} interrupted job(s)")
        else:
            logger.info("[Recovery] No interrupted jobs")
    finally:
        db.close()

    return recovered


__all__ = ["INTERRUPTED_MESSAGE", "find_orphaned_jobs", "recover_interrupted_jobs"]
