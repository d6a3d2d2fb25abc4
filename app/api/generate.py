"""
Generation API Routes
Creates image generation jobs and exposes the polling, reload-recovery and
cleanup endpoints used by observers.
"""

import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.models.asset import Asset
from app.models.business import Business
from app.models.job import GenerationJob, GenerationJobStatus
from app.schemas.generate import GenerateRequest, GenerateResponse
from app.schemas.job import AssetResponse, JobResponse, JobStatusResponse, PendingJobsResponse
from app.services.credits import AdmissionControl, AdmissionDenied, CreditLedger
from app.workers.queue import DispatchConflict, JobDispatcher, get_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


@router.post("", response_model=GenerateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_generation_job(
    request: GenerateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """
    Create a new image generation job.

    Credits are debited before the job exists; the response returns as soon
    as the job is dispatched, long before the image is ready.
    """
    business = db.query(Business).filter(Business.id == request.business_id).first()
    if not business:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Business not found"
        )

    job_id = new_job_id()
    model_tier = request.model_tier.value
    ledger = CreditLedger()
    admission = AdmissionControl(ledger)

    decision = admission.try_admit(db, request.business_id, model_tier, prompt=request.prompt, job_id=job_id)
    if not decision.allowed:
        raise AdmissionDenied(request.business_id, decision.cost, decision.balance or 0)

    options = {}
    if request.subject_context:
        options["subject_context"] = request.subject_context.model_dump()
    if request.style_preset:
        options["style_preset"] = request.style_preset.model_dump()

    try:
        db_job = GenerationJob(
            id=job_id,
            business_id=request.business_id,
            prompt=request.prompt,
            aspect_ratio=request.aspect_ratio,
            style_id=request.style_id,
            subject_id=request.subject_id,
            model_tier=model_tier,
            options=options,
            credit_cost=decision.cost,
            status=GenerationJobStatus.PROCESSING,
        )
        db.add(db_job)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[Generate] Could not create job {job_id}: {e}")
        ledger.refund(db, request.business_id, decision.cost, job_id, note="job creation failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create generation job"
        )

    try:
        dispatcher.dispatch(job_id, business_id=request.business_id, background_tasks=background_tasks)
    except DispatchConflict as e:
        logger.warning(f"[Generate] Dispatch conflict for {job_id}: {e}")
        db_job.status = GenerationJobStatus.FAILED
        db_job.error_message = "Generation was already dispatched. Credits have been refunded."
        db.commit()
        ledger.refund(db, request.business_id, decision.cost, job_id, note="dispatch conflict")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"[Generate] Dispatch failed for {job_id}: {e}")
        db_job.status = GenerationJobStatus.FAILED
        db_job.error_message = "Could not start generation. Credits have been refunded."
        db.commit()
        ledger.refund(db, request.business_id, decision.cost, job_id, note="dispatch failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start generation job"
        )

    logger.info(f"[Generate] Job {job_id} created ({model_tier}, cost {decision.cost})")
    return GenerateResponse(job_id=job_id, status=GenerationJobStatus.PROCESSING)


@router.get("/status/{job_id}", response_model=JobStatusResponse)
async def get_generation_status(
    job_id: str,
    db: Session = Depends(get_db),
):
    """Poll a job. Includes the asset once the job has completed."""
    job = db.query(GenerationJob).filter(GenerationJob.id == job_id).first()
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )

    asset = None
    if job.result_asset_id:
        asset = db.query(Asset).filter(Asset.id == job.result_asset_id).first()

    return JobStatusResponse(
        id=job.id,
        status=job.status,
        error_message=job.error_message,
        result_asset_id=job.result_asset_id,
        asset=AssetResponse.model_validate(asset) if asset else None,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


@router.get("/pending/{business_id}", response_model=PendingJobsResponse)
async def list_pending_jobs(
    business_id: str,
    db: Session = Depends(get_db),
):
    """Non-terminal jobs of a business, newest first, for reload recovery."""
    jobs = (
        db.query(GenerationJob)
        .filter(
            GenerationJob.business_id == business_id,
            GenerationJob.status.in_(GenerationJobStatus.ACTIVE),
        )
        .order_by(GenerationJob.created_at.desc())
        .all()
    )
    return PendingJobsResponse(jobs=[JobResponse.model_validate(j) for j in jobs])


@router.delete("/job/{job_id}")
async def delete_generation_job(
    job_id: str,
    db: Session = Depends(get_db),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """
    Forget a job (operator cleanup of stuck jobs).

    Hard-deletes the row. A job still waiting in the queue is cancelled and
    refunded; a running executor notices the missing row and stops before the
    model call when it can, but is not interrupted.
    """
    job = db.query(GenerationJob).filter(GenerationJob.id == job_id).first()
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )

    business_id = job.business_id
    credit_cost = job.credit_cost or 0
    was_active = job.status in GenerationJobStatus.ACTIVE

    cancelled = False
    if was_active:
        try:
            cancelled = dispatcher.cancel(job_id)
        except Exception as e:
            logger.warning(f"[Generate] Could not cancel queued job {job_id}: {e}")

    db.delete(job)
    db.commit()

    refunded = False
    if cancelled:
        refunded = CreditLedger().refund(db, business_id, credit_cost, job_id, note="cancelled before start")

    logger.info(f"[Generate] Deleted job {job_id} (cancelled={cancelled}, refunded={refunded})")
    return {"deleted": True, "jobId": job_id, "cancelled": cancelled, "refunded": refunded}
