"""
Jobs API Routes
Operator views over generation jobs: cost, timings and the credit movements
each job caused.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.models.business import CreditEntry
from app.models.job import GenerationJob
from app.schemas.job import CreditEntryResponse, JobDetailResponse, JobResponse, JobStatus

router = APIRouter()


@router.get("/{job_id}", response_model=JobDetailResponse)
async def get_job_detail(
    job_id: str,
    db: Session = Depends(get_db),
):
    """Job row plus its ledger trail (debit, and refund if it failed)."""
    job = db.query(GenerationJob).filter(GenerationJob.id == job_id).first()
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )

    entries = (
        db.query(CreditEntry)
        .filter(CreditEntry.job_id == job_id)
        .order_by(CreditEntry.id)
        .all()
    )
    detail = JobDetailResponse.model_validate(job)
    detail.credit_entries = [CreditEntryResponse.model_validate(e) for e in entries]
    return detail


@router.get("", response_model=List[JobResponse])
async def list_jobs(
    business_id: Optional[str] = None,
    job_status: Optional[JobStatus] = None,
    model_tier: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    """Newest jobs first, optionally filtered by business, status or tier."""
    query = db.query(GenerationJob)
    if business_id:
        query = query.filter(GenerationJob.business_id == business_id)
    if job_status:
        query = query.filter(GenerationJob.status == job_status.value)
    if model_tier:
        query = query.filter(GenerationJob.model_tier == model_tier)

    return query.order_by(GenerationJob.created_at.desc()).offset(offset).limit(min(limit, 100)).all()
