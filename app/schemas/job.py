"""
Job Schemas
Pydantic models for job API requests and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum

from app.schemas.generate import CamelModel


class JobStatus(str, Enum):
    """Job status enum."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class AssetResponse(CamelModel):
    """Schema for the asset attached to a completed job."""
    id: str
    type: str = "image"
    content: str
    prompt: str
    created_at: datetime
    style_preset: Optional[str] = None
    aspect_ratio: Optional[str] = None

    class Config:
        from_attributes = True


class JobResponse(CamelModel):
    """Schema for a job row."""
    id: str
    business_id: str
    status: JobStatus
    prompt: str
    aspect_ratio: str
    style_id: Optional[str] = None
    subject_id: Optional[str] = None
    model_tier: str
    error_message: Optional[str] = None
    result_asset_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class JobStatusResponse(CamelModel):
    """Schema for the polling endpoint."""
    id: str
    status: JobStatus
    error_message: Optional[str] = None
    result_asset_id: Optional[str] = None
    asset: Optional[AssetResponse] = None
    created_at: datetime
    updated_at: datetime


class PendingJobsResponse(CamelModel):
    """Schema for the reload-recovery endpoint."""
    jobs: List[JobResponse] = []


class CreditEntryResponse(CamelModel):
    """One ledger movement tied to a job."""
    kind: str
    amount: int
    note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class JobDetailResponse(JobResponse):
    """Operator view of a job: cost, timings and its ledger trail."""
    credit_cost: int = 0
    options: Dict[str, Any] = {}
    metrics: Dict[str, Any] = {}
    completed_at: Optional[datetime] = None
    credit_entries: List[CreditEntryResponse] = []
