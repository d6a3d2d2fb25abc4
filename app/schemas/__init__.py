# Pydantic schemas package
from app.schemas.job import (
    JobResponse, JobStatus, JobStatusResponse, AssetResponse, PendingJobsResponse, JobDetailResponse, CreditEntryResponse
)
from app.schemas.generate import (
    GenerateRequest, GenerateResponse, ModelTierName, StylePreset, StyleReference, SubjectContext
)

__all__ = [
    "JobResponse", "JobStatus", "JobStatusResponse", "AssetResponse", "PendingJobsResponse",
    "JobDetailResponse", "CreditEntryResponse",
    "GenerateRequest", "GenerateResponse", "ModelTierName", "StylePreset", "StyleReference", "SubjectContext",
]
