# Database models package
from app.models.business import Business, CreditEntry, CreditEntryKind
from app.models.job import GenerationJob, GenerationJobStatus, ModelTier
from app.models.asset import Asset

__all__ = [
    "Business",
    "CreditEntry",
    "CreditEntryKind",
    "GenerationJob",
    "GenerationJobStatus",
    "ModelTier",
    "Asset",
]
