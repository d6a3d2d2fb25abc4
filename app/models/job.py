"""
Generation Job Model
Database model for image generation jobs. The row is the single source of
truth for job state; after creation only the owning executor writes it.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey, JSON

from app.core.database import Base


class GenerationJobStatus:
    """Generation job status constants."""
    PENDING = "pending"          # Reserved; jobs are created already processing
    PROCESSING = "processing"    # Owned by a running (or queued) executor
    COMPLETED = "completed"      # Asset written, result_asset_id set
    FAILED = "failed"            # error_message set, credits refunded

    ACTIVE = (PENDING, PROCESSING)
    TERMINAL = (COMPLETED, FAILED)


class ModelTier:
    """Model tier constants."""
    FLASH = "flash"
    PRO = "pro"
    ULTRA = "ultra"

    ALL = (FLASH, PRO, ULTRA)


class GenerationJob(Base):
    """Image generation job model."""

    __tablename__ = "generation_jobs"

    id = Column(String, primary_key=True)  # job_xxxx format
    business_id = Column(String, ForeignKey("businesses.id"), nullable=False, index=True)

    # Request
    prompt = Column(Text, nullable=False)
    aspect_ratio = Column(String, nullable=False, default="1:1")
    style_id = Column(String, nullable=True)
    subject_id = Column(String, nullable=True)
    model_tier = Column(String, nullable=False, default=ModelTier.PRO)
    options = Column(JSON, default={})  # subject_context, style_preset

    # Credits debited at admission (0 for debug prompts)
    credit_cost = Column(Integer, nullable=False, default=0)

    status = Column(String, default=GenerationJobStatus.PROCESSING, index=True)
    error_message = Column(Text, nullable=True)

    # Result
    result_asset_id = Column(String, nullable=True)

    # Metrics
    metrics = Column(JSON, default={})

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in GenerationJobStatus.TERMINAL

    def __repr__(self):
        return f"<GenerationJob {self.id} ({self.status})>"
