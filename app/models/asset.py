"""
Asset Model
Durable generated image owned by a business. Written once, when its job
completes, and never mutated afterwards.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, ForeignKey

from app.core.database import Base


class Asset(Base):
    """Generated asset model."""

    __tablename__ = "assets"

    id = Column(String, primary_key=True)  # asset_xxxx format
    business_id = Column(String, ForeignKey("businesses.id"), nullable=False, index=True)

    type = Column(String, nullable=False, default="image")
    content = Column(String, nullable=False)  # Public URL of the image

    # Provenance
    prompt = Column(Text, nullable=False)
    aspect_ratio = Column(String, nullable=True)
    style_preset = Column(String, nullable=True)
    style_id = Column(String, nullable=True)
    subject_id = Column(String, nullable=True)
    model_tier = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Asset {self.id}>"
