"""
Business and Credit Ledger Models
The business row is owned elsewhere; this service only reads the brand mark
and moves the credit balance. Every balance movement is mirrored by an
append-only CreditEntry.
"""

from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from app.core.database import Base


class CreditEntryKind:
    """Credit ledger entry kinds."""
    DEBIT = "debit"      # Admission control deduction
    REFUND = "refund"    # Compensation for a failed job
    GRANT = "grant"      # Operator top-up or correction


class Business(Base):
    """Business profile (only the fields used by generation)."""

    __tablename__ = "businesses"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)

    # Brand mark, sent to the model as a critical reference
    logo_url = Column(String, nullable=True)

    credits = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    credit_entries = relationship("CreditEntry", back_populates="business", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Business {self.id} credits={self.credits}>"


class CreditEntry(Base):
    """
    One movement of a business credit balance.

    The (job_id, kind) pair is unique, so a job can be debited once and
    refunded at most once no matter how many code paths attempt it.
    """

    __tablename__ = "credit_entries"
    __table_args__ = (
        UniqueConstraint("job_id", "kind", name="uq_credit_entries_job_kind"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(String, ForeignKey("businesses.id"), nullable=False, index=True)
    job_id = Column(String, nullable=True, index=True)  # Not a FK: job rows can be hard-deleted

    kind = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    note = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    business = relationship("Business", back_populates="credit_entries")

    def __repr__(self):
        return f"<CreditEntry {self.kind} {self.amount} job={self.job_id}>"
