"""
Credit Ledger and Admission Control
Moves business credit balances with atomic conditional updates and records
every movement as a CreditEntry. Admission control debits the tier cost
before a job is created and refuses when the balance is short.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.business import Business, CreditEntry, CreditEntryKind
from app.models.job import ModelTier

logger = logging.getLogger(__name__)


class AdmissionDenied(Exception):
    """Business balance does not cover the cost of the requested tier."""

    def __init__(self, business_id: str, required: int, balance: int):
        super().__init__(
            f"Insufficient credits for {business_id}: {required} required, {balance} available"
        )
        self.business_id = business_id
        self.required = required
        self.balance = balance


@dataclass
class AdmissionDecision:
    """Outcome of an admission check."""
    allowed: bool
    cost: int
    balance: Optional[int] = None  # Balance after the debit (or current balance when refused)


class CreditLedger:
    """
    Credit balance operations.

    Balance changes are single UPDATE statements evaluated by the database
    (credits = credits - :amount), never read-modify-write, so concurrent
    jobs for one business cannot lose updates.
    """

    def balance(self, db: Session, business_id: str) -> Optional[int]:
        """Current balance, or None for an unknown business."""
        row = db.query(Business.credits).filter(Business.id == business_id).first()
        return row[0] if row else None

    def debit(self, db: Session, business_id: str, amount: int, job_id: Optional[str] = None) -> bool:
        """
        Deduct `amount` if and only if the balance covers it.

        Returns:
            True when the debit was applied and committed
        """
        if amount <= 0:
            return True

        result = db.execute(
            update(Business)
            .where(Business.id == business_id, Business.credits >= amount)
            .values(credits=Business.credits - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            logger.info(f"[Ledger] Debit of {amount} refused for {business_id}")
            return False

        db.add(CreditEntry(
            business_id=business_id,
            job_id=job_id,
            kind=CreditEntryKind.DEBIT,
            amount=-amount,
        ))
        db.commit()
        logger.info(f"[Ledger] Debited {amount} from {business_id} (job={job_id})")
        return True

    def refund(self, db: Session, business_id: str, amount: int, job_id: str, note: str = "") -> bool:
        """
        Give back the debit of a failed job.

        At most one refund entry can exist per job, so repeated calls for the
        same job are no-ops.

        Returns:
            True when credits were returned by this call
        """
        if amount <= 0:
            return False

        db.add(CreditEntry(
            business_id=business_id,
            job_id=job_id,
            kind=CreditEntryKind.REFUND,
            amount=amount,
            note=note[:255] if note else None,
        ))
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info(f"[Ledger] Job {job_id} already refunded, skipping")
            return False

        db.execute(
            update(Business)
            .where(Business.id == business_id)
            .values(credits=Business.credits + amount)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.warning(f"[Ledger] Refunded {amount} to {business_id} for job {job_id}")
        return True

    def grant(self, db: Session, business_id: str, amount: int, note: str = "") -> int:
        """
        Operator top-up or correction. Negative amounts remove credits.

        Returns:
            The new balance
        """
        result = db.execute(
            update(Business)
            .where(Business.id == business_id)
            .values(credits=Business.credits + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise ValueError(f"Business not found: {business_id}")

        db.add(CreditEntry(
            business_id=business_id,
            kind=CreditEntryKind.GRANT,
            amount=amount,
            note=note or None,
        ))
        db.commit()
        new_balance = self.balance(db, business_id)
        logger.info(f"[Ledger] Granted {amount} to {business_id}, balance now {new_balance}")
        return new_balance


class AdmissionControl:
    """Pre-flight credit check and optimistic debit."""

    def __init__(self, ledger: Optional[CreditLedger] = None):
        self.ledger = ledger or CreditLedger()
        self.costs = {
            ModelTier.FLASH: settings.CREDIT_COST_FLASH,
            ModelTier.PRO: settings.CREDIT_COST_PRO,
            ModelTier.ULTRA: settings.CREDIT_COST_ULTRA,
        }

    def cost_for(self, model_tier: str) -> int:
        if model_tier not in self.costs:
            raise ValueError(f"Unknown model tier: {model_tier}")
        return self.costs[model_tier]

    @staticmethod
    def is_debug_prompt(prompt: str) -> bool:
        """Prompts with the debug prefix skip admission and the model call."""
        return prompt.lstrip().lower().startswith(settings.DEBUG_PROMPT_PREFIX.lower())

    def try_admit(
        self,
        db: Session,
        business_id: str,
        model_tier: str,
        prompt: str = "",
        job_id: Optional[str] = None,
    ) -> AdmissionDecision:
        """
        Debit the tier cost when the balance covers it.

        Debug prompts are admitted at zero cost without touching the ledger.
        """
        if self.is_debug_prompt(prompt):
            logger.info(f"[Admission] Debug prompt for {business_id}, bypassing credits")
            return AdmissionDecision(allowed=True, cost=0, balance=self.ledger.balance(db, business_id))

        cost = self.cost_for(model_tier)
        if self.ledger.debit(db, business_id, cost, job_id=job_id):
            return AdmissionDecision(allowed=True, cost=cost, balance=self.ledger.balance(db, business_id))

        balance = self.ledger.balance(db, business_id) or 0
        logger.info(f"[Admission] Denied {business_id}: {model_tier} costs {cost}, balance {balance}")
        return AdmissionDecision(allowed=False, cost=cost, balance=balance)

    def admit(self, db: Session, business_id: str, model_tier: str, prompt: str = "",
              job_id: Optional[str] = None) -> AdmissionDecision:
        """Like try_admit, but raises AdmissionDenied when refused."""
        decision = self.try_admit(db, business_id, model_tier, prompt=prompt, job_id=job_id)
        if not decision.allowed:
            raise AdmissionDenied(business_id, decision.cost, decision.balance or 0)
        return decision


__all__ = ["AdmissionDenied", "AdmissionDecision", "CreditLedger", "AdmissionControl"]
