"""
Generation Executor
Runs one generation job from `processing` to a terminal state:
assemble references, call the model, upload the image, write the asset.

The executor is the only writer of its job row after creation. Terminal
writes are conditional on the row still being `processing`, so a job that
was deleted or resolved elsewhere (boot recovery) is never overwritten.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal
from app.models.asset import Asset
from app.models.business import Business
from app.models.job import GenerationJob, GenerationJobStatus
from app.schemas.generate import StylePreset, SubjectContext
from app.services.content_assembler import ContentAssembler, build_prompt, collect_references
from app.services.credits import AdmissionControl, CreditLedger
from app.services.gemini_image import GeminiImageService, GenerationConstraints
from app.services.storage import StorageService
from app.workers.base import (
    AssemblyFailure,
    BaseWorker,
    GenerationFailure,
    GenerationTransportError,
    NoImageInResponse,
    PersistenceFailure,
)

logger = logging.getLogger(__name__)


class JobOutcome:
    """What an execution ended with."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"        # Row missing or not processing when picked up
    ABANDONED = "abandoned"    # Row deleted before the model call, refunded
    DISCARDED = "discarded"    # Row gone or resolved before the result was written


def new_asset_id() -> str:
    return f"asset_{uuid.uuid4().hex[:12]}"


def snapshot(job: GenerationJob) -> Dict[str, Any]:
    """Plain copy of the fields the executor needs, detached from the session."""
    return {
        "id": job.id,
        "business_id": job.business_id,
        "prompt": job.prompt,
        "aspect_ratio": job.aspect_ratio,
        "style_id": job.style_id,
        "subject_id": job.subject_id,
        "model_tier": job.model_tier,
        "options": dict(job.options or {}),
        "credit_cost": job.credit_cost or 0,
    }


class GenerationExecutor(BaseWorker):
    """Executes image generation jobs."""

    TASK_NAME = "image_generation"

    def __init__(
        self,
        session_factory: Callable[[], Session] = None,
        assembler: Optional[ContentAssembler] = None,
        generator: Optional[GeminiImageService] = None,
        storage: Optional[StorageService] = None,
        ledger: Optional[CreditLedger] = None,
        sleep: Callable = None,
    ):
        super().__init__()
        self.session_factory = session_factory or SessionLocal
        self.assembler = assembler or ContentAssembler()
        self.ledger = ledger or CreditLedger()
        self.sleep = sleep or asyncio.sleep
        self._generator = generator
        self._storage = storage

    @property
    def generator(self) -> GeminiImageService:
        if self._generator is None:
            self._generator = GeminiImageService()
        return self._generator

    @property
    def storage(self) -> StorageService:
        if self._storage is None:
            self._storage = StorageService()
        return self._storage

    async def execute(self, job_id: str) -> Dict[str, Any]:
        """Run a job to completion or failure. Never raises for job errors."""
        self._log_start(self.TASK_NAME, job_id=job_id)
        db = self.session_factory()

        try:
            job = db.query(GenerationJob).filter(GenerationJob.id == job_id).first()
            if job is None:
                logger.warning(f"[Executor] Job {job_id} not found, nothing to do")
                return {"job_id": job_id, "outcome": JobOutcome.SKIPPED}
            if job.status != GenerationJobStatus.PROCESSING:
                logger.warning(f"[Executor] Job {job_id} is {job.status}, not processing; skipping")
                return {"job_id": job_id, "outcome": JobOutcome.SKIPPED}

            ticket = snapshot(job)

            try:
                if AdmissionControl.is_debug_prompt(ticket["prompt"]):
                    outcome = await self._run_debug(db, ticket)
                else:
                    outcome = await self._run(db, ticket)
            except Exception as e:
                self._log_error(self.TASK_NAME, e)
                self._fail(
                    db, job_id, ticket["business_id"], ticket["credit_cost"], e,
                    model_called=ticket.get("model_called", False),
                )
                return {"job_id": job_id, "outcome": JobOutcome.FAILED, "error": str(e)}

            self._log_complete(self.TASK_NAME, f"Job {job_id} {outcome}")
            return {"job_id": job_id, "outcome": outcome}

        finally:
            db.close()

    async def _run_debug(self, db: Session, ticket: Dict[str, Any]) -> str:
        """Debug prompts skip the model and complete with a placeholder image."""
        logger.info(f"[Executor] Debug job {ticket['id']}")
        if "slow" in ticket["prompt"].lower():
            await self.sleep(settings.DEBUG_SLOW_SECONDS)
        return self._complete(db, ticket, settings.DEBUG_PLACEHOLDER_URL, metrics={"debug": True})

    async def _run(self, db: Session, ticket: Dict[str, Any]) -> str:
        job_id = ticket["id"]
        business_id = ticket["business_id"]
        credit_cost = ticket["credit_cost"]
        options = ticket["options"]
        started = time.monotonic()

        subject_context = None
        if options.get("subject_context"):
            subject_context = SubjectContext.model_validate(options["subject_context"])
        style_preset = None
        if options.get("style_preset"):
            style_preset = StylePreset.model_validate(options["style_preset"])

        business = db.query(Business).filter(Business.id == business_id).first()
        logo_url = business.logo_url if business else None

        # Step 1: Assemble
        logger.info(f"  [1/3] Assembling content for {job_id}...")
        prompt = build_prompt(ticket["prompt"], subject_context, style_preset)
        references = collect_references(subject_context, logo_url, style_preset)
        assembled = await self.assembler.assemble(prompt, references)

        # Checkpoint: a deleted row means the caller gave up on this job
        db.expire_all()
        status = db.query(GenerationJob.status).filter(GenerationJob.id == job_id).scalar()
        if status is None:
            logger.warning(f"[Executor] Job {job_id} deleted before generation, abandoning")
            self.ledger.refund(db, business_id, credit_cost, job_id, note="job deleted before generation")
            return JobOutcome.ABANDONED
        if status != GenerationJobStatus.PROCESSING:
            logger.warning(f"[Executor] Job {job_id} became {status} before generation, abandoning")
            return JobOutcome.ABANDONED

        # Step 2: Generate
        logger.info(f"  [2/3] Generating image...")
        constraints = GenerationConstraints(aspect_ratio=ticket["aspect_ratio"], model_tier=ticket["model_tier"])
        ticket["model_called"] = True
        image = await self.generator.generate(assembled.parts, constraints)

        # Step 3: Store result
        logger.info(f"  [3/3] Storing result...")
        upload_started = time.monotonic()
        try:
            extension = image.mime_type.split("/")[-1].replace("jpeg", "jpg")
            path = StorageService.generated_image_path(business_id, extension)
            url = await self.storage.upload_bytes(image.data, path, content_type=image.mime_type)
        except Exception as e:
            raise PersistenceFailure(f"Failed to store generated image: {e}")

        metrics = {
            "model": image.model,
            "assembly_seconds": round(assembled.elapsed_seconds, 3),
            "generation_seconds": round(image.elapsed_seconds, 3),
            "upload_seconds": round(time.monotonic() - upload_started, 3),
            "total_seconds": round(time.monotonic() - started, 3),
            "image_count": assembled.image_count,
            "payload_bytes": assembled.payload_bytes,
            "dropped_references": assembled.dropped,
            "output_bytes": len(image.data),
        }
        return self._complete(db, ticket, url, metrics=metrics)

    def _complete(self, db: Session, ticket: Dict[str, Any], url: str, metrics: Dict[str, Any]) -> str:
        """Write the asset and flip the job to completed in one commit."""
        job_id = ticket["id"]
        now = datetime.utcnow()
        asset = Asset(
            id=new_asset_id(),
            business_id=ticket["business_id"],
            type="image",
            content=url,
            prompt=ticket["prompt"],
            aspect_ratio=ticket["aspect_ratio"],
            style_preset=(ticket["options"].get("style_preset") or {}).get("name"),
            style_id=ticket["style_id"],
            subject_id=ticket["subject_id"],
            model_tier=ticket["model_tier"],
            created_at=now,
        )

        try:
            result = db.execute(
                update(GenerationJob)
                .where(
                    GenerationJob.id == job_id,
                    GenerationJob.status == GenerationJobStatus.PROCESSING,
                )
                .values(
                    status=GenerationJobStatus.COMPLETED,
                    result_asset_id=asset.id,
                    metrics=metrics,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                logger.warning(f"[Executor] Job {job_id} no longer processing, discarding result {url}")
                return JobOutcome.DISCARDED

            db.add(asset)
            db.commit()
        except Exception as e:
            db.rollback()
            raise PersistenceFailure(f"Failed to save asset: {e}")

        logger.info(f"[Executor] Job {job_id} completed with asset {asset.id}")
        return JobOutcome.COMPLETED

    def _fail(
        self,
        db: Session,
        job_id: str,
        business_id: str,
        credit_cost: int,
        error: Exception,
        model_called: bool = False,
    ):
        """
        Resolve the job to failed and refund its debit.

        A row deleted once the model has been called gets no refund; the
        result is discarded like any other work for a deleted job.
        """
        db.rollback()
        message = describe_error(error)

        if isinstance(error, NoImageInResponse):
            logger.error(f"[Executor] Job {job_id}: model returned no image ({error})")
        elif isinstance(error, GenerationTransportError):
            logger.error(f"[Executor] Job {job_id}: model call failed ({error})")
        else:
            logger.error(f"[Executor] Job {job_id} failed: {message}")

        now = datetime.utcnow()
        try:
            result = db.execute(
                update(GenerationJob)
                .where(
                    GenerationJob.id == job_id,
                    GenerationJob.status == GenerationJobStatus.PROCESSING,
                )
                .values(
                    status=GenerationJobStatus.FAILED,
                    error_message=message,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount != 1:
                exists = db.query(GenerationJob.id).filter(GenerationJob.id == job_id).first() is not None
                if not exists and model_called:
                    logger.warning(f"[Executor] Job {job_id} deleted after generation, no refund")
                    return
                logger.warning(f"[Executor] Job {job_id} was not processing when marking failed")
        except Exception as e:
            db.rollback()
            logger.error(f"[Executor] Could not mark job {job_id} failed: {e}")

        # Safe to repeat: the ledger refunds a job at most once
        self.ledger.refund(db, business_id, credit_cost, job_id, note=message)


def describe_error(error: Exception) -> str:
    """Human-readable error_message for a failed job."""
    if isinstance(error, (AssemblyFailure, GenerationFailure, PersistenceFailure)):
        message = str(error)
    else:
        message = f"Image generation failed: {error}"
    return message[:1000]


async def run_generation_job(job_id: str) -> Dict[str, Any]:
    """Entry point used by both the inline dispatcher and the RQ task."""
    return await GenerationExecutor().execute(job_id)


__all__ = ["JobOutcome", "GenerationExecutor", "run_generation_job", "describe_error", "new_asset_id"]
