"""
Pending Job Tracker
The observer's view of in-flight generations: a placeholder per submitted
request, joined to its job id and progress phase, reconciled against the
server by polling.

Non-terminal views are persisted to a JSON file so a restarted observer can
resume them. Once a view is revealed and its asset shows up in the durable
asset list, the placeholder is dropped.
"""

import asyncio
import logging
import time
import uuid
from datetime import timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, ValidationError

from app.client.api import JobsApiClient
from app.client.phases import PhaseMachine, ProgressPhase
from app.client.poller import JobPoller, PollResult
from app.schemas.generate import GenerateRequest
from app.schemas.job import JobStatus, JobStatusResponse

logger = logging.getLogger(__name__)

MAX_VIEW_AGE_SECONDS = 300.0
TICK_SECONDS = 0.05


class PendingView(BaseModel):
    """One pending generation as the observer sees it."""
    placeholder_id: str
    business_id: str
    prompt: str = ""
    job_id: Optional[str] = None
    phase: ProgressPhase = ProgressPhase.WARMUP
    status: Optional[JobStatus] = None
    created_at: float  # Wall-clock seconds, survives restarts
    asset_id: Optional[str] = None
    asset_url: Optional[str] = None
    error: Optional[str] = None


class StoredViews(BaseModel):
    views: List[PendingView] = []


class PendingViewStore:
    """JSON file holding the views that should survive a restart."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> List[PendingView]:
        if not self.path.exists():
            return []
        try:
            return StoredViews.model_validate_json(self.path.read_text()).views
        except (ValidationError, ValueError) as e:
            logger.warning(f"[Tracker] Ignoring unreadable state file {self.path}: {e}")
            return []

    def save(self, views: List[PendingView]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(StoredViews(views=views).model_dump_json(indent=2))


class PendingJobTracker:
    """Owns pending views, their phase machines and their pollers."""

    def __init__(
        self,
        api: JobsApiClient,
        store: Optional[PendingViewStore] = None,
        poller: Optional[JobPoller] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable = asyncio.sleep,
        on_change: Optional[Callable[[PendingView], None]] = None,
        on_removed: Optional[Callable[[PendingView, str], None]] = None,
    ):
        self.api = api
        self.store = store
        self.poller = poller or JobPoller(api)
        self.clock = clock
        self.wall_clock = wall_clock
        self.sleep = sleep
        self.on_change = on_change
        self.on_removed = on_removed

        self.views: Dict[str, PendingView] = {}
        self.machines: Dict[str, PhaseMachine] = {}

    # Lifecycle

    async def submit(self, request: GenerateRequest) -> PendingView:
        """Create a placeholder, then the job. The placeholder goes away if creation fails."""
        view = PendingView(
            placeholder_id=f"pending_{uuid.uuid4().hex[:8]}",
            business_id=request.business_id,
            prompt=request.prompt,
            created_at=self.wall_clock(),
        )
        self._add(view, PhaseMachine(ProgressPhase.WARMUP, clock=self.clock))

        try:
            response = await self.api.create_job(request)
        except Exception:
            self.remove(view.placeholder_id, reason="submit failed")
            raise

        view.job_id = response.job_id
        view.status = JobStatus(response.status)
        self._changed(view)
        return view

    async def resume(self, business_id: str) -> List[PendingView]:
        """
        Rebuild views after a restart.

        Persisted views younger than five minutes come back at their stored
        phase; server-side pending jobs nobody remembers come back in cruise.
        """
        now = self.wall_clock()
        stored = self.store.load() if self.store else []
        for view in stored:
            if view.business_id != business_id or view.job_id in self._known_job_ids():
                continue
            if now - view.created_at > MAX_VIEW_AGE_SECONDS:
                logger.info(f"[Tracker] Dropping stale view {view.placeholder_id}")
                continue
            # A view that already owns a job never replays warmup
            hint = ProgressPhase.CRUISE.value if view.job_id else view.phase.value
            self._add(view, PhaseMachine.resume(hint, clock=self.clock))

        for job in await self.api.get_pending(business_id):
            if job.id in self._known_job_ids():
                continue
            created = job.created_at
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            view = PendingView(
                placeholder_id=f"pending_{uuid.uuid4().hex[:8]}",
                business_id=business_id,
                prompt=job.prompt,
                job_id=job.id,
                phase=ProgressPhase.CRUISE,
                status=job.status,
                created_at=created.timestamp(),
            )
            self._add(view, PhaseMachine(ProgressPhase.CRUISE, clock=self.clock))

        self.persist()
        logger.info(f"[Tracker] Resumed {len(self.views)} pending view(s) for {business_id}")
        return list(self.views.values())

    async def watch(self, placeholder_id: str) -> Optional[PendingView]:
        """
        Poll a view's job and play its phases through to revealed.

        Returns the revealed view, or None when it was removed (failed,
        deleted, or timed out).
        """
        view = self.views.get(placeholder_id)
        if view is None or view.job_id is None:
            return None

        result: PollResult = await self.poller.poll(
            view.job_id,
            on_update=lambda status: self.apply_status(placeholder_id, status),
        )

        if placeholder_id not in self.views:
            return None
        if result.not_found:
            self.remove(placeholder_id, reason="job deleted")
            return None
        if result.timed_out:
            self.remove(placeholder_id, reason="timed out")
            return None

        machine = self.machines[placeholder_id]
        while not machine.is_revealed:
            self.tick()
            if not machine.is_revealed:
                await self.sleep(TICK_SECONDS)
        return view

    # Reconciliation

    def apply_status(self, placeholder_id: str, status: JobStatusResponse):
        """Fold one poll response into the view."""
        view = self.views.get(placeholder_id)
        if view is None:
            return

        view.status = status.status
        if status.status == JobStatus.FAILED:
            view.error = status.error_message or "Generation failed"
            self.remove(placeholder_id, reason="failed")
            return

        if status.status == JobStatus.COMPLETED:
            view.asset_id = status.result_asset_id
            if status.asset:
                view.asset_url = status.asset.content

        self._advance(view)

    def tick(self, now: Optional[float] = None):
        """Time-only update of every phase machine."""
        for view in list(self.views.values()):
            self._advance(view, now)

    def reconcile_assets(self, asset_ids: Iterable[str]) -> List[str]:
        """Collapse revealed views whose asset is now in the durable list."""
        present = set(asset_ids)
        collapsed = [
            view.placeholder_id
            for view in self.views.values()
            if view.phase == ProgressPhase.REVEALED and view.asset_id in present
        ]
        for placeholder_id in collapsed:
            self.remove(placeholder_id, reason="asset present")
        return collapsed

    def remove(self, placeholder_id: str, reason: str = ""):
        view = self.views.pop(placeholder_id, None)
        self.machines.pop(placeholder_id, None)
        if view is None:
            return
        logger.info(f"[Tracker] Removed {placeholder_id} ({reason})")
        self.persist()
        if self.on_removed:
            self.on_removed(view, reason)

    def progress(self, placeholder_id: str, now: Optional[float] = None) -> float:
        return self.machines[placeholder_id].progress(now)

    def persist(self):
        """Write the non-terminal views to the reload store."""
        if not self.store:
            return
        self.store.save([
            view for view in self.views.values()
            if view.phase != ProgressPhase.REVEALED and view.job_id
        ])

    # Internals

    def _known_job_ids(self) -> set:
        return {view.job_id for view in self.views.values() if view.job_id}

    def _add(self, view: PendingView, machine: PhaseMachine):
        self.views[view.placeholder_id] = view
        self.machines[view.placeholder_id] = machine
        view.phase = machine.phase
        self._changed(view)

    def _advance(self, view: PendingView, now: Optional[float] = None):
        machine = self.machines[view.placeholder_id]
        status = view.status.value if view.status else None
        phase = machine.update(status, now)
        if phase != view.phase:
            view.phase = phase
            self._changed(view)

    def _changed(self, view: PendingView):
        self.persist()
        if self.on_change:
            self.on_change(view)


__all__ = [
    "MAX_VIEW_AGE_SECONDS",
    "PendingView",
    "PendingViewStore",
    "PendingJobTracker",
]
