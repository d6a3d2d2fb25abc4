import json
from datetime import datetime, timedelta

import httpx
import pytest

from app.client.api import InsufficientCredits, JobNotFound, JobsApiClient
from app.client.phases import ProgressPhase
from app.client.poller import JobPoller
from app.client.tracker import PendingJobTracker, PendingView, PendingViewStore
from app.schemas.generate import GenerateRequest, GenerateResponse
from app.schemas.job import JobResponse, JobStatusResponse


class FakeTime:
    """Shared monotonic and wall clock; sleeping advances both."""

    def __init__(self, wall=1_700_000_000.0):
        self.now = 0.0
        self.wall = wall
        self.sleeps = []

    def clock(self):
        return self.now

    def wall_clock(self):
        return self.wall + self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def job_status(status, job_id="job_1", asset_id=None, error=None):
    stamp = datetime(2026, 10, 1, 12, 0, 0)
    asset = None
    if asset_id:
        asset = {"id": asset_id, "content": f"http://testserver/files/{asset_id}.png",
                 "prompt": "p", "createdAt": stamp.isoformat()}
    return JobStatusResponse.model_validate({
        "id": job_id,
        "status": status,
        "errorMessage": error,
        "resultAssetId": asset_id,
        "asset": asset,
        "createdAt": stamp.isoformat(),
        "updatedAt": stamp.isoformat(),
    })


def pending_job(job_id, created_at):
    return JobResponse(
        id=job_id,
        business_id="biz_test",
        status="processing",
        prompt="Pending promo",
        aspect_ratio="1:1",
        model_tier="pro",
        created_at=created_at,
        updated_at=created_at,
    )


class ScriptedApi:
    """Duck-typed JobsApiClient with scripted answers."""

    def __init__(self, statuses=(), pending=(), create_error=None):
        self.statuses = list(statuses)
        self.pending = list(pending)
        self.create_error = create_error
        self.status_calls = 0

    async def create_job(self, request):
        if self.create_error:
            raise self.create_error
        return GenerateResponse(job_id="job_1", status="processing")

    async def get_status(self, job_id):
        self.status_calls += 1
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def get_pending(self, business_id):
        return self.pending


REQUEST = GenerateRequest(business_id="biz_test", prompt="Weekend brunch", model_tier="flash")


class TestJobsApiClient:

    def make_client(self, handler):
        return JobsApiClient(base_url="http://api.test", transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_create_sends_camel_case(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(202, json={"jobId": "job_9", "status": "processing"})

        async with self.make_client(handler) as api:
            response = await api.create_job(REQUEST)

        assert response.job_id == "job_9"
        assert seen["body"]["businessId"] == "biz_test"
        assert seen["body"]["modelTier"] == "flash"

    @pytest.mark.asyncio
    async def test_create_refused_for_credits(self):
        def handler(request):
            return httpx.Response(402, json={"error": "Insufficient credits", "required": 40, "balance": 15})

        async with self.make_client(handler) as api:
            with pytest.raises(InsufficientCredits) as exc:
                await api.create_job(REQUEST)

        assert exc.value.required == 40
        assert exc.value.balance == 15

    @pytest.mark.asyncio
    async def test_missing_job(self):
        async with self.make_client(lambda request: httpx.Response(404, json={"detail": "Job not found"})) as api:
            with pytest.raises(JobNotFound):
                await api.get_status("job_gone")
            assert await api.delete_job("job_gone") is False


class TestJobPoller:

    @pytest.mark.asyncio
    async def test_polls_until_terminal(self):
        fake = FakeTime()
        api = ScriptedApi([job_status("processing"), job_status("processing"), job_status("completed", asset_id="a1")])
        updates = []

        result = await JobPoller(api, clock=fake.clock, sleep=fake.sleep).poll("job_1", updates.append)

        assert result.status == "completed"
        assert [u.status.value for u in updates] == ["processing", "processing", "completed"]
        assert fake.sleeps == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_finished_job_returns_on_first_check(self):
        fake = FakeTime()
        api = ScriptedApi([job_status("failed", error="No image in response")])

        result = await JobPoller(api, clock=fake.clock, sleep=fake.sleep).poll("job_1")

        assert result.status == "failed"
        assert fake.sleeps == []

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        fake = FakeTime()
        api = ScriptedApi([httpx.ConnectError("offline"), job_status("completed", asset_id="a1")])

        result = await JobPoller(api, clock=fake.clock, sleep=fake.sleep).poll("job_1")

        assert result.status == "completed"
        assert api.status_calls == 2

    @pytest.mark.asyncio
    async def test_deleted_job_stops_polling(self):
        fake = FakeTime()
        api = ScriptedApi([JobNotFound("job_1")])

        result = await JobPoller(api, clock=fake.clock, sleep=fake.sleep).poll("job_1")

        assert result.not_found
        assert api.status_calls == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_timeout(self):
        fake = FakeTime()
        api = ScriptedApi([job_status("processing")])

        result = await JobPoller(api, timeout=10.0, clock=fake.clock, sleep=fake.sleep).poll("job_1")

        assert result.timed_out
        assert result.status == "processing"
        assert api.status_calls == 6


class TestPendingJobTracker:

    def make_tracker(self, api, fake, tmp_path, **kwargs):
        store = PendingViewStore(str(tmp_path / "pending.json"))
        poller = JobPoller(api, clock=fake.clock, sleep=fake.sleep)
        tracker = PendingJobTracker(
            api, store=store, poller=poller,
            clock=fake.clock, wall_clock=fake.wall_clock, sleep=fake.sleep, **kwargs
        )
        return tracker, store

    @pytest.mark.asyncio
    async def test_submit_creates_warmup_view_and_persists(self, tmp_path):
        fake = FakeTime()
        tracker, store = self.make_tracker(ScriptedApi(), fake, tmp_path)

        view = await tracker.submit(REQUEST)

        assert view.job_id == "job_1"
        assert view.phase == ProgressPhase.WARMUP
        assert [v.job_id for v in store.load()] == ["job_1"]

    @pytest.mark.asyncio
    async def test_failed_submit_removes_placeholder(self, tmp_path):
        fake = FakeTime()
        removed = []
        api = ScriptedApi(create_error=InsufficientCredits(40, 15))
        tracker, _ = self.make_tracker(api, fake, tmp_path, on_removed=lambda v, reason: removed.append(reason))

        with pytest.raises(InsufficientCredits):
            await tracker.submit(REQUEST)

        assert tracker.views == {}
        assert removed == ["submit failed"]

    @pytest.mark.asyncio
    async def test_watch_plays_through_to_reveal(self, tmp_path):
        fake = FakeTime()
        api = ScriptedApi([job_status("processing"), job_status("completed", asset_id="asset_1")])
        tracker, store = self.make_tracker(api, fake, tmp_path)
        view = await tracker.submit(REQUEST)

        revealed = await tracker.watch(view.placeholder_id)

        assert revealed is view
        assert view.phase == ProgressPhase.REVEALED
        assert view.asset_id == "asset_1"
        assert view.asset_url.endswith("asset_1.png")
        assert tracker.progress(view.placeholder_id) == 100.0
        # Revealed views are no longer worth resuming
        assert store.load() == []

        assert tracker.reconcile_assets(["asset_0", "asset_1"]) == [view.placeholder_id]
        assert tracker.views == {}

    @pytest.mark.asyncio
    async def test_failed_job_removes_view(self, tmp_path):
        fake = FakeTime()
        removed = []
        api = ScriptedApi([job_status("processing"), job_status("failed", error="No image in response")])
        tracker, store = self.make_tracker(api, fake, tmp_path, on_removed=lambda v, reason: removed.append(v))
        view = await tracker.submit(REQUEST)

        assert await tracker.watch(view.placeholder_id) is None

        assert removed[0].error == "No image in response"
        assert tracker.views == {}
        assert store.load() == []

    @pytest.mark.asyncio
    async def test_deleted_job_removes_view(self, tmp_path):
        fake = FakeTime()
        tracker, _ = self.make_tracker(ScriptedApi([JobNotFound("job_1")]), fake, tmp_path)
        view = await tracker.submit(REQUEST)

        assert await tracker.watch(view.placeholder_id) is None
        assert tracker.views == {}

    @pytest.mark.asyncio
    async def test_resume_restores_stored_and_server_jobs(self, tmp_path):
        fake = FakeTime()
        now = fake.wall_clock()
        server_now = datetime.utcfromtimestamp(now)
        api = ScriptedApi(pending=[
            pending_job("job_a", server_now - timedelta(seconds=20)),
            pending_job("job_c", server_now - timedelta(seconds=40)),
        ])
        tracker, store = self.make_tracker(api, fake, tmp_path)
        store.save([
            PendingView(placeholder_id="pending_a", business_id="biz_test", job_id="job_a",
                        phase=ProgressPhase.DECELERATION, created_at=now - 20),
            PendingView(placeholder_id="pending_b", business_id="biz_test", job_id="job_b",
                        phase=ProgressPhase.CRUISE, created_at=now - 600),
            PendingView(placeholder_id="pending_x", business_id="biz_other", job_id="job_x",
                        created_at=now - 5),
        ])

        views = await tracker.resume("biz_test")

        by_job = {v.job_id: v for v in views}
        assert set(by_job) == {"job_a", "job_c"}
        assert by_job["job_a"].placeholder_id == "pending_a"
        assert by_job["job_a"].phase == ProgressPhase.CRUISE
        assert by_job["job_c"].phase == ProgressPhase.CRUISE
        assert by_job["job_c"].created_at == pytest.approx(now - 40)
        assert {v.job_id for v in store.load()} == {"job_a", "job_c"}

    @pytest.mark.asyncio
    async def test_resume_during_warmup_does_not_replay_warmup(self, tmp_path):
        fake = FakeTime()
        now = fake.wall_clock()
        api = ScriptedApi(pending=[pending_job("job_a", datetime.utcfromtimestamp(now - 1))])
        tracker, store = self.make_tracker(api, fake, tmp_path)
        store.save([
            PendingView(placeholder_id="pending_a", business_id="biz_test", job_id="job_a",
                        phase=ProgressPhase.WARMUP, created_at=now - 1),
            PendingView(placeholder_id="pending_new", business_id="biz_test",
                        phase=ProgressPhase.WARMUP, created_at=now - 1),
        ])

        views = {v.placeholder_id: v for v in await tracker.resume("biz_test")}

        assert views["pending_a"].phase == ProgressPhase.CRUISE
        assert views["pending_new"].phase == ProgressPhase.WARMUP

    def test_unreadable_state_file_is_ignored(self, tmp_path):
        path = tmp_path / "pending.json"
        path.write_text("{not json")

        assert PendingViewStore(str(path)).load() == []
