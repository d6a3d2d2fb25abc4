import io
import os
import tempfile

# Settings are read at import time, so the environment goes first
_TMP = tempfile.mkdtemp(prefix="adstudio-tests-")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JOB_QUEUE_BACKEND"] = "inline"
os.environ["USE_GCS"] = "false"
os.environ["USE_LOCAL_STORAGE"] = "true"
os.environ["LOCAL_STORAGE_PATH"] = os.path.join(_TMP, "uploads")
os.environ["RECOVER_ON_STARTUP"] = "false"
os.environ["API_BASE_URL"] = "http://testserver"
os.environ["GEMINI_API_KEY"] = "test-key"

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base, SessionLocal
from app.models import Business, GenerationJob, GenerationJobStatus
from app.services.credits import AdmissionControl
from app.services.gemini_image import GeneratedImage

# Test engine: one in-memory database shared by every session
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
SessionLocal.configure(bind=engine)


def png_bytes(size=(8, 8), color=(200, 40, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


SVG_LOGO = (
    b'<svg xmlns="http://www.w3.org/2000/svg" width="200" height="100" viewBox="0 0 200 100">'
    b'<rect width="200" height="100" fill="#0a7"/><text x="10" y="60">ACME</text></svg>'
)


class FakeGenerator:
    """Stands in for GeminiImageService."""

    def __init__(self, image: bytes = None, error: Exception = None, on_call=None):
        self.image = image or png_bytes((16, 16))
        self.error = error
        self.on_call = on_call
        self.calls = []

    async def generate(self, parts, constraints):
        self.calls.append((parts, constraints))
        if self.on_call:
            self.on_call()
        if self.error:
            raise self.error
        return GeneratedImage(data=self.image, mime_type="image/png", model="fake-image-model", elapsed_seconds=0.01)


@pytest.fixture(autouse=True)
def schema():
    """Fresh tables for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_business(db_session):
    def _make(business_id="biz_test", credits=100, logo_url=None, name="Acme Coffee"):
        business = Business(id=business_id, name=name, credits=credits, logo_url=logo_url)
        db_session.add(business)
        db_session.commit()
        return business
    return _make


@pytest.fixture
def make_job(db_session):
    """Admit and insert a job the way the create endpoint does."""
    counter = {"n": 0}

    def _make(business_id="biz_test", prompt="Summer latte promo", model_tier="pro",
              aspect_ratio="1:1", options=None, status=GenerationJobStatus.PROCESSING,
              created_at=None):
        counter["n"] += 1
        job_id = f"job_test{counter['n']:04d}"
        decision = AdmissionControl().try_admit(db_session, business_id, model_tier, prompt=prompt, job_id=job_id)
        assert decision.allowed
        job = GenerationJob(
            id=job_id,
            business_id=business_id,
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            model_tier=model_tier,
            options=options or {},
            credit_cost=decision.cost,
            status=status,
        )
        if created_at is not None:
            job.created_at = created_at
        db_session.add(job)
        db_session.commit()
        return job
    return _make


@pytest.fixture
def balance(db_session):
    def _balance(business_id="biz_test"):
        db_session.expire_all()
        return db_session.query(Business.credits).filter(Business.id == business_id).scalar()
    return _balance
