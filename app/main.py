"""
AdStudio Generation API - Asynchronous Marketing Image Jobs
FastAPI Backend Entry Point
"""

import io
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from app.core.config import settings
from app.core.database import init_db
from app.api import generate, jobs
from app.services.credits import AdmissionDenied

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(f"Starting {settings.APP_NAME} (queue backend: {settings.JOB_QUEUE_BACKEND})")
    init_db()
    if settings.RECOVER_ON_STARTUP:
        from app.workers.recovery import recover_interrupted_jobs
        try:
            recover_interrupted_jobs()
        except Exception as e:
            logger.error(f"Boot recovery failed: {e}")
    yield
    logger.info(f"Shutting down {settings.APP_NAME}...")


app = FastAPI(
    title=settings.APP_NAME,
    description="Asynchronous AI marketing image generation with credit-based admission",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AdmissionDenied)
async def admission_denied_handler(request: Request, exc: AdmissionDenied):
    return JSONResponse(
        status_code=402,
        content={
            "error": "Insufficient credits",
            "required": exc.required,
            "balance": exc.balance,
        },
    )


# Include routers
app.include_router(generate.router, prefix="/api/v1/generate-image", tags=["Image Generation"])
app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["Jobs"])


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for Cloud Run and monitoring.
    Returns detailed status of critical services.
    """
    status = {
        "status": "healthy",
        "version": "0.1.0",
        "environment": {
            "queue_backend": settings.JOB_QUEUE_BACKEND,
            "database": "cloud_sql" if settings.CLOUD_SQL_CONNECTION_NAME else settings.DATABASE_URL.split(":")[0],
        },
        "services": {}
    }

    # Check database connection
    try:
        from app.core.database import SessionLocal
        from sqlalchemy import text
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        status["services"]["database"] = "ok"
    except Exception as e:
        status["services"]["database"] = f"error: {str(e)}"
        status["status"] = "degraded"

    # Redis only matters when jobs go through RQ
    if settings.JOB_QUEUE_BACKEND == "rq":
        from app.core.redis import redis_health_check
        redis_status = redis_health_check()
        if redis_status.get("connected"):
            status["services"]["redis"] = "ok"
            status["services"]["redis_version"] = redis_status.get("redis_version")
            from app.workers.queue import get_queue_manager
            status["queues"] = get_queue_manager().get_queue_stats()
        else:
            status["services"]["redis"] = f"error: {redis_status.get('error', 'not connected')}"
            status["status"] = "degraded"

    # Check storage availability
    try:
        from app.services.storage import StorageService
        storage = StorageService()
        status["environment"]["storage"] = storage.backend
        status["services"]["storage"] = "ok" if storage.health_check() else "unavailable"
    except Exception as e:
        status["services"]["storage"] = f"error: {str(e)}"
    if status["services"].get("storage") != "ok":
        status["status"] = "degraded"

    return status


@app.get("/files/{file_path:path}", tags=["Files"])
async def serve_file(file_path: str):
    """
    Serve generated images from storage.
    This proxies files from GCS/S3/local storage to the frontend.
    """
    from app.services.storage import StorageService

    try:
        storage = StorageService()
        file_bytes = await storage.get_file(file_path)
    except Exception as e:
        logger.info(f"[Files] {file_path} not served: {e}")
        raise HTTPException(status_code=404, detail="File not found")

    suffix = "." + file_path.rsplit(".", 1)[-1].lower() if "." in file_path else ""
    return StreamingResponse(
        io.BytesIO(file_bytes),
        media_type=CONTENT_TYPES.get(suffix, "application/octet-stream"),
        headers={"Cache-Control": "public, max-age=3600"},
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"{settings.APP_NAME}",
        "docs": "/docs",
        "health": "/health",
    }
