"""
Listener API - FastAPI Backend
Main application entry point with health checks, admin job routes and the transcript worker loop.
"""

import asyncio
from fastapi import FastAPI
from contextlib import asynccontextmanager

from config import get_config_summary, get_transcript_worker_config, settings
from database import engine, Base
import models  # noqa: F401
from routers import health, jobs
from services.background_jobs import transcript_worker_job
from services.run_logging import configure_logging


async def _periodic_transcript_worker(interval_minutes: int) -> None:
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            summary = await transcript_worker_job()
            if summary is not None:
                print(
                    f"🎙️ Transcript worker tick: processed={summary.processed} "
                    f"succeeded={summary.succeeded} failed={summary.failed} "
                    f"fallbacks={summary.fallback_invoked}"
                )
        except Exception as exc:
            print(f"⚠️ Transcript worker tick failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    configure_logging(settings.LOG_LEVEL)
    print("🚀 Starting Listener API...")
    worker_config = get_transcript_worker_config()
    print(f"🛠️ Transcript worker config: {get_config_summary(worker_config)}")
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    transcript_task = None
    if worker_config.enabled and worker_config.interval_minutes > 0:
        transcript_task = asyncio.create_task(_periodic_transcript_worker(worker_config.interval_minutes))
        print(f"📅 Transcript worker loop enabled (every {worker_config.interval_minutes} min).")
    yield
    # Shutdown
    if transcript_task is not None:
        transcript_task.cancel()
        try:
            await transcript_task
        except asyncio.CancelledError:
            pass
    print("👋 Shutting down API...")


app = FastAPI(
    title="Listener API",
    description="Podcast transcript acquisition and newsletter backend",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Listener API",
        "version": "0.1.0",
        "status": "running"
    }
