"""Background job entry points: scheduled ticks and manual administrator runs."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

from config import TranscriptWorkerConfig, get_config_summary, get_transcript_worker_config
from services.asr_fallback import get_asr_fallback_client
from services.episode_store import EpisodeStore
from services.run_lock import get_run_lock
from services.run_logging import emit_job_metric, log_event
from services.tiers import get_tier_client
from services.transcript_resolver import TranscriptResolver
from services.transcript_types import RunSummary, TranscriptRunFailedError, UnknownJobError
from services.transcript_worker import TranscriptWorker

logger = logging.getLogger(__name__)

TRANSCRIPT_WORKER_JOB = "transcript_worker"


def build_transcript_worker(config: Optional[TranscriptWorkerConfig] = None) -> TranscriptWorker:
    """Wire a worker from configuration; raises ValueError when required settings are missing."""
    current = config or get_transcript_worker_config()
    store = EpisodeStore()
    resolver = TranscriptResolver(
        current,
        get_tier_client(current),
        store,
        asr_client=get_asr_fallback_client(current),
    )
    return TranscriptWorker(current, resolver, store, run_lock=get_run_lock(current))


async def run_transcript_worker() -> RunSummary:
    config = get_transcript_worker_config()
    log_event(logger, logging.INFO, TRANSCRIPT_WORKER_JOB, "starting run", **get_config_summary(config))
    return await build_transcript_worker(config).run_once()


JOB_REGISTRY: Dict[str, Callable[[], Awaitable[RunSummary]]] = {
    TRANSCRIPT_WORKER_JOB: run_transcript_worker,
}


async def transcript_worker_job() -> Optional[RunSummary]:
    """Scheduled tick: run, log the summary and a metric, never raise into the scheduler."""
    try:
        summary = await run_transcript_worker()
    except TranscriptRunFailedError as exc:
        emit_job_metric(
            logger,
            TRANSCRIPT_WORKER_JOB,
            success=False,
            records_processed=exc.summary.processed,
            elapsed_ms=exc.summary.elapsed_ms,
        )
        logger.error("Transcript worker job failed: %s", exc)
        return exc.summary
    except Exception as exc:
        emit_job_metric(logger, TRANSCRIPT_WORKER_JOB, success=False, records_processed=0, elapsed_ms=0)
        logger.exception("Transcript worker job could not start: %s", exc)
        return None

    emit_job_metric(
        logger,
        TRANSCRIPT_WORKER_JOB,
        success=True,
        records_processed=summary.processed,
        elapsed_ms=summary.elapsed_ms,
    )
    log_event(logger, logging.INFO, TRANSCRIPT_WORKER_JOB, "job summary", **summary.to_dict())
    return summary


async def run_job_manually(job_name: str) -> RunSummary:
    """Run a registered job now, outside the schedule; failures propagate to the caller."""
    job = JOB_REGISTRY.get((job_name or "").strip())
    if job is None:
        raise UnknownJobError(f"Unknown job: {job_name}. Available jobs: {', '.join(sorted(JOB_REGISTRY))}")
    log_event(logger, logging.INFO, "background_jobs", "manual run requested", job_name=job_name)
    try:
        summary = await job()
    except TranscriptRunFailedError as exc:
        emit_job_metric(
            logger,
            job_name,
            success=False,
            records_processed=exc.summary.processed,
            elapsed_ms=exc.summary.elapsed_ms,
        )
        raise
    emit_job_metric(
        logger,
        job_name,
        success=True,
        records_processed=summary.processed,
        elapsed_ms=summary.elapsed_ms,
    )
    return summary
