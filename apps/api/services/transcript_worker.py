"""Batch coordinator for a transcript acquisition run."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from config import TranscriptWorkerConfig
from services.episode_store import EpisodeSelection, EpisodeStore
from services.run_lock import NoopRunLock, RunLock
from services.run_logging import log_event
from services.transcript_resolver import TranscriptResolver
from services.transcript_types import (
    EpisodeCandidate,
    ResolutionOutcome,
    RunBudget,
    RunSummary,
    TranscriptRunFailedError,
)

logger = logging.getLogger(__name__)

COMPONENT = "transcript_worker"


class RunState(str, Enum):
    IDLE = "idle"
    LOCK_ACQUIRING = "lock_acquiring"
    LOADING = "loading"
    PROCESSING = "processing"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class _RunStats:
    job_id: str
    started_at: datetime
    started_clock: float
    candidates: int = 0
    processed: int = 0
    succeeded: int = 0
    fallback_invoked: int = 0
    fallback_succeeded: int = 0
    failed: int = 0
    failures_by_category: Counter = field(default_factory=Counter)
    lock_acquired: bool = False

    def record(self, outcome: ResolutionOutcome) -> None:
        self.processed += 1
        if outcome.asr_invoked:
            self.fallback_invoked += 1
        if outcome.succeeded:
            self.succeeded += 1
            if outcome.asr_invoked:
                self.fallback_succeeded += 1
            return
        self.failed += 1
        if outcome.error_category is not None:
            self.failures_by_category[outcome.error_category.value] += 1

    def freeze(self, state: RunState, budget: Optional[RunBudget], error: Optional[str] = None) -> RunSummary:
        return RunSummary(
            job_id=self.job_id,
            state=state.value,
            candidates=self.candidates,
            processed=self.processed,
            succeeded=self.succeeded,
            fallback_invoked=self.fallback_invoked,
            fallback_succeeded=self.fallback_succeeded,
            failed=self.failed,
            failures_by_category=dict(self.failures_by_category),
            total_credits=budget.credits_consumed if budget else 0,
            api_calls_made=budget.api_calls_made if budget else 0,
            lock_acquired=self.lock_acquired,
            elapsed_ms=int((time.monotonic() - self.started_clock) * 1000),
            started_at=self.started_at,
            completed_at=datetime.now(timezone.utc),
            error=error,
        )


class TranscriptWorker:
    """Owns one run: lock, candidate load, bounded concurrent resolution, summary, unlock."""

    def __init__(
        self,
        config: TranscriptWorkerConfig,
        resolver: TranscriptResolver,
        store: EpisodeStore,
        run_lock: Optional[RunLock] = None,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.store = store
        self.run_lock = run_lock or NoopRunLock()
        self.state = RunState.IDLE

    def _transition(self, state: RunState, job_id: str) -> None:
        self.state = state
        log_event(logger, logging.DEBUG, COMPONENT, "state change", job_id=job_id, state=state.value)

    def _selection(self) -> EpisodeSelection:
        if self.config.last10_mode:
            return EpisodeSelection.most_recent(self.config.override_count)
        return EpisodeSelection.lookback(self.config.lookback_hours)

    async def run_once(self) -> RunSummary:
        stats = _RunStats(
            job_id=str(uuid.uuid4()),
            started_at=datetime.now(timezone.utc),
            started_clock=time.monotonic(),
        )
        budget: Optional[RunBudget] = None
        lock_held = False
        log_event(
            logger,
            logging.INFO,
            COMPONENT,
            "run started",
            job_id=stats.job_id,
            tier=self.config.tier,
            mode="override" if self.config.last10_mode else "lookback",
        )
        try:
            if self.config.use_advisory_lock:
                self._transition(RunState.LOCK_ACQUIRING, stats.job_id)
                lock_held = await self.run_lock.acquire()
                if not lock_held:
                    log_event(
                        logger,
                        logging.INFO,
                        COMPONENT,
                        "run skipped, lock held by another instance",
                        job_id=stats.job_id,
                        lock_key=self.run_lock.key,
                    )
                    self._transition(RunState.COMPLETED, stats.job_id)
                    return stats.freeze(RunState.COMPLETED, budget)
            stats.lock_acquired = True

            self._transition(RunState.LOADING, stats.job_id)
            candidates = await self.store.fetch_eligible(self._selection())
            stats.candidates = len(candidates)
            budget = RunBudget(self.config.max_requests, self.config.max_fallbacks_per_run)
            log_event(logger, logging.INFO, COMPONENT, "candidates loaded", job_id=stats.job_id, candidates=stats.candidates)

            self._transition(RunState.PROCESSING, stats.job_id)
            await self._process(candidates, budget, stats)

            self._transition(RunState.PERSISTING, stats.job_id)
            summary = stats.freeze(RunState.COMPLETED, budget)
            self._transition(RunState.COMPLETED, stats.job_id)
            log_event(
                logger,
                logging.INFO,
                COMPONENT,
                "run completed",
                job_id=summary.job_id,
                candidates=summary.candidates,
                processed=summary.processed,
                succeeded=summary.succeeded,
                failed=summary.failed,
                fallback_invoked=summary.fallback_invoked,
                fallback_succeeded=summary.fallback_succeeded,
                credits=summary.total_credits,
                failures=summary.failures_by_category,
                elapsed_ms=summary.elapsed_ms,
            )
            return summary
        except Exception as exc:
            self._transition(RunState.FAILED, stats.job_id)
            summary = stats.freeze(RunState.FAILED, budget, error=str(exc))
            logger.exception("Transcript run %s failed", stats.job_id)
            raise TranscriptRunFailedError(f"Transcript run {stats.job_id} failed: {exc}", summary) from exc
        finally:
            if lock_held:
                await self.run_lock.release()

    async def _process(self, candidates: List[EpisodeCandidate], budget: RunBudget, stats: _RunStats) -> None:
        queue: asyncio.Queue[EpisodeCandidate] = asyncio.Queue()
        for episode in candidates:
            queue.put_nowait(episode)

        async def _worker() -> None:
            while True:
                try:
                    episode = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                outcome = await self.resolver.resolve(episode, budget)
                stats.record(outcome)

        worker_count = max(1, min(self.config.concurrency, len(candidates)))
        tasks = [asyncio.create_task(_worker()) for _ in range(worker_count)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
