import asyncio

import httpx
import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from conftest import seed_episode
from config import TranscriptWorkerConfig
from models.transcript import Transcript
from services.asr_fallback import DeepgramFallbackClient
from services.episode_store import EpisodeStore
from services.run_lock import NoopRunLock
from services.transcript_resolver import TranscriptResolver
from services.transcript_types import (
    LookupFull,
    LookupNotFound,
    ResolutionOutcome,
    RunLockUnavailableError,
    TranscriptRunFailedError,
)
from services.transcript_worker import RunState, TranscriptWorker


class _SlowTier:
    """Tracks how many lookups are in flight at once."""

    tier_name = "business"

    def __init__(self, result=None):
        self.result = result or LookupFull(text="transcript text here", word_count=3, credits_consumed=1)
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_transcript(self, feed_url, episode_guid):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        return self.result


class _FakeLock(NoopRunLock):
    def __init__(self, acquired=True, error=None):
        super().__init__()
        self.acquired = acquired
        self.error = error
        self.released = 0

    async def acquire(self):
        if self.error:
            raise self.error
        return self.acquired

    async def release(self):
        self.released += 1


class _BrokenStore(EpisodeStore):
    async def fetch_eligible(self, selection, *, now=None):
        raise RuntimeError("connection reset")


def _worker(session_maker, tier, lock=None, store=None, asr_client=None, **config_overrides):
    config = TranscriptWorkerConfig(**{"tier": "business", **config_overrides})
    store = store or EpisodeStore(session_maker)
    resolver = TranscriptResolver(config, tier, store, asr_client=asr_client)
    return TranscriptWorker(config, resolver, store, run_lock=lock or _FakeLock())


@pytest.mark.asyncio
async def test_budget_bounds_calls_when_concurrency_equals_max_requests(session_maker):
    for index in range(12):
        await seed_episode(session_maker, f"ep-{index:02d}", hours_ago=1 + index * 0.1)
    tier = _SlowTier()
    worker = _worker(session_maker, tier, max_requests=5, concurrency=5)

    summary = await worker.run_once()

    assert tier.calls == 5
    assert tier.max_in_flight <= 5
    assert summary.api_calls_made == 5
    assert summary.candidates == 12
    assert summary.processed == 12
    assert summary.succeeded == 5
    assert summary.failures_by_category == {"budget_exhausted": 7}
    assert summary.total_credits == 5
    assert summary.state == RunState.COMPLETED.value
    assert worker.state == RunState.COMPLETED


@pytest.mark.asyncio
async def test_lock_held_elsewhere_returns_empty_summary(session_maker):
    await seed_episode(session_maker, "ep-1")
    tier = _SlowTier()
    lock = _FakeLock(acquired=False)

    summary = await _worker(session_maker, tier, lock=lock).run_once()

    assert summary.lock_acquired is False
    assert summary.candidates == 0
    assert summary.processed == 0
    assert tier.calls == 0
    assert lock.released == 0


@pytest.mark.asyncio
async def test_lock_backend_unreachable_fails_run(session_maker):
    lock = _FakeLock(error=RunLockUnavailableError("redis down"))

    with pytest.raises(TranscriptRunFailedError) as exc_info:
        await _worker(session_maker, _SlowTier(), lock=lock).run_once()

    assert exc_info.value.summary.state == RunState.FAILED.value
    assert isinstance(exc_info.value.__cause__, RunLockUnavailableError)


@pytest.mark.asyncio
async def test_load_failure_fails_run_and_releases_lock(session_maker):
    lock = _FakeLock()
    worker = _worker(session_maker, _SlowTier(), lock=lock, store=_BrokenStore(session_maker))

    with pytest.raises(TranscriptRunFailedError) as exc_info:
        await worker.run_once()

    assert "connection reset" in str(exc_info.value)
    assert exc_info.value.summary.lock_acquired is True
    assert lock.released == 1
    assert worker.state == RunState.FAILED


@pytest.mark.asyncio
async def test_lock_disabled_skips_acquire(session_maker):
    await seed_episode(session_maker, "ep-1")
    lock = _FakeLock(acquired=False)

    summary = await _worker(session_maker, _SlowTier(), lock=lock, use_advisory_lock=False).run_once()

    assert summary.processed == 1
    assert lock.released == 0


@pytest.mark.asyncio
async def test_override_mode_reprocesses_recent_episodes_and_overwrites(session_maker):
    for index in range(12):
        await seed_episode(session_maker, f"ep-{index:02d}", hours_ago=200 + index)
    store = EpisodeStore(session_maker)
    first = _worker(session_maker, _SlowTier(LookupNotFound(credits_consumed=1)), store=store,
                    last10_mode=True, override_count=10, max_requests=20, enable_fallback=False)
    await first.run_once()

    tier = _SlowTier()
    second = _worker(session_maker, tier, store=store, last10_mode=True, override_count=10, max_requests=20)
    summary = await second.run_once()

    assert summary.candidates == 10
    assert summary.succeeded == 10
    assert tier.calls == 10
    async with session_maker() as db:
        count = (await db.execute(select(func.count()).select_from(Transcript))).scalar_one()
        done = (
            await db.execute(select(func.count()).select_from(Transcript).where(Transcript.status == "done"))
        ).scalar_one()
    assert count == 10
    assert done == 10


@pytest.mark.asyncio
async def test_normal_mode_skips_already_transcribed_episodes(session_maker):
    await seed_episode(session_maker, "ep-1")
    await seed_episode(session_maker, "ep-2")
    first_tier = _SlowTier()
    await _worker(session_maker, first_tier).run_once()

    second_tier = _SlowTier()
    summary = await _worker(session_maker, second_tier).run_once()

    assert first_tier.calls == 2
    assert summary.candidates == 0
    assert second_tier.calls == 0


@pytest.mark.asyncio
async def test_malformed_audio_url_does_not_abort_run(session_maker):
    await seed_episode(session_maker, "good", hours_ago=1)
    await seed_episode(session_maker, "bad", hours_ago=2, episode_url="http://[::1/a.mp3")

    def handler(request):
        if request.method == "HEAD":
            return httpx.Response(200, headers={"Content-Length": "1024"})
        return httpx.Response(
            200, json={"results": {"channels": [{"alternatives": [{"transcript": "recovered words"}]}]}}
        )

    asr = DeepgramFallbackClient("dg-key", transport=httpx.MockTransport(handler))
    worker = _worker(
        session_maker, _SlowTier(LookupNotFound(credits_consumed=0)), asr_client=asr, max_requests=5, concurrency=2
    )

    summary = await worker.run_once()

    assert summary.state == RunState.COMPLETED.value
    assert summary.processed == 2
    assert summary.succeeded == 1
    assert summary.fallback_succeeded == 1
    assert summary.failures_by_category == {"not_found": 1}
    async with session_maker() as db:
        rows = {
            row.episode_id: row for row in (await db.execute(select(Transcript))).scalars().all()
        }
    assert rows["good"].status == "done"
    assert rows["good"].source == "asr"
    assert rows["bad"].status == "error"
    assert "invalid_audio_url" in rows["bad"].error_message


@pytest.mark.asyncio
async def test_override_run_over_budget_keeps_existing_transcripts(session_maker):
    store = EpisodeStore(session_maker)
    for index in range(3):
        await seed_episode(session_maker, f"ep-{index}", hours_ago=1 + index)
        await store.upsert_outcome(
            ResolutionOutcome.done(
                f"ep-{index}", text="good transcript", word_count=2, source="business", tier_kind="full"
            )
        )
    tier = _SlowTier(LookupFull(text="fresh transcript text", word_count=3, credits_consumed=1))
    worker = _worker(
        session_maker, tier, store=store, last10_mode=True, override_count=3, max_requests=1, concurrency=1
    )

    summary = await worker.run_once()

    assert tier.calls == 1
    assert summary.failures_by_category == {"budget_exhausted": 2}
    async with session_maker() as db:
        rows = {
            row.episode_id: row for row in (await db.execute(select(Transcript))).scalars().all()
        }
    assert rows["ep-0"].status == "done"
    assert rows["ep-0"].transcript_text == "fresh transcript text"
    for episode_id in ("ep-1", "ep-2"):
        assert rows[episode_id].status == "done"
        assert rows[episode_id].transcript_text == "good transcript"
