"""Per-episode transcript resolution: tier lookup, optional ASR fallback, persistence."""

from __future__ import annotations

import logging
from typing import Optional

from config import TranscriptWorkerConfig
from services.asr_fallback import DeepgramFallbackClient
from services.episode_store import EpisodeStore
from services.fallback_policy import decide_fallback
from services.run_logging import log_event
from services.tiers.base import TierClient
from services.transcript_types import (
    AsrFailure,
    AsrResult,
    AsrSkipped,
    AsrSuccess,
    EpisodeCandidate,
    ErrorCategory,
    LookupFailure,
    LookupFull,
    LookupNoMatch,
    LookupNotFound,
    LookupPartial,
    LookupProcessing,
    LookupResult,
    ResolutionOutcome,
    RunBudget,
)

logger = logging.getLogger(__name__)

COMPONENT = "transcript_resolver"
ASR_SOURCE = "asr"


def _tier_failure(lookup: LookupResult) -> tuple[ErrorCategory, str]:
    if isinstance(lookup, LookupNoMatch):
        return ErrorCategory.NO_MATCH, "Taddy: no_match"
    if isinstance(lookup, LookupNotFound):
        return ErrorCategory.NOT_FOUND, "Taddy: not_found"
    if isinstance(lookup, LookupFailure):
        return ErrorCategory.TRANSPORT_ERROR, lookup.message
    raise TypeError(f"not a fallback-eligible lookup result: {lookup!r}")


def _describe_asr(result: AsrResult) -> str:
    if isinstance(result, AsrSkipped):
        return f"skipped ({result.reason})"
    if isinstance(result, AsrFailure):
        return result.message
    return "success"


class TranscriptResolver:
    def __init__(
        self,
        config: TranscriptWorkerConfig,
        tier_client: TierClient,
        store: EpisodeStore,
        asr_client: Optional[DeepgramFallbackClient] = None,
    ) -> None:
        self.config = config
        self.tier_client = tier_client
        self.store = store
        self.asr_client = asr_client

    async def resolve(self, episode: EpisodeCandidate, budget: RunBudget) -> ResolutionOutcome:
        """Resolve one episode and persist the outcome; per-episode failures come back as error outcomes."""
        try:
            outcome = await self._classify(episode, budget)
        except Exception as exc:
            logger.exception("Unexpected error resolving episode %s", episode.id)
            outcome = ResolutionOutcome.failed(
                episode.id,
                ErrorCategory.TRANSPORT_ERROR,
                f"Unexpected error: {exc.__class__.__name__}: {exc}",
            )
        try:
            await self.store.upsert_outcome(outcome)
        except Exception as exc:
            logger.exception("Persisting transcript outcome for episode %s failed", episode.id)
            return ResolutionOutcome.failed(
                episode.id,
                ErrorCategory.DATABASE_ERROR,
                f"Persist failed: {exc}",
                tier_kind=outcome.tier_kind,
                source=outcome.source,
                credits_consumed=outcome.credits_consumed,
                asr_invoked=outcome.asr_invoked,
            )
        log_event(
            logger,
            logging.INFO if outcome.succeeded else logging.WARNING,
            COMPONENT,
            "episode resolved",
            episode_id=episode.id,
            status=outcome.status,
            source=outcome.source,
            tier_kind=outcome.tier_kind,
            category=outcome.error_category.value if outcome.error_category else None,
            credits=outcome.credits_consumed,
            asr_invoked=outcome.asr_invoked,
        )
        return outcome

    async def _classify(self, episode: EpisodeCandidate, budget: RunBudget) -> ResolutionOutcome:
        if not episode.is_eligible:
            return ResolutionOutcome.failed(
                episode.id,
                ErrorCategory.INELIGIBLE,
                "Episode is deleted or missing a feed URL or guid",
            )

        if self.config.halt_on_quota and budget.quota_exhausted:
            return ResolutionOutcome.failed(
                episode.id,
                ErrorCategory.QUOTA_EXCEEDED,
                "Skipped: lookup quota exhausted earlier in this run",
            )

        if not await budget.try_reserve_api_call():
            return ResolutionOutcome.failed(
                episode.id,
                ErrorCategory.BUDGET_EXHAUSTED,
                f"Skipped: run budget of {budget.api_calls_max} lookups exhausted",
            )

        lookup = await self.tier_client.fetch_transcript(episode.feed_url or "", episode.guid or "")
        credits = int(lookup.credits_consumed or 0)
        await budget.add_credits(credits)
        tier_name = self.tier_client.tier_name

        if isinstance(lookup, (LookupFull, LookupPartial)):
            return ResolutionOutcome.done(
                episode.id,
                text=lookup.text,
                word_count=lookup.word_count,
                source=tier_name,
                tier_kind=lookup.kind,
                credits_consumed=credits,
            )

        if isinstance(lookup, LookupProcessing):
            return ResolutionOutcome.failed(
                episode.id,
                ErrorCategory.PROCESSING,
                "Taddy: transcript is still processing",
                tier_kind=lookup.kind,
                source=tier_name,
                credits_consumed=credits,
            )

        if isinstance(lookup, LookupFailure) and lookup.is_quota_exceeded:
            await budget.mark_quota_exhausted()
            return ResolutionOutcome.failed(
                episode.id,
                ErrorCategory.QUOTA_EXCEEDED,
                lookup.message,
                tier_kind=lookup.kind,
                source=tier_name,
                credits_consumed=credits,
            )

        category, message = _tier_failure(lookup)
        return await self._try_fallback(episode, budget, lookup.kind, category, message, credits)

    async def _try_fallback(
        self,
        episode: EpisodeCandidate,
        budget: RunBudget,
        tier_kind: str,
        category: ErrorCategory,
        message: str,
        credits: int,
    ) -> ResolutionOutcome:
        decision = decide_fallback(self.config, await budget.snapshot(), tier_kind)
        if not decision.escalate or self.asr_client is None:
            return ResolutionOutcome.failed(
                episode.id,
                category,
                message,
                tier_kind=tier_kind,
                source=self.tier_client.tier_name,
                credits_consumed=credits,
            )

        probe = await self.asr_client.probe_audio(episode.audio_url)
        asr_invoked = False
        if probe.rejection is not None:
            result: AsrResult = probe.rejection
        elif not await budget.try_reserve_asr_fallback():
            result = AsrSkipped(reason="fallback_budget_exhausted")
        else:
            asr_invoked = True
            result = await self.asr_client.transcribe_from_url(episode.audio_url or "", probe.size_bytes or 0)

        if isinstance(result, AsrSuccess):
            return ResolutionOutcome.done(
                episode.id,
                text=result.text,
                word_count=result.word_count,
                source=ASR_SOURCE,
                tier_kind=tier_kind,
                credits_consumed=credits,
                asr_invoked=True,
            )

        if isinstance(result, AsrSkipped) and result.reason == "file_too_large":
            category = ErrorCategory.FILE_TOO_LARGE
        return ResolutionOutcome.failed(
            episode.id,
            category,
            f"{message}; ASR: {_describe_asr(result)}",
            tier_kind=tier_kind,
            source=ASR_SOURCE if asr_invoked else self.tier_client.tier_name,
            credits_consumed=credits,
            asr_invoked=asr_invoked,
        )
