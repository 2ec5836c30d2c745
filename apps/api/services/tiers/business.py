"""Taddy business tier: on-demand transcripts via series, episode and transcript queries."""

from __future__ import annotations

from typing import Any, Dict, List

import httpx

from services.tiers.base import TierClient, count_words
from services.transcript_types import (
    LookupFull,
    LookupNoMatch,
    LookupNotFound,
    LookupPartial,
    LookupProcessing,
    LookupResult,
)

SERIES_QUERY = """
query GetPodcastSeries($rssUrl: String!) {
  getPodcastSeries(rssUrl: $rssUrl) {
    uuid
    name
  }
}
"""

EPISODE_QUERY = """
query GetPodcastEpisode($seriesUuid: ID!, $guid: String!) {
  getPodcastEpisode(podcastSeriesUuid: $seriesUuid, guid: $guid) {
    uuid
    name
    taddyTranscribeStatus
  }
}
"""

TRANSCRIPT_QUERY = """
query GetEpisodeTranscript($episodeUuid: ID!) {
  getEpisodeTranscript(uuid: $episodeUuid) {
    id
    text
    speaker
    startTimecode
    endTimecode
  }
}
"""

CREDITS_PER_LOOKUP = 1


def assemble_transcript(items: List[Dict[str, Any]]) -> str:
    lines = []
    for item in items:
        if not isinstance(item, dict):
            continue
        text = str(item.get("text") or "").strip()
        if not text:
            continue
        speaker = str(item.get("speaker") or "").strip()
        lines.append(f"{speaker}: {text}" if speaker else text)
    return "\n".join(lines).strip()


def is_complete_transcript(text: str) -> bool:
    # Business transcripts come back whole; no signal distinguishes truncation yet.
    return True


class TaddyBusinessClient(TierClient):
    tier_name = "business"
    error_label = "Taddy Business API error"
    timeout_seconds = 30.0

    async def _lookup(self, client: httpx.AsyncClient, feed_url: str, episode_guid: str) -> LookupResult:
        series_data = await self._query(client, SERIES_QUERY, {"rssUrl": feed_url})
        series = series_data.get("getPodcastSeries")
        if not series or not series.get("uuid"):
            return LookupNoMatch(credits_consumed=CREDITS_PER_LOOKUP)

        episode_data = await self._query(
            client,
            EPISODE_QUERY,
            {"seriesUuid": series["uuid"], "guid": episode_guid},
        )
        episode = episode_data.get("getPodcastEpisode")
        if not episode or not episode.get("uuid"):
            return LookupNoMatch(credits_consumed=CREDITS_PER_LOOKUP)

        status = str(episode.get("taddyTranscribeStatus") or "").upper()
        if status == "PROCESSING":
            return LookupProcessing(credits_consumed=CREDITS_PER_LOOKUP)
        if status == "FAILED":
            return LookupNotFound(credits_consumed=CREDITS_PER_LOOKUP)

        transcript_data = await self._query(client, TRANSCRIPT_QUERY, {"episodeUuid": episode["uuid"]})
        text = assemble_transcript(transcript_data.get("getEpisodeTranscript") or [])
        if not text:
            return LookupNotFound(credits_consumed=CREDITS_PER_LOOKUP)

        word_count = count_words(text)
        if is_complete_transcript(text):
            return LookupFull(text=text, word_count=word_count, credits_consumed=CREDITS_PER_LOOKUP)
        return LookupPartial(
            text=text,
            word_count=word_count,
            credits_consumed=CREDITS_PER_LOOKUP,
            reason="incomplete",
        )

    async def health_check(self) -> Dict[str, Any]:
        result = await super().health_check()
        if result.get("status") == "up" and not result.get("business_plan"):
            result["status"] = "degraded"
            result["error"] = "API key is not on a Business plan"
        return result
