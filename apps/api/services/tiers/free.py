"""Taddy free tier: read pre-existing transcripts attached to an episode."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from services.tiers.base import TierClient, count_words
from services.transcript_types import (
    LookupFull,
    LookupNoMatch,
    LookupNotFound,
    LookupPartial,
    LookupResult,
)

EPISODE_TRANSCRIPTS_QUERY = """
query GetEpisodeTranscripts($guid: String!, $rssUrl: String!) {
  getPodcastEpisode(guid: $guid, seriesRssUrlForLookup: $rssUrl) {
    uuid
    name
    transcripts {
      text
      isPartial
      percentComplete
      wordCount
    }
  }
}
"""


def _pick_best_transcript(transcripts: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Complete transcripts beat partial ones; ties go to the higher word count."""
    usable = [row for row in transcripts if isinstance(row, dict) and str(row.get("text") or "").strip()]
    if not usable:
        return None
    return max(
        usable,
        key=lambda row: (
            not bool(row.get("isPartial")),
            int(row.get("wordCount") or count_words(str(row.get("text") or ""))),
        ),
    )


class TaddyFreeClient(TierClient):
    tier_name = "free"
    error_label = "Taddy API error"
    timeout_seconds = 10.0

    async def _lookup(self, client: httpx.AsyncClient, feed_url: str, episode_guid: str) -> LookupResult:
        data = await self._query(
            client,
            EPISODE_TRANSCRIPTS_QUERY,
            {"guid": episode_guid, "rssUrl": feed_url},
        )
        episode = data.get("getPodcastEpisode")
        if not episode:
            return LookupNoMatch(credits_consumed=0)

        best = _pick_best_transcript(episode.get("transcripts") or [])
        if best is None:
            return LookupNotFound(credits_consumed=0)

        text = str(best.get("text") or "").strip()
        word_count = int(best.get("wordCount") or count_words(text))
        if best.get("isPartial"):
            percent = best.get("percentComplete")
            reason = f"percent_complete={percent}" if percent is not None else "partial"
            return LookupPartial(text=text, word_count=word_count, credits_consumed=0, reason=reason)
        return LookupFull(text=text, word_count=word_count, credits_consumed=0)
