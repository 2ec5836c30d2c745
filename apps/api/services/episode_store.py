"""Episode selection and transcript outcome persistence."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.future import select

from database import async_session_maker
from models.podcast_episode import PodcastEpisode
from models.podcast_show import PodcastShow
from models.transcript import Transcript
from services.transcript_types import EpisodeCandidate, ResolutionOutcome

logger = logging.getLogger(__name__)

_UPSERT_BUILDERS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}
MAX_ERROR_MESSAGE_CHARS = 2000


@dataclass(frozen=True)
class EpisodeSelection:
    """Either a lookback window (normal mode) or the N most recent episodes (override mode)."""

    lookback_hours: Optional[int] = None
    recent_limit: Optional[int] = None

    @classmethod
    def lookback(cls, hours: int) -> "EpisodeSelection":
        return cls(lookback_hours=hours)

    @classmethod
    def most_recent(cls, limit: int) -> "EpisodeSelection":
        return cls(recent_limit=limit)

    @property
    def is_override(self) -> bool:
        return self.recent_limit is not None


def _outcome_values(outcome: ResolutionOutcome) -> Dict[str, Any]:
    done = outcome.succeeded
    return {
        "status": outcome.status,
        "tier_kind": outcome.tier_kind,
        "source": outcome.source,
        "transcript_text": outcome.text if done else None,
        "word_count": outcome.word_count if done else None,
        "error_category": None if done else outcome.error_category.value if outcome.error_category else None,
        "error_message": None if done else (outcome.error_message or "")[:MAX_ERROR_MESSAGE_CHARS],
        "credits_consumed": int(outcome.credits_consumed or 0),
        "asr_invoked": bool(outcome.asr_invoked),
        "deleted_at": None,
    }


class EpisodeStore:
    def __init__(self, session_maker=None) -> None:
        self._session_maker = session_maker or async_session_maker

    async def fetch_eligible(
        self,
        selection: EpisodeSelection,
        *,
        now: Optional[datetime] = None,
    ) -> List[EpisodeCandidate]:
        """Newest-first eligible episodes; normal mode skips episodes that already have a transcript."""
        stmt = (
            select(PodcastEpisode, PodcastShow.rss_url)
            .join(PodcastShow, PodcastShow.id == PodcastEpisode.show_id)
            .where(
                PodcastEpisode.deleted_at.is_(None),
                PodcastEpisode.guid.is_not(None),
                func.trim(PodcastEpisode.guid) != "",
                PodcastShow.rss_url.is_not(None),
                func.trim(PodcastShow.rss_url) != "",
            )
            .order_by(PodcastEpisode.pub_date.desc().nulls_last(), PodcastEpisode.id)
        )
        if selection.is_override:
            stmt = stmt.limit(max(int(selection.recent_limit), 1))
        else:
            cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=int(selection.lookback_hours or 24))
            has_transcript = (
                select(Transcript.id)
                .where(
                    Transcript.episode_id == PodcastEpisode.id,
                    Transcript.status == "done",
                    Transcript.deleted_at.is_(None),
                )
                .exists()
            )
            stmt = stmt.where(PodcastEpisode.pub_date >= cutoff, ~has_transcript)

        async with self._session_maker() as db:
            result = await db.execute(stmt)
            rows = result.all()

        return [
            EpisodeCandidate(
                id=episode.id,
                feed_url=(rss_url or "").strip(),
                guid=(episode.guid or "").strip(),
                audio_url=episode.episode_url,
                title=episode.title,
                published_at=episode.pub_date,
                deleted_at=episode.deleted_at,
            )
            for episode, rss_url in rows
        ]

    async def upsert_outcome(self, outcome: ResolutionOutcome) -> None:
        """Write the outcome keyed by episode; a later write for the same episode overwrites the earlier one."""
        values = _outcome_values(outcome)
        async with self._session_maker() as db:
            connection = await db.connection()
            dialect = connection.dialect.name
            builder = _UPSERT_BUILDERS.get(dialect)
            if builder is None:
                raise RuntimeError(f"Transcript upsert is not supported on dialect {dialect!r}")
            stmt = builder(Transcript).values(id=str(uuid.uuid4()), episode_id=outcome.episode_id, **values)
            # Skips recorded without a lookup never replace a stored transcript.
            stmt = stmt.on_conflict_do_update(
                index_elements=[Transcript.episode_id],
                set_={**values, "updated_at": func.now()},
                where=None if outcome.lookup_attempted else Transcript.status != "done",
            )
            await db.execute(stmt)
            await db.commit()
        logger.debug("Persisted %s outcome for episode %s", outcome.status, outcome.episode_id)
