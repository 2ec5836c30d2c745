from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import models  # noqa: F401
from database import Base
from models.podcast_episode import PodcastEpisode
from models.podcast_show import PodcastShow


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "transcripts.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker

    await engine.dispose()


async def seed_episode(
    maker,
    episode_id: str,
    *,
    hours_ago: float = 1,
    rss_url: Optional[str] = "https://feeds.example.com/show.xml",
    guid: Optional[str] = None,
    episode_url: Optional[str] = None,
    deleted: bool = False,
) -> PodcastEpisode:
    now = datetime.now(timezone.utc)
    show_id = f"show-{episode_id}"
    async with maker() as db:
        db.add(PodcastShow(id=show_id, title=f"Show {episode_id}", rss_url=rss_url))
        episode = PodcastEpisode(
            id=episode_id,
            show_id=show_id,
            guid=guid if guid is not None else f"guid-{episode_id}",
            episode_url=episode_url or f"https://cdn.example.com/{episode_id}.mp3",
            title=f"Episode {episode_id}",
            pub_date=now - timedelta(hours=hours_ago),
            deleted_at=now if deleted else None,
        )
        db.add(episode)
        await db.commit()
    return episode
