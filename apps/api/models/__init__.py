"""Models package."""

from .podcast_show import PodcastShow
from .podcast_episode import PodcastEpisode
from .transcript import Transcript
