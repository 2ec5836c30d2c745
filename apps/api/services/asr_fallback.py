"""Deepgram pre-recorded transcription used when the lookup tier has nothing usable."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

import httpx

from config import TranscriptWorkerConfig, require_deepgram_api_key, settings
from services.tiers.base import count_words
from services.transcript_types import AsrFailure, AsrResult, AsrSkipped, AsrSuccess

logger = logging.getLogger(__name__)

DEEPGRAM_API_URL = "https://api.deepgram.com/v1/listen"
DEEPGRAM_OPTIONS = {
    "model": "nova-3",
    "smart_format": "true",
    "diarize": "true",
    "filler_words": "false",
}
BYTES_PER_MB = 1024 * 1024
MIN_TRANSCRIBE_TIMEOUT_SECONDS = 120.0


@dataclass(frozen=True)
class AudioProbe:
    size_bytes: Optional[int] = None
    rejection: Optional[Union[AsrSkipped, AsrFailure]] = None


def transcribe_timeout_seconds(size_bytes: int) -> float:
    """One minute per 10 MB plus a minute of overhead, never below two minutes."""
    size_mb = size_bytes / BYTES_PER_MB
    return max(MIN_TRANSCRIBE_TIMEOUT_SECONDS, (size_mb / 10.0) * 60.0 + 60.0)


def _extract_transcript(payload: Dict[str, Any]) -> str:
    channels = ((payload or {}).get("results") or {}).get("channels") or []
    if not channels:
        return ""
    alternatives = channels[0].get("alternatives") or []
    if not alternatives:
        return ""
    return str(alternatives[0].get("transcript") or "").strip()


class DeepgramFallbackClient:
    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = DEEPGRAM_API_URL,
        max_file_size_mb: int = 500,
        probe_timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.max_file_size_mb = max_file_size_mb
        self.probe_timeout_seconds = probe_timeout_seconds
        self._transport = transport

    async def probe_audio(self, audio_url: Optional[str]) -> AudioProbe:
        """HEAD the audio URL and decide whether it may be sent to the vendor."""
        url = (audio_url or "").strip()
        if not url:
            return AudioProbe(rejection=AsrSkipped(reason="missing_audio_url"))
        try:
            scheme = urlparse(url).scheme
        except ValueError:
            scheme = ""
        if scheme not in {"http", "https"}:
            return AudioProbe(rejection=AsrSkipped(reason="invalid_audio_url"))

        try:
            async with httpx.AsyncClient(
                timeout=self.probe_timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.head(url)
                response.raise_for_status()
        except (httpx.InvalidURL, ValueError) as exc:
            logger.warning("Audio URL %r rejected by HTTP client: %s", url, exc)
            return AudioProbe(rejection=AsrSkipped(reason="invalid_audio_url"))
        except httpx.HTTPError as exc:
            logger.warning("Audio size probe failed for %s: %s", url, exc)
            return AudioProbe(rejection=AsrFailure(message=f"Audio size probe failed: {exc}"))

        raw_length = response.headers.get("content-length")
        try:
            size_bytes = int(raw_length) if raw_length is not None else None
        except ValueError:
            size_bytes = None
        if size_bytes is None or size_bytes <= 0:
            return AudioProbe(rejection=AsrSkipped(reason="size_unknown"))

        if size_bytes > self.max_file_size_mb * BYTES_PER_MB:
            logger.info(
                "Audio %s is %.1f MB, above the %s MB fallback limit",
                url,
                size_bytes / BYTES_PER_MB,
                self.max_file_size_mb,
            )
            return AudioProbe(size_bytes=size_bytes, rejection=AsrSkipped(reason="file_too_large"))
        return AudioProbe(size_bytes=size_bytes)

    async def transcribe_from_url(self, audio_url: str, size_bytes: int) -> AsrResult:
        timeout_seconds = transcribe_timeout_seconds(size_bytes)
        headers = {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=timeout_seconds, transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    params=DEEPGRAM_OPTIONS,
                    json={"url": audio_url},
                    headers=headers,
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException:
            return AsrFailure(message=f"Deepgram transcription timed out after {int(timeout_seconds)}s")
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 429:
                return AsrFailure(message="Deepgram rate limit exceeded, retry on a later run")
            if status == 504:
                return AsrFailure(message="Deepgram gateway timeout while transcribing")
            return AsrFailure(message=f"Deepgram API error {status}: {exc.response.text[:200]}")
        except httpx.HTTPError as exc:
            return AsrFailure(message=f"Deepgram request failed: {exc}")
        except httpx.InvalidURL as exc:
            return AsrFailure(message=f"Deepgram rejected audio URL: {exc}")
        except ValueError as exc:
            return AsrFailure(message=f"Deepgram returned invalid JSON: {exc}")

        text = _extract_transcript(payload)
        if not text:
            return AsrFailure(message="Deepgram returned an empty transcript")
        return AsrSuccess(text=text, word_count=count_words(text))


def get_asr_fallback_client(
    config: TranscriptWorkerConfig,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[DeepgramFallbackClient]:
    if not config.enable_fallback:
        return None
    return DeepgramFallbackClient(
        require_deepgram_api_key(),
        api_url=settings.DEEPGRAM_API_URL,
        max_file_size_mb=config.max_file_size_mb,
        transport=transport,
    )
