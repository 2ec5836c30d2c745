"""Shared GraphQL transport for Taddy lookup tiers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_fixed

from services.transcript_types import QUOTA_EXCEEDED_MESSAGE, LookupFailure, LookupResult

logger = logging.getLogger(__name__)

TADDY_API_URL = "https://api.taddy.org"
USER_AGENT = "listener-transcript-worker/1.0"
QUOTA_PATTERNS = (
    "credits exceeded",
    "quota exceeded",
    "rate limit",
    "too many requests",
    "credits_exceeded",
)

HEALTH_QUERY = """
query HealthCheck {
  me {
    id
    myDeveloperDetails {
      isBusinessPlan
      allowedOnDemandTranscriptsLimit
      currentOnDemandTranscriptsUsage
    }
  }
}
"""


class TaddyGraphQLError(RuntimeError):
    """GraphQL-level error returned in a well-formed response."""

    def __init__(self, message: str, *, codes: Optional[List[str]] = None):
        super().__init__(message)
        self.codes = codes or []


def count_words(text: str) -> int:
    return len((text or "").split())


def is_quota_error(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        return True
    haystack = str(exc).lower()
    if isinstance(exc, TaddyGraphQLError):
        haystack = " ".join([haystack, *[code.lower() for code in exc.codes]])
    return any(pattern in haystack for pattern in QUOTA_PATTERNS)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


class TierClient(ABC):
    """Lookup-tier contract: map (feed url, episode guid) to a LookupResult, never raising."""

    tier_name: str
    error_label: str
    timeout_seconds: float

    def __init__(
        self,
        api_key: str,
        *,
        user_id: str = "",
        api_url: str = TADDY_API_URL,
        timeout_seconds: Optional[float] = None,
        max_attempts: int = 2,
        retry_wait_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.user_id = user_id
        self.api_url = api_url
        if timeout_seconds is not None:
            self.timeout_seconds = timeout_seconds
        self.max_attempts = max(int(max_attempts), 1)
        self.retry_wait_seconds = retry_wait_seconds
        self._transport = transport

    @abstractmethod
    async def _lookup(self, client: httpx.AsyncClient, feed_url: str, episode_guid: str) -> LookupResult:
        raise NotImplementedError

    async def fetch_transcript(self, feed_url: str, episode_guid: str) -> LookupResult:
        try:
            async with self._client() as client:
                return await self._lookup(client, feed_url, episode_guid)
        except Exception as exc:
            return self._failure(exc)

    async def health_check(self) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                data = await self._query(client, HEALTH_QUERY, {})
        except Exception as exc:
            logger.warning("Taddy %s health check failed: %s", self.tier_name, exc)
            return {"status": "down", "tier": self.tier_name, "error": str(exc)}
        details = ((data.get("me") or {}).get("myDeveloperDetails")) or {}
        return {
            "status": "up",
            "tier": self.tier_name,
            "business_plan": bool(details.get("isBusinessPlan")),
            "transcripts_used": details.get("currentOnDemandTranscriptsUsage"),
            "transcripts_limit": details.get("allowedOnDemandTranscriptsLimit"),
        }

    def _client(self) -> httpx.AsyncClient:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-API-KEY": self.api_key,
        }
        if self.user_id:
            headers["X-USER-ID"] = self.user_id
        return httpx.AsyncClient(headers=headers, timeout=self.timeout_seconds, transport=self._transport)

    async def _query(self, client: httpx.AsyncClient, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_wait_seconds),
            retry=retry_if_exception(_is_transient),
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.INFO),
        )
        async for attempt in retrying:
            with attempt:
                data = await self._post_graphql(client, query, variables)
        return data

    async def _post_graphql(self, client: httpx.AsyncClient, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        response = await client.post(self.api_url, json={"query": query, "variables": variables})
        response.raise_for_status()
        payload = response.json() or {}
        errors = payload.get("errors") or []
        if errors:
            messages = [str(row.get("message") or "unknown error") for row in errors if isinstance(row, dict)]
            codes = [
                str((row.get("extensions") or {}).get("code"))
                for row in errors
                if isinstance(row, dict) and (row.get("extensions") or {}).get("code")
            ]
            raise TaddyGraphQLError("; ".join(messages) or "unknown error", codes=codes)
        return payload.get("data") or {}

    def _failure(self, exc: BaseException) -> LookupFailure:
        if is_quota_error(exc):
            logger.warning("Taddy %s quota exhausted: %s", self.tier_name, exc)
            return LookupFailure(message=QUOTA_EXCEEDED_MESSAGE, credits_consumed=0)
        logger.warning("Taddy %s lookup failed: %s", self.tier_name, exc)
        return LookupFailure(message=f"{self.error_label}: {exc}", credits_consumed=0)
