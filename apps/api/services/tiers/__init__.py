"""Lookup tier clients."""

from typing import Optional

import httpx

from config import TranscriptWorkerConfig, require_taddy_credentials, settings
from services.tiers.base import TaddyGraphQLError, TierClient, count_words, is_quota_error
from services.tiers.business import TaddyBusinessClient
from services.tiers.free import TaddyFreeClient


def get_tier_client(
    config: TranscriptWorkerConfig,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TierClient:
    credentials = require_taddy_credentials()
    client_cls = TaddyFreeClient if config.tier == "free" else TaddyBusinessClient
    return client_cls(
        credentials["api_key"],
        user_id=credentials["user_id"],
        api_url=settings.TADDY_API_URL,
        transport=transport,
    )


__all__ = [
    "TaddyBusinessClient",
    "TaddyFreeClient",
    "TaddyGraphQLError",
    "TierClient",
    "count_words",
    "get_tier_client",
    "is_quota_error",
]
