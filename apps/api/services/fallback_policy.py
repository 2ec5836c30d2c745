"""Decide whether a tier lookup result should escalate to ASR."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from config import TranscriptWorkerConfig
from services.transcript_types import BudgetSnapshot


@dataclass(frozen=True)
class FallbackDecision:
    escalate: bool
    reason: Optional[str] = None


def decide_fallback(config: TranscriptWorkerConfig, budget: BudgetSnapshot, tier_kind: str) -> FallbackDecision:
    if not config.enable_fallback:
        return FallbackDecision(escalate=False, reason="fallback_disabled")
    if tier_kind not in config.fallback_statuses:
        return FallbackDecision(escalate=False, reason="status_not_configured")
    if not budget.asr_capacity_left:
        return FallbackDecision(escalate=False, reason="fallback_budget_exhausted")
    return FallbackDecision(escalate=True)
