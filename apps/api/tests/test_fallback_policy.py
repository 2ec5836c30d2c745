from config import TranscriptWorkerConfig
from services.fallback_policy import decide_fallback
from services.transcript_types import BudgetSnapshot


def _snapshot(used: int, maximum: int) -> BudgetSnapshot:
    return BudgetSnapshot(
        api_calls_made=0,
        api_calls_max=10,
        asr_fallbacks_used=used,
        asr_fallbacks_max=maximum,
        credits_consumed=0,
    )


def test_escalates_for_configured_status_with_capacity():
    decision = decide_fallback(TranscriptWorkerConfig(), _snapshot(2, 5), "not_found")

    assert decision.escalate is True


def test_processing_is_not_a_default_trigger():
    decision = decide_fallback(TranscriptWorkerConfig(), _snapshot(0, 5), "processing")

    assert decision.escalate is False
    assert decision.reason == "status_not_configured"


def test_no_escalation_once_budget_spent():
    decision = decide_fallback(TranscriptWorkerConfig(), _snapshot(3, 3), "no_match")

    assert decision.escalate is False
    assert decision.reason == "fallback_budget_exhausted"


def test_disabled_fallback_never_escalates():
    decision = decide_fallback(TranscriptWorkerConfig(enable_fallback=False), _snapshot(0, 5), "error")

    assert decision.escalate is False
