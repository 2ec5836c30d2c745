"""Transcript acquisition contracts shared by tier clients, resolver and worker."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Union


QUOTA_EXCEEDED_MESSAGE = "CREDITS_EXCEEDED"


class ErrorCategory(str, Enum):
    INELIGIBLE = "ineligible"
    BUDGET_EXHAUSTED = "budget_exhausted"
    QUOTA_EXCEEDED = "quota_exceeded"
    NOT_FOUND = "not_found"
    NO_MATCH = "no_match"
    PROCESSING = "processing"
    TRANSPORT_ERROR = "transport_error"
    FILE_TOO_LARGE = "file_too_large"
    DATABASE_ERROR = "database_error"


class RunLockUnavailableError(RuntimeError):
    """Raised when the run lock backend cannot be reached."""


class TranscriptRunFailedError(RuntimeError):
    """Raised when a transcript run aborts; carries the partial summary."""

    def __init__(self, message: str, summary: "RunSummary"):
        super().__init__(message)
        self.summary = summary


class UnknownJobError(ValueError):
    """Raised when a manual run names a job that is not registered."""


@dataclass(frozen=True)
class EpisodeCandidate:
    id: str
    feed_url: Optional[str]
    guid: Optional[str]
    audio_url: Optional[str] = None
    title: Optional[str] = None
    published_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_eligible(self) -> bool:
        return (
            self.deleted_at is None
            and bool((self.feed_url or "").strip())
            and bool((self.guid or "").strip())
        )


@dataclass(frozen=True)
class LookupFull:
    text: str
    word_count: int
    credits_consumed: int = 0
    kind: ClassVar[str] = "full"


@dataclass(frozen=True)
class LookupPartial:
    text: str
    word_count: int
    credits_consumed: int = 0
    reason: Optional[str] = None
    kind: ClassVar[str] = "partial"


@dataclass(frozen=True)
class LookupProcessing:
    credits_consumed: int = 0
    kind: ClassVar[str] = "processing"


@dataclass(frozen=True)
class LookupNotFound:
    credits_consumed: int = 0
    kind: ClassVar[str] = "not_found"


@dataclass(frozen=True)
class LookupNoMatch:
    credits_consumed: int = 0
    kind: ClassVar[str] = "no_match"


@dataclass(frozen=True)
class LookupFailure:
    message: str
    credits_consumed: Optional[int] = None
    kind: ClassVar[str] = "error"

    @property
    def is_quota_exceeded(self) -> bool:
        return self.message == QUOTA_EXCEEDED_MESSAGE


LookupResult = Union[LookupFull, LookupPartial, LookupProcessing, LookupNotFound, LookupNoMatch, LookupFailure]


@dataclass(frozen=True)
class AsrSuccess:
    text: str
    word_count: int
    kind: ClassVar[str] = "success"


@dataclass(frozen=True)
class AsrSkipped:
    reason: str
    kind: ClassVar[str] = "skipped"


@dataclass(frozen=True)
class AsrFailure:
    message: str
    kind: ClassVar[str] = "error"


AsrResult = Union[AsrSuccess, AsrSkipped, AsrFailure]


@dataclass(frozen=True)
class ResolutionOutcome:
    """Final per-episode result; `done` always carries text, `error` always a message."""

    episode_id: str
    status: str
    text: Optional[str] = None
    word_count: Optional[int] = None
    source: Optional[str] = None
    tier_kind: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    error_message: Optional[str] = None
    credits_consumed: int = 0
    asr_invoked: bool = False

    def __post_init__(self) -> None:
        if self.status == "done":
            if not (self.text or "").strip():
                raise ValueError("done outcome requires non-empty text")
        elif self.status == "error":
            if not self.error_message:
                raise ValueError("error outcome requires an error message")
        else:
            raise ValueError(f"unknown outcome status: {self.status}")

    @classmethod
    def done(
        cls,
        episode_id: str,
        *,
        text: str,
        word_count: int,
        source: str,
        tier_kind: Optional[str],
        credits_consumed: int = 0,
        asr_invoked: bool = False,
    ) -> "ResolutionOutcome":
        return cls(
            episode_id=episode_id,
            status="done",
            text=text,
            word_count=word_count,
            source=source,
            tier_kind=tier_kind,
            credits_consumed=credits_consumed,
            asr_invoked=asr_invoked,
        )

    @classmethod
    def failed(
        cls,
        episode_id: str,
        category: ErrorCategory,
        message: str,
        *,
        tier_kind: Optional[str] = None,
        source: Optional[str] = None,
        credits_consumed: int = 0,
        asr_invoked: bool = False,
    ) -> "ResolutionOutcome":
        return cls(
            episode_id=episode_id,
            status="error",
            source=source,
            tier_kind=tier_kind,
            error_category=category,
            error_message=message,
            credits_consumed=credits_consumed,
            asr_invoked=asr_invoked,
        )

    @property
    def succeeded(self) -> bool:
        return self.status == "done"

    @property
    def lookup_attempted(self) -> bool:
        """False when no lookup result was classified: ineligible, budget or quota skips and unexpected errors."""
        return self.tier_kind is not None


@dataclass(frozen=True)
class BudgetSnapshot:
    api_calls_made: int
    api_calls_max: int
    asr_fallbacks_used: int
    asr_fallbacks_max: int
    credits_consumed: int

    @property
    def asr_capacity_left(self) -> bool:
        return self.asr_fallbacks_used < self.asr_fallbacks_max


class RunBudget:
    """Per-run call counters; every check-and-increment happens under one lock."""

    def __init__(self, api_calls_max: int, asr_fallbacks_max: int):
        self.api_calls_max = max(int(api_calls_max), 0)
        self.asr_fallbacks_max = max(int(asr_fallbacks_max), 0)
        self.api_calls_made = 0
        self.asr_fallbacks_used = 0
        self.credits_consumed = 0
        self.quota_exhausted = False
        self._lock = asyncio.Lock()

    async def try_reserve_api_call(self) -> bool:
        async with self._lock:
            if self.api_calls_made >= self.api_calls_max:
                return False
            self.api_calls_made += 1
            return True

    async def try_reserve_asr_fallback(self) -> bool:
        async with self._lock:
            if self.asr_fallbacks_used >= self.asr_fallbacks_max:
                return False
            self.asr_fallbacks_used += 1
            return True

    async def add_credits(self, credits: int) -> None:
        if credits <= 0:
            return
        async with self._lock:
            self.credits_consumed += credits

    async def mark_quota_exhausted(self) -> None:
        async with self._lock:
            self.quota_exhausted = True

    async def snapshot(self) -> BudgetSnapshot:
        async with self._lock:
            return BudgetSnapshot(
                api_calls_made=self.api_calls_made,
                api_calls_max=self.api_calls_max,
                asr_fallbacks_used=self.asr_fallbacks_used,
                asr_fallbacks_max=self.asr_fallbacks_max,
                credits_consumed=self.credits_consumed,
            )


@dataclass(frozen=True)
class RunSummary:
    job_id: str
    state: str
    candidates: int = 0
    processed: int = 0
    succeeded: int = 0
    fallback_invoked: int = 0
    fallback_succeeded: int = 0
    failed: int = 0
    failures_by_category: Dict[str, int] = field(default_factory=dict)
    total_credits: int = 0
    api_calls_made: int = 0
    lock_acquired: bool = False
    elapsed_ms: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat() if self.started_at else None
        payload["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return payload
