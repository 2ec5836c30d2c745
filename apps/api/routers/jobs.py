"""Administrative background job router."""

from __future__ import annotations

import secrets
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import settings
from services.background_jobs import JOB_REGISTRY, run_job_manually
from services.transcript_types import RunSummary, TranscriptRunFailedError, UnknownJobError

router = APIRouter()


class RunSummaryResponse(BaseModel):
    job_id: str
    state: str
    candidates: int = 0
    processed: int = 0
    succeeded: int = 0
    fallback_invoked: int = 0
    fallback_succeeded: int = 0
    failed: int = 0
    failures_by_category: Dict[str, int] = Field(default_factory=dict)
    total_credits: int = 0
    api_calls_made: int = 0
    lock_acquired: bool = False
    elapsed_ms: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None


class RunJobResponse(BaseModel):
    job_name: str
    summary: RunSummaryResponse


def _serialize_summary(summary: RunSummary) -> RunSummaryResponse:
    return RunSummaryResponse(**summary.to_dict())


async def require_admin_token(x_admin_token: Optional[str] = Header(default=None)) -> None:
    expected = (settings.ADMIN_JOB_TOKEN or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Manual job runs are disabled (ADMIN_JOB_TOKEN not configured).")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=401, detail="Invalid admin token.")


@router.get("")
async def list_jobs(_admin: None = Depends(require_admin_token)):
    return {"jobs": sorted(JOB_REGISTRY)}


@router.post("/{job_name}/run", response_model=RunJobResponse)
async def run_job(job_name: str, _admin: None = Depends(require_admin_token)):
    """Run a background job immediately and return its summary."""
    try:
        summary = await run_job_manually(job_name)
    except UnknownJobError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TranscriptRunFailedError as exc:
        return JSONResponse(
            status_code=500,
            content={
                "job_name": job_name,
                "error": str(exc),
                "summary": _serialize_summary(exc.summary).model_dump(),
            },
        )
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=f"Job is not configured: {exc}") from exc
    return RunJobResponse(job_name=job_name, summary=_serialize_summary(summary))
