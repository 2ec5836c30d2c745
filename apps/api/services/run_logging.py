"""Structured log helpers for background jobs."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _render(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str, sort_keys=True)
    return str(value)


def log_event(logger: logging.Logger, level: int, component: str, message: str, **metadata: Any) -> None:
    """Log `component | message | k=v ...` so every record carries its metadata inline."""
    if not logger.isEnabledFor(level):
        return
    details = " ".join(f"{key}={_render(value)}" for key, value in metadata.items() if value is not None)
    if details:
        logger.log(level, "%s | %s | %s", component, message, details)
    else:
        logger.log(level, "%s | %s", component, message)


def emit_job_metric(
    logger: logging.Logger,
    job_name: str,
    *,
    success: bool,
    records_processed: int,
    elapsed_ms: int,
) -> None:
    """One METRIC line per job execution, parsed by the log pipeline."""
    payload = {
        "metric": "background_job_execution",
        "job_name": job_name,
        "success": success,
        "records_processed": records_processed,
        "elapsed_ms": elapsed_ms,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("METRIC: %s", json.dumps(payload))
