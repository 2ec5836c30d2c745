"""One-shot job runner for external schedulers (cron, k8s CronJob)."""

import argparse
import asyncio
import json
import sys

from config import settings
from services.background_jobs import JOB_REGISTRY, TRANSCRIPT_WORKER_JOB, run_job_manually
from services.run_logging import configure_logging
from services.transcript_types import TranscriptRunFailedError


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run a background job once and print its summary.")
    parser.add_argument("job_name", nargs="?", default=TRANSCRIPT_WORKER_JOB, choices=sorted(JOB_REGISTRY))
    args = parser.parse_args(argv)

    configure_logging(settings.LOG_LEVEL)
    try:
        summary = asyncio.run(run_job_manually(args.job_name))
    except TranscriptRunFailedError as exc:
        print(json.dumps(exc.summary.to_dict(), indent=2), file=sys.stderr)
        return 1
    print(json.dumps(summary.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
