#!/usr/bin/env python
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from loguru import logger

from research_pipeline.core.logging import configure_logging
from research_pipeline.core.views import JobView
from research_pipeline.workers.observer import HttpJobSource, JobObserver


def _print_view(view: JobView) -> None:
    stages = " ".join(f"{stage.value}={status.value}" for stage, status in view.stages.items())
    stall = f" STALLED ({view.stall.reason})" if view.stall.stalled else ""
    print(
        f"[{view.observed_at:%H:%M:%S}] {view.job_id} {view.display_status.value}"
        f" stage={view.current_stage} {stages}"
        f" sites={view.counters.sites_discovered} faqs={view.counters.faqs_extracted}"
        f" elapsed={view.elapsed_seconds}s{stall}"
    )
    if view.error_message:
        print(f"    {view.error_message}")


async def _watch(api_url: str, workspace: str, job_id: str | None) -> int:
    source = HttpJobSource(api_url)
    observer = JobObserver(source, on_update=_print_view)
    try:
        view = await observer.attach(workspace, job_id)
        if view is None:
            print(f"No active research job for workspace {workspace}")
            return 1
        final = await observer.wait()
    finally:
        await observer.detach()
        await source.aclose()
    return 0 if final is not None and final.status.value == "completed" else 2


def main() -> None:
    parser = argparse.ArgumentParser(description="Follow a competitor research job until it finishes")
    parser.add_argument("--workspace", required=True, help="workspace id")
    parser.add_argument("--job", default=None, help="job id (defaults to the workspace's active job)")
    parser.add_argument("--api", default="http://localhost:8000/api", help="API base URL")
    parser.add_argument("--log-level", default="WARNING", help="loguru level")
    args = parser.parse_args()

    configure_logging(args.log_level)
    try:
        code = asyncio.run(_watch(args.api, args.workspace, args.job))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    main()
