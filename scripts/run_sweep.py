"""Run one scheduler sweep; meant to be invoked periodically (cron, systemd timer).

Set ``PAUSE_DRAWINGS`` to a reason to skip the sweep without disabling the timer.
"""

from __future__ import annotations

import json
import logging
import os

from drawengine.config import EngineSettings
from drawengine.db.engine import get_sessionmaker, make_engine
from drawengine.db.unit_of_work import UnitOfWork
from drawengine.prize_draw.scheduler import RESULT_ERROR
from drawengine.workflows import build_scheduler, cleanup_expired_quotas, run_scheduled_sweep

logger = logging.getLogger("drawengine.run_sweep")


def main() -> int:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    settings = EngineSettings.from_env()
    session_factory = get_sessionmaker(make_engine(settings.database_url))
    trigger = build_scheduler(settings, session_factory=session_factory)

    pause_reason = os.getenv("PAUSE_DRAWINGS")
    if pause_reason:
        trigger.pause(pause_reason)

    report = run_scheduled_sweep(trigger)
    for result in report.results:
        logger.info(f"instance {result.instance_id}: {result.result} {result.error or ''}")

    removed = cleanup_expired_quotas(
        UnitOfWork(session_factory, max_attempts=settings.conflict_retries),
        retention_days=settings.quota_retention_days,
    )
    print(
        json.dumps(
            {
                "due": report.due_count,
                "failed": len(report.failed),
                "skipped": report.skipped_reason,
                "quota_rows_removed": removed,
            }
        )
    )
    return 1 if report.count(RESULT_ERROR) else 0


if __name__ == "__main__":
    raise SystemExit(main())
