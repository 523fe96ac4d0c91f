"""
Main entry point: keeps fiction stats and Rising Stars ranks current on a schedule.
"""

import asyncio
import json
import logging
import os
import signal
import sys
from typing import Any, Dict

from dotenv import load_dotenv

# Add project root to PYTHONPATH so imports work when running this script directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from rankwatch.errors import ConfigurationError
from rankwatch.infra.scheduler import Scheduler
from rankwatch.settings import Settings, load_settings
from plugins.royalroad.handlers import handle


logger = logging.getLogger(__name__)

# job id -> invocation event
JOBS: Dict[str, Dict[str, Any]] = {
    "fiction-history": {"mode": "fiction-history"},
    "rising-stars": {"mode": "rising-stars-all"},
}


async def run_job(job_id: str, settings: Settings) -> Dict[str, Any]:
    """Invoke one job with the configured execution budget and log its envelope."""
    result = await handle(dict(JOBS[job_id]), settings.budget.max_execution_ms, settings=settings)
    body = json.loads(result["body"])
    if body.get("success"):
        logger.info(
            f"Job {job_id} finished: {body.get('processedCount', 0)}/{body.get('totalCount', 0)} "
            f"processed, {body.get('remainingCount', 0)} remaining in {body['executionTime']}ms"
        )
    else:
        logger.error(f"Job {job_id} failed ({result['statusCode']}): {body.get('error')}")
    return result


async def run_without_scheduler(settings: Settings) -> None:
    """Run every job once, in order."""
    for job_id in JOBS:
        await run_job(job_id, settings)


async def main():
    """Main entry point with scheduler support."""
    load_dotenv()

    config_file = os.getenv("RANKWATCH_CONFIG", "config.yaml")
    try:
        settings = load_settings(config_file)
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Cannot start: {e}")
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s"
    )

    if os.getenv("SCHEDULER_MODE", "enabled") == "disabled":
        logger.info("Running all jobs once (scheduler disabled)...")
        await run_without_scheduler(settings)
        return

    scheduler = Scheduler(timezone=settings.schedule.timezone)
    schedules = {
        "fiction-history": settings.schedule.fiction_history,
        "rising-stars": settings.schedule.rising_stars,
    }
    for job_id, cron in schedules.items():
        scheduler.add_cron_job(run_job, cron, job_id=job_id, args=[job_id, settings])

    # Setup graceful shutdown
    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        asyncio.get_running_loop().add_signal_handler(sig, signal_handler)

    try:
        await scheduler.start()
        for job_id, info in scheduler.list_jobs().items():
            logger.info(f"  - {job_id}: next run {info['next_run']}")
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        await scheduler.stop()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
