#!/usr/bin/python3
"""
Job scheduler for impostor domain monitoring.

Runs the change-feed poll (generation + on-demand rescans), the due-rescan
sweep, the screenshot queue and the screenshot lease reaper on fixed
intervals. Every job is wrapped so a failing or hanging job never stops the
scheduler; the next tick simply tries again.
"""

import argparse
import logging
import sys
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Any, Callable, Optional

sys.path.insert(0, str(Path(__file__).parent.parent))

import schedule

from my_config import get_config
from services.document_store import StoreUnavailableError
from src.components.impostor_monitoring.config import JOB_STATUS_COLLECTION, MonitoringContext
from src.components.impostor_monitoring.models import utc_now
from src.utils.logging_utils import setup_logging

logger = logging.getLogger(__name__)

# Default per-job timeout (seconds)
DEFAULT_JOB_TIMEOUT = 1800
LEASE_REAPER_INTERVAL_MINUTES = 5


def _record_status(store, name: str, fields: dict) -> None:
    """Best-effort job status for the health endpoint."""
    if store is None:
        return
    try:
        store.upsert(JOB_STATUS_COLLECTION, name, {"name": name, **fields})
    except Exception as e:
        logger.debug(f"Could not record status for {name}: {e}")


def safe_run(job: Callable[[], Any], name: str = None, timeout: int = DEFAULT_JOB_TIMEOUT,
             store=None) -> Optional[Any]:
    """Execute a job with timeout protection, logging instead of raising.

    The job is isolated in its own single-worker ThreadPoolExecutor so a hung
    job cannot block the scheduler loop. A lost document store aborts only
    this run; the next scheduled tick starts from scratch.

    Args:
        job: Callable to execute
        name: Descriptive name for logs and status
        timeout: Maximum execution time in seconds
        store: Document store used to record job status (optional)

    Returns:
        The job's return value, or None if it failed or timed out
    """
    job_name = name or getattr(job, '__name__', repr(job))
    executor = None
    start_time = time.time()
    logger.debug(f">>> Starting job: {job_name}")
    _record_status(store, job_name, {"last_started_at": utc_now()})
    try:
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(job)
        try:
            result = future.result(timeout=timeout)
            elapsed = time.time() - start_time
            logger.debug(f"<<< Job completed successfully: {job_name} (took {elapsed:.2f}s)")
            _record_status(store, job_name, {
                "last_finished_at": utc_now(),
                "last_error": None,
                "last_result": result if isinstance(result, (dict, int)) else None,
            })
            return result
        except FuturesTimeoutError:
            elapsed = time.time() - start_time
            logger.error(f"Job timed out after {timeout} seconds: {job_name} (elapsed {elapsed:.2f}s)")
            _record_status(store, job_name, {"last_error": f"timed out after {timeout}s", "last_error_at": utc_now()})
    except StoreUnavailableError as e:
        logger.error(f"Document store unavailable, aborting {job_name} until next run: {e}")
        _record_status(store, job_name, {"last_error": f"store unavailable: {e}", "last_error_at": utc_now()})
    except Exception as e:
        elapsed = time.time() - start_time
        logger.error(f"Job execution failed for {job_name} after {elapsed:.2f}s: {e}")
        logger.debug(traceback.format_exc())
        _record_status(store, job_name, {"last_error": str(e), "last_error_at": utc_now()})
    finally:
        if executor:
            executor.shutdown(wait=False)
    return None


def schedule_jobs(ctx: MonitoringContext, scheduler: schedule.Scheduler = None) -> schedule.Scheduler:
    """Register every monitoring job on a scheduler (defaults to the module-level one)."""
    scheduler = scheduler or schedule.default_scheduler
    config = ctx.config
    store = ctx.store
    screenshot_timeout = 2 * config.render_timeout + 60

    jobs = [
        (config.change_poll_seconds, 'seconds', ctx.feed.poll, "change_feed", 3600),
        (config.sweep_interval_minutes, 'minutes', ctx.orchestrator.run_due_sweep, "due_rescan_sweep",
         max(60, config.sweep_interval_minutes * 60 - 60)),
        (config.screenshot_interval_seconds, 'seconds', ctx.screenshots.tick, "screenshot_queue", screenshot_timeout),
        (LEASE_REAPER_INTERVAL_MINUTES, 'minutes', ctx.screenshots.requeue_expired_leases, "screenshot_lease_reaper", 300),
    ]
    for interval, unit, job, name, timeout in jobs:
        logger.info(f"Scheduling {name} every {interval} {unit} (timeout {timeout}s)")
        every = getattr(scheduler.every(interval), unit)
        every.do(safe_run, job, name=name, timeout=timeout, store=store)
    return scheduler


def run_once(ctx: MonitoringContext) -> None:
    """Run every job a single time, in dependency order."""
    safe_run(ctx.feed.poll, name="change_feed", store=ctx.store)
    safe_run(ctx.orchestrator.run_due_sweep, name="due_rescan_sweep", store=ctx.store)
    safe_run(ctx.screenshots.requeue_expired_leases, name="screenshot_lease_reaper", store=ctx.store)
    safe_run(ctx.screenshots.tick, name="screenshot_queue", store=ctx.store)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Impostor domain monitoring scheduler")
    parser.add_argument("--once", action="store_true", help="Run every job once and exit")
    parser.add_argument("--add", metavar="DOMAIN", help="Start monitoring a domain and exit")
    parser.add_argument("--watcher", default="cli", help="Watcher id used with --add (default: cli)")
    parser.add_argument("--regenerate", metavar="DOMAIN", help="Re-run generation for a monitored domain and exit")
    parser.add_argument("--rescan", metavar="IMPOSTOR", help="Request an on-demand rescan of an impostor and exit")
    parser.add_argument("--requeue-screenshots", action="store_true",
                        help="Queue live impostors that are missing a screenshot and exit")
    parser.add_argument("--console", action="store_true", help="Also log to the console")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Configure and start the job scheduler."""
    args = parse_args(argv)
    config = get_config()
    setup_logging(
        process_name='all_jobs',
        log_level=logging.INFO,
        log_dir=config.log_dir,
        info_modules=['__main__', 'src.components.impostor_monitoring'],
        console=args.console,
    )

    ctx = MonitoringContext(config)

    if args.add:
        doc = ctx.orchestrator.add_monitored_domain(args.add, args.watcher)
        print(f"Monitoring {doc['domain']} (watchers: {', '.join(doc['watchers'])})")
        return 0
    if args.regenerate:
        ok = ctx.orchestrator.request_regeneration(args.regenerate)
        print("Regeneration requested" if ok else f"{args.regenerate} is not monitored")
        return 0 if ok else 1
    if args.rescan:
        ok = ctx.orchestrator.request_rescan(args.rescan)
        print("Rescan requested" if ok else f"No impostor record for {args.rescan}")
        return 0 if ok else 1
    if args.requeue_screenshots:
        count = ctx.screenshots.requeue_missing_evidence()
        print(f"Flagged {count} impostor(s) for screenshot capture")
        return 0
    if args.once:
        run_once(ctx)
        return 0

    print("Starting impostor monitoring scheduler...")
    logger.info("Initializing impostor monitoring scheduler")
    schedule_jobs(ctx)

    # Kick off generation for anything added while we were down
    safe_run(ctx.feed.poll, name="change_feed", timeout=3600, store=ctx.store)

    while True:
        try:
            schedule.run_pending()
        except Exception as e:
            logger.error(f"Scheduler loop error: {e}")
        time.sleep(1)


if __name__ == "__main__":
    sys.exit(main())
