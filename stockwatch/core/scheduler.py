from datetime import datetime, timedelta, timezone
import time

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from stockwatch.core.config import settings
from stockwatch.core.errors import capture_exception
from stockwatch.core.logging_config import get_logger
from stockwatch.services.runtime import MonitorRuntime

logger = get_logger(__name__)

scheduler = AsyncIOScheduler()


async def job_poll_availability(runtime: MonitorRuntime):
    """Run one availability poll cycle. Errors are reported, never raised."""
    start_time = time.time()
    try:
        summary = await runtime.poller.scan_batch()
    except Exception as e:
        capture_exception(e, context={"job": "job_poll_availability"})
        return

    if summary is not None:
        logger.info(
            "Availability poll complete",
            duration_s=round(time.time() - start_time, 1),
            products=summary.products_scanned,
            restocks=summary.restocks_detected,
        )


async def job_backend_health_check(runtime: MonitorRuntime):
    """Probe every active backend and log the unhealthy ones."""
    try:
        statuses = await runtime.orchestrator.get_health_status()
    except Exception as e:
        capture_exception(e, context={"job": "job_backend_health_check"})
        return

    unhealthy = [status for status in statuses if not status.is_healthy]
    for status in unhealthy:
        logger.warning(
            "Backend unhealthy",
            backend_id=status.backend_id,
            circuit_breaker_state=status.circuit_breaker_state,
            errors=status.errors,
        )
    logger.info("Backend health check complete", checked=len(statuses), unhealthy=len(unhealthy))


def start_scheduler(runtime: MonitorRuntime, config=settings):
    # Job configuration for durability:
    # - max_instances=1: Prevent overlapping runs
    # - misfire_grace_time: Allow late execution if within grace period (then skip)
    # - coalesce=True: If multiple runs were missed, only run once when catching up

    # Availability polling, first run shortly after startup
    scheduler.add_job(
        job_poll_availability,
        IntervalTrigger(seconds=config.SCANNER_INTERVAL_SECONDS),
        args=[runtime],
        id="job_poll_availability",
        next_run_time=datetime.now(timezone.utc) + timedelta(seconds=config.SCANNER_INITIAL_DELAY_SECONDS),
        max_instances=1,
        misfire_grace_time=config.SCANNER_INTERVAL_SECONDS,
        coalesce=True,
        replace_existing=True,
    )

    # Backend health probes
    scheduler.add_job(
        job_backend_health_check,
        IntervalTrigger(minutes=config.HEALTH_CHECK_INTERVAL_MINUTES),
        args=[runtime],
        id="job_backend_health_check",
        max_instances=1,
        misfire_grace_time=120,  # 2 minutes
        coalesce=True,
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started",
        poll_interval_s=config.SCANNER_INTERVAL_SECONDS,
        health_check_interval_m=config.HEALTH_CHECK_INTERVAL_MINUTES,
    )


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
