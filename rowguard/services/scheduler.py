"""Internal task scheduler using APScheduler.

Runs the policy engine's background jobs within the FastAPI process:
- audit flush: every few seconds, hands buffered decisions to the writers
- diagnostics: daily, logs findings for the live registry
"""

import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from rowguard.config import settings
from rowguard.services.policy import audit_sink, diagnostics, policy_store

logger = logging.getLogger(__name__)


async def run_audit_flush() -> int:
    """Flush the audit sink. Returns the number of entries handed to the writers."""
    try:
        flushed = await audit_sink.flush()
    except Exception as e:
        logger.exception(f"[scheduler] Audit-flush: failed with error: {e}")
        return 0
    if flushed:
        logger.debug(f"[scheduler] Audit-flush: {flushed} entries")
    return flushed


async def run_policy_diagnostics() -> dict[str, Any]:
    """Validate the live registry and log every finding."""
    registry = policy_store.snapshot()
    findings = diagnostics.validate(
        registry,
        max_rules_per_operation=policy_store.max_rules_per_operation,
        restricted_sources=policy_store.restricted_sources,
    )
    diagnostics.log_findings(findings)
    logger.info(
        f"[scheduler] Diagnostics: registry v{registry.version}, "
        f"{len(findings)} finding(s)"
    )
    return {
        "version": registry.version,
        "findings": [finding.to_dict() for finding in findings],
    }


class Scheduler:
    """Manages the APScheduler instance and job registration."""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        """Start the scheduler and register jobs."""
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled via SCHEDULER_ENABLED=false")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            run_audit_flush,
            trigger=IntervalTrigger(seconds=settings.audit_flush_interval_seconds),
            id="audit_flush",
            name="Audit Sink Flush",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self._scheduler.add_job(
            run_policy_diagnostics,
            trigger=CronTrigger(hour=settings.diagnostics_hour, minute=0),
            id="policy_diagnostics",
            name="Policy Registry Diagnostics",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            f"[scheduler] Started with audit-flush every "
            f"{settings.audit_flush_interval_seconds}s, "
            f"diagnostics at {settings.diagnostics_hour:02d}:00 UTC"
        )

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("[scheduler] Stopped")

    async def trigger_now(self, job_id: str) -> Any:
        """
        Manually trigger a job immediately (for testing/debugging).

        Returns the job result or None if job not found.
        """
        if job_id == "audit_flush":
            return await run_audit_flush()
        if job_id == "policy_diagnostics":
            return await run_policy_diagnostics()
        return None


scheduler = Scheduler()
