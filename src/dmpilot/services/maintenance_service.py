"""Periodic housekeeping using APScheduler."""

import logging
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from dmpilot.config import Settings, get_settings
from dmpilot.engine.idempotency import IdempotencyFilter
from dmpilot.models.account import ConnectionStatus
from dmpilot.repositories.account_repository import AccountRepository

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Evicts old event ids and flags accounts whose token has run out."""

    PURGE_JOB_ID = "purge_processed_events"
    TOKEN_JOB_ID = "check_token_expiry"

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Optional[Settings] = None,
        idempotency: Optional[IdempotencyFilter] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.idempotency = idempotency or IdempotencyFilter(
            session_factory,
            horizon_days=self.settings.idempotency_horizon_days,
        )
        self._scheduler: Optional[BackgroundScheduler] = None

    def _get_scheduler(self) -> BackgroundScheduler:
        """Get or create the scheduler instance."""
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(
                job_defaults={
                    "coalesce": True,
                    "max_instances": 1,
                    "misfire_grace_time": 600,
                },
            )
            self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
            self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

            self._scheduler.add_job(
                self.purge_processed_events,
                trigger=IntervalTrigger(hours=1),
                id=self.PURGE_JOB_ID,
                replace_existing=True,
            )
            self._scheduler.add_job(
                self.check_token_expiry,
                trigger=IntervalTrigger(minutes=15),
                id=self.TOKEN_JOB_ID,
                replace_existing=True,
            )
        return self._scheduler

    def start(self) -> None:
        """Start the scheduler."""
        scheduler = self._get_scheduler()
        if not scheduler.running:
            scheduler.start()
            logger.info("Maintenance scheduler started")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=True)
            logger.info("Maintenance scheduler stopped")

    def purge_processed_events(self) -> int:
        """Drop event ids older than the deduplication horizon."""
        return self.idempotency.purge_expired()

    def check_token_expiry(self) -> int:
        """Mark connected accounts with a past token expiry as expired.

        Returns:
            Number of accounts newly marked expired
        """
        expired = 0
        with self.session_factory() as session:
            repo = AccountRepository(session)
            for account in repo.get_active_accounts():
                if account.connection_status == ConnectionStatus.CONNECTED and account.is_token_expired:
                    if repo.mark_expired(account.id):
                        expired += 1
                        logger.warning(f"Access token for account {account.id} has expired")
            session.commit()
        return expired

    def get_jobs(self) -> list[dict]:
        """List scheduled maintenance jobs."""
        # next_run_time is unset until the scheduler has started
        return [
            {
                "id": job.id,
                "next_run_time": getattr(job, "next_run_time", None),
                "name": job.name,
            }
            for job in self._get_scheduler().get_jobs()
        ]

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        logger.debug(f"Job {event.job_id} executed successfully")

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.error(f"Job {event.job_id} failed: {event.exception}")
