"""
Token maintenance jobs.

Three periodic jobs keep the token store healthy:

1. Expire sweep: ACTIVE tokens past their expiry become EXPIRED
2. Cleanup: ROTATED/REVOKED tokens older than the retention period are deleted
3. Rotation: tokens expiring within the warning window are rotated (optional)

Each job opens its own session, commits, and returns a result dict instead of
raising, so MaintenanceScheduler can run it unattended.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from ..config import AppConfig, get_config
from ..db.db_base import utc_now
from ..services.token_lifecycle_service import TokenLifecycleService
from ..utils.logger import get_logger

SessionFactory = Callable[[], Session]


class TokenMaintenanceProcessor:
    """Runs the token maintenance jobs against fresh sessions."""

    def __init__(
        self,
        session_factory: SessionFactory,
        config: Optional[AppConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the maintenance processor.

        Args:
            session_factory: Returns a new session per job (e.g. DatabaseManager.new_session)
            config: Application config; the global config by default
            clock: Current time source; UTC wall clock by default
        """
        self.session_factory = session_factory
        self.config = config or get_config()
        self.clock = clock or utc_now
        self.logger = get_logger()

    def get_processor_name(self) -> str:
        return "TokenMaintenanceProcessor"

    def expire_tokens(self) -> Dict[str, Any]:
        return self._run("expire_tokens", lambda svc: {"tokens_expired": svc.expire_old_tokens()})

    def cleanup_tokens(self, retention_days: Optional[int] = None) -> Dict[str, Any]:
        retention = (
            retention_days
            if retention_days is not None
            else self.config.token.cleanup_retention_days
        )
        return self._run(
            "cleanup_tokens",
            lambda svc: {
                "retention_days": retention,
                "tokens_deleted": svc.cleanup_old_tokens(retention),
            },
        )

    def rotate_expiring_tokens(self) -> Dict[str, Any]:
        if not self.config.token.rotation_enabled:
            self.logger.info("Automatic rotation disabled, skipping")
            return {"status": "skipped", "operation": "rotate_expiring_tokens"}

        return self._run(
            "rotate_expiring_tokens",
            lambda svc: {"tokens_rotated": len(svc.rotate_expiring_tokens())},
        )

    def _run(self, operation: str, job: Callable[[TokenLifecycleService], Dict[str, Any]]):
        start_time = self.clock()
        self.logger.info(
            f"Starting {operation}",
            extra={"processor": self.get_processor_name(), "start_time": start_time.isoformat()},
        )

        session = self.session_factory()
        try:
            service = TokenLifecycleService(
                session=session, config=self.config.token, clock=self.clock
            )
            counts = job(service)

            end_time = self.clock()
            result = {
                "status": "success",
                "operation": operation,
                **counts,
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
                "duration_seconds": (end_time - start_time).total_seconds(),
            }
            self.logger.info(f"{operation} completed successfully", extra=result)
            return result

        except Exception as e:
            session.rollback()
            end_time = self.clock()
            result = {
                "status": "error",
                "operation": operation,
                "error": str(e),
                "error_type": type(e).__name__,
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
                "duration_seconds": (end_time - start_time).total_seconds(),
            }
            self.logger.error(f"{operation} failed", extra=result, exc_info=True)
            return result

        finally:
            session.close()


class MaintenanceScheduler:
    """
    Runs the maintenance jobs on an APScheduler ``BackgroundScheduler``.

    Each job is registered once with an ``IntervalTrigger`` at its configured
    interval and first fires when the scheduler starts. A job never overlaps
    with itself; missed runs are coalesced into one.
    """

    def __init__(
        self,
        processor: TokenMaintenanceProcessor,
        scheduler: Optional[BaseScheduler] = None,
    ):
        self.processor = processor
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self.logger = get_logger()
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self._register_jobs()

    def _register_jobs(self) -> None:
        schedule = self.processor.config.maintenance
        jobs = (
            ("expire_tokens", self.processor.expire_tokens, schedule.expire_sweep_interval_seconds),
            ("cleanup_tokens", self.processor.cleanup_tokens, schedule.cleanup_interval_seconds),
            (
                "rotate_expiring_tokens",
                self.processor.rotate_expiring_tokens,
                schedule.rotation_interval_seconds,
            ),
        )
        for job_id, func, interval_seconds in jobs:
            self.scheduler.add_job(
                func,
                IntervalTrigger(seconds=interval_seconds, timezone=timezone.utc),
                id=job_id,
                name=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(timezone.utc),
            )

    def _on_job_error(self, event) -> None:
        self.logger.error(
            f"Maintenance job {event.job_id} failed",
            extra={"job_id": event.job_id, "error_type": type(event.exception).__name__},
        )

    def start(self, paused: bool = False) -> None:
        if self.scheduler.running:
            return
        self.scheduler.start(paused=paused)
        self.logger.info(
            "Maintenance scheduler started",
            extra={"jobs": [job.id for job in self.scheduler.get_jobs()]},
        )

    def stop(self, wait: bool = True) -> None:
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=wait)
        self.logger.info("Maintenance scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running
