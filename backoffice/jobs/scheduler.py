import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List

from sqlalchemy.orm import Session

from backoffice.core.config import (
    DAILY_JOB_INTERVAL_SECONDS, ORDER_EXPIRY_INTERVAL_SECONDS, SALES_REPORT_INTERVAL_SECONDS,
)
from backoffice.jobs.expiry_discount import apply_expiry_discount
from backoffice.jobs.expiry_notice import notify_expiring_items
from backoffice.jobs.order_expiry import expire_pending_orders
from backoffice.jobs.sales_report import send_sales_report
from backoffice.services.notifications import NotificationSender

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    name: str
    interval_seconds: float
    func: Callable[[Session], Any]


class JobScheduler:
    """
    Periodic runner for maintenance jobs.

    Each job runs in a worker thread with its own session. A job waits for
    its previous run to finish before the next interval starts, so runs of
    the same job never overlap.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self.jobs: List[ScheduledJob] = []
        self._tasks: List[asyncio.Task] = []

    def add_job(self, name: str, interval_seconds: float, func: Callable[[Session], Any]) -> ScheduledJob:
        if interval_seconds <= 0:
            raise ValueError(f"Invalid interval for job {name}: {interval_seconds}")
        job = ScheduledJob(name=name, interval_seconds=interval_seconds, func=func)
        self.jobs.append(job)
        logger.info(f"Job {name} scheduled every {interval_seconds}s")
        return job

    def run_job(self, job: ScheduledJob) -> Any:
        db = self.session_factory()
        try:
            return job.func(db)
        except Exception:
            logger.exception(f"Job {job.name} failed")
            return None
        finally:
            db.close()

    async def _run_periodically(self, job: ScheduledJob) -> None:
        while True:
            await asyncio.sleep(job.interval_seconds)
            await asyncio.to_thread(self.run_job, job)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        logger.info("Starting scheduler...")
        for job in self.jobs:
            self._tasks.append(asyncio.create_task(self._run_periodically(job), name=f"job:{job.name}"))

    async def stop(self) -> None:
        logger.info("Stopping scheduler...")
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []


def build_scheduler(session_factory: Callable[[], Session], notifier: NotificationSender) -> JobScheduler:
    scheduler = JobScheduler(session_factory)
    scheduler.add_job("expire-pending-orders", ORDER_EXPIRY_INTERVAL_SECONDS, expire_pending_orders)
    scheduler.add_job(
        "expiry-discount", DAILY_JOB_INTERVAL_SECONDS,
        lambda db: apply_expiry_discount(db, notifier),
    )
    scheduler.add_job(
        "expiry-notice", DAILY_JOB_INTERVAL_SECONDS,
        lambda db: notify_expiring_items(db, notifier),
    )
    scheduler.add_job(
        "sales-report", SALES_REPORT_INTERVAL_SECONDS,
        lambda db: send_sales_report(db, notifier),
    )
    return scheduler
