import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backoffice.core.config import MILESTONE_ORDER_COUNT, MILESTONE_WINDOW_DAYS
from backoffice.models.database import Order, OrderStatus, utcnow
from backoffice.services.events import ItemAddedToOrder, OrderEventBus
from backoffice.services.notifications import NotificationSender, send_quietly
from backoffice.services.user_service import UserService

logger = logging.getLogger(__name__)


class MilestoneMonitor:
    """
    Best-effort sales milestone check.

    Runs on its own single worker thread with its own session, after the
    order transaction that triggered it has committed. Failures are logged
    and never reach the request that triggered the check.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        notifier: NotificationSender,
        threshold: int = MILESTONE_ORDER_COUNT,
        window_days: int = MILESTONE_WINDOW_DAYS,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.threshold = threshold
        self.window_days = window_days
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="milestones")

    def subscribe_to(self, events: OrderEventBus) -> None:
        events.subscribe(ItemAddedToOrder, self.handle)

    def handle(self, event: ItemAddedToOrder) -> Future:
        logger.debug(f"Scheduling milestone check after order {event.order_id} changed")
        return self._executor.submit(self._run_check)

    def _run_check(self) -> Optional[bool]:
        try:
            return self.check()
        except Exception:
            logger.exception("Error checking sales milestone")
            return None

    def check(self) -> bool:
        """Notify admins when completed orders in the window reach the threshold."""
        db = self.session_factory()
        try:
            since = utcnow() - timedelta(days=self.window_days)
            order_count, total_sales = db.query(
                func.count(Order.id),
                func.coalesce(func.sum(Order.total_cost), 0),
            ).filter(
                Order.created_at >= since,
                Order.status == OrderStatus.COMPLETED,
            ).one()

            if order_count < self.threshold:
                return False

            logger.info(f"Sales milestone reached: {order_count} orders in the last {self.window_days} days")
            recipients = UserService(db).admin_emails()
            body = (
                "Congratulations! Your restaurant has reached a significant sales milestone:\n\n"
                f"Orders in the last {self.window_days} days: {order_count}\n"
                f"Total sales amount: ${Decimal(total_sales):.2f}\n\n"
                f"This is an automated notification triggered when {self.threshold} or more orders "
                f"are completed within a {self.window_days}-day period."
            )
            subject = f"Sales Milestone Reached: {self.threshold}+ Orders in {self.window_days} Days"
            return send_quietly(self.notifier, recipients, subject, body)
        finally:
            db.close()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
