import csv
import io
import json
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from backoffice.core.config import SALES_REPORT_PERIOD_DAYS
from backoffice.models.database import Order, OrderItem, utcnow
from backoffice.services.notifications import NotificationSender, send_quietly
from backoffice.services.user_service import UserService

logger = logging.getLogger(__name__)

SALES_REPORT_FIELDS = [
    "date",
    "order_id",
    "waiter",
    "items",
    "total_cost",
    "category_breakdown",
    "status",
]


def build_sales_report(db: Session, start: datetime, end: datetime) -> List[dict]:
    """One row per order created in [start, end) that has at least one line."""
    orders = db.query(Order).options(
        selectinload(Order.waiter),
        selectinload(Order.order_items).selectinload(OrderItem.item),
    ).filter(
        Order.created_at >= start,
        Order.created_at < end,
    ).order_by(Order.created_at, Order.id).all()

    rows = []
    for order in orders:
        if not order.order_items:
            continue
        breakdown = {}
        for line in order.order_items:
            breakdown[line.item.category] = breakdown.get(line.item.category, 0) + line.quantity
        rows.append({
            "date": order.created_at.date().isoformat(),
            "order_id": order.id,
            "waiter": order.waiter.name if order.waiter else "",
            "items": ", ".join(f"{line.item.name} (x{line.quantity})" for line in order.order_items),
            "total_cost": order.total_cost,
            "category_breakdown": json.dumps(breakdown, sort_keys=True),
            "status": order.status,
        })
    return rows


def sales_report_csv(rows: List[dict]) -> str:
    if not rows:
        return ""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=SALES_REPORT_FIELDS, lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def send_sales_report(
    db: Session,
    notifier: NotificationSender,
    today: Optional[date] = None,
    period_days: int = SALES_REPORT_PERIOD_DAYS,
) -> List[dict]:
    """Mail the per-order sales CSV for the ``period_days`` days before today to admins and managers."""
    logger.info("Running sales report job...")
    today = today or utcnow().date()
    first_day = today - timedelta(days=period_days)
    rows = build_sales_report(db, datetime.combine(first_day, time.min), datetime.combine(today, time.min))
    if not rows:
        logger.info("No orders found for the sales report period.")
        return rows

    last_day = today - timedelta(days=1)
    recipients = UserService(db).admin_emails()
    send_quietly(
        notifier,
        recipients,
        f"Sales Report {first_day.isoformat()} to {last_day.isoformat()}",
        sales_report_csv(rows),
    )
    logger.info(f"Sales report covered {len(rows)} order(s)")
    return rows
