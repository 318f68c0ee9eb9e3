import csv
import io
import logging
from datetime import date, datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from backoffice.core.errors import ForbiddenError, ValidationFailure
from backoffice.models.database import Item, ItemCategory, Order, OrderItem, OrderStatus, Role, User

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

COMMISSION_RATES = {
    ItemCategory.FOOD: Decimal("0.01"),
    ItemCategory.BEVERAGES: Decimal("0.005"),
    ItemCategory.OTHERS: Decimal("0.0025"),
}

REPORT_FIELDS = [
    "waiter_id",
    "waiter_name",
    "total_items_sold",
    "items_sold_food",
    "items_sold_beverages",
    "items_sold_others",
    "total_revenue",
    "total_commission",
]

REPORT_VIEWERS = (Role.SUPER_ADMIN, Role.MANAGER, Role.CASHIER)


class ReportService:
    """Read-only aggregations over completed orders"""

    def __init__(self, db: Session):
        self.db = db

    def waiter_commission_report(
        self,
        start_date: date,
        end_date: date,
        acting_user: User,
        waiter_name: Optional[str] = None,
    ) -> List[dict]:
        """
        Per-waiter sales and commission for orders completed in the range.

        The range is taken on the order's completion time (``updated_at``)
        and includes the whole end day. Waiters only get their own row.
        """
        if start_date > end_date:
            raise ValidationFailure("start_date must not be after end_date")

        query = self.db.query(
            User.id, User.name, OrderItem.id, Item.category, OrderItem.quantity, OrderItem.price_at_order,
        ).join(
            Order, Order.waiter_id == User.id
        ).join(
            OrderItem, OrderItem.order_id == Order.id
        ).join(
            Item, OrderItem.item_id == Item.id
        ).filter(
            User.role == Role.WAITER,
            Order.status == OrderStatus.COMPLETED,
            Order.updated_at >= datetime.combine(start_date, time.min),
            Order.updated_at <= datetime.combine(end_date, time.max),
        )

        if acting_user.role == Role.WAITER:
            query = query.filter(User.id == acting_user.id)
        elif acting_user.role in REPORT_VIEWERS:
            if waiter_name:
                query = query.filter(User.name.ilike(f"%{waiter_name}%"))
        else:
            raise ForbiddenError("Forbidden: Insufficient permissions.")

        rows: Dict[int, dict] = {}
        for waiter_id, name, line_id, category, quantity, price in query.all():
            row = rows.setdefault(waiter_id, {
                "waiter_id": waiter_id,
                "waiter_name": name,
                "lines": set(),
                "items_sold_food": 0,
                "items_sold_beverages": 0,
                "items_sold_others": 0,
                "total_revenue": Decimal("0"),
                "total_commission": Decimal("0"),
            })
            revenue = Decimal(price) * quantity
            row["lines"].add(line_id)
            row[f"items_sold_{category}"] += quantity
            row["total_revenue"] += revenue
            row["total_commission"] += revenue * COMMISSION_RATES.get(category, Decimal("0"))

        report = []
        for row in sorted(rows.values(), key=lambda r: (r["waiter_name"], r["waiter_id"])):
            row["total_items_sold"] = len(row.pop("lines"))
            row["total_revenue"] = row["total_revenue"].quantize(CENTS, rounding=ROUND_HALF_UP)
            row["total_commission"] = row["total_commission"].quantize(CENTS, rounding=ROUND_HALF_UP)
            report.append(row)

        logger.info(
            f"Waiter commission report {start_date}..{end_date} for {acting_user.role} "
            f"{acting_user.id}: {len(report)} row(s)"
        )
        return report

    @staticmethod
    def to_csv(report: List[dict]) -> str:
        if not report:
            return ""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=REPORT_FIELDS, lineterminator="\n")
        writer.writeheader()
        for row in report:
            writer.writerow({field: row[field] for field in REPORT_FIELDS})
        return buffer.getvalue()
