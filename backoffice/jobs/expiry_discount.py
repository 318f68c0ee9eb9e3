import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from backoffice.core.config import DISCOUNT_RATE, DISCOUNT_WINDOW_DAYS
from backoffice.models.database import utcnow
from backoffice.services.inventory_service import InventoryStore
from backoffice.services.notifications import NotificationSender, send_quietly
from backoffice.services.user_service import UserService

logger = logging.getLogger(__name__)


def apply_expiry_discount(
    db: Session,
    notifier: NotificationSender,
    today: Optional[date] = None,
    window_days: int = DISCOUNT_WINDOW_DAYS,
    rate: Decimal = Decimal(DISCOUNT_RATE),
) -> List[dict]:
    """Discount items expiring within the window and tell verified admins which ones."""
    logger.info(f"Running {window_days}-day expiry discount job...")
    today = today or utcnow().date()
    discounted = InventoryStore(db).apply_expiry_discount(today, window_days, rate)
    if not discounted:
        logger.info("No items eligible for discount.")
        return discounted

    percent = (rate * 100).normalize()
    lines = [
        f"- {entry['name']} (ID: {entry['id']}), Quantity: {entry['quantity']}, "
        f"Original Price: ${entry['original_price']}, Discounted Price: ${entry['discounted_price']}"
        for entry in discounted
    ]
    body = (
        f"The following items expiring within {window_days} days received a {percent:f}% discount:\n"
        + "\n".join(lines)
    )
    recipients = UserService(db).admin_emails(verified_only=True)
    send_quietly(notifier, recipients, "Item Expiry Alert & Discounted Items", body)
    return discounted
