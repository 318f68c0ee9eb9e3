import logging
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from backoffice.core.config import EXPIRY_NOTICE_DAYS
from backoffice.models.database import Item, utcnow
from backoffice.services.inventory_service import InventoryStore
from backoffice.services.notifications import NotificationSender, send_quietly
from backoffice.services.user_service import UserService

logger = logging.getLogger(__name__)


def _describe(items: List[Item]) -> str:
    return "\n".join(f"- {item.name} (ID: {item.id}), Quantity: {item.stock_quantity}" for item in items)


def notify_expiring_items(
    db: Session,
    notifier: NotificationSender,
    today: Optional[date] = None,
    notice_days: int = EXPIRY_NOTICE_DAYS,
) -> Dict[str, List[Item]]:
    """Report in-stock items expiring in ``notice_days`` days or expiring today."""
    logger.info("Running item expiry check job...")
    today = today or utcnow().date()
    inventory = InventoryStore(db)
    found = {
        "expiring_soon": inventory.items_expiring_on(today + timedelta(days=notice_days)),
        "expired_today": inventory.items_expiring_on(today),
    }
    if not found["expiring_soon"] and not found["expired_today"]:
        logger.info("No items expiring soon or today requiring notification.")
        return found

    sections = []
    if found["expiring_soon"]:
        sections.append(f"The following items are expiring in {notice_days} days:\n{_describe(found['expiring_soon'])}")
    if found["expired_today"]:
        sections.append(f"The following items expired today:\n{_describe(found['expired_today'])}")

    if found["expiring_soon"] and found["expired_today"]:
        subject = "Item Expiry Alert: Expiring Soon & Expired Today"
    elif found["expiring_soon"]:
        subject = "Item Expiry Alert: Items Expiring Soon"
    else:
        subject = "Item Expiry Alert: Items Expired Today"

    recipients = UserService(db).admin_emails(verified_only=True)
    send_quietly(notifier, recipients, subject, "\n\n".join(sections))
    return found
