import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from backoffice.core.config import ORDER_EXPIRY_HOURS
from backoffice.models.database import utcnow
from backoffice.services.order_service import OrderService

logger = logging.getLogger(__name__)


def expire_pending_orders(db: Session, now: Optional[datetime] = None,
                          max_age_hours: int = ORDER_EXPIRY_HOURS) -> int:
    """Move pending orders older than ``max_age_hours`` to expired."""
    logger.info("Running expired order check job...")
    cutoff = (now or utcnow()) - timedelta(hours=max_age_hours)
    count = OrderService(db).expire_stale_orders(cutoff)
    if count:
        logger.info(f"Updated {count} pending orders to 'expired'.")
    else:
        logger.info(f"No pending orders found older than {max_age_hours} hours.")
    return count
