import logging
import math
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.core.config import PREMIUM_FOOD_PRICE
from backoffice.core.errors import ConflictError, NotFoundError
from backoffice.models.database import Item, ItemCategory, OrderItem, Role, User, utcnow
from backoffice.models.schemas import ItemCreate, ItemUpdate
from backoffice.services.notifications import NotificationSender, send_quietly
from backoffice.services.user_service import UserService

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

ITEM_SORT_FIELDS = {
    "name": Item.name,
    "price": Item.price,
    "expiry_date": Item.expiry_date,
    "stock_value": Item.price * Item.stock_quantity,
}


def is_expired(item: Item, today: Optional[date] = None) -> bool:
    """An item may not be sold from its expiry date onwards."""
    if item.expiry_date is None:
        return False
    return item.expiry_date <= (today or utcnow().date())


class InventoryStore:
    """
    Authoritative stock and price data.

    Stock adjustments never commit: they run inside the caller's transaction
    so that a failure in the accompanying order mutation rolls them back too.
    """

    def __init__(self, db: Session, notifier: Optional[NotificationSender] = None):
        self.db = db
        self.notifier = notifier

    def lock_item(self, item_id: int) -> Optional[Item]:
        """
        Load an item with a row lock held until the transaction ends.

        NOTE: SQLite ignores SELECT ... FOR UPDATE; the conditional UPDATE in
        adjust_stock is what guards the stock there.
        """
        return self.db.query(Item).filter(Item.id == item_id).with_for_update().first()

    def check_availability(self, item_id: int, lock: bool = False) -> Item:
        """Return the item if it can be added to an order (not expired, in stock)."""
        if lock:
            item = self.lock_item(item_id)
        else:
            item = self.db.get(Item, item_id)
        if not item:
            raise NotFoundError(f"Item with ID {item_id} not found")
        if is_expired(item):
            raise ConflictError(f'Item "{item.name}" is expired and cannot be added to the order.')
        if item.stock_quantity <= 0:
            raise ConflictError(f'Item "{item.name}" is out of stock and cannot be added to the order.')
        return item

    def adjust_stock(self, item: Item, delta: int) -> Item:
        """
        Apply ``stock_quantity += delta`` as a single conditional UPDATE.

        Raises ConflictError when the result would be negative; the row is
        left untouched in that case.
        """
        if delta == 0:
            return item

        result = self.db.execute(
            update(Item)
            .where(Item.id == item.id, Item.stock_quantity + delta >= 0)
            .values(
                stock_quantity=Item.stock_quantity + delta,
                version=Item.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.refresh(item, ["stock_quantity"])
            raise ConflictError(
                f'Insufficient stock for item "{item.name}". Available: {item.stock_quantity}'
            )

        self.db.refresh(item, ["stock_quantity", "version"])
        logger.info(
            f"Adjusted stock for {item.name} by {delta:+d}: "
            f"new quantity = {item.stock_quantity} (version {item.version})"
        )
        return item

    # Item management

    def create_item(self, item_data: ItemCreate) -> Item:
        if self.db.query(Item).filter(Item.name == item_data.name).first():
            raise ConflictError("Item name already taken")

        item = Item(**item_data.model_dump())
        self.db.add(item)
        self._commit_item_change()
        self.db.refresh(item)
        logger.info(f"Created item {item.id} ({item.name})")

        if item.category == ItemCategory.FOOD and item.price >= Decimal(PREMIUM_FOOD_PRICE):
            self._notify_premium_food_item(item)
        return item

    def _commit_item_change(self) -> None:
        # A concurrent create or rename can still take the name after the lookup
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Item name already taken")

    def _notify_premium_food_item(self, item: Item) -> None:
        if self.notifier is None:
            return
        try:
            recipients = UserService(self.db).admin_emails()
        except Exception:
            logger.exception(f"Failed to look up admins for premium item {item.name}")
            return
        expiry = item.expiry_date.isoformat() if item.expiry_date else "N/A"
        body = (
            "A new premium food item has been added to the inventory:\n\n"
            f"Name: {item.name}\n"
            f"Description: {item.description or ''}\n"
            f"Price: ${item.price}\n"
            f"Category: {item.category}\n"
            f"Expiry Date: {expiry}\n"
            f"Stock Quantity: {item.stock_quantity}\n\n"
            f"This notification is sent for all new food items priced ${PREMIUM_FOOD_PRICE} or higher."
        )
        send_quietly(self.notifier, recipients, f"New Premium Food Item Added: {item.name}", body)

    def get_item(self, item_id: int) -> Item:
        item = self.db.get(Item, item_id)
        if not item:
            raise NotFoundError(f"Item with ID {item_id} not found")
        return item

    def query_items(
        self,
        acting_user: User,
        category: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: str = "asc",
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        query = self.db.query(Item)
        if category:
            query = query.filter(Item.category == category)
        if acting_user.role == Role.WAITER:
            today = utcnow().date()
            query = query.filter((Item.expiry_date > today) | (Item.expiry_date.is_(None)))

        if sort_by in ITEM_SORT_FIELDS:
            column = ITEM_SORT_FIELDS[sort_by]
            query = query.order_by(column.desc() if sort_order.lower() == "desc" else column.asc())
        query = query.order_by(Item.id)

        total = query.count()
        results = query.offset((page - 1) * limit).limit(limit).all()
        return {
            "results": results,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit),
            "total_results": total,
        }

    def update_item(self, item_id: int, item_data: ItemUpdate) -> Item:
        item = self.get_item(item_id)
        changes = item_data.model_dump(exclude_unset=True)
        if "name" in changes and changes["name"] != item.name:
            if self.db.query(Item).filter(Item.name == changes["name"]).first():
                raise ConflictError("Item name already taken")

        for field, value in changes.items():
            setattr(item, field, value)

        self._commit_item_change()
        self.db.refresh(item)
        return item

    def delete_item(self, item_id: int) -> Item:
        item = self.get_item(item_id)
        referenced = self.db.query(OrderItem.id).filter(OrderItem.item_id == item_id).first()
        if referenced:
            raise ConflictError(f'Item "{item.name}" is referenced by orders and cannot be deleted')
        self.db.delete(item)
        self.db.commit()
        logger.info(f"Deleted item {item_id}")
        return item

    # Scheduled job support

    def apply_expiry_discount(self, today: date, window_days: int, rate: Decimal) -> List[dict]:
        """
        Mark down in-stock items expiring within ``window_days`` after today.

        Each item is discounted at most once. Returns one summary per
        discounted item.
        """
        horizon = today + timedelta(days=window_days)
        items = self.db.query(Item).filter(
            Item.expiry_date > today,
            Item.expiry_date <= horizon,
            Item.stock_quantity > 0,
            Item.discount_applied.is_(False),
        ).order_by(Item.expiry_date, Item.id).all()

        discounted = []
        for item in items:
            price = Decimal(item.price)
            item.discounted_price = (price * (Decimal(1) - rate)).quantize(CENTS, rounding=ROUND_HALF_UP)
            item.discount_applied = True
            discounted.append({
                "id": item.id,
                "name": item.name,
                "quantity": item.stock_quantity,
                "original_price": price,
                "discounted_price": item.discounted_price,
            })
        self.db.commit()
        return discounted

    def items_expiring_on(self, day: date) -> List[Item]:
        return self.db.query(Item).filter(
            Item.expiry_date == day,
            Item.stock_quantity > 0,
        ).order_by(Item.id).all()
