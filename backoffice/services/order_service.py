import logging
import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from backoffice.core.errors import ConflictError, ForbiddenError, NotFoundError, ServiceError, ValidationFailure
from backoffice.models.database import Order, OrderItem, OrderStatus, Role, User
from backoffice.models.schemas import OrderItemCreate, OrderUpdate
from backoffice.services.events import ItemAddedToOrder, ItemRemovedFromOrder, OrderEventBus, OrderStatusChanged
from backoffice.services.inventory_service import InventoryStore
from backoffice.services.order_policy import check_status_change, check_waiter_change, policy_for
from backoffice.services.user_service import UserService

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

ORDER_SORT_FIELDS = {
    "created_at": Order.created_at,
    "updated_at": Order.updated_at,
    "total_cost": Order.total_cost,
    "status": Order.status,
}


def recompute_total(db: Session, order_id: int) -> Decimal:
    """Sum of price_at_order * quantity over the order's lines, in cents."""
    lines = db.query(OrderItem.price_at_order, OrderItem.quantity).filter(
        OrderItem.order_id == order_id
    ).all()
    total = sum((Decimal(price) * quantity for price, quantity in lines), Decimal("0"))
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


class OrderService:
    """
    Order lifecycle and the order/inventory consistency rules.

    Every mutation runs in a single transaction on ``db``: stock adjustments,
    line changes and the recomputed total are committed together or rolled
    back together. Events are published only after a successful commit.
    """

    def __init__(self, db: Session, inventory: Optional[InventoryStore] = None,
                 events: Optional[OrderEventBus] = None):
        self.db = db
        self.inventory = inventory or InventoryStore(db)
        self.events = events or OrderEventBus()

    def _load_order(self, order_id: int, lock: bool = False) -> Order:
        query = self.db.query(Order).filter(Order.id == order_id)
        if lock:
            query = query.with_for_update()
        order = query.first()
        if not order:
            raise NotFoundError("Order not found")
        return order

    def _load_pending_order(self, order_id: int) -> Order:
        order = self._load_order(order_id, lock=True)
        if order.status != OrderStatus.PENDING:
            raise ConflictError("Cannot modify items in a non-pending order")
        return order

    def _set_line(self, order: Order, item_id: int, quantity: int) -> OrderItem:
        """Create or update the order's line for an item and move the stock difference."""
        item = self.inventory.check_availability(item_id, lock=True)
        line = self.db.query(OrderItem).filter(
            OrderItem.order_id == order.id,
            OrderItem.item_id == item_id,
        ).first()

        if line:
            quantity_change = quantity - line.quantity
            if quantity_change > item.stock_quantity:
                raise ConflictError(
                    f'Insufficient stock for item "{item.name}". Available: {item.stock_quantity}'
                )
            line.quantity = quantity
            line.price_at_order = item.price
            self.inventory.adjust_stock(item, -quantity_change)
        else:
            if quantity > item.stock_quantity:
                raise ConflictError(
                    f'Insufficient stock for item "{item.name}". Available: {item.stock_quantity}'
                )
            line = OrderItem(
                order_id=order.id,
                item_id=item_id,
                quantity=quantity,
                price_at_order=item.price,
            )
            self.db.add(line)
            self.inventory.adjust_stock(item, -quantity)

        self.db.flush()
        return line

    def _refresh_total(self, order: Order) -> None:
        self.db.flush()
        order.total_cost = recompute_total(self.db, order.id)

    async def create_order(self) -> Order:
        order = Order(status=OrderStatus.PENDING, total_cost=Decimal("0"))
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Created order {order.id}")
        return order

    async def add_item(self, order_id: int, item_id: int, quantity: int) -> Order:
        """Add an item to a pending order, or set the quantity of its existing line."""
        return await self.add_items(order_id, [OrderItemCreate(item_id=item_id, quantity=quantity)])

    async def add_items(self, order_id: int, items: Iterable[OrderItemCreate]) -> Order:
        """
        Apply a batch of item quantities to a pending order, all or nothing.

        If any item fails availability or stock validation no line or stock
        change from the batch is kept.
        """
        items = list(items)
        if not items:
            raise ConflictError("Items must be a non-empty list")

        try:
            order = self._load_pending_order(order_id)
            for request in items:
                self._set_line(order, request.item_id, request.quantity)
            self._refresh_total(order)
            self.db.commit()
        except ServiceError as e:
            self.db.rollback()
            logger.info(f"Rejected item change on order {order_id}: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error adding items to order {order_id}: {str(e)}")
            raise

        self.db.refresh(order)
        logger.info(f"Order {order_id} now totals {order.total_cost}")
        self.events.publish(ItemAddedToOrder(order_id=order.id, item_ids=[i.item_id for i in items]))
        return order

    async def remove_item(self, order_id: int, item_id: int) -> Order:
        """Remove an item's line from a pending order and return its stock."""
        try:
            order = self._load_pending_order(order_id)
            line = self.db.query(OrderItem).filter(
                OrderItem.order_id == order_id,
                OrderItem.item_id == item_id,
            ).first()
            if not line:
                raise NotFoundError("Item not found in this order")

            removed_quantity = line.quantity
            self.db.delete(line)
            item = self.inventory.lock_item(item_id)
            if item:
                self.inventory.adjust_stock(item, removed_quantity)
            self._refresh_total(order)
            self.db.commit()
        except ServiceError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error removing item {item_id} from order {order_id}: {str(e)}")
            raise

        self.db.refresh(order)
        self.events.publish(ItemRemovedFromOrder(order_id=order.id, item_id=item_id))
        return order

    async def update_order(self, order_id: int, update_data: OrderUpdate, acting_user: User) -> Order:
        """Change status and/or waiter as allowed by the acting user's role."""
        try:
            order = self._load_order(order_id, lock=True)
            policy = policy_for(acting_user.role)
            if update_data.status is None and update_data.waiter_id is None:
                raise ConflictError("No valid fields provided for update.")

            old_status = order.status
            waiter_id = order.waiter_id
            if update_data.waiter_id is not None:
                check_waiter_change(policy, order)
                waiter_id = UserService(self.db).get_waiter(update_data.waiter_id).id

            if update_data.status is not None:
                line_count = self.db.query(OrderItem).filter(OrderItem.order_id == order_id).count()
                check_status_change(policy, order, update_data.status, order.waiter_id, line_count)
                order.status = update_data.status

            order.waiter_id = waiter_id
            self.db.commit()
        except ServiceError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error updating order {order_id}: {str(e)}")
            raise

        self.db.refresh(order)
        logger.info(
            f"Order {order_id} updated by {acting_user.role} {acting_user.id}: "
            f"status={order.status}, waiter={order.waiter_id}"
        )
        if order.status != old_status:
            self.events.publish(OrderStatusChanged(order_id=order.id, old_status=old_status, new_status=order.status))
        return order

    def get_order(self, order_id: int, acting_user: User) -> Order:
        order = self._load_order(order_id)
        if acting_user.role == Role.WAITER and order.waiter_id != acting_user.id:
            raise ForbiddenError("Forbidden: You can only view orders assigned to you.")
        return order

    def query_orders(
        self,
        acting_user: User,
        status: Optional[str] = None,
        waiter_id: Optional[int] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> dict:
        if sort_by not in ORDER_SORT_FIELDS:
            raise ValidationFailure(f"sort_by must be one of: {', '.join(ORDER_SORT_FIELDS)}")

        query = self.db.query(Order)
        if status:
            query = query.filter(Order.status == status)
        if acting_user.role == Role.WAITER:
            query = query.filter(Order.waiter_id == acting_user.id)
        elif waiter_id:
            query = query.filter(Order.waiter_id == waiter_id)

        column = ORDER_SORT_FIELDS[sort_by]
        direction = column.asc() if sort_order.lower() == "asc" else column.desc()
        query = query.order_by(direction, Order.id)

        total = query.count()
        page = page or 1
        if limit:
            results = query.offset((page - 1) * limit).limit(limit).all()
        else:
            results = query.all()

        return {
            "results": results,
            "page": page,
            "limit": limit or total,
            "total_pages": math.ceil(total / limit) if limit else 1,
            "total_results": total,
        }

    def expire_stale_orders(self, cutoff: datetime) -> int:
        """Expire every pending order created before ``cutoff`` in one conditional UPDATE."""
        try:
            result = self.db.execute(
                update(Order)
                .where(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
                .values(status=OrderStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return result.rowcount
