import pytest
from datetime import timedelta
from decimal import Decimal
from backoffice.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailure
from backoffice.models.database import Order, OrderItem, OrderStatus, utcnow
from backoffice.models.schemas import OrderItemCreate, OrderUpdate
from backoffice.services.events import ItemAddedToOrder, OrderEventBus, OrderStatusChanged
from backoffice.services.order_service import OrderService, recompute_total


async def _order_with_lines(service, *lines):
    order = await service.create_order()
    for item, quantity in lines:
        await service.add_item(order.id, item.id, quantity)
    return order


def _line_total(db, order_id):
    lines = db.query(OrderItem).filter(OrderItem.order_id == order_id).all()
    return sum((line.price_at_order * line.quantity for line in lines), Decimal("0"))


class TestOrderItems:
    """Adding and removing items keeps stock and totals consistent"""

    @pytest.mark.asyncio
    async def test_create_order_is_empty_and_pending(self, test_db):
        service = OrderService(test_db)

        order = await service.create_order()

        assert order.id is not None
        assert order.status == OrderStatus.PENDING
        assert order.total_cost == Decimal("0")
        assert order.waiter_id is None
        assert order.order_items == []

    @pytest.mark.asyncio
    async def test_add_update_remove_scenario(self, test_db, items):
        service = OrderService(test_db)
        burger = items["burger"]
        order = await service.create_order()

        order = await service.add_item(order.id, burger.id, 3)
        test_db.refresh(burger)
        assert burger.stock_quantity == 7
        assert order.total_cost == Decimal("15.00")

        order = await service.add_item(order.id, burger.id, 5)
        test_db.refresh(burger)
        assert burger.stock_quantity == 5
        assert order.total_cost == Decimal("25.00")
        assert len(order.order_items) == 1
        assert order.order_items[0].quantity == 5

        order = await service.remove_item(order.id, burger.id)
        test_db.refresh(burger)
        assert burger.stock_quantity == 10
        assert order.total_cost == Decimal("0")
        assert order.order_items == []

    @pytest.mark.asyncio
    async def test_insufficient_stock_leaves_everything_unchanged(self, test_db, items):
        service = OrderService(test_db)
        cola = items["cola"]
        order = await service.create_order()

        with pytest.raises(ConflictError, match="Insufficient stock"):
            await service.add_item(order.id, cola.id, 3)

        test_db.refresh(cola)
        test_db.refresh(order)
        assert cola.stock_quantity == 2
        assert order.total_cost == Decimal("0")
        assert test_db.query(OrderItem).count() == 0

    @pytest.mark.asyncio
    async def test_increase_beyond_stock_on_existing_line_fails(self, test_db, items):
        service = OrderService(test_db)
        cola = items["cola"]
        order = await _order_with_lines(service, (cola, 1))

        with pytest.raises(ConflictError, match="Insufficient stock"):
            await service.add_item(order.id, cola.id, 3)

        test_db.refresh(cola)
        test_db.refresh(order)
        assert cola.stock_quantity == 1
        assert order.order_items[0].quantity == 1
        assert order.total_cost == Decimal("2.50")

    @pytest.mark.asyncio
    async def test_lowering_quantity_returns_stock(self, test_db, items):
        service = OrderService(test_db)
        burger = items["burger"]
        order = await _order_with_lines(service, (burger, 5))

        order = await service.add_item(order.id, burger.id, 2)

        test_db.refresh(burger)
        assert burger.stock_quantity == 8
        assert order.total_cost == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_readding_item_resnapshots_price(self, test_db, items):
        service = OrderService(test_db)
        burger = items["burger"]
        order = await _order_with_lines(service, (burger, 2))

        burger.price = Decimal("6.00")
        test_db.commit()
        order = await service.add_item(order.id, burger.id, 3)

        assert len(order.order_items) == 1
        assert order.order_items[0].price_at_order == Decimal("6.00")
        assert order.total_cost == Decimal("18.00")

    @pytest.mark.asyncio
    async def test_expired_out_of_stock_and_missing_items_are_rejected(self, test_db, items):
        service = OrderService(test_db)
        order = await service.create_order()

        with pytest.raises(ConflictError, match="expired"):
            await service.add_item(order.id, items["old_milk"].id, 1)
        with pytest.raises(ConflictError, match="out of stock"):
            await service.add_item(order.id, items["sold_out"].id, 1)
        with pytest.raises(NotFoundError):
            await service.add_item(order.id, 99999, 1)

        test_db.refresh(items["old_milk"])
        assert items["old_milk"].stock_quantity == 5

    @pytest.mark.asyncio
    async def test_missing_order(self, test_db, items):
        service = OrderService(test_db)

        with pytest.raises(NotFoundError, match="Order not found"):
            await service.add_item(12345, items["burger"].id, 1)
        with pytest.raises(NotFoundError, match="Order not found"):
            await service.remove_item(12345, items["burger"].id)

    @pytest.mark.asyncio
    async def test_removing_item_not_in_order(self, test_db, items):
        service = OrderService(test_db)
        order = await _order_with_lines(service, (items["burger"], 1))

        with pytest.raises(NotFoundError, match="not found in this order"):
            await service.remove_item(order.id, items["napkins"].id)

    @pytest.mark.asyncio
    async def test_non_pending_order_cannot_change(self, test_db, items):
        service = OrderService(test_db)
        burger = items["burger"]
        order = await _order_with_lines(service, (burger, 2))
        order.status = OrderStatus.CANCELLED
        test_db.commit()

        with pytest.raises(ConflictError, match="non-pending"):
            await service.add_item(order.id, burger.id, 4)
        with pytest.raises(ConflictError, match="non-pending"):
            await service.remove_item(order.id, burger.id)

        test_db.refresh(burger)
        test_db.refresh(order)
        assert burger.stock_quantity == 8
        assert order.total_cost == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_failure_after_stock_deduction_rolls_back(self, test_db, items, monkeypatch):
        service = OrderService(test_db)
        burger = items["burger"]
        order = await service.create_order()

        def broken_total(db, order_id):
            raise RuntimeError("connection lost")

        monkeypatch.setattr("backoffice.services.order_service.recompute_total", broken_total)
        with pytest.raises(RuntimeError):
            await service.add_item(order.id, burger.id, 4)

        test_db.refresh(burger)
        assert burger.stock_quantity == 10
        assert test_db.query(OrderItem).count() == 0


class TestBulkAdd:

    @pytest.mark.asyncio
    async def test_bulk_add_applies_every_item(self, test_db, items):
        service = OrderService(test_db)
        order = await service.create_order()

        order = await service.add_items(order.id, [
            OrderItemCreate(item_id=items["burger"].id, quantity=2),
            OrderItemCreate(item_id=items["napkins"].id, quantity=4),
        ])

        assert order.total_cost == Decimal("14.00")
        assert len(order.order_items) == 2
        test_db.refresh(items["burger"])
        test_db.refresh(items["napkins"])
        assert items["burger"].stock_quantity == 8
        assert items["napkins"].stock_quantity == 96

    @pytest.mark.asyncio
    async def test_bulk_add_is_all_or_nothing(self, test_db, items):
        service = OrderService(test_db)
        order = await service.create_order()

        with pytest.raises(ConflictError, match="Insufficient stock"):
            await service.add_items(order.id, [
                OrderItemCreate(item_id=items["burger"].id, quantity=2),
                OrderItemCreate(item_id=items["cola"].id, quantity=3),
            ])

        test_db.refresh(items["burger"])
        test_db.refresh(order)
        assert items["burger"].stock_quantity == 10
        assert order.total_cost == Decimal("0")
        assert test_db.query(OrderItem).count() == 0

    @pytest.mark.asyncio
    async def test_bulk_add_with_unknown_item_applies_nothing(self, test_db, items):
        service = OrderService(test_db)
        order = await service.create_order()

        with pytest.raises(NotFoundError):
            await service.add_items(order.id, [
                OrderItemCreate(item_id=items["napkins"].id, quantity=10),
                OrderItemCreate(item_id=424242, quantity=1),
            ])

        test_db.refresh(items["napkins"])
        assert items["napkins"].stock_quantity == 100

    @pytest.mark.asyncio
    async def test_repeated_item_in_batch_keeps_last_quantity(self, test_db, items):
        service = OrderService(test_db)
        order = await service.create_order()

        order = await service.add_items(order.id, [
            OrderItemCreate(item_id=items["burger"].id, quantity=4),
            OrderItemCreate(item_id=items["burger"].id, quantity=1),
        ])

        assert len(order.order_items) == 1
        assert order.order_items[0].quantity == 1
        test_db.refresh(items["burger"])
        assert items["burger"].stock_quantity == 9

    @pytest.mark.asyncio
    async def test_empty_batch_is_rejected(self, test_db):
        service = OrderService(test_db)
        order = await service.create_order()

        with pytest.raises(ConflictError):
            await service.add_items(order.id, [])


class TestInvariants:

    @pytest.mark.asyncio
    async def test_stock_is_conserved_across_orders(self, test_db, items):
        service = OrderService(test_db)
        burger = items["burger"]
        first = await service.create_order()
        second = await service.create_order()

        def assert_conserved():
            test_db.refresh(burger)
            held = sum(
                line.quantity for line in
                test_db.query(OrderItem).filter(OrderItem.item_id == burger.id).all()
            )
            assert burger.stock_quantity + held == 10

        steps = [
            (service.add_item, first.id, 3),
            (service.add_item, second.id, 4),
            (service.add_item, first.id, 6),
            (service.remove_item, second.id, None),
            (service.add_item, second.id, 1),
            (service.add_item, first.id, 2),
        ]
        for operation, order_id, quantity in steps:
            if quantity is None:
                await operation(order_id, burger.id)
            else:
                await operation(order_id, burger.id, quantity)
            assert_conserved()

        with pytest.raises(ConflictError):
            await service.add_item(second.id, burger.id, 9)
        assert_conserved()

    @pytest.mark.asyncio
    async def test_total_matches_lines_after_each_mutation(self, test_db, items):
        service = OrderService(test_db)
        order = await service.create_order()

        for item, quantity in [(items["burger"], 3), (items["cola"], 2), (items["napkins"], 7), (items["burger"], 1)]:
            order = await service.add_item(order.id, item.id, quantity)
            assert order.total_cost == _line_total(test_db, order.id)
            assert recompute_total(test_db, order.id) == order.total_cost

        order = await service.remove_item(order.id, items["cola"].id)
        assert order.total_cost == _line_total(test_db, order.id) == Decimal("12.00")


class TestUpdateOrder:

    @pytest.mark.asyncio
    async def test_cashier_completion_requires_waiter(self, test_db, items, users):
        service = OrderService(test_db)
        order = await _order_with_lines(service, (items["burger"], 1))

        with pytest.raises(ConflictError, match="without an assigned waiter"):
            await service.update_order(order.id, OrderUpdate(status="completed"), users["cashier"])

        await service.update_order(order.id, OrderUpdate(waiter_id=users["waiter"].id), users["cashier"])
        order = await service.update_order(order.id, OrderUpdate(status="completed"), users["cashier"])

        assert order.status == OrderStatus.COMPLETED
        assert order.waiter_id == users["waiter"].id

    @pytest.mark.asyncio
    async def test_cashier_cannot_assign_and_complete_in_one_update(self, test_db, items, users):
        service = OrderService(test_db)
        order = await _order_with_lines(service, (items["napkins"], 2))

        with pytest.raises(ConflictError, match="without an assigned waiter"):
            await service.update_order(
                order.id, OrderUpdate(status="completed", waiter_id=users["waiter"].id), users["cashier"]
            )

        test_db.refresh(order)
        assert order.status == OrderStatus.PENDING
        assert order.waiter_id is None

    @pytest.mark.asyncio
    async def test_manager_may_assign_and_complete_in_one_update(self, test_db, items, users):
        service = OrderService(test_db)
        order = await _order_with_lines(service, (items["napkins"], 2))

        order = await service.update_order(
            order.id, OrderUpdate(status="completed", waiter_id=users["waiter"].id), users["manager"]
        )

        assert order.status == OrderStatus.COMPLETED
        assert order.waiter_id == users["waiter"].id

    @pytest.mark.asyncio
    async def test_cashier_cannot_complete_empty_order(self, test_db, users):
        service = OrderService(test_db)
        order = await service.create_order()
        await service.update_order(order.id, OrderUpdate(waiter_id=users["waiter"].id), users["cashier"])

        with pytest.raises(ConflictError, match="empty order"):
            await service.update_order(order.id, OrderUpdate(status="completed"), users["cashier"])

        test_db.refresh(order)
        assert order.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_completion_is_irreversible_for_cashier(self, test_db, items, users):
        service = OrderService(test_db)
        order = await _order_with_lines(service, (items["burger"], 1))
        await service.update_order(order.id, OrderUpdate(waiter_id=users["waiter"].id), users["cashier"])
        await service.update_order(order.id, OrderUpdate(status="completed"), users["cashier"])

        with pytest.raises(ForbiddenError):
            await service.update_order(order.id, OrderUpdate(status="pending"), users["cashier"])
        with pytest.raises(ConflictError, match="Only pending orders"):
            await service.update_order(order.id, OrderUpdate(status="completed"), users["cashier"])
        with pytest.raises(ConflictError, match="completed order"):
            await service.update_order(order.id, OrderUpdate(waiter_id=users["waiter2"].id), users["cashier"])

        order = await service.update_order(order.id, OrderUpdate(status="pending"), users["manager"])
        assert order.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_cashier_cannot_cancel(self, test_db, users):
        service = OrderService(test_db)
        order = await service.create_order()

        with pytest.raises(ForbiddenError, match="only mark orders as completed"):
            await service.update_order(order.id, OrderUpdate(status="cancelled"), users["cashier"])

    @pytest.mark.asyncio
    async def test_admin_sets_any_status_without_guards(self, test_db, users):
        service = OrderService(test_db)
        order = await service.create_order()

        for status in ["completed", "expired", "cancelled", "pending"]:
            order = await service.update_order(order.id, OrderUpdate(status=status), users["admin"])
            assert order.status == status

    @pytest.mark.asyncio
    async def test_admin_can_reassign_waiter_after_completion(self, test_db, users):
        service = OrderService(test_db)
        order = await service.create_order()
        await service.update_order(order.id, OrderUpdate(status="completed"), users["manager"])

        order = await service.update_order(order.id, OrderUpdate(waiter_id=users["waiter2"].id), users["manager"])

        assert order.waiter_id == users["waiter2"].id

    @pytest.mark.asyncio
    async def test_waiter_reference_must_be_a_waiter(self, test_db, users):
        service = OrderService(test_db)
        order = await service.create_order()

        with pytest.raises(ConflictError, match="Invalid Waiter ID"):
            await service.update_order(order.id, OrderUpdate(waiter_id=users["cashier"].id), users["admin"])
        with pytest.raises(ConflictError, match="Invalid Waiter ID"):
            await service.update_order(order.id, OrderUpdate(waiter_id=9999), users["cashier"])

    @pytest.mark.asyncio
    async def test_waiter_role_cannot_update(self, test_db, users):
        service = OrderService(test_db)
        order = await service.create_order()

        with pytest.raises(ForbiddenError):
            await service.update_order(order.id, OrderUpdate(status="completed"), users["waiter"])

    @pytest.mark.asyncio
    async def test_update_requires_a_field(self, test_db, users):
        service = OrderService(test_db)
        order = await service.create_order()

        with pytest.raises(ConflictError, match="No valid fields"):
            await service.update_order(order.id, OrderUpdate(), users["manager"])
        with pytest.raises(NotFoundError):
            await service.update_order(777, OrderUpdate(status="expired"), users["manager"])


class TestReadingOrders:

    @pytest.mark.asyncio
    async def test_waiter_only_sees_own_orders(self, test_db, users):
        service = OrderService(test_db)
        mine = await service.create_order()
        theirs = await service.create_order()
        await service.update_order(mine.id, OrderUpdate(waiter_id=users["waiter"].id), users["cashier"])
        await service.update_order(theirs.id, OrderUpdate(waiter_id=users["waiter2"].id), users["cashier"])

        assert service.get_order(mine.id, users["waiter"]).id == mine.id
        with pytest.raises(ForbiddenError):
            service.get_order(theirs.id, users["waiter"])
        assert service.get_order(theirs.id, users["cashier"]).id == theirs.id
        with pytest.raises(NotFoundError):
            service.get_order(5555, users["admin"])

        page = service.query_orders(users["waiter"], waiter_id=users["waiter2"].id)
        assert [o.id for o in page["results"]] == [mine.id]

    @pytest.mark.asyncio
    async def test_query_filters_sorts_and_paginates(self, test_db, items, users):
        service = OrderService(test_db)
        orders = []
        for quantity in [1, 2, 3, 4, 5]:
            orders.append(await _order_with_lines(service, (items["napkins"], quantity)))
        await service.update_order(orders[0].id, OrderUpdate(status="cancelled"), users["admin"])

        page = service.query_orders(users["manager"], sort_by="total_cost", sort_order="asc", page=2, limit=2)
        assert page["total_results"] == 5
        assert page["total_pages"] == 3
        assert page["page"] == 2
        assert page["limit"] == 2
        assert [o.total_cost for o in page["results"]] == [Decimal("3.00"), Decimal("4.00")]

        pending = service.query_orders(users["cashier"], status="pending")
        assert pending["total_results"] == 4
        assert pending["total_pages"] == 1
        assert pending["limit"] == 4

        with pytest.raises(ValidationFailure):
            service.query_orders(users["cashier"], sort_by="password")


class TestExpirySweep:

    def test_only_stale_pending_orders_expire(self, test_db):
        now = utcnow()
        stale = Order(status=OrderStatus.PENDING, created_at=now - timedelta(hours=5))
        fresh = Order(status=OrderStatus.PENDING, created_at=now - timedelta(hours=1))
        done = Order(status=OrderStatus.COMPLETED, created_at=now - timedelta(hours=8))
        test_db.add_all([stale, fresh, done])
        test_db.commit()

        count = OrderService(test_db).expire_stale_orders(now - timedelta(hours=4))

        assert count == 1
        for order in (stale, fresh, done):
            test_db.refresh(order)
        assert stale.status == OrderStatus.EXPIRED
        assert fresh.status == OrderStatus.PENDING
        assert done.status == OrderStatus.COMPLETED


class TestOrderEvents:

    @pytest.mark.asyncio
    async def test_events_published_after_commit(self, test_db, items, users):
        events = OrderEventBus()
        received = []
        events.subscribe(ItemAddedToOrder, received.append)
        events.subscribe(OrderStatusChanged, received.append)
        service = OrderService(test_db, events=events)
        order = await service.create_order()

        await service.add_item(order.id, items["burger"].id, 1)
        with pytest.raises(ConflictError):
            await service.add_item(order.id, items["cola"].id, 5)
        await service.update_order(order.id, OrderUpdate(status="cancelled"), users["manager"])

        assert received == [
            ItemAddedToOrder(order_id=order.id, item_ids=[items["burger"].id]),
            OrderStatusChanged(order_id=order.id, old_status="pending", new_status="cancelled"),
        ]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_fail_the_request(self, test_db, items):
        events = OrderEventBus()

        def explode(event):
            raise RuntimeError("subscriber down")

        events.subscribe(ItemAddedToOrder, explode)
        service = OrderService(test_db, events=events)
        order = await service.create_order()

        order = await service.add_item(order.id, items["burger"].id, 2)

        assert order.total_cost == Decimal("10.00")
        test_db.refresh(items["burger"])
        assert items["burger"].stock_quantity == 8
