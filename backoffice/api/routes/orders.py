from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from backoffice.api.deps import as_http_error, get_current_user, get_order_service, require_roles
from backoffice.core.errors import ServiceError
from backoffice.models.database import Role, User
from backoffice.models.schemas import (
    Order, OrderItemCreate, OrderItemsBulkCreate, OrderPage, OrderUpdate, StatusName,
)
from backoffice.services.order_service import OrderService

router = APIRouter()


@router.post("/", response_model=Order, status_code=201)
async def create_order(
    user: User = Depends(require_roles(Role.CASHIER)),
    service: OrderService = Depends(get_order_service),
):
    """Open a new empty order"""
    return await service.create_order()


@router.get("/", response_model=OrderPage)
async def get_orders(
    status: Optional[StatusName] = None,
    waiter_id: Optional[int] = Query(default=None, gt=0),
    sort_by: Literal["created_at", "updated_at", "total_cost", "status"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    page: Optional[int] = Query(default=None, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """List orders; waiters only see orders assigned to them"""
    try:
        return service.query_orders(
            user, status=status, waiter_id=waiter_id, sort_by=sort_by,
            sort_order=sort_order, page=page, limit=limit,
        )
    except ServiceError as e:
        raise as_http_error(e)


@router.get("/{order_id}", response_model=Order)
async def get_order(
    order_id: int,
    user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    try:
        return service.get_order(order_id, user)
    except ServiceError as e:
        raise as_http_error(e)


@router.patch("/{order_id}", response_model=Order)
async def update_order(
    order_id: int,
    update_data: OrderUpdate,
    user: User = Depends(require_roles(Role.SUPER_ADMIN, Role.MANAGER, Role.CASHIER)),
    service: OrderService = Depends(get_order_service),
):
    """Change the status of an order or assign its waiter"""
    try:
        return await service.update_order(order_id, update_data, user)
    except ServiceError as e:
        raise as_http_error(e)


@router.post("/{order_id}/items/bulk", response_model=Order)
async def add_items_to_order(
    order_id: int,
    payload: OrderItemsBulkCreate,
    user: User = Depends(require_roles(Role.CASHIER)),
    service: OrderService = Depends(get_order_service),
):
    """Add several items at once; nothing is applied if any item is rejected"""
    try:
        return await service.add_items(order_id, payload.items)
    except ServiceError as e:
        raise as_http_error(e)


@router.post("/{order_id}/items", response_model=Order)
async def add_item_to_order(
    order_id: int,
    payload: OrderItemCreate,
    user: User = Depends(require_roles(Role.CASHIER)),
    service: OrderService = Depends(get_order_service),
):
    try:
        return await service.add_item(order_id, payload.item_id, payload.quantity)
    except ServiceError as e:
        raise as_http_error(e)


@router.delete("/{order_id}/items/{item_id}", response_model=Order)
async def remove_item_from_order(
    order_id: int,
    item_id: int,
    user: User = Depends(require_roles(Role.CASHIER)),
    service: OrderService = Depends(get_order_service),
):
    try:
        return await service.remove_item(order_id, item_id)
    except ServiceError as e:
        raise as_http_error(e)
