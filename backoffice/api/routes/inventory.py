from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response

from backoffice.api.deps import as_http_error, get_current_user, get_inventory_store, require_roles
from backoffice.core.errors import ServiceError
from backoffice.models.database import Role, User
from backoffice.models.schemas import CategoryName, Item, ItemCreate, ItemPage, ItemUpdate
from backoffice.services.inventory_service import InventoryStore

router = APIRouter()


@router.post("/", response_model=Item, status_code=201)
async def create_item(
    item_data: ItemCreate,
    user: User = Depends(require_roles(Role.SUPER_ADMIN, Role.MANAGER)),
    inventory: InventoryStore = Depends(get_inventory_store),
):
    """Create a new inventory item"""
    try:
        return inventory.create_item(item_data)
    except ServiceError as e:
        raise as_http_error(e)


@router.get("/", response_model=ItemPage)
async def get_items(
    category: Optional[CategoryName] = None,
    sort_by: Optional[Literal["name", "price", "expiry_date", "stock_value"]] = None,
    sort_order: Literal["asc", "desc"] = "asc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    user: User = Depends(get_current_user),
    inventory: InventoryStore = Depends(get_inventory_store),
):
    """List inventory items; waiters only see items that can still be sold"""
    return inventory.query_items(
        user, category=category, sort_by=sort_by, sort_order=sort_order, page=page, limit=limit,
    )


@router.get("/{item_id}", response_model=Item)
async def get_item(
    item_id: int,
    user: User = Depends(get_current_user),
    inventory: InventoryStore = Depends(get_inventory_store),
):
    try:
        return inventory.get_item(item_id)
    except ServiceError as e:
        raise as_http_error(e)


@router.patch("/{item_id}", response_model=Item)
async def update_item(
    item_id: int,
    item_data: ItemUpdate,
    user: User = Depends(require_roles(Role.SUPER_ADMIN, Role.MANAGER)),
    inventory: InventoryStore = Depends(get_inventory_store),
):
    """Update an inventory item"""
    try:
        return inventory.update_item(item_id, item_data)
    except ServiceError as e:
        raise as_http_error(e)


@router.delete("/{item_id}", status_code=204)
async def delete_item(
    item_id: int,
    user: User = Depends(require_roles(Role.SUPER_ADMIN, Role.MANAGER)),
    inventory: InventoryStore = Depends(get_inventory_store),
):
    try:
        inventory.delete_item(item_id)
    except ServiceError as e:
        raise as_http_error(e)
    return Response(status_code=204)
