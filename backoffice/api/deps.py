from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.core.database import get_db
from backoffice.core.errors import ServiceError
from backoffice.models.database import User
from backoffice.services.inventory_service import InventoryStore
from backoffice.services.order_service import OrderService


def get_current_user(x_user_id: Optional[int] = Header(default=None), db: Session = Depends(get_db)) -> User:
    """Acting user as resolved by the authentication layer in front of the API"""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Please authenticate")
    user = db.get(User, x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Please authenticate")
    return user


def require_roles(*roles: str):
    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden: Insufficient permissions.")
        return user
    return dependency


def get_inventory_store(request: Request, db: Session = Depends(get_db)) -> InventoryStore:
    return InventoryStore(db, request.app.state.notifier)


def get_order_service(
    request: Request,
    db: Session = Depends(get_db),
    inventory: InventoryStore = Depends(get_inventory_store),
) -> OrderService:
    return OrderService(db, inventory, request.app.state.order_events)


def as_http_error(error: ServiceError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)
