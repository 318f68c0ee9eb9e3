from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import date, datetime
from decimal import Decimal

RoleName = Literal["Super Admin", "Manager", "Cashier", "Waiter"]
CategoryName = Literal["others", "food", "beverages"]
StatusName = Literal["pending", "completed", "expired", "cancelled"]


class UserCreate(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=8)
    role: RoleName
    email_verified: bool = False


class User(BaseModel):
    id: int
    name: str
    email: str
    role: str
    email_verified: bool
    created_at: datetime

    class Config:
        from_attributes = True


class WaiterSummary(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class ItemBase(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    price: Decimal = Field(ge=0, decimal_places=2)
    category: CategoryName
    expiry_date: Optional[date] = None
    stock_quantity: int = Field(ge=0)


class ItemCreate(ItemBase):
    pass


class ItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    category: Optional[CategoryName] = None
    expiry_date: Optional[date] = None
    stock_quantity: Optional[int] = Field(default=None, ge=0)


class Item(ItemBase):
    id: int
    discounted_price: Optional[Decimal] = None
    discount_applied: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ItemPage(BaseModel):
    results: List[Item]
    page: int
    limit: int
    total_pages: int
    total_results: int


class OrderItemCreate(BaseModel):
    item_id: int = Field(gt=0)
    quantity: int = Field(ge=1)


class OrderItemsBulkCreate(BaseModel):
    items: List[OrderItemCreate] = Field(min_length=1)


class OrderItem(BaseModel):
    id: int
    item_id: int
    quantity: int
    price_at_order: Decimal
    item: Optional[Item] = None

    class Config:
        from_attributes = True


class OrderUpdate(BaseModel):
    status: Optional[StatusName] = None
    waiter_id: Optional[int] = Field(default=None, gt=0)


class OrderSummary(BaseModel):
    id: int
    status: str
    total_cost: Decimal
    waiter_id: Optional[int] = None
    waiter: Optional[WaiterSummary] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class Order(OrderSummary):
    order_items: List[OrderItem] = []


class OrderPage(BaseModel):
    results: List[OrderSummary]
    page: int
    limit: int
    total_pages: int
    total_results: int


class WaiterCommission(BaseModel):
    waiter_id: int
    waiter_name: str
    total_items_sold: int
    items_sold_food: int
    items_sold_beverages: int
    items_sold_others: int
    total_revenue: Decimal
    total_commission: Decimal
