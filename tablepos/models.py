from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PREPARING = "preparing"
    SERVED = "served"
    PAID = "paid"
    CANCELLED = "cancelled"


OPEN_STATUSES = (OrderStatus.PREPARING, OrderStatus.SERVED)
TERMINAL_STATUSES = (OrderStatus.PAID, OrderStatus.CANCELLED)


class Category(SQLModel, table=True):
    __tablename__ = "categories"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    category_id: str = Field(foreign_key="categories.id", index=True)
    name: str = Field(index=True)
    price: float = Field(default=0, ge=0)
    is_active: bool = Field(default=True, index=True)
    available_days: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    is_available_now: bool = Field(default=True, index=True)


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    table_label: str = Field(index=True)
    status: OrderStatus = Field(default=OrderStatus.PREPARING, index=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    paid_at: Optional[datetime] = Field(default=None, index=True)
    total_amount: float = Field(default=0)
    payment_cash: float = Field(default=0)
    payment_online: float = Field(default=0)
    exported_to_excel: bool = Field(default=False, index=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: str = Field(foreign_key="orders.id", index=True)
    item_name: str
    category_name: str = "Manual"
    quantity: int = Field(default=1, ge=1)
    rate: float = Field(default=0, ge=0)
    total: float = Field(default=0)
    original_table: Optional[str] = None


class AppState(SQLModel, table=True):
    __tablename__ = "app_state"

    key: str = Field(primary_key=True)
    value: str
    updated_at: datetime = Field(default_factory=utcnow)


__all__ = [
    "AppState",
    "Category",
    "OPEN_STATUSES",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Product",
    "TERMINAL_STATUSES",
    "utcnow",
]
