from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import OrderStatus


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    table_label: str
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime] = None
    total_amount: float
    payment_cash: float
    payment_online: float


class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: str
    item_name: str
    category_name: str
    quantity: int
    rate: float
    total: float
    original_table: Optional[str] = None


class OrderDetail(OrderRead):
    items: List[OrderItemRead]


class ItemCreate(BaseModel):
    name: str
    category_name: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    rate: Optional[float] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return value.strip()


class ItemUpdate(BaseModel):
    quantity: int = Field(ge=1)
    rate: float = Field(gt=0)


class StatusUpdate(BaseModel):
    status: Literal["preparing", "served"]


class TableChange(BaseModel):
    table: str
    confirm_merge: bool = False


class TableChangeResult(BaseModel):
    merged: bool
    resulting_order_id: str


class PaymentCreate(BaseModel):
    cash: float = 0
    online: float = 0


class CloseResult(BaseModel):
    deleted: bool


class TableSlotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    label: str
    occupied: bool
    order_id: Optional[str] = None


class ProductOption(BaseModel):
    id: str
    name: str
    price: float
    category_id: str
    available: bool
    reason: str = ""


class SalesSummary(BaseModel):
    day: date
    order_count: int
    total_revenue: float
    total_cash: float
    total_online: float
    orders: List[OrderRead]


class BackupStatus(BaseModel):
    needs_backup: bool
    configured: bool


class BackupSyncResult(BaseModel):
    success: bool
    message: str
