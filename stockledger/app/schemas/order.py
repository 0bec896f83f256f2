from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from stockledger.app.db.models.core_types import OrderStatus


class OrderLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    product_id: int
    quantity_requested: Decimal
    quantity_received: Decimal | None = None
    is_received: bool
    received_at: datetime | None = None
    received_by: int | None = None
    receive_notes: str | None = None
    notes: str | None = None


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    department_id: int
    order_date: date
    status: OrderStatus
    withdrawal_id: int | None = None
    created_by: int | None = None
    lines: list[OrderLineRead] = []


class AllocationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_id: int
    allocated_quantity: Decimal
