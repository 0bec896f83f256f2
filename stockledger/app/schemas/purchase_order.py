from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from stockledger.app.db.models.core_types import POStatus


class PurchaseOrderLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    quantity_ordered: Decimal
    quantity_received: Decimal
    unit_price: Decimal | None = None
    notes: str | None = None


class PurchaseOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    po_number: str
    supplier_id: int
    department_id: int | None = None
    status: POStatus
    order_date: date
    expected_date: date | None = None
    notes: str | None = None
    created_by: int | None = None
    created_at: datetime
    lines: list[PurchaseOrderLineRead] = []


class PurchaseOrderSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    po_number: str
    supplier_id: int
    department_id: int | None = None
    status: POStatus
    order_date: date
    expected_date: date | None = None


class PurchaseOrderReceiptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    po_line_id: int
    product_id: int
    quantity_received: Decimal
    ledger_entry_id: int | None = None
    received_by: int | None = None
    received_at: datetime
    notes: str | None = None
