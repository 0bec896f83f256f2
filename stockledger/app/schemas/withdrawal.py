from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class WithdrawalLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    quantity: Decimal
    notes: str | None = None


class WithdrawalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    withdrawal_number: str
    source_department_id: int
    target_department_id: int
    notes: str | None = None
    created_by: int | None = None
    created_at: datetime
    lines: list[WithdrawalLineRead] = []


class DepartmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    branch_id: int
    name: str
    is_production: bool
