from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from stockledger.app.db.models.core_types import TransactionType


class BalanceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    location_id: int

    quantity: Decimal  # READ ONLY : dérivé du ledger, jamais écrit par l'API
    last_entry_id: int | None = None
    last_updated: datetime | None = None


class LedgerEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    location_id: int
    transaction_type: TransactionType
    quantity: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference_type: str | None = None
    reference_id: str | None = None
    notes: str | None = None
    created_by: int | None = None
    created_at: datetime


class StockCardRead(BaseModel):
    product_id: int
    location_id: int
    balance: Decimal
    entries: list[LedgerEntryRead]


class BalanceDriftRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    location_id: int
    balance: Decimal
    ledger_total: Decimal


class StockAdjustmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    counted: Decimal
    variance: Decimal
    entry_id: int
