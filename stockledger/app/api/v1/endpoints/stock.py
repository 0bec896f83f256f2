from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from stockledger.app.api.deps import get_session_factory, require_actor
from stockledger.app.db.models.core_types import ReferenceType, TransactionType
from stockledger.app.db.session import run_in_transaction
from stockledger.app.schemas.stock_level import (
    BalanceDriftRead,
    BalanceRead,
    LedgerEntryRead,
    StockAdjustmentRead,
    StockCardRead,
)
from stockledger.services.directory import Actor
from stockledger.services.inventory import (
    MAX_ENTRY_PAGE,
    apply_stock_count,
    find_balance_drift,
    get_stock_card,
    list_balances,
    list_entries,
)

router = APIRouter(prefix="/stock")


# ---------- Schemas ----------
class CountLine(BaseModel):
    product_id: int
    counted: Decimal = Field(ge=0)


class StockCountCreate(BaseModel):
    location_id: int
    count_date: date
    lines: list[CountLine] = Field(min_length=1)


# ---------- Endpoints ----------
@router.get("", response_model=list[BalanceRead])
def get_stock(
    branch_id: int | None = None,
    location_id: int | None = None,
    product_id: int | None = None,
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    """
    Soldes (READ ONLY)
    - dérivés du ledger, jamais modifiables ici
    """
    return run_in_transaction(
        lambda db: [
            BalanceRead.model_validate(b)
            for b in list_balances(db, location_id=location_id, branch_id=branch_id, product_id=product_id)
        ],
        session_factory=factory,
    )


@router.get("/entries", response_model=list[LedgerEntryRead])
def get_entries(
    product_id: int | None = None,
    location_id: int | None = None,
    branch_id: int | None = None,
    transaction_type: TransactionType | None = None,
    reference_type: ReferenceType | None = None,
    reference_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = Query(default=100, ge=1, le=MAX_ENTRY_PAGE),
    offset: int = Query(default=0, ge=0),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    def op(db: Session):
        rows = list_entries(
            db,
            product_id=product_id,
            location_id=location_id,
            branch_id=branch_id,
            transaction_type=transaction_type,
            reference_type=reference_type,
            reference_id=reference_id,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
        return [LedgerEntryRead.model_validate(e) for e in rows]

    return run_in_transaction(op, session_factory=factory)


@router.get("/card", response_model=StockCardRead)
def stock_card(
    product_id: int,
    location_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    def op(db: Session):
        card = get_stock_card(db, product_id, location_id, start_date=start_date, end_date=end_date)
        return StockCardRead(
            product_id=card["product_id"],
            location_id=card["location_id"],
            balance=card["balance"],
            entries=[LedgerEntryRead.model_validate(e) for e in card["entries"]],
        )

    return run_in_transaction(op, session_factory=factory)


@router.get("/drift", response_model=list[BalanceDriftRead])
def balance_drift(factory: sessionmaker[Session] = Depends(get_session_factory)):
    return run_in_transaction(
        lambda db: [BalanceDriftRead.model_validate(d) for d in find_balance_drift(db)],
        session_factory=factory,
    )


@router.post("/counts", response_model=list[StockAdjustmentRead])
def post_stock_count(
    payload: StockCountCreate,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    counts = {ln.product_id: ln.counted for ln in payload.lines}

    def op(db: Session):
        adjustments = apply_stock_count(
            db,
            location_id=payload.location_id,
            counts=counts,
            actor=actor,
            count_date=payload.count_date,
        )
        return [StockAdjustmentRead.model_validate(a) for a in adjustments]

    return run_in_transaction(op, session_factory=factory)
