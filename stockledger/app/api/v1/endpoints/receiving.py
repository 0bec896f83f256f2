from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from stockledger.app.api.deps import get_session_factory, require_actor
from stockledger.app.db.session import run_in_transaction
from stockledger.app.schemas.order import AllocationRead, OrderLineRead, OrderRead
from stockledger.services.allocation import AllocationLine, allocate_proportional
from stockledger.services.directory import Actor
from stockledger.services.receiving import (
    OrderLineInput,
    create_order,
    list_receiving_history,
    receive_branch_product,
    receive_order_line,
)

router = APIRouter(prefix="/orders")


# ---------- Schemas ----------
class OrderLineCreate(BaseModel):
    product_id: int
    quantity: Decimal = Field(gt=0)
    notes: str | None = None


class OrderCreate(BaseModel):
    department_id: int
    order_date: date | None = None
    lines: list[OrderLineCreate] = Field(min_length=1)


class LineReceive(BaseModel):
    quantity_received: Decimal = Field(ge=0)
    notes: str | None = None


class BranchReceive(BaseModel):
    branch_id: int
    product_id: int
    order_date: date
    total_received: Decimal = Field(ge=0)
    notes: str | None = None


class AllocationLineIn(BaseModel):
    line_id: int
    quantity_requested: Decimal = Field(ge=0)


class AllocationPreview(BaseModel):
    total_received: Decimal = Field(ge=0)
    lines: list[AllocationLineIn] = Field(min_length=1)


# ---------- Endpoints ----------
@router.post("", response_model=OrderRead, status_code=201)
def create_department_order(
    payload: OrderCreate,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    lines = [OrderLineInput(ln.product_id, ln.quantity, ln.notes) for ln in payload.lines]
    return run_in_transaction(
        lambda db: OrderRead.model_validate(
            create_order(db, department_id=payload.department_id, lines=lines, actor=actor, order_date=payload.order_date)
        ),
        session_factory=factory,
    )


@router.post("/lines/{line_id}/receive", response_model=OrderLineRead)
def receive_line(
    line_id: int,
    payload: LineReceive,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    return run_in_transaction(
        lambda db: OrderLineRead.model_validate(
            receive_order_line(
                db,
                line_id=line_id,
                quantity_received=payload.quantity_received,
                actor=actor,
                notes=payload.notes,
            )
        ),
        session_factory=factory,
    )


@router.post("/branch-receive", response_model=list[AllocationRead])
def receive_for_branch(
    payload: BranchReceive,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    def op(db: Session):
        allocations = receive_branch_product(
            db,
            branch_id=payload.branch_id,
            product_id=payload.product_id,
            order_date=payload.order_date,
            total_received=payload.total_received,
            actor=actor,
            notes=payload.notes,
        )
        return [AllocationRead.model_validate(a) for a in allocations]

    return run_in_transaction(op, session_factory=factory)


@router.post("/allocation-preview", response_model=list[AllocationRead])
def allocation_preview(payload: AllocationPreview):
    """Calcul pur, aucune écriture."""
    allocations = allocate_proportional(
        payload.total_received,
        [AllocationLine(ln.line_id, ln.quantity_requested) for ln in payload.lines],
    )
    return [AllocationRead.model_validate(a) for a in allocations]


@router.get("/receiving-history", response_model=list[OrderLineRead])
def receiving_history(
    department_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    return run_in_transaction(
        lambda db: [
            OrderLineRead.model_validate(ln)
            for ln in list_receiving_history(db, department_id=department_id, limit=limit)
        ],
        session_factory=factory,
    )
