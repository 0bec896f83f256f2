from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from stockledger.app.api.deps import get_session_factory, require_actor
from stockledger.app.db.models.core_types import POStatus
from stockledger.app.db.session import run_in_transaction
from stockledger.app.schemas.purchase_order import (
    PurchaseOrderRead,
    PurchaseOrderReceiptRead,
    PurchaseOrderSummary,
)
from stockledger.services.directory import Actor
from stockledger.services.procurement import (
    MAX_PO_PAGE,
    LineReceipt,
    POLineInput,
    cancel_purchase_order,
    confirm_purchase_order,
    create_purchase_order,
    get_purchase_order,
    list_purchase_orders,
    purchase_order_receipts,
    receive_purchase_order,
)

router = APIRouter(prefix="/purchase-orders")


# ---------- Schemas ----------
class POLineCreate(BaseModel):
    product_id: int
    quantity_ordered: Decimal = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class POCreate(BaseModel):
    supplier_id: int
    department_id: int | None = None
    order_date: date | None = None
    expected_date: date | None = None
    notes: str | None = None
    lines: list[POLineCreate] = Field(min_length=1)


class LineReceiptCreate(BaseModel):
    line_id: int
    quantity_received: Decimal = Field(ge=0)
    notes: str | None = None


class POReceive(BaseModel):
    receipts: list[LineReceiptCreate] = Field(min_length=1)


# ---------- Endpoints ----------
@router.get("", response_model=list[PurchaseOrderSummary])
def list_pos(
    status: POStatus | None = None,
    supplier_id: int | None = None,
    department_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = Query(default=100, ge=1, le=MAX_PO_PAGE),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    def op(db: Session):
        rows = list_purchase_orders(
            db,
            status=status,
            supplier_id=supplier_id,
            department_id=department_id,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
        )
        return [PurchaseOrderSummary.model_validate(po) for po in rows]

    return run_in_transaction(op, session_factory=factory)


@router.get("/{po_id}", response_model=PurchaseOrderRead)
def get_po(po_id: int, factory: sessionmaker[Session] = Depends(get_session_factory)):
    return run_in_transaction(
        lambda db: PurchaseOrderRead.model_validate(get_purchase_order(db, po_id)),
        session_factory=factory,
    )


@router.get("/{po_id}/receipts", response_model=list[PurchaseOrderReceiptRead])
def get_po_receipts(po_id: int, factory: sessionmaker[Session] = Depends(get_session_factory)):
    return run_in_transaction(
        lambda db: [PurchaseOrderReceiptRead.model_validate(r) for r in purchase_order_receipts(db, po_id)],
        session_factory=factory,
    )


@router.post("", response_model=PurchaseOrderRead, status_code=201)
def create_po(
    payload: POCreate,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    lines = [POLineInput(ln.product_id, ln.quantity_ordered, ln.unit_price, ln.notes) for ln in payload.lines]

    def op(db: Session):
        po = create_purchase_order(
            db,
            supplier_id=payload.supplier_id,
            lines=lines,
            actor=actor,
            department_id=payload.department_id,
            order_date=payload.order_date,
            expected_date=payload.expected_date,
            notes=payload.notes,
        )
        return PurchaseOrderRead.model_validate(po)

    return run_in_transaction(op, session_factory=factory)


@router.post("/{po_id}/confirm", response_model=PurchaseOrderRead)
def confirm_po(
    po_id: int,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    return run_in_transaction(
        lambda db: PurchaseOrderRead.model_validate(confirm_purchase_order(db, po_id=po_id, actor=actor)),
        session_factory=factory,
    )


@router.post("/{po_id}/receive", response_model=PurchaseOrderRead)
def receive_po(
    po_id: int,
    payload: POReceive,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    receipts = [LineReceipt(r.line_id, r.quantity_received, r.notes) for r in payload.receipts]
    return run_in_transaction(
        lambda db: PurchaseOrderRead.model_validate(
            receive_purchase_order(db, po_id=po_id, receipts=receipts, actor=actor)
        ),
        session_factory=factory,
    )


@router.post("/{po_id}/cancel", response_model=PurchaseOrderRead)
def cancel_po(
    po_id: int,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    return run_in_transaction(
        lambda db: PurchaseOrderRead.model_validate(cancel_purchase_order(db, po_id=po_id, actor=actor)),
        session_factory=factory,
    )
