from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from stockledger.app.api.deps import get_session_factory, require_actor
from stockledger.app.db.models.core_types import ReferenceType
from stockledger.app.db.session import run_in_transaction
from stockledger.services.directory import Actor, get_location, get_product
from stockledger.services.production import IngredientInput, create_production_transform
from stockledger.services.transfers import post_receipt, transfer_stock

router = APIRouter(prefix="/stock-movements")


# ---------- Schemas ----------
class ReceiptCreate(BaseModel):
    product_id: int
    location_id: int
    quantity: Decimal
    reference_type: ReferenceType = ReferenceType.manual
    reference_id: str | None = None
    notes: str | None = None


class TransferCreate(BaseModel):
    product_id: int
    from_location_id: int
    to_location_id: int
    quantity: Decimal
    reference_type: ReferenceType = ReferenceType.manual
    reference_id: str | None = None
    notes: str | None = None


class IngredientLine(BaseModel):
    product_id: int
    quantity: Decimal = Field(gt=0)


class ProductionCreate(BaseModel):
    department_id: int
    output_product_id: int
    output_quantity: Decimal = Field(gt=0)
    ingredients: list[IngredientLine] = Field(min_length=1)
    notes: str | None = None


# ---------- Endpoints ----------
@router.post("/receipt")
def receive_stock(
    payload: ReceiptCreate,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    def op(db: Session):
        get_location(db, payload.location_id)
        product = get_product(db, payload.product_id)
        if not product.is_countable:
            return None
        return post_receipt(
            db,
            product_id=payload.product_id,
            location_id=payload.location_id,
            quantity=payload.quantity,
            reference_type=payload.reference_type,
            reference_id=payload.reference_id,
            notes=payload.notes,
            actor_id=actor.user_id,
        )

    entry_id = run_in_transaction(op, session_factory=factory)
    return {"entry_id": entry_id}


@router.post("/transfer")
def move_stock(
    payload: TransferCreate,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    def op(db: Session):
        get_location(db, payload.from_location_id)
        get_location(db, payload.to_location_id)
        product = get_product(db, payload.product_id)
        if not product.is_countable:
            return None
        return transfer_stock(
            db,
            product_id=payload.product_id,
            source_location_id=payload.from_location_id,
            target_location_id=payload.to_location_id,
            quantity=payload.quantity,
            reference_type=payload.reference_type,
            reference_id=payload.reference_id,
            notes=payload.notes,
            actor_id=actor.user_id,
        )

    result = run_in_transaction(op, session_factory=factory)
    if result is None:
        return {"out_entry_id": None, "in_entry_id": None, "quantity": Decimal("0")}
    return {"out_entry_id": result.out_entry_id, "in_entry_id": result.in_entry_id, "quantity": result.quantity}


@router.post("/production")
def production_transform(
    payload: ProductionCreate,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    result = run_in_transaction(
        lambda db: create_production_transform(
            db,
            department_id=payload.department_id,
            output_product_id=payload.output_product_id,
            output_quantity=payload.output_quantity,
            ingredients=[IngredientInput(i.product_id, i.quantity) for i in payload.ingredients],
            actor=actor,
            notes=payload.notes,
        ),
        session_factory=factory,
    )
    return {
        "reference_id": result.reference_id,
        "department_id": result.department_id,
        "output_product_id": result.output_product_id,
        "output_quantity": result.output_quantity,
        "output_entry_id": result.output_entry_id,
        "ingredient_entry_ids": result.ingredient_entry_ids,
    }
