from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from stockledger.app.api.deps import get_actor, get_session_factory, require_actor
from stockledger.app.db.session import run_in_transaction
from stockledger.app.schemas.withdrawal import DepartmentRead, WithdrawalRead
from stockledger.services.directory import Actor
from stockledger.services.errors import InvalidArgumentError
from stockledger.services.routing import list_withdrawal_targets
from stockledger.services.withdrawals import (
    MAX_WITHDRAWAL_PAGE,
    WithdrawalLineInput,
    create_withdrawal,
    get_withdrawal,
    list_withdrawals,
    update_withdrawal,
)

router = APIRouter(prefix="/withdrawals")


# ---------- Schemas ----------
class WithdrawalLineCreate(BaseModel):
    product_id: int
    quantity: Decimal = Field(gt=0)
    notes: str | None = None


class WithdrawalCreate(BaseModel):
    source_department_id: int
    target_department_id: int
    notes: str | None = None
    lines: list[WithdrawalLineCreate] = Field(min_length=1)


class WithdrawalLineUpdate(BaseModel):
    product_id: int
    quantity: Decimal = Field(ge=0)
    notes: str | None = None


class WithdrawalUpdate(BaseModel):
    notes: str | None = None
    lines: list[WithdrawalLineUpdate] = Field(default_factory=list)


def _lines(rows) -> list[WithdrawalLineInput]:
    return [WithdrawalLineInput(r.product_id, r.quantity, r.notes) for r in rows]


# ---------- Endpoints ----------
@router.get("/targets", response_model=list[DepartmentRead])
def withdrawal_targets(
    source_department_id: int | None = None,
    actor: Actor = Depends(get_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    source_id = source_department_id if source_department_id is not None else actor.department_id
    if source_id is None:
        raise InvalidArgumentError("source_department_id is required")
    return run_in_transaction(
        lambda db: [
            DepartmentRead.model_validate(d)
            for d in list_withdrawal_targets(db, source_department_id=source_id, is_admin=actor.is_admin)
        ],
        session_factory=factory,
    )


@router.get("", response_model=list[WithdrawalRead])
def list_all(
    source_department_id: int | None = None,
    target_department_id: int | None = None,
    department_id: int | None = None,
    limit: int = Query(default=50, ge=1, le=MAX_WITHDRAWAL_PAGE),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    def op(db: Session):
        rows = list_withdrawals(
            db,
            source_department_id=source_department_id,
            target_department_id=target_department_id,
            department_id=department_id,
            limit=limit,
        )
        return [WithdrawalRead.model_validate(w) for w in rows]

    return run_in_transaction(op, session_factory=factory)


@router.get("/{withdrawal_id}", response_model=WithdrawalRead)
def get_one(
    withdrawal_id: int,
    actor: Actor = Depends(get_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    # sans identité : lecture ouverte (outil interne)
    viewer = actor if actor.user_id is not None else None
    return run_in_transaction(
        lambda db: WithdrawalRead.model_validate(get_withdrawal(db, withdrawal_id, viewer)),
        session_factory=factory,
    )


@router.post("", response_model=WithdrawalRead, status_code=201)
def create(
    payload: WithdrawalCreate,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    lines = _lines(payload.lines)
    return run_in_transaction(
        lambda db: WithdrawalRead.model_validate(
            create_withdrawal(
                db,
                source_department_id=payload.source_department_id,
                target_department_id=payload.target_department_id,
                lines=lines,
                actor=actor,
                notes=payload.notes,
            )
        ),
        session_factory=factory,
    )


@router.put("/{withdrawal_id}", response_model=WithdrawalRead)
def update(
    withdrawal_id: int,
    payload: WithdrawalUpdate,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    lines = _lines(payload.lines)
    return run_in_transaction(
        lambda db: WithdrawalRead.model_validate(
            update_withdrawal(db, withdrawal_id=withdrawal_id, lines=lines, actor=actor, notes=payload.notes)
        ),
        session_factory=factory,
    )
