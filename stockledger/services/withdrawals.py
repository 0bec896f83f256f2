"""
Withdrawal Workflow : transfert de stock initié par un département.

Création :
    1. source != cible, lignes non vides, quantités > 0 (avant toute requête)
    2. fusion des doublons produit (quantités sommées, notes concaténées)
    3. routing (production = toujours autorisée)
    4. un transfert par ligne comptable
    5. en-tête + lignes
    6. réception miroir côté cible (commande déjà soldée)

Mise à jour : on ne poste que le diff (nouveau - ancien) par produit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import OrderStatus, ReferenceType
from stockledger.app.db.models.models_v1 import Order, OrderLine, Withdrawal, WithdrawalLine
from stockledger.services.directory import Actor, LocationInfo, get_location, get_products
from stockledger.services.errors import ForbiddenError, InvalidArgumentError, NotFoundError
from stockledger.services.inventory import quantize, to_quantity
from stockledger.services.numbering import stamp_number
from stockledger.services.routing import is_withdrawal_allowed
from stockledger.services.transfers import transfer_stock

logger = logging.getLogger(__name__)

MAX_WITHDRAWAL_PAGE = 200
NOTES_SEPARATOR = " | "


@dataclass(frozen=True)
class WithdrawalLineInput:
    product_id: int
    quantity: Decimal
    notes: str | None = None


@dataclass
class _MergedLine:
    product_id: int
    quantity: Decimal
    notes: list[str]

    @property
    def joined_notes(self) -> str | None:
        return NOTES_SEPARATOR.join(self.notes) if self.notes else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def merge_lines(lines: Sequence[WithdrawalLineInput], *, allow_zero: bool = False) -> dict[int, _MergedLine]:
    """Fusionne les lignes d'un même produit ; ne perd jamais une ligne."""
    merged: dict[int, _MergedLine] = {}
    for ln in lines:
        qty = quantize(to_quantity(ln.quantity))
        if qty < 0 or (qty == 0 and not allow_zero):
            bound = ">= 0" if allow_zero else "> 0"
            raise InvalidArgumentError(f"quantity must be {bound} (product_id {ln.product_id})")

        pid = int(ln.product_id)
        current = merged.get(pid)
        if current is None:
            current = merged[pid] = _MergedLine(pid, Decimal("0"), [])
        current.quantity += qty
        if ln.notes:
            current.notes.append(ln.notes)
    return merged


def _can_manage(withdrawal: Withdrawal, actor: Actor) -> bool:
    return actor.is_admin or (
        actor.department_id is not None and int(actor.department_id) == int(withdrawal.source_department_id)
    )


def _mirror_order(db: Session, withdrawal_id: int) -> Order | None:
    return db.execute(select(Order).where(Order.withdrawal_id == withdrawal_id)).scalar_one_or_none()


# ---------- CREATION ----------
def create_withdrawal(
    db: Session,
    *,
    source_department_id: int,
    target_department_id: int,
    lines: Sequence[WithdrawalLineInput],
    actor: Actor,
    notes: str | None = None,
) -> Withdrawal:
    if int(source_department_id) == int(target_department_id):
        raise InvalidArgumentError("source and target departments must differ")
    if not lines:
        raise InvalidArgumentError("At least one withdrawal line is required")
    merged = merge_lines(lines)

    source = get_location(db, source_department_id)
    target = get_location(db, target_department_id)
    if not is_withdrawal_allowed(
        db,
        source_department_id=source.id,
        target_branch_id=target.branch_id,
        source_is_production=source.is_production,
    ):
        raise ForbiddenError(f"Department {source.name} is not allowed to supply branch {target.branch_id}")

    products = get_products(db, merged.keys())

    now = _now()
    withdrawal = Withdrawal(
        withdrawal_number=stamp_number("WDR", now.date()),
        source_department_id=source.id,
        target_department_id=target.id,
        notes=notes,
        created_by=actor.user_id,
        created_at=now,
    )
    db.add(withdrawal)
    db.flush()

    for pid in sorted(merged):
        line = merged[pid]
        if products[pid].is_countable:
            transfer_stock(
                db,
                product_id=pid,
                source_location_id=source.id,
                target_location_id=target.id,
                quantity=line.quantity,
                reference_type=ReferenceType.withdrawal,
                reference_id=withdrawal.id,
                notes=f"Withdrawal {withdrawal.withdrawal_number}",
                actor_id=actor.user_id,
            )
        withdrawal.lines.append(
            WithdrawalLine(product_id=pid, quantity=line.quantity, notes=line.joined_notes)
        )

    _create_mirror_order(db, withdrawal=withdrawal, source=source, actor=actor, received_at=now)
    db.flush()

    logger.info(
        "Withdrawal %s created: %s -> %s (%s lines)",
        withdrawal.withdrawal_number,
        source.id,
        target.id,
        len(merged),
    )
    return withdrawal


def _create_mirror_order(
    db: Session,
    *,
    withdrawal: Withdrawal,
    source: LocationInfo,
    actor: Actor,
    received_at: datetime,
) -> Order:
    """Historique de réception côté cible, sans seconde réception manuelle (ni posting)."""
    order = Order(
        order_number=stamp_number("ORD", received_at.date()),
        department_id=withdrawal.target_department_id,
        order_date=received_at.date(),
        status=OrderStatus.completed,
        withdrawal_id=withdrawal.id,
        created_by=actor.user_id,
    )
    for wl in withdrawal.lines:
        order.lines.append(
            OrderLine(
                product_id=wl.product_id,
                quantity_requested=wl.quantity,
                quantity_received=wl.quantity,
                is_received=True,
                received_at=received_at,
                received_by=actor.user_id,
                receive_notes=f"Withdrawal {withdrawal.withdrawal_number} from {source.name}",
                notes=wl.notes,
            )
        )
    db.add(order)
    return order


# ---------- MISE A JOUR ----------
def update_withdrawal(
    db: Session,
    *,
    withdrawal_id: int,
    lines: Sequence[WithdrawalLineInput],
    actor: Actor,
    notes: str | None = None,
) -> Withdrawal:
    """
    Nouvelles quantités ABSOLUES par produit existant.
    diff == 0 -> aucune écriture ledger (idempotent).
    Les notes de ligne sont remplacées (vides -> effacées).
    """
    merged = merge_lines(lines, allow_zero=True)

    withdrawal = (
        db.execute(
            select(Withdrawal)
            .where(Withdrawal.id == withdrawal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalar_one_or_none()
    )
    if not withdrawal:
        raise NotFoundError("Withdrawal not found")
    if not _can_manage(withdrawal, actor):
        raise ForbiddenError("Only the source department or an admin can update this withdrawal")

    existing = {int(wl.product_id): wl for wl in withdrawal.lines}
    unknown = [pid for pid in merged if pid not in existing]
    if unknown:
        raise InvalidArgumentError(
            f"Products not part of withdrawal {withdrawal.withdrawal_number}: {', '.join(str(u) for u in unknown)}"
        )

    products = get_products(db, merged.keys(), active_only=False)
    mirror = _mirror_order(db, withdrawal.id)
    mirror_lines = {int(ol.product_id): ol for ol in mirror.lines} if mirror else {}

    changed = 0
    for pid in sorted(merged):
        line = existing[pid]
        new_qty = merged[pid].quantity
        diff = new_qty - quantize(line.quantity)
        if diff != 0:
            changed += 1
            if products[pid].is_countable:
                transfer_stock(
                    db,
                    product_id=pid,
                    source_location_id=withdrawal.source_department_id,
                    target_location_id=withdrawal.target_department_id,
                    quantity=diff,
                    reference_type=ReferenceType.withdrawal_update,
                    reference_id=withdrawal.id,
                    notes=f"Withdrawal {withdrawal.withdrawal_number} update: {line.quantity} -> {new_qty}",
                    actor_id=actor.user_id,
                )
        line.quantity = new_qty
        line.notes = merged[pid].joined_notes

        mirror_line = mirror_lines.get(pid)
        if mirror_line is not None:
            mirror_line.quantity_requested = new_qty
            mirror_line.quantity_received = new_qty
            mirror_line.notes = line.notes

    if notes is not None:
        withdrawal.notes = notes
    db.flush()

    logger.info(
        "Withdrawal %s updated by user %s (%s line(s) changed)",
        withdrawal.withdrawal_number,
        actor.user_id,
        changed,
    )
    return withdrawal


# ---------- LECTURES ----------
def get_withdrawal(db: Session, withdrawal_id: int, actor: Actor | None = None) -> Withdrawal:
    withdrawal = db.get(Withdrawal, withdrawal_id)
    if not withdrawal:
        raise NotFoundError("Withdrawal not found")
    if actor is not None and not actor.is_admin:
        involved = {int(withdrawal.source_department_id), int(withdrawal.target_department_id)}
        if actor.department_id is None or int(actor.department_id) not in involved:
            raise ForbiddenError("Withdrawal belongs to another department")
    return withdrawal


def list_withdrawals(
    db: Session,
    *,
    source_department_id: int | None = None,
    target_department_id: int | None = None,
    department_id: int | None = None,
    limit: int = 50,
) -> list[Withdrawal]:
    stmt = select(Withdrawal)
    if source_department_id is not None:
        stmt = stmt.where(Withdrawal.source_department_id == source_department_id)
    if target_department_id is not None:
        stmt = stmt.where(Withdrawal.target_department_id == target_department_id)
    if department_id is not None:
        stmt = stmt.where(
            or_(
                Withdrawal.source_department_id == department_id,
                Withdrawal.target_department_id == department_id,
            )
        )

    limit = max(1, min(int(limit), MAX_WITHDRAWAL_PAGE))
    stmt = stmt.order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())
