"""
Procurement service (bons de commande fournisseur).

Ce module orchestre le cycle de vie des PO :
    draft -> confirmed -> partial -> completed
    cancelled depuis draft | confirmed | partial

Il ne calcule jamais de stock lui-même : chaque réception passe par
le Ledger Store (post_receipt) sur le département de destination du PO.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import POStatus, ReferenceType
from stockledger.app.db.models.models_v1 import (
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderReceipt,
    Supplier,
)
from stockledger.services.directory import Actor, get_location, get_products
from stockledger.services.errors import InvalidArgumentError, InvalidStateError, NotFoundError
from stockledger.services.inventory import quantize, to_quantity
from stockledger.services.numbering import daily_sequence_number
from stockledger.services.transfers import post_receipt

logger = logging.getLogger(__name__)

MAX_PO_PAGE = 500

RECEIVABLE_STATUSES = (POStatus.draft, POStatus.confirmed, POStatus.partial)
CANCELLABLE_STATUSES = (POStatus.draft, POStatus.confirmed, POStatus.partial)


@dataclass(frozen=True)
class POLineInput:
    product_id: int
    quantity_ordered: Decimal
    unit_price: Decimal | None = None
    notes: str | None = None


@dataclass(frozen=True)
class LineReceipt:
    line_id: int
    quantity_received: Decimal
    notes: str | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------- STATUT ----------
def compute_po_status(lines: Sequence[PurchaseOrderLine], current: POStatus) -> POStatus:
    """
    Statut dérivé des quantités reçues :
    - toutes les lignes soldées -> completed
    - au moins une réception    -> partial
    - sinon on garde le statut courant (draft / confirmed)
    """
    if not lines:
        return current
    received = [quantize(ln.quantity_received or 0) for ln in lines]
    if all(r >= quantize(ln.quantity_ordered) for r, ln in zip(received, lines)):
        return POStatus.completed
    if any(r > 0 for r in received):
        return POStatus.partial
    return current


def _lock_po(db: Session, po_id: int) -> PurchaseOrder:
    po = (
        db.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == po_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalar_one_or_none()
    )
    if not po:
        raise NotFoundError("Purchase order not found")
    return po


# ---------- CREATION ----------
def create_purchase_order(
    db: Session,
    *,
    supplier_id: int,
    lines: Sequence[POLineInput],
    actor: Actor,
    department_id: int | None = None,
    order_date: date | None = None,
    expected_date: date | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    if not lines:
        raise InvalidArgumentError("At least one purchase order line is required")

    parsed: list[tuple[POLineInput, Decimal, Decimal | None]] = []
    for ln in lines:
        qty = quantize(to_quantity(ln.quantity_ordered, field="quantity_ordered"))
        if qty <= 0:
            raise InvalidArgumentError(f"quantity_ordered must be > 0 (product_id {ln.product_id})")
        price = None
        if ln.unit_price is not None:
            price = to_quantity(ln.unit_price, field="unit_price")
            if price < 0:
                raise InvalidArgumentError(f"unit_price must be >= 0 (product_id {ln.product_id})")
        parsed.append((ln, qty, price))

    supplier = db.get(Supplier, supplier_id)
    if not supplier or not supplier.is_active:
        raise NotFoundError("Supplier not found or inactive")
    if department_id is not None:
        get_location(db, department_id)
    get_products(db, [ln.product_id for ln in lines])

    day = order_date or _now().date()
    po = PurchaseOrder(
        po_number=daily_sequence_number(db, "PO", day, PurchaseOrder.order_date),
        supplier_id=int(supplier_id),
        department_id=int(department_id) if department_id is not None else None,
        status=POStatus.draft,
        order_date=day,
        expected_date=expected_date,
        notes=notes,
        created_by=actor.user_id,
    )
    for ln, qty, price in parsed:
        po.lines.append(
            PurchaseOrderLine(
                product_id=int(ln.product_id),
                quantity_ordered=qty,
                quantity_received=Decimal("0"),
                unit_price=price,
                notes=ln.notes,
            )
        )
    db.add(po)
    db.flush()

    logger.info("Purchase order %s created (supplier %s, %s lines)", po.po_number, supplier_id, len(parsed))
    return po


# ---------- LECTURES ----------
def get_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    po = db.get(PurchaseOrder, po_id)
    if not po:
        raise NotFoundError("Purchase order not found")
    return po


def list_purchase_orders(
    db: Session,
    *,
    status: POStatus | str | None = None,
    supplier_id: int | None = None,
    department_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 100,
) -> list[PurchaseOrder]:
    stmt = select(PurchaseOrder)
    if status is not None:
        try:
            stmt = stmt.where(PurchaseOrder.status == POStatus(status))
        except ValueError as exc:
            raise InvalidArgumentError(f"Invalid status {status!r}") from exc
    if supplier_id is not None:
        stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
    if department_id is not None:
        stmt = stmt.where(PurchaseOrder.department_id == department_id)
    if start_date is not None:
        stmt = stmt.where(PurchaseOrder.order_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(PurchaseOrder.order_date <= end_date)

    limit = max(1, min(int(limit), MAX_PO_PAGE))
    stmt = stmt.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


# ---------- TRANSITIONS ----------
def confirm_purchase_order(db: Session, *, po_id: int, actor: Actor) -> PurchaseOrder:
    po = _lock_po(db, po_id)
    if po.status != POStatus.draft:
        raise InvalidStateError(f"Purchase order {po.po_number} is {po.status.value}, only draft can be confirmed")

    po.status = POStatus.confirmed
    db.flush()
    logger.info("Purchase order %s confirmed by user %s", po.po_number, actor.user_id)
    return po


def receive_purchase_order(
    db: Session,
    *,
    po_id: int,
    receipts: Sequence[LineReceipt],
    actor: Actor,
) -> PurchaseOrder:
    """
    Réception incrémentale : chaque quantité s'AJOUTE au reçu de la ligne.

    Les lignes à 0 sont ignorées (rien reçu pour cette ligne).
    La sur-réception est permise (journalisée en WARNING).
    Produit non comptable : la ligne avance, aucun posting.
    """
    increments: list[tuple[LineReceipt, Decimal]] = []
    for r in receipts:
        qty = quantize(to_quantity(r.quantity_received, field="quantity_received"))
        if qty < 0:
            raise InvalidArgumentError(f"quantity_received must be >= 0 (line {r.line_id})")
        if qty > 0:
            increments.append((r, qty))
    if not increments:
        raise InvalidArgumentError("At least one line receipt with a positive quantity is required")

    po = _lock_po(db, po_id)
    if po.status not in RECEIVABLE_STATUSES:
        raise InvalidStateError(f"Purchase order {po.po_number} is {po.status.value}")

    lines_by_id = {int(ln.id): ln for ln in po.lines}
    unknown = [r.line_id for r, _ in increments if int(r.line_id) not in lines_by_id]
    if unknown:
        raise NotFoundError(f"Purchase order line not found: {', '.join(str(u) for u in unknown)}")

    # produits désactivés depuis la commande : on reçoit quand même
    products = get_products(db, [ln.product_id for ln in po.lines], active_only=False)

    for r, qty in increments:
        line = lines_by_id[int(r.line_id)]
        new_received = quantize(line.quantity_received or 0) + qty
        if new_received > quantize(line.quantity_ordered):
            logger.warning(
                "Over-receipt on %s line %s: received %s > ordered %s",
                po.po_number,
                line.id,
                new_received,
                line.quantity_ordered,
            )

        entry_id = None
        if po.department_id is not None and products[line.product_id].is_countable:
            entry_id = post_receipt(
                db,
                product_id=line.product_id,
                location_id=po.department_id,
                quantity=qty,
                reference_type=ReferenceType.purchase_order,
                reference_id=po.id,
                notes=r.notes or f"PO {po.po_number} receipt",
                actor_id=actor.user_id,
            )

        line.quantity_received = new_received
        po.receipts.append(
            PurchaseOrderReceipt(
                po_line_id=line.id,
                product_id=line.product_id,
                quantity_received=qty,
                ledger_entry_id=entry_id,
                received_by=actor.user_id,
                received_at=_now(),
                notes=r.notes,
            )
        )

    previous = po.status
    po.status = compute_po_status(po.lines, po.status)
    db.flush()

    logger.info(
        "Purchase order %s received %s line(s): %s -> %s",
        po.po_number,
        len(increments),
        previous.value,
        po.status.value,
    )
    return po


def cancel_purchase_order(db: Session, *, po_id: int, actor: Actor) -> PurchaseOrder:
    """Stoppe les réceptions futures ; les postings déjà faits restent."""
    po = _lock_po(db, po_id)
    if po.status not in CANCELLABLE_STATUSES:
        raise InvalidStateError(f"Purchase order {po.po_number} is {po.status.value} and cannot be cancelled")

    po.status = POStatus.cancelled
    db.flush()
    logger.info("Purchase order %s cancelled by user %s", po.po_number, actor.user_id)
    return po


def purchase_order_receipts(db: Session, po_id: int) -> list[PurchaseOrderReceipt]:
    get_purchase_order(db, po_id)
    return list(
        db.execute(
            select(PurchaseOrderReceipt)
            .where(PurchaseOrderReceipt.po_id == po_id)
            .order_by(PurchaseOrderReceipt.received_at, PurchaseOrderReceipt.id)
        )
        .scalars()
        .all()
    )
