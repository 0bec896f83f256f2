"""
Réception des commandes internes (order receiving).

`quantity_received` est une valeur ABSOLUE réconciliée : à chaque mise à
jour on poste uniquement le delta (nouveau - précédent), jamais la
nouvelle valeur entière.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import OrderStatus, ReferenceType
from stockledger.app.db.models.models_v1 import Department, Order, OrderLine
from stockledger.services.allocation import (
    Allocation,
    AllocationLine,
    allocate_proportional,
    allocation_drift,
)
from stockledger.services.directory import Actor, ProductInfo, get_location, get_products
from stockledger.services.errors import InvalidArgumentError, InvalidStateError, NotFoundError
from stockledger.services.inventory import quantize, to_quantity
from stockledger.services.numbering import stamp_number
from stockledger.services.transfers import post_receipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderLineInput:
    product_id: int
    quantity: Decimal
    notes: str | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_order(
    db: Session,
    *,
    department_id: int,
    lines: Sequence[OrderLineInput],
    actor: Actor,
    order_date: date | None = None,
) -> Order:
    if not lines:
        raise InvalidArgumentError("At least one order line is required")
    quantities = []
    for ln in lines:
        qty = to_quantity(ln.quantity)
        if qty <= 0:
            raise InvalidArgumentError(f"quantity must be > 0 (product_id {ln.product_id})")
        quantities.append(qty)

    get_location(db, department_id)
    get_products(db, [ln.product_id for ln in lines])

    day = order_date or _now().date()
    order = Order(
        order_number=stamp_number("ORD", day),
        department_id=int(department_id),
        order_date=day,
        status=OrderStatus.submitted,
        created_by=actor.user_id,
    )
    for ln, qty in zip(lines, quantities):
        order.lines.append(
            OrderLine(
                product_id=int(ln.product_id),
                quantity_requested=qty,
                notes=ln.notes,
            )
        )
    db.add(order)
    db.flush()

    logger.info("Order %s created for department %s (%s lines)", order.order_number, department_id, len(lines))
    return order


def _apply_received(
    db: Session,
    *,
    line: OrderLine,
    order: Order,
    product: ProductInfo,
    new_quantity: Decimal,
    actor: Actor,
    notes: str | None,
) -> Decimal:
    previous = quantize(line.quantity_received or 0)
    new = quantize(new_quantity)
    delta = new - previous

    line.quantity_received = new
    line.is_received = True
    line.received_at = _now()
    line.received_by = actor.user_id
    if notes is not None:
        line.receive_notes = notes

    if delta != 0 and product.is_countable:
        post_receipt(
            db,
            product_id=line.product_id,
            location_id=order.department_id,
            quantity=delta,
            reference_type=ReferenceType.order_receiving,
            reference_id=line.id,
            notes=notes or f"Receiving order {order.order_number}: {previous} -> {new}",
            actor_id=actor.user_id,
        )

    if all(other.is_received for other in order.lines):
        order.status = OrderStatus.completed
    return delta


def receive_order_line(
    db: Session,
    *,
    line_id: int,
    quantity_received,
    actor: Actor,
    notes: str | None = None,
) -> OrderLine:
    qty = to_quantity(quantity_received, field="quantity_received")
    if qty < 0:
        raise InvalidArgumentError("quantity_received must be >= 0")

    line = (
        db.execute(
            select(OrderLine)
            .where(OrderLine.id == line_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalar_one_or_none()
    )
    if not line:
        raise NotFoundError("Order line not found")

    order = line.order
    if order.status == OrderStatus.cancelled:
        raise InvalidStateError(f"Order {order.order_number} is cancelled")
    # réception miroir d'un retrait : corriger via update_withdrawal
    if order.withdrawal_id is not None:
        raise InvalidStateError(
            f"Order {order.order_number} mirrors withdrawal {order.withdrawal_id}; update the withdrawal instead"
        )

    product = get_products(db, [line.product_id], active_only=False)[line.product_id]
    delta = _apply_received(db, line=line, order=order, product=product, new_quantity=qty, actor=actor, notes=notes)
    db.flush()

    logger.info("Order line %s received: %s (delta %s)", line.id, line.quantity_received, delta)
    return line


def receive_branch_product(
    db: Session,
    *,
    branch_id: int,
    product_id: int,
    order_date: date,
    total_received,
    actor: Actor,
    notes: str | None = None,
) -> list[Allocation]:
    """
    Réception agrégée au niveau branche : la quantité totale est répartie
    sur les lignes des départements (au prorata du demandé), puis chaque
    ligne est réconciliée par delta.
    """
    total = to_quantity(total_received, field="total_received")
    if total < 0:
        raise InvalidArgumentError("total_received must be >= 0")

    lines = (
        db.execute(
            select(OrderLine)
            .join(Order, Order.id == OrderLine.order_id)
            .join(Department, Department.id == Order.department_id)
            .where(Department.branch_id == branch_id)
            .where(OrderLine.product_id == product_id)
            .where(Order.order_date == order_date)
            .where(Order.status != OrderStatus.cancelled)
            # les réceptions miroir des retraits sont déjà soldées
            .where(Order.withdrawal_id.is_(None))
            .order_by(OrderLine.id)
            .with_for_update(of=OrderLine)
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )
    if not lines:
        raise NotFoundError(
            f"No order line for product {product_id} in branch {branch_id} on {order_date.isoformat()}"
        )

    allocations = allocate_proportional(
        total,
        [AllocationLine(line_id=int(ln.id), quantity_requested=ln.quantity_requested) for ln in lines],
    )
    drift = allocation_drift(total, allocations)
    if drift != 0:
        logger.warning("Allocation drift %s on branch %s product %s", drift, branch_id, product_id)

    product = get_products(db, [product_id], active_only=False)[int(product_id)]
    by_id = {int(ln.id): ln for ln in lines}
    for alloc in allocations:
        line = by_id[alloc.line_id]
        _apply_received(
            db,
            line=line,
            order=line.order,
            product=product,
            new_quantity=alloc.allocated_quantity,
            actor=actor,
            notes=notes,
        )
    db.flush()

    logger.info(
        "Branch %s received %s of product %s over %s line(s)",
        branch_id,
        total,
        product_id,
        len(lines),
    )
    return allocations


def list_receiving_history(db: Session, *, department_id: int, limit: int = 50) -> list[OrderLine]:
    limit = max(1, min(int(limit), 500))
    return list(
        db.execute(
            select(OrderLine)
            .join(Order, Order.id == OrderLine.order_id)
            .where(Order.department_id == department_id)
            .where(OrderLine.is_received.is_(True))
            .order_by(OrderLine.received_at.desc(), OrderLine.id.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
