"""
Transformation de production : ingrédients consommés -> produit fini.

Toutes les écritures partagent la même référence PRD-... et la même
transaction : pas de consommation sans entrée du produit fini.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Sequence

from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import ReferenceType, TransactionType
from stockledger.services.directory import Actor, get_location, get_products
from stockledger.services.errors import InvalidArgumentError, InvalidStateError
from stockledger.services.inventory import lock_balances, post, quantize, to_quantity
from stockledger.services.numbering import stamp_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngredientInput:
    product_id: int
    quantity: Decimal


@dataclass
class ProductionResult:
    reference_id: str
    department_id: int
    output_product_id: int
    output_quantity: Decimal
    output_entry_id: int | None
    ingredient_entry_ids: dict[int, int | None] = field(default_factory=dict)


def create_production_transform(
    db: Session,
    *,
    department_id: int,
    output_product_id: int,
    output_quantity,
    ingredients: Sequence[IngredientInput],
    actor: Actor,
    notes: str | None = None,
) -> ProductionResult:
    output_qty = quantize(to_quantity(output_quantity, field="output_quantity"))
    if output_qty <= 0:
        raise InvalidArgumentError("output_quantity must be > 0")

    used: dict[int, Decimal] = {}
    for ing in ingredients:
        qty = quantize(to_quantity(ing.quantity))
        if qty <= 0:
            raise InvalidArgumentError(f"Ingredient quantity must be > 0 (product_id {ing.product_id})")
        used[int(ing.product_id)] = used.get(int(ing.product_id), Decimal("0")) + qty
    if not used:
        raise InvalidArgumentError("At least one ingredient is required")
    if int(output_product_id) in used:
        raise InvalidArgumentError("Output product must not be included in ingredients")

    location = get_location(db, department_id)
    products = get_products(db, [output_product_id, *used])

    # verrous avant lecture des soldes ; produits non comptables ignorés
    counted = [pid for pid in sorted(used) if products[pid].is_countable]
    balances = {pid: lock_balances(db, pid, [location.id])[location.id] for pid in counted}
    for pid in counted:
        available = quantize(balances[pid].quantity or 0)
        if available < used[pid]:
            raise InvalidStateError(
                f"Not enough stock for ingredient {products[pid].name}: {available} < {used[pid]}"
            )

    reference_id = stamp_number("PRD", datetime.now(timezone.utc).date())
    suffix = f" ({notes})" if notes else ""
    result = ProductionResult(
        reference_id=reference_id,
        department_id=location.id,
        output_product_id=int(output_product_id),
        output_quantity=output_qty,
        output_entry_id=None,
    )

    for pid in counted:
        result.ingredient_entry_ids[pid] = post(
            db,
            product_id=pid,
            location_id=location.id,
            delta=-used[pid],
            transaction_type=TransactionType.production,
            reference_type=ReferenceType.production_transform,
            reference_id=reference_id,
            notes=f"Production input{suffix}",
            actor_id=actor.user_id,
        )

    if products[int(output_product_id)].is_countable:
        result.output_entry_id = post(
            db,
            product_id=output_product_id,
            location_id=location.id,
            delta=output_qty,
            transaction_type=TransactionType.production,
            reference_type=ReferenceType.production_transform,
            reference_id=reference_id,
            notes=f"Production output{suffix}",
            actor_id=actor.user_id,
        )

    logger.info(
        "Production %s on department %s: %s x product %s from %s ingredient(s)",
        reference_id,
        location.id,
        output_qty,
        output_product_id,
        len(used),
    )
    return result
