"""
Proportional Reconciliation Allocator.

Une quantité reçue agrégée (niveau branche) est répartie sur N lignes de
commande au prorata de la quantité demandée par chaque ligne.

Règle métier :
    divisor = SUM(quantity_requested)
    divisor > 0  -> part_i = requested_i / divisor
    divisor == 0 -> part_i = 1 / N   (répartition égale)
    allocated_i = total * part_i

Pas d'arrondi ni de correction du reliquat : la somme des parts peut
s'écarter très légèrement du total (voir `allocation_drift`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from stockledger.services.errors import InvalidArgumentError
from stockledger.services.inventory import to_quantity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationLine:
    line_id: int
    quantity_requested: Decimal


@dataclass(frozen=True)
class Allocation:
    line_id: int
    allocated_quantity: Decimal


def allocate_proportional(total_received, lines: Sequence[AllocationLine]) -> list[Allocation]:
    if not lines:
        raise InvalidArgumentError("At least one order line is required for allocation")

    total = to_quantity(total_received, field="total_received")
    if total < 0:
        raise InvalidArgumentError("total_received must be >= 0")

    requested = []
    for line in lines:
        qty = to_quantity(line.quantity_requested, field="quantity_requested")
        if qty < 0:
            raise InvalidArgumentError(f"quantity_requested must be >= 0 (line {line.line_id})")
        requested.append(qty)

    divisor = sum(requested, Decimal("0"))
    if divisor > 0:
        shares = [qty / divisor for qty in requested]
    else:
        logger.warning("Allocation over %s lines with no requested quantity: equal split", len(lines))
        shares = [Decimal(1) / Decimal(len(lines))] * len(lines)

    return [
        Allocation(line_id=line.line_id, allocated_quantity=total * share)
        for line, share in zip(lines, shares)
    ]


def allocation_drift(total_received, allocations: Sequence[Allocation]) -> Decimal:
    """Ecart (total - somme allouée) ; non nul seulement par arithmétique décimale."""
    allocated = sum((a.allocated_quantity for a in allocations), Decimal("0"))
    return to_quantity(total_received) - allocated
