"""
Transfer Coordinator.

Un transfert = deux postings (transfer_out à la source, transfer_in à la
cible) dans un SAVEPOINT : les deux passent ou aucun.

Pas de contrôle de disponibilité : un solde négatif est permis (stock
physiquement en transit), il est seulement journalisé.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import ReferenceType, TransactionType
from stockledger.services.errors import InvalidArgumentError
from stockledger.services.inventory import get_balance, lock_balances, post, quantize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    out_entry_id: int
    in_entry_id: int
    quantity: Decimal


def post_receipt(
    db: Session,
    *,
    product_id: int,
    location_id: int,
    quantity,
    reference_type: ReferenceType | str,
    reference_id: str | int | None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> int | None:
    """Réception à sens unique (pas de location contrepartie)."""
    return post(
        db,
        product_id=product_id,
        location_id=location_id,
        delta=quantity,
        transaction_type=TransactionType.receive,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        actor_id=actor_id,
    )


def transfer_stock(
    db: Session,
    *,
    product_id: int,
    source_location_id: int,
    target_location_id: int,
    quantity,
    reference_type: ReferenceType | str,
    reference_id: str | int | None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> TransferResult | None:
    """
    Déplace `quantity` de la source vers la cible.

    quantity < 0 -> mouvement inverse (annulation partielle).
    quantity == 0 -> no-op, retourne None.
    """
    if int(source_location_id) == int(target_location_id):
        raise InvalidArgumentError("source and target locations must differ")

    qty = quantize(quantity)
    if qty == 0:
        return None

    with db.begin_nested():
        # verrous dans un ordre stable avant d'écrire
        lock_balances(db, product_id, [source_location_id, target_location_id])

        out_id = post(
            db,
            product_id=product_id,
            location_id=source_location_id,
            delta=-qty,
            transaction_type=TransactionType.transfer_out,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            actor_id=actor_id,
        )
        in_id = post(
            db,
            product_id=product_id,
            location_id=target_location_id,
            delta=qty,
            transaction_type=TransactionType.transfer_in,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            actor_id=actor_id,
        )

    source_after = get_balance(db, product_id, source_location_id)
    if source_after < 0:
        logger.warning(
            "Negative balance after transfer: product=%s location=%s balance=%s (ref %s/%s)",
            product_id,
            source_location_id,
            source_after,
            reference_type,
            reference_id,
        )

    return TransferResult(out_entry_id=out_id, in_entry_id=in_id, quantity=qty)
