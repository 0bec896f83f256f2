"""
Ledger Store.

Seul module autorisé à écrire `ledger_entries` et `balances`.

Règles :
    balance_after = balance_before + quantity
    balances.quantity == SUM(ledger_entries.quantity) par (produit, location)

Propriétés :
- append-only (aucun UPDATE / DELETE sur le ledger)
- verrouillage SQL (FOR UPDATE) sur la ligne de solde
- le commit appartient à l'appelant (une opération = une transaction)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.app.core.config import settings
from stockledger.app.db.models.core_types import ReferenceType, TransactionType
from stockledger.app.db.models.models_v1 import Balance, Department, LedgerEntry
from stockledger.services.directory import Actor, get_location, get_products
from stockledger.services.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

QUANTITY_STEP = Decimal(1).scaleb(-settings.quantity_scale)
MAX_ENTRY_PAGE = 1000


@dataclass(frozen=True)
class BalanceDrift:
    product_id: int
    location_id: int
    balance: Decimal
    ledger_total: Decimal


@dataclass(frozen=True)
class StockAdjustment:
    product_id: int
    counted: Decimal
    variance: Decimal
    entry_id: int


# ---------- QUANTITES ----------
def to_quantity(value, *, field: str = "quantity") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidArgumentError(f"Invalid {field}")
    try:
        qty = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidArgumentError(f"Invalid {field}") from exc
    if not qty.is_finite():
        raise InvalidArgumentError(f"Invalid {field}")
    return qty


def quantize(value) -> Decimal:
    """Arrondi à l'échelle persistée (les entrées et le solde restent cohérents)."""
    return to_quantity(value).quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def _ref(value) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value))


# ---------- VERROUS ----------
def _lock_balance(db: Session, product_id: int, location_id: int) -> Balance:
    bal = (
        db.execute(
            select(Balance)
            .where(Balance.product_id == product_id)
            .where(Balance.location_id == location_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalar_one_or_none()
    )
    if bal:
        return bal

    bal = Balance(
        product_id=product_id,
        location_id=location_id,
        quantity=Decimal("0"),
    )
    db.add(bal)
    db.flush()
    return bal


def lock_balances(db: Session, product_id: int, location_ids: Iterable[int]) -> dict[int, Balance]:
    """Verrouille plusieurs locations dans l'ordre croissant des ids (pas de deadlock croisé)."""
    return {
        lid: _lock_balance(db, int(product_id), lid)
        for lid in sorted({int(x) for x in location_ids})
    }


# ---------- POSTING ----------
def post(
    db: Session,
    *,
    product_id: int,
    location_id: int,
    delta,
    transaction_type: TransactionType | str,
    reference_type: ReferenceType | str | None = None,
    reference_id: str | int | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> int | None:
    """
    Ajoute une entrée au ledger et met à jour le solde, sous verrou.

    delta == 0 -> no-op (aucune entrée), retourne None.
    Le caractère "countable" du produit est vérifié par l'appelant.
    """
    qty = quantize(delta)
    if qty == 0:
        return None

    try:
        tx_type = TransactionType(transaction_type)
    except ValueError as exc:
        raise InvalidArgumentError(f"Invalid transaction_type {transaction_type!r}") from exc

    bal = _lock_balance(db, int(product_id), int(location_id))
    balance_before = quantize(bal.quantity or 0)
    balance_after = balance_before + qty

    entry = LedgerEntry(
        product_id=int(product_id),
        location_id=int(location_id),
        transaction_type=tx_type,
        quantity=qty,
        balance_before=balance_before,
        balance_after=balance_after,
        reference_type=_ref(reference_type),
        reference_id=_ref(reference_id),
        notes=notes,
        created_by=actor_id,
    )
    db.add(entry)
    db.flush()

    bal.quantity = balance_after
    bal.last_entry_id = entry.id
    bal.last_updated = datetime.now(timezone.utc)
    db.flush()

    logger.debug(
        "ledger entry %s: product=%s location=%s %s %s (%s -> %s)",
        entry.id,
        product_id,
        location_id,
        tx_type.value,
        qty,
        balance_before,
        balance_after,
    )
    return int(entry.id)


# ---------- LECTURES ----------
def get_balance(db: Session, product_id: int, location_id: int) -> Decimal:
    qty = db.execute(
        select(Balance.quantity)
        .where(Balance.product_id == product_id)
        .where(Balance.location_id == location_id)
    ).scalar_one_or_none()
    return quantize(qty) if qty is not None else Decimal("0")


def list_balances(
    db: Session,
    *,
    location_id: int | None = None,
    branch_id: int | None = None,
    product_id: int | None = None,
) -> list[Balance]:
    stmt = (
        select(Balance)
        .join(Department, Department.id == Balance.location_id)
        .order_by(Department.branch_id, Balance.location_id, Balance.product_id)
    )
    if location_id is not None:
        stmt = stmt.where(Balance.location_id == location_id)
    if branch_id is not None:
        stmt = stmt.where(Department.branch_id == branch_id)
    if product_id is not None:
        stmt = stmt.where(Balance.product_id == product_id)

    return list(db.execute(stmt).scalars().all())


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def list_entries(
    db: Session,
    *,
    product_id: int | None = None,
    location_id: int | None = None,
    branch_id: int | None = None,
    transaction_type: TransactionType | str | None = None,
    reference_type: ReferenceType | str | None = None,
    reference_id: str | int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[LedgerEntry]:
    stmt = select(LedgerEntry)

    if product_id is not None:
        stmt = stmt.where(LedgerEntry.product_id == product_id)
    if location_id is not None:
        stmt = stmt.where(LedgerEntry.location_id == location_id)
    if branch_id is not None:
        stmt = stmt.join(Department, Department.id == LedgerEntry.location_id).where(Department.branch_id == branch_id)
    if transaction_type is not None:
        stmt = stmt.where(LedgerEntry.transaction_type == TransactionType(transaction_type))
    if reference_type is not None:
        stmt = stmt.where(LedgerEntry.reference_type == _ref(reference_type))
    if reference_id is not None:
        stmt = stmt.where(LedgerEntry.reference_id == _ref(reference_id))
    if start_date is not None:
        stmt = stmt.where(LedgerEntry.created_at >= _day_start(start_date))
    if end_date is not None:
        stmt = stmt.where(LedgerEntry.created_at < _day_start(end_date + timedelta(days=1)))

    limit = max(1, min(int(limit), MAX_ENTRY_PAGE))
    stmt = stmt.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc()).limit(limit).offset(max(0, int(offset)))
    return list(db.execute(stmt).scalars().all())


def get_stock_card(
    db: Session,
    product_id: int,
    location_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    """Fiche de stock : solde courant + mouvements (plus récent d'abord)."""
    entries = list_entries(
        db,
        product_id=product_id,
        location_id=location_id,
        start_date=start_date,
        end_date=end_date,
        limit=MAX_ENTRY_PAGE,
    )
    return {
        "product_id": int(product_id),
        "location_id": int(location_id),
        "balance": get_balance(db, product_id, location_id),
        "entries": entries,
    }


def find_balance_drift(db: Session) -> list[BalanceDrift]:
    """
    Contrôle de l'invariant : solde == somme des entrées.
    Retourne les couples en écart (liste vide = ledger sain).
    """
    sums = db.execute(
        select(
            LedgerEntry.product_id,
            LedgerEntry.location_id,
            func.coalesce(func.sum(LedgerEntry.quantity), 0),
        ).group_by(LedgerEntry.product_id, LedgerEntry.location_id)
    ).all()
    totals = {(int(pid), int(lid)): quantize(total) for pid, lid, total in sums}

    drifts: list[BalanceDrift] = []
    seen: set[tuple[int, int]] = set()
    for bal in db.execute(select(Balance)).scalars().all():
        key = (int(bal.product_id), int(bal.location_id))
        seen.add(key)
        balance = quantize(bal.quantity or 0)
        total = totals.get(key, Decimal("0"))
        if balance != total:
            drifts.append(BalanceDrift(key[0], key[1], balance, total))

    for key, total in totals.items():
        if key not in seen and total != 0:
            drifts.append(BalanceDrift(key[0], key[1], Decimal("0"), total))

    if drifts:
        logger.warning("Balance drift detected on %s product/location pairs", len(drifts))
    return drifts


# ---------- AJUSTEMENT D'INVENTAIRE ----------
def apply_stock_count(
    db: Session,
    *,
    location_id: int,
    counts: Mapping[int, object],
    actor: Actor,
    count_date: date,
) -> list[StockAdjustment]:
    """
    Aligne le solde sur le comptage physique : une entrée `adjustment`
    de (compté - système) par produit en écart.
    """
    normalized: dict[int, Decimal] = {}
    for pid, raw in counts.items():
        counted = quantize(raw)
        if counted < 0:
            raise InvalidArgumentError(f"Counted quantity must be >= 0 (product_id {pid})")
        normalized[int(pid)] = counted
    if not normalized:
        raise InvalidArgumentError("At least one counted product is required")

    get_location(db, location_id)
    products = get_products(db, normalized.keys())

    adjustments: list[StockAdjustment] = []
    for pid in sorted(normalized):
        if not products[pid].is_countable:
            continue

        counted = normalized[pid]
        current = quantize(_lock_balance(db, pid, int(location_id)).quantity or 0)
        variance = counted - current
        if variance == 0:
            continue

        entry_id = post(
            db,
            product_id=pid,
            location_id=location_id,
            delta=variance,
            transaction_type=TransactionType.adjustment,
            reference_type=ReferenceType.stock_check,
            reference_id=count_date.isoformat(),
            notes=f"Stock count adjustment {count_date.isoformat()}",
            actor_id=actor.user_id,
        )
        adjustments.append(StockAdjustment(pid, counted, variance, entry_id))

    logger.info(
        "Stock count %s applied on location %s: %s adjustment(s)",
        count_date.isoformat(),
        location_id,
        len(adjustments),
    )
    return adjustments
