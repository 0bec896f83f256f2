"""
Lectures des collaborateurs externes (master data).

Le coeur ne gère pas le cycle de vie des produits / départements :
il lit seulement ce dont il a besoin pour décider d'un posting.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.db.models.models_v1 import Department, Product
from stockledger.services.errors import NotFoundError


@dataclass(frozen=True)
class ProductInfo:
    id: int
    is_countable: bool
    product_group_id: int | None
    name: str = ""


@dataclass(frozen=True)
class LocationInfo:
    id: int
    branch_id: int
    is_production: bool
    is_active: bool
    name: str = ""


@dataclass(frozen=True)
class Actor:
    """Utilisateur déjà authentifié (audit + règle de propriété)."""

    user_id: int | None
    department_id: int | None = None
    is_admin: bool = False


def get_products(db: Session, product_ids: Iterable[int], *, active_only: bool = True) -> dict[int, ProductInfo]:
    ids = sorted({int(pid) for pid in product_ids})
    if not ids:
        return {}

    stmt = select(Product).where(Product.id.in_(ids))
    if active_only:
        stmt = stmt.where(Product.is_active.is_(True))
    rows = db.execute(stmt).scalars().all()
    found = {
        int(p.id): ProductInfo(
            id=int(p.id),
            is_countable=bool(p.is_countable),
            product_group_id=p.product_group_id,
            name=p.name,
        )
        for p in rows
    }

    missing = [pid for pid in ids if pid not in found]
    if missing:
        raise NotFoundError(f"Product not found or inactive: {', '.join(str(m) for m in missing)}")
    return found


def get_product(db: Session, product_id: int) -> ProductInfo:
    return get_products(db, [product_id])[int(product_id)]


def get_locations(db: Session, location_ids: Iterable[int], *, active_only: bool = True) -> dict[int, LocationInfo]:
    ids = sorted({int(lid) for lid in location_ids})
    if not ids:
        return {}

    stmt = select(Department).where(Department.id.in_(ids))
    if active_only:
        stmt = stmt.where(Department.is_active.is_(True))

    found = {
        int(d.id): LocationInfo(
            id=int(d.id),
            branch_id=int(d.branch_id),
            is_production=bool(d.is_production),
            is_active=bool(d.is_active),
            name=d.name,
        )
        for d in db.execute(stmt).scalars().all()
    }

    missing = [lid for lid in ids if lid not in found]
    if missing:
        raise NotFoundError(f"Department not found or inactive: {', '.join(str(m) for m in missing)}")
    return found


def get_location(db: Session, location_id: int, *, active_only: bool = True) -> LocationInfo:
    return get_locations(db, [location_id], active_only=active_only)[int(location_id)]
