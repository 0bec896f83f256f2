"""
Routing Resolver : quelle source peut servir les retraits d'une branche.

- pas de mapping pour la branche -> libre (toute source)
- mapping -> seule la source mappée
- source "production" -> toujours autorisée
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from stockledger.app.db.models.models_v1 import Branch, Department, RoutingMapping
from stockledger.services.directory import get_location
from stockledger.services.errors import InvalidArgumentError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingMappingInput:
    target_branch_id: int
    source_department_id: int


def resolve_allowed_source(db: Session, target_branch_id: int) -> int | None:
    source_id = db.execute(
        select(RoutingMapping.source_department_id).where(RoutingMapping.target_branch_id == target_branch_id)
    ).scalar_one_or_none()
    return int(source_id) if source_id is not None else None


def is_withdrawal_allowed(
    db: Session,
    *,
    source_department_id: int,
    target_branch_id: int,
    source_is_production: bool,
) -> bool:
    if source_is_production:
        return True
    allowed = resolve_allowed_source(db, target_branch_id)
    return allowed is None or allowed == int(source_department_id)


def list_routing_mappings(db: Session) -> list[RoutingMapping]:
    return list(db.execute(select(RoutingMapping).order_by(RoutingMapping.target_branch_id)).scalars().all())


def replace_routing_mappings(db: Session, mappings: Iterable[RoutingMappingInput]) -> list[RoutingMapping]:
    """Remplacement complet de la table (écran admin)."""
    items = list(mappings)
    branch_ids = [int(m.target_branch_id) for m in items]
    if len(branch_ids) != len(set(branch_ids)):
        raise InvalidArgumentError("Only one mapping per target branch is allowed")

    active_branches = {
        int(bid)
        for bid in db.execute(
            select(Branch.id).where(Branch.id.in_(branch_ids)).where(Branch.is_active.is_(True))
        ).scalars()
    }
    for m in items:
        if int(m.target_branch_id) not in active_branches:
            raise NotFoundError(f"Branch not found or inactive: {m.target_branch_id}")
        get_location(db, m.source_department_id)

    db.execute(delete(RoutingMapping))
    for m in items:
        db.add(RoutingMapping(target_branch_id=int(m.target_branch_id), source_department_id=int(m.source_department_id)))
    db.flush()

    logger.info("Routing mappings replaced (%s mapping(s))", len(items))
    return list_routing_mappings(db)


def list_withdrawal_targets(db: Session, *, source_department_id: int, is_admin: bool = False) -> list[Department]:
    """Départements vers lesquels la source peut retirer (hors elle-même)."""
    source = get_location(db, source_department_id)

    stmt = (
        select(Department)
        .join(Branch, Branch.id == Department.branch_id)
        .outerjoin(RoutingMapping, RoutingMapping.target_branch_id == Department.branch_id)
        .where(Department.is_active.is_(True))
        .where(Department.id != source.id)
        .order_by(Branch.name, Department.name)
    )
    if not is_admin and not source.is_production:
        stmt = stmt.where(
            (RoutingMapping.source_department_id.is_(None))
            | (RoutingMapping.source_department_id == source.id)
        )

    return list(db.execute(stmt).scalars().all())
