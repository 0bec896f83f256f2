from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from stockledger.app.api.deps import get_session_factory, require_actor
from stockledger.app.db.session import run_in_transaction
from stockledger.app.schemas.routing import RoutingMappingRead
from stockledger.services.directory import Actor
from stockledger.services.errors import ForbiddenError
from stockledger.services.routing import (
    RoutingMappingInput,
    list_routing_mappings,
    replace_routing_mappings,
    resolve_allowed_source,
)

router = APIRouter(prefix="/routing-mappings")


class RoutingMappingIn(BaseModel):
    target_branch_id: int
    source_department_id: int


class RoutingMappingsReplace(BaseModel):
    mappings: list[RoutingMappingIn]


@router.get("", response_model=list[RoutingMappingRead])
def get_mappings(factory: sessionmaker[Session] = Depends(get_session_factory)):
    return run_in_transaction(
        lambda db: [RoutingMappingRead.model_validate(m) for m in list_routing_mappings(db)],
        session_factory=factory,
    )


@router.get("/resolve/{branch_id}")
def resolve(branch_id: int, factory: sessionmaker[Session] = Depends(get_session_factory)):
    source_id = run_in_transaction(lambda db: resolve_allowed_source(db, branch_id), session_factory=factory)
    return {"target_branch_id": branch_id, "source_department_id": source_id}


@router.put("", response_model=list[RoutingMappingRead])
def put_mappings(
    payload: RoutingMappingsReplace,
    actor: Actor = Depends(require_actor),
    factory: sessionmaker[Session] = Depends(get_session_factory),
):
    if not actor.is_admin:
        raise ForbiddenError("Only an admin can change routing mappings")
    mappings = [RoutingMappingInput(m.target_branch_id, m.source_department_id) for m in payload.mappings]
    return run_in_transaction(
        lambda db: [RoutingMappingRead.model_validate(m) for m in replace_routing_mappings(db, mappings)],
        session_factory=factory,
    )
