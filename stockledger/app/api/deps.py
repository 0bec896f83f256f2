from __future__ import annotations

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session, sessionmaker

from stockledger.app.db.models.core_types import Role
from stockledger.app.db.session import SessionLocal
from stockledger.services.directory import Actor


def get_session_factory() -> sessionmaker[Session]:
    """Surchargé dans les tests (moteur SQLite en mémoire)."""
    return SessionLocal


def get_actor(
    user_id: int | None = Header(default=None, alias="X-User-Id"),
    department_id: int | None = Header(default=None, alias="X-Department-Id"),
    role: str | None = Header(default=None, alias="X-Role"),
) -> Actor:
    # identité déjà authentifiée par la passerelle amont
    return Actor(
        user_id=user_id,
        department_id=department_id,
        is_admin=(role or "").strip().lower() == Role.admin.value,
    )


def require_actor(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return actor
