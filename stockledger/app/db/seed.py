from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.core.config import settings
from stockledger.app.core.logging_config import configure_logging
from stockledger.app.db.models.core_types import Role
from stockledger.app.db.models.models_v1 import Branch, Department, User
from stockledger.app.db.session import run_in_transaction

logger = logging.getLogger(__name__)


def _seed(db: Session) -> dict[str, int]:
    # 1) Branche "Central"
    branch = db.scalar(select(Branch).where(Branch.name == "Central"))
    if not branch:
        branch = Branch(name="Central", code="CTR", is_active=True)
        db.add(branch)
        db.flush()

    # 2) Cuisine centrale (production : jamais bloquée par le routing)
    kitchen = db.scalar(
        select(Department).where(Department.branch_id == branch.id).where(Department.name == "Central Kitchen")
    )
    if not kitchen:
        kitchen = Department(branch_id=branch.id, name="Central Kitchen", code="KIT", is_production=True)
        db.add(kitchen)
        db.flush()

    # 3) Admin
    user = db.scalar(select(User).where(User.username == "admin"))
    if not user:
        user = User(username="admin", name="ADMIN", role=Role.admin, department_id=kitchen.id)
        db.add(user)
        db.flush()

    return {"branch_id": int(branch.id), "department_id": int(kitchen.id), "user_id": int(user.id)}


def run_seed(session_factory=None) -> dict[str, int]:
    """Idempotent : relançable sans doublon."""
    ids = run_in_transaction(_seed, session_factory=session_factory)
    logger.info("Seed OK: branch=%s department=%s admin=%s", ids["branch_id"], ids["department_id"], ids["user_id"])
    return ids


if __name__ == "__main__":
    configure_logging(settings.log_level)
    run_seed()
