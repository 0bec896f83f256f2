from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from stockledger.app.api.deps import get_session_factory
from stockledger.app.db.session import run_in_transaction

router = APIRouter()


@router.get("/health")
def health(factory: sessionmaker[Session] = Depends(get_session_factory)):
    run_in_transaction(lambda db: db.execute(text("SELECT 1")).scalar_one(), session_factory=factory)
    return {"status": "ok"}
