from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session


def stamp_number(prefix: str, day: date) -> str:
    """Ex: WDR-20260214-4F9A1C (unicité par suffixe aléatoire)."""
    return f"{prefix}-{day:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def daily_sequence_number(db: Session, prefix: str, day: date, date_column) -> str:
    """Ex: PO-20260214-003 (séquence par jour, contrainte UNIQUE en filet)."""
    count = db.execute(select(func.count()).where(date_column == day)).scalar_one()
    return f"{prefix}-{day:%Y%m%d}-{int(count) + 1:03d}"
