"""
Création explicite du schéma, une seule fois au démarrage.

Jamais appelé depuis une requête : en production le schéma vient
d'Alembic (`alembic upgrade head`), ceci sert au dev local / SQLite.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine

from stockledger.app.db.base import Base
from stockledger.app.db.models import models_v1  # noqa: F401  (enregistre les tables)

logger = logging.getLogger(__name__)


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("Schema ready on %s (%s tables)", engine.url.render_as_string(hide_password=True), len(Base.metadata.tables))
