from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from stockledger.app.core.config import settings
from stockledger.services.errors import TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    pysqlite n'émet pas BEGIN lui-même : sans ce correctif les
    SAVEPOINT (begin_nested) ne sont pas fiables.
    """

    @event.listens_for(engine, "connect")
    def _no_pysqlite_transaction(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _set_lock_timeout(engine: Engine, lock_timeout_ms: int) -> None:
    @event.listens_for(engine, "connect")
    def _lock_timeout(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"SET lock_timeout = {int(lock_timeout_ms)}")
        cursor.close()
        dbapi_connection.commit()


def make_engine(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = create_engine(url, **kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    engine = create_engine(url, pool_pre_ping=True, **kwargs)
    if engine.dialect.name == "postgresql":
        _set_lock_timeout(engine, settings.db_lock_timeout_ms)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


engine = make_engine(settings.database_url_normalized)
SessionLocal = make_session_factory(engine)


# ---------- FRONTIERE DE PERSISTANCE ----------
def is_transient(exc: BaseException) -> bool:
    """Lock timeout, deadlock, perte de connexion : on peut rejouer l'opération."""
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def run_in_transaction(
    operation: Callable[[Session], T],
    *,
    session_factory: Callable[[], Session] | None = None,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Exécute `operation(db)` dans UNE transaction, puis commit.

    - erreur transitoire -> rollback + backoff exponentiel + on rejoue TOUT
    - toute autre erreur -> rollback + propagation telle quelle
    """
    factory = session_factory or SessionLocal
    max_attempts = max(1, attempts if attempts is not None else settings.db_retry_attempts)
    delay = backoff_seconds if backoff_seconds is not None else settings.db_retry_backoff_seconds

    for attempt in range(1, max_attempts + 1):
        db = factory()
        try:
            result = operation(db)
            db.commit()
            return result
        except Exception as exc:
            db.rollback()
            if not is_transient(exc):
                raise
            if attempt >= max_attempts:
                logger.error("Transient storage error, giving up after %s attempts: %s", attempt, exc)
                raise TransientStorageError(
                    f"Storage temporarily unavailable after {attempt} attempts"
                ) from exc
            logger.warning(
                "Transient storage error (attempt %s/%s), retrying in %.3fs: %s",
                attempt,
                max_attempts,
                delay,
                exc,
            )
            sleep(delay)
            delay = min(delay * 2, settings.db_retry_backoff_max_seconds)
        finally:
            db.close()

    raise AssertionError("unreachable")
