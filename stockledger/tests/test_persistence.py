import logging

import pytest
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError

from stockledger.app.core.config import Settings
from stockledger.app.core.logging_config import configure_logging
from stockledger.app.db.models.models_v1 import Branch
from stockledger.app.db.seed import run_seed
from stockledger.app.db.session import is_transient, run_in_transaction
from stockledger.services.errors import InvalidArgumentError, TransientStorageError


def _locked():
    return OperationalError("UPDATE balances ...", {}, Exception("lock timeout"))


def test_transient_errors_replay_the_whole_operation(session_factory):
    """
    GIVEN
    - deux lock timeouts puis succès

    THEN
    - l'opération entière est rejouée 3 fois, backoff exponentiel
    - seul le dernier essai est commit
    """
    calls = []
    sleeps = []

    def op(db):
        calls.append(1)
        db.add(Branch(name=f"attempt-{len(calls)}"))
        db.flush()
        if len(calls) < 3:
            raise _locked()
        return "done"

    result = run_in_transaction(op, session_factory=session_factory, attempts=3, backoff_seconds=0.01,
                                sleep=sleeps.append)

    assert result == "done"
    assert len(calls) == 3
    assert sleeps == [0.01, 0.02]
    with session_factory() as db:
        assert db.execute(select(Branch.name)).scalars().all() == ["attempt-3"]


def test_gives_up_with_transient_storage_error(session_factory):
    sleeps = []

    def op(db):
        raise _locked()

    with pytest.raises(TransientStorageError) as excinfo:
        run_in_transaction(op, session_factory=session_factory, attempts=2, backoff_seconds=0.01,
                           sleep=sleeps.append)

    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert sleeps == [0.01]


def test_business_errors_roll_back_and_propagate(session_factory):
    calls = []

    def op(db):
        calls.append(1)
        db.add(Branch(name="never"))
        db.flush()
        raise InvalidArgumentError("bad quantity")

    with pytest.raises(InvalidArgumentError):
        run_in_transaction(op, session_factory=session_factory, sleep=lambda _: None)

    assert len(calls) == 1
    with session_factory() as db:
        assert db.execute(select(Branch)).first() is None


def test_is_transient():
    assert is_transient(_locked())
    assert is_transient(DBAPIError("SELECT 1", {}, Exception("gone"), connection_invalidated=True))
    assert not is_transient(DBAPIError("SELECT 1", {}, Exception("syntax")))
    assert not is_transient(ValueError("x"))


def test_seed_is_idempotent(session_factory):
    first = run_seed(session_factory)
    second = run_seed(session_factory)

    assert first == second


def test_settings_normalize_postgres_urls():
    assert Settings(database_url="postgres://u:p@h/db").database_url_normalized == "postgresql+psycopg://u:p@h/db"
    assert Settings(database_url="postgresql://u:p@h/db").database_url_normalized == "postgresql+psycopg://u:p@h/db"
    assert Settings(database_url="sqlite://").database_url_normalized == "sqlite://"


def test_configure_logging_is_idempotent():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        configure_logging("debug")
        configure_logging("info")
        added = [h for h in root.handlers if h not in before]
        assert len(added) <= 1
        assert root.level == logging.INFO
    finally:
        for h in root.handlers[:]:
            if h not in before:
                root.removeHandler(h)
        root.setLevel(level)
