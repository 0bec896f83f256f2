import itertools
import os

# avant tout import du projet : le moteur module-level ne doit pas viser Postgres
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from stockledger.app.api.deps import get_session_factory
from stockledger.app.db.bootstrap import init_schema
from stockledger.app.db.models.core_types import Role
from stockledger.app.db.models.models_v1 import Branch, Department, Product, Supplier, User
from stockledger.app.db.session import make_engine, make_session_factory
from stockledger.app.main import app
from stockledger.services.directory import Actor

_seq = itertools.count(1)


class MasterData:
    """Petites fabriques hermétiques (chaque test crée ses propres données)."""

    def __init__(self, db: Session):
        self.db = db

    def _add(self, obj):
        self.db.add(obj)
        self.db.flush()
        return obj

    def branch(self, name: str | None = None, is_active: bool = True) -> Branch:
        n = next(_seq)
        return self._add(Branch(name=name or f"TEST-BRANCH-{n}", code=f"B{n}", is_active=is_active))

    def department(
        self,
        branch: Branch | None = None,
        name: str | None = None,
        is_production: bool = False,
        is_active: bool = True,
    ) -> Department:
        branch = branch or self.branch()
        return self._add(
            Department(
                branch_id=branch.id,
                name=name or f"TEST-DEPT-{next(_seq)}",
                is_production=is_production,
                is_active=is_active,
            )
        )

    def product(self, is_countable: bool = True, is_active: bool = True) -> Product:
        n = next(_seq)
        return self._add(
            Product(code=f"TEST-SKU-{n}", name=f"TEST-PROD-{n}", is_countable=is_countable, is_active=is_active)
        )

    def supplier(self) -> Supplier:
        return self._add(Supplier(name=f"TEST-SUP-{next(_seq)}"))

    def user(self, department: Department | None = None, role: Role = Role.user) -> User:
        n = next(_seq)
        return self._add(
            User(
                username=f"user{n}",
                name=f"TEST-USER-{n}",
                role=role,
                department_id=department.id if department else None,
            )
        )

    def actor(self, department: Department | None = None, is_admin: bool = False) -> Actor:
        user = self.user(department, Role.admin if is_admin else Role.user)
        return Actor(user_id=user.id, department_id=department.id if department else None, is_admin=is_admin)


@pytest.fixture(scope="function")
def engine():
    """SQLite en mémoire, une connexion partagée (StaticPool), SAVEPOINT actifs."""
    eng = make_engine("sqlite://", poolclass=StaticPool)
    init_schema(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def md(db_session) -> MasterData:
    return MasterData(db_session)


@pytest.fixture(scope="function")
def client(session_factory):
    """
    Client HTTP sur le même moteur.
    Les données préparées via db_session doivent être commit() avant les appels.
    """
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
