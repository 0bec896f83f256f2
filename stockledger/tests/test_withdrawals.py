from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from stockledger.app.db.models.core_types import OrderStatus, ReferenceType
from stockledger.app.db.models.models_v1 import LedgerEntry, Order, RoutingMapping
from stockledger.services.errors import ForbiddenError, InvalidArgumentError, NotFoundError
from stockledger.services.inventory import find_balance_drift, get_balance
from stockledger.services.receiving import list_receiving_history
from stockledger.services.transfers import post_receipt
from stockledger.services.withdrawals import (
    WithdrawalLineInput,
    create_withdrawal,
    get_withdrawal,
    list_withdrawals,
    update_withdrawal,
)


@pytest.fixture
def setup(db_session, md):
    """A (source) a 50 unités de P ; B est dans une autre branche."""
    a = md.department()
    b = md.department()
    product = md.product()
    post_receipt(db_session, product_id=product.id, location_id=a.id, quantity=50,
                 reference_type=ReferenceType.manual, reference_id="init")
    return SimpleNamespace(a=a, b=b, product=product, actor=md.actor(a))


def _count(db, reference_type=None) -> int:
    stmt = select(func.count()).select_from(LedgerEntry)
    if reference_type is not None:
        stmt = stmt.where(LedgerEntry.reference_type == reference_type.value)
    return db.execute(stmt).scalar_one()


def _create(db, s, qty, **kwargs):
    return create_withdrawal(
        db,
        source_department_id=s.a.id,
        target_department_id=s.b.id,
        lines=[WithdrawalLineInput(s.product.id, Decimal(str(qty)))],
        actor=kwargs.pop("actor", s.actor),
        **kwargs,
    )


def test_end_to_end_withdrawal(db_session, setup):
    """
    GIVEN
    - A = 50 pour P

    THEN
    - retrait A -> B de 20 : A = 30, B = 20
    - une réception miroir apparaît dans l'historique de B
    """
    w = _create(db_session, setup, 20, notes="weekly")

    assert w.withdrawal_number.startswith("WDR-")
    assert get_balance(db_session, setup.product.id, setup.a.id) == Decimal("30")
    assert get_balance(db_session, setup.product.id, setup.b.id) == Decimal("20")
    assert _count(db_session, ReferenceType.withdrawal) == 2

    history = list_receiving_history(db_session, department_id=setup.b.id)
    assert len(history) == 1
    mirror_line = history[0]
    assert mirror_line.quantity_received == Decimal("20")
    assert mirror_line.order.withdrawal_id == w.id
    assert mirror_line.order.status == OrderStatus.completed
    assert find_balance_drift(db_session) == []


def test_duplicate_lines_are_merged(db_session, setup):
    w = create_withdrawal(
        db_session,
        source_department_id=setup.a.id,
        target_department_id=setup.b.id,
        lines=[
            WithdrawalLineInput(setup.product.id, Decimal("5"), "morning"),
            WithdrawalLineInput(setup.product.id, Decimal("7"), "evening"),
        ],
        actor=setup.actor,
    )

    assert len(w.lines) == 1
    assert w.lines[0].quantity == Decimal("12")
    assert w.lines[0].notes == "morning | evening"
    assert get_balance(db_session, setup.product.id, setup.b.id) == Decimal("12")


def test_validation_happens_before_any_lookup(db_session, setup):
    with pytest.raises(InvalidArgumentError):
        create_withdrawal(db_session, source_department_id=1, target_department_id=1,
                          lines=[WithdrawalLineInput(1, 1)], actor=setup.actor)
    with pytest.raises(InvalidArgumentError):
        create_withdrawal(db_session, source_department_id=1, target_department_id=2, lines=[], actor=setup.actor)
    with pytest.raises(InvalidArgumentError):
        create_withdrawal(db_session, source_department_id=1, target_department_id=2,
                          lines=[WithdrawalLineInput(1, 0)], actor=setup.actor)
    assert _count(db_session) == 1


def test_unknown_target_is_not_found(db_session, setup):
    with pytest.raises(NotFoundError):
        create_withdrawal(db_session, source_department_id=setup.a.id, target_department_id=999_999,
                          lines=[WithdrawalLineInput(setup.product.id, 1)], actor=setup.actor)


def test_routing_forbids_unmapped_source_unless_production(db_session, md, setup):
    """
    GIVEN
    - la branche de B n'est servie que par C

    THEN
    - A (non production) -> B : ForbiddenError
    - même appel depuis un département production : OK
    """
    c = md.department()
    target_branch_id = setup.b.branch_id
    db_session.add(RoutingMapping(target_branch_id=target_branch_id, source_department_id=c.id))
    db_session.flush()

    with pytest.raises(ForbiddenError):
        _create(db_session, setup, 5)
    assert get_balance(db_session, setup.product.id, setup.a.id) == Decimal("50")

    setup.a.is_production = True
    db_session.flush()
    _create(db_session, setup, 5)
    assert get_balance(db_session, setup.product.id, setup.a.id) == Decimal("45")


def test_created_by_records_the_actor(db_session, md, setup):
    admin = md.actor(is_admin=True)

    w = _create(db_session, setup, 5, actor=admin)

    assert w.created_by == admin.user_id


def test_update_posts_only_the_diff_and_is_idempotent(db_session, setup):
    """
    GIVEN
    - retrait de 20

    THEN
    - mise à jour à 25 : un transfert de +5 (withdrawal_update)
    - même mise à jour rejouée : aucune nouvelle entrée
    - mise à jour à 15 : un transfert inverse de -10
    """
    w = _create(db_session, setup, 20)
    new_lines = [WithdrawalLineInput(setup.product.id, Decimal("25"))]

    update_withdrawal(db_session, withdrawal_id=w.id, lines=new_lines, actor=setup.actor)
    assert get_balance(db_session, setup.product.id, setup.a.id) == Decimal("25")
    assert get_balance(db_session, setup.product.id, setup.b.id) == Decimal("25")
    assert _count(db_session, ReferenceType.withdrawal_update) == 2

    before = _count(db_session)
    update_withdrawal(db_session, withdrawal_id=w.id, lines=new_lines, actor=setup.actor)
    assert _count(db_session) == before

    update_withdrawal(db_session, withdrawal_id=w.id, actor=setup.actor,
                      lines=[WithdrawalLineInput(setup.product.id, Decimal("15"))])
    assert get_balance(db_session, setup.product.id, setup.a.id) == Decimal("35")
    assert get_balance(db_session, setup.product.id, setup.b.id) == Decimal("15")
    assert w.lines[0].quantity == Decimal("15")

    mirror = db_session.execute(select(Order).where(Order.withdrawal_id == w.id)).scalar_one()
    assert mirror.lines[0].quantity_received == Decimal("15")
    assert find_balance_drift(db_session) == []


def test_update_requires_owner_or_admin(db_session, md, setup):
    w = _create(db_session, setup, 10)
    lines = [WithdrawalLineInput(setup.product.id, Decimal("12"))]

    with pytest.raises(ForbiddenError):
        update_withdrawal(db_session, withdrawal_id=w.id, lines=lines, actor=md.actor(setup.b))

    update_withdrawal(db_session, withdrawal_id=w.id, lines=lines, actor=md.actor(is_admin=True), notes="fixed")
    assert w.notes == "fixed"
    assert get_balance(db_session, setup.product.id, setup.b.id) == Decimal("12")


def test_update_rejects_unknown_product_and_missing_withdrawal(db_session, md, setup):
    w = _create(db_session, setup, 10)
    other = md.product()

    with pytest.raises(InvalidArgumentError):
        update_withdrawal(db_session, withdrawal_id=w.id, lines=[WithdrawalLineInput(other.id, 1)], actor=setup.actor)
    with pytest.raises(NotFoundError):
        update_withdrawal(db_session, withdrawal_id=999_999, lines=[], actor=setup.actor)


def test_non_countable_lines_are_recorded_without_posting(db_session, md, setup):
    napkins = md.product(is_countable=False)

    w = create_withdrawal(
        db_session,
        source_department_id=setup.a.id,
        target_department_id=setup.b.id,
        lines=[WithdrawalLineInput(napkins.id, 100)],
        actor=setup.actor,
    )

    assert [ln.product_id for ln in w.lines] == [napkins.id]
    assert _count(db_session, ReferenceType.withdrawal) == 0


def test_get_and_list(db_session, md, setup):
    w = _create(db_session, setup, 1)

    assert get_withdrawal(db_session, w.id, md.actor(setup.b)) is w
    with pytest.raises(ForbiddenError):
        get_withdrawal(db_session, w.id, md.actor(md.department()))
    with pytest.raises(NotFoundError):
        get_withdrawal(db_session, 999_999)

    assert [x.id for x in list_withdrawals(db_session, source_department_id=setup.a.id)] == [w.id]
    assert [x.id for x in list_withdrawals(db_session, department_id=setup.b.id)] == [w.id]
    assert list_withdrawals(db_session, target_department_id=setup.a.id) == []


def test_update_replaces_line_notes(db_session, setup):
    """
    GIVEN
    - retrait de 10 avec la note "urgent"

    THEN
    - mise à jour avec une nouvelle note : la note est remplacée
    - mise à jour sans note : la note est effacée (ligne et miroir)
    """
    w = create_withdrawal(db_session, source_department_id=setup.a.id, target_department_id=setup.b.id,
                          lines=[WithdrawalLineInput(setup.product.id, Decimal("10"), "urgent")], actor=setup.actor)
    mirror = db_session.execute(select(Order).where(Order.withdrawal_id == w.id)).scalar_one()
    assert w.lines[0].notes == mirror.lines[0].notes == "urgent"

    update_withdrawal(db_session, withdrawal_id=w.id, actor=setup.actor,
                      lines=[WithdrawalLineInput(setup.product.id, Decimal("10"), "short by 2")])
    assert w.lines[0].notes == mirror.lines[0].notes == "short by 2"

    update_withdrawal(db_session, withdrawal_id=w.id, actor=setup.actor,
                      lines=[WithdrawalLineInput(setup.product.id, Decimal("10"))])
    assert w.lines[0].notes is None
    assert mirror.lines[0].notes is None
