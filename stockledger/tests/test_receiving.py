from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from stockledger.app.db.models.core_types import OrderStatus, ReferenceType
from stockledger.app.db.models.models_v1 import LedgerEntry, Order
from stockledger.services.errors import InvalidArgumentError, InvalidStateError, NotFoundError
from stockledger.services.inventory import get_balance
from stockledger.services.receiving import (
    OrderLineInput,
    create_order,
    list_receiving_history,
    receive_branch_product,
    receive_order_line,
)
from stockledger.services.transfers import post_receipt
from stockledger.services.withdrawals import WithdrawalLineInput, create_withdrawal

DAY = date(2026, 2, 14)


def _entries(db, product_id):
    return db.execute(
        select(LedgerEntry).where(LedgerEntry.product_id == product_id).order_by(LedgerEntry.id)
    ).scalars().all()


def test_create_order(db_session, md):
    dept = md.department()
    product = md.product()
    actor = md.actor(dept)

    order = create_order(db_session, department_id=dept.id, lines=[OrderLineInput(product.id, Decimal("10"))],
                         actor=actor, order_date=DAY)

    assert order.order_number.startswith("ORD-20260214-")
    assert order.status == OrderStatus.submitted
    assert order.lines[0].quantity_requested == Decimal("10")
    assert order.lines[0].is_received is False


def test_create_order_validation(db_session, md):
    dept = md.department()
    product = md.product()
    actor = md.actor(dept)

    with pytest.raises(InvalidArgumentError):
        create_order(db_session, department_id=dept.id, lines=[], actor=actor)
    with pytest.raises(InvalidArgumentError):
        create_order(db_session, department_id=dept.id, lines=[OrderLineInput(product.id, 0)], actor=actor)
    with pytest.raises(NotFoundError):
        create_order(db_session, department_id=dept.id, lines=[OrderLineInput(999_999, 1)], actor=actor)


def test_receive_posts_only_the_delta(db_session, md):
    """
    GIVEN
    - une ligne de 10 unités

    THEN
    - reçu 8   -> +8
    - reçu 10  -> +2 (jamais +10)
    - reçu 10  -> aucune nouvelle entrée
    """
    dept = md.department()
    product = md.product()
    actor = md.actor(dept)
    order = create_order(db_session, department_id=dept.id, lines=[OrderLineInput(product.id, 10)],
                         actor=actor, order_date=DAY)
    line_id = order.lines[0].id

    receive_order_line(db_session, line_id=line_id, quantity_received=8, actor=actor)
    receive_order_line(db_session, line_id=line_id, quantity_received=10, actor=actor)
    receive_order_line(db_session, line_id=line_id, quantity_received=10, actor=actor)

    entries = _entries(db_session, product.id)
    assert [e.quantity for e in entries] == [Decimal("8"), Decimal("2")]
    assert all(e.reference_type == ReferenceType.order_receiving.value for e in entries)
    assert all(e.reference_id == str(line_id) for e in entries)
    assert get_balance(db_session, product.id, dept.id) == Decimal("10")
    assert order.status == OrderStatus.completed


def test_receive_correction_downwards(db_session, md):
    dept = md.department()
    product = md.product()
    actor = md.actor(dept)
    order = create_order(db_session, department_id=dept.id, lines=[OrderLineInput(product.id, 10)], actor=actor)
    line_id = order.lines[0].id

    receive_order_line(db_session, line_id=line_id, quantity_received=10, actor=actor)
    receive_order_line(db_session, line_id=line_id, quantity_received=6, actor=actor)

    assert [e.quantity for e in _entries(db_session, product.id)] == [Decimal("10"), Decimal("-4")]
    assert get_balance(db_session, product.id, dept.id) == Decimal("6")


def test_non_countable_product_records_without_posting(db_session, md):
    dept = md.department()
    product = md.product(is_countable=False)
    actor = md.actor(dept)
    order = create_order(db_session, department_id=dept.id, lines=[OrderLineInput(product.id, 3)], actor=actor)

    line = receive_order_line(db_session, line_id=order.lines[0].id, quantity_received=3, actor=actor)

    assert line.is_received and line.quantity_received == Decimal("3")
    assert _entries(db_session, product.id) == []


def test_receive_errors(db_session, md):
    dept = md.department()
    product = md.product()
    actor = md.actor(dept)
    order = create_order(db_session, department_id=dept.id, lines=[OrderLineInput(product.id, 3)], actor=actor)

    with pytest.raises(NotFoundError):
        receive_order_line(db_session, line_id=999_999, quantity_received=1, actor=actor)
    with pytest.raises(InvalidArgumentError):
        receive_order_line(db_session, line_id=order.lines[0].id, quantity_received=-1, actor=actor)

    order.status = OrderStatus.cancelled
    db_session.flush()
    with pytest.raises(InvalidStateError):
        receive_order_line(db_session, line_id=order.lines[0].id, quantity_received=1, actor=actor)


def test_branch_receive_allocates_proportionally(db_session, md):
    """
    GIVEN
    - branche avec deux départements ayant commandé 10 et 30 du même produit le même jour

    THEN
    - réception agrégée de 20 -> 5 / 15
    - nouvelle réception agrégée de 40 -> deltas +5 / +15 (soldes 10 / 30)
    """
    branch = md.branch()
    d1, d2 = md.department(branch), md.department(branch)
    product = md.product()
    actor = md.actor(is_admin=True)
    o1 = create_order(db_session, department_id=d1.id, lines=[OrderLineInput(product.id, 10)], actor=actor, order_date=DAY)
    o2 = create_order(db_session, department_id=d2.id, lines=[OrderLineInput(product.id, 30)], actor=actor, order_date=DAY)

    allocations = receive_branch_product(db_session, branch_id=branch.id, product_id=product.id, order_date=DAY,
                                         total_received=20, actor=actor)

    assert [(a.line_id, a.allocated_quantity) for a in allocations] == [
        (o1.lines[0].id, Decimal("5")),
        (o2.lines[0].id, Decimal("15")),
    ]
    assert get_balance(db_session, product.id, d1.id) == Decimal("5")
    assert get_balance(db_session, product.id, d2.id) == Decimal("15")

    receive_branch_product(db_session, branch_id=branch.id, product_id=product.id, order_date=DAY,
                           total_received=40, actor=actor)

    assert get_balance(db_session, product.id, d1.id) == Decimal("10")
    assert get_balance(db_session, product.id, d2.id) == Decimal("30")
    assert [e.quantity for e in _entries(db_session, product.id)] == [
        Decimal("5"), Decimal("15"), Decimal("5"), Decimal("15"),
    ]


def test_branch_receive_without_lines(db_session, md):
    branch = md.branch()
    product = md.product()
    actor = md.actor(is_admin=True)

    with pytest.raises(NotFoundError):
        receive_branch_product(db_session, branch_id=branch.id, product_id=product.id, order_date=DAY,
                               total_received=5, actor=actor)


def test_receiving_history_lists_received_lines(db_session, md):
    dept = md.department()
    p1, p2 = md.product(), md.product()
    actor = md.actor(dept)
    order = create_order(db_session, department_id=dept.id,
                         lines=[OrderLineInput(p1.id, 1), OrderLineInput(p2.id, 2)], actor=actor)

    receive_order_line(db_session, line_id=order.lines[1].id, quantity_received=2, actor=actor)

    history = list_receiving_history(db_session, department_id=dept.id)
    assert [ln.product_id for ln in history] == [p2.id]
    assert order.status == OrderStatus.submitted


def test_withdrawal_mirror_lines_cannot_be_received(db_session, md):
    """
    GIVEN
    - A a 50 unités, retrait A -> B de 20 (réception miroir déjà soldée)

    THEN
    - recevoir la ligne miroir est refusé
    - les soldes restent ceux du retrait (A=30, B=20), aucune entrée ajoutée
    """
    a, b = md.department(), md.department()
    product = md.product()
    actor = md.actor(a)
    post_receipt(db_session, product_id=product.id, location_id=a.id, quantity=50,
                 reference_type=ReferenceType.manual, reference_id="init")
    w = create_withdrawal(db_session, source_department_id=a.id, target_department_id=b.id,
                          lines=[WithdrawalLineInput(product.id, Decimal("20"))], actor=actor)
    mirror = db_session.execute(select(Order).where(Order.withdrawal_id == w.id)).scalar_one()
    before = len(_entries(db_session, product.id))

    with pytest.raises(InvalidStateError):
        receive_order_line(db_session, line_id=mirror.lines[0].id, quantity_received=25, actor=md.actor(b))

    assert mirror.lines[0].quantity_received == Decimal("20")
    assert get_balance(db_session, product.id, a.id) == Decimal("30")
    assert get_balance(db_session, product.id, b.id) == Decimal("20")
    assert len(_entries(db_session, product.id)) == before
