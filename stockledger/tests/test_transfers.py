import logging
from decimal import Decimal

import pytest
from sqlalchemy import select

from stockledger.app.db.models.core_types import ReferenceType, TransactionType
from stockledger.app.db.models.models_v1 import LedgerEntry
from stockledger.services import transfers
from stockledger.services.errors import InvalidArgumentError
from stockledger.services.inventory import find_balance_drift, get_balance
from stockledger.services.transfers import post_receipt, transfer_stock


def _stock(db, product, loc, qty):
    post_receipt(db, product_id=product.id, location_id=loc.id, quantity=qty,
                 reference_type=ReferenceType.manual, reference_id="init")


def test_transfer_moves_exact_quantity(db_session, md):
    """
    GIVEN
    - A = 50, B = 0

    THEN
    - transfert de 20 : A = 30, B = 20
    - deux entrées (out/in) partageant la même référence
    """
    product = md.product()
    a, b = md.department(), md.department()
    _stock(db_session, product, a, 50)

    result = transfer_stock(db_session, product_id=product.id, source_location_id=a.id, target_location_id=b.id,
                            quantity=20, reference_type=ReferenceType.manual, reference_id="T-1")

    assert result.quantity == Decimal("20")
    assert get_balance(db_session, product.id, a.id) == Decimal("30")
    assert get_balance(db_session, product.id, b.id) == Decimal("20")

    out_entry = db_session.get(LedgerEntry, result.out_entry_id)
    in_entry = db_session.get(LedgerEntry, result.in_entry_id)
    assert (out_entry.transaction_type, out_entry.quantity) == (TransactionType.transfer_out, Decimal("-20"))
    assert (in_entry.transaction_type, in_entry.quantity) == (TransactionType.transfer_in, Decimal("20"))
    assert out_entry.reference_id == in_entry.reference_id == "T-1"
    assert find_balance_drift(db_session) == []


def test_negative_quantity_reverses_direction(db_session, md):
    product = md.product()
    a, b = md.department(), md.department()
    _stock(db_session, product, b, 10)

    transfer_stock(db_session, product_id=product.id, source_location_id=a.id, target_location_id=b.id,
                   quantity=-4, reference_type=ReferenceType.manual, reference_id="rev")

    assert get_balance(db_session, product.id, a.id) == Decimal("4")
    assert get_balance(db_session, product.id, b.id) == Decimal("6")


def test_transfer_allows_negative_source_and_logs(db_session, md, caplog):
    product = md.product()
    a, b = md.department(), md.department()

    with caplog.at_level(logging.WARNING, logger="stockledger.services.transfers"):
        transfer_stock(db_session, product_id=product.id, source_location_id=a.id, target_location_id=b.id,
                       quantity=5, reference_type=ReferenceType.manual, reference_id="neg")

    assert get_balance(db_session, product.id, a.id) == Decimal("-5")
    assert "Negative balance" in caplog.text


def test_transfer_same_location_rejected(db_session, md):
    product = md.product()
    a = md.department()

    with pytest.raises(InvalidArgumentError):
        transfer_stock(db_session, product_id=product.id, source_location_id=a.id, target_location_id=a.id,
                       quantity=1, reference_type=ReferenceType.manual, reference_id=None)


def test_transfer_zero_is_noop(db_session, md):
    product = md.product()
    a, b = md.department(), md.department()

    assert transfer_stock(db_session, product_id=product.id, source_location_id=a.id, target_location_id=b.id,
                          quantity=0, reference_type=ReferenceType.manual, reference_id=None) is None
    assert db_session.execute(select(LedgerEntry)).first() is None


def test_transfer_is_atomic_when_second_side_fails(db_session, md, monkeypatch):
    """
    GIVEN
    - le posting transfer_in échoue

    THEN
    - le transfer_out est annulé aussi (SAVEPOINT) : aucun solde ne bouge
    """
    product = md.product()
    a, b = md.department(), md.department()
    _stock(db_session, product, a, 50)
    entries_before = len(db_session.execute(select(LedgerEntry)).scalars().all())

    real_post = transfers.post

    def failing_post(db, **kwargs):
        if kwargs["transaction_type"] == TransactionType.transfer_in:
            raise RuntimeError("disk full")
        return real_post(db, **kwargs)

    monkeypatch.setattr(transfers, "post", failing_post)

    with pytest.raises(RuntimeError):
        transfer_stock(db_session, product_id=product.id, source_location_id=a.id, target_location_id=b.id,
                       quantity=20, reference_type=ReferenceType.manual, reference_id="boom")

    assert get_balance(db_session, product.id, a.id) == Decimal("50")
    assert get_balance(db_session, product.id, b.id) == Decimal("0")
    assert len(db_session.execute(select(LedgerEntry)).scalars().all()) == entries_before
    assert find_balance_drift(db_session) == []


def test_post_receipt_is_one_sided(db_session, md):
    product = md.product()
    loc = md.department()

    entry_id = post_receipt(db_session, product_id=product.id, location_id=loc.id, quantity=Decimal("7.25"),
                            reference_type=ReferenceType.purchase_order, reference_id=42, notes="PO")

    entry = db_session.get(LedgerEntry, entry_id)
    assert entry.transaction_type == TransactionType.receive
    assert entry.reference_id == "42"
    assert get_balance(db_session, product.id, loc.id) == Decimal("7.25")
